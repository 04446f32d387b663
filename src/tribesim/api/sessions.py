"""
Session manager for social-dynamics runs.

Each session wraps a Population + TickEngine + MetricsCollector and an
optional SQLite legend sink. The social core never decides who exerts
effort, who mates or who meets whom; a session fills that role with a
seeded world driver so runs can be stepped from the API reproducibly.
Callers may also supply explicit tick inputs instead.
"""

from __future__ import annotations

import logging
import os
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, ContextManager, Iterator

import numpy as np

from tribesim.core.config import AppConfig
from tribesim.core.genetics import GeneticModel
from tribesim.core.genotype import SPEC_KINDS
from tribesim.core.intel import Intel
from tribesim.core.population import Population
from tribesim.core.tick_engine import InteractionRequest, TickEngine, TickInputs, TickResult
from tribesim.metrics.collector import MetricsCollector
from tribesim.social.legend import LegendArchive
from tribesim.social.reproduction import ParentPair, is_eligible_parent
from tribesim.social.symbiosis import InteractionKind
from tribesim.social.tribes import TribeEngine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# World driver
# ---------------------------------------------------------------------------

@dataclass
class WorldSettings:
    """Knobs for the built-in driver; not part of the social core."""

    initial_population: int = 40
    initial_tribes: int = 4
    max_age: int = 2500
    interaction_fraction: float = 0.3
    forage_mean: float = 2.0
    forage_std: float = 4.0
    max_ticks: int = 1000

    def to_dict(self) -> dict[str, Any]:
        return dict(self.__dict__)


def create_initial_population(
    config: AppConfig, settings: WorldSettings, rng: np.random.Generator,
) -> Population:
    """Random founders spread over a few starting tribes."""
    model = GeneticModel(config)
    population = Population()
    for _ in range(settings.initial_population):
        genotype = model.random_genotype(rng)
        population.add(Intel(
            id=population.allocate_id(),
            genotype=genotype,
            # Founders start at staggered ages so some can reproduce early
            birth_tick=-int(rng.integers(0, 2 * config.reproduction.maturity_age)),
            energy=float(rng.uniform(0.4, 0.9)) * genotype.max_energy,
        ))

    tribe_engine = TribeEngine(config)
    n_tribes = max(1, min(settings.initial_tribes, len(population)))
    ids = population.ids()
    for k in range(n_tribes):
        members = ids[k::n_tribes]
        if members:
            tribe_engine.found_tribe(population, members)
    return population


def generate_tick_inputs(
    population: Population,
    tick: int,
    config: AppConfig,
    settings: WorldSettings,
    rng: np.random.Generator,
) -> TickInputs:
    """
    Stand-in for the surrounding simulation: foraging, effort, mating,
    encounters and old-age removal for one tick.
    """
    living = [a for a in population if a.is_alive and not a.marked_for_removal]

    # Foraging happens in the outer world before the tick
    for agent in living:
        agent.set_energy(agent.energy + float(rng.normal(settings.forage_mean, settings.forage_std)))

    removals = sorted(
        a.id for a in living
        if a.age(tick) > settings.max_age or a.energy <= 0
    )
    leaving = set(removals)
    active = [a for a in living if a.id not in leaving]

    efforts = []
    for agent in active:
        if agent.specialization.committed:
            continue
        weights = np.array([1.0 + max(b, 0.0) for b in agent.genotype.specialization_bias])
        kind = SPEC_KINDS[int(rng.choice(len(SPEC_KINDS), p=weights / weights.sum()))]
        efforts.append((agent.id, kind, float(rng.uniform(0.5, 5.0))))

    pairs: list[ParentPair] = []
    by_tribe: dict[int, list[Intel]] = {}
    for agent in active:
        if agent.tribe_id is not None and is_eligible_parent(agent, tick, config):
            by_tribe.setdefault(agent.tribe_id, []).append(agent)
    for tribe_id in sorted(by_tribe):
        candidates = by_tribe[tribe_id]
        order = rng.permutation(len(candidates))
        for i in range(0, len(order) - 1, 2):
            a, b = candidates[order[i]], candidates[order[i + 1]]
            if rng.random() < (a.genotype.pairing_bias + b.genotype.pairing_bias) / 2:
                pairs.append(ParentPair(a.id, b.id))

    interactions = []
    if len(active) >= 2:
        n_meet = int(len(active) * settings.interaction_fraction)
        for idx in rng.choice(len(active), size=n_meet, replace=False):
            actor = active[int(idx)]
            target = active[int(rng.integers(len(active)))]
            if target.id == actor.id:
                continue
            same_tribe = actor.tribe_id is not None and actor.tribe_id == target.tribe_id
            if same_tribe or actor.genotype.trophic_potential < 0.5:
                kind = InteractionKind.SYMBIOTIC
            else:
                kind = InteractionKind.PREDATORY
            allies = 0
            if target.tribe_id is not None:
                allies = min(population.tribe(target.tribe_id).size - 1, 5)
            interactions.append(InteractionRequest(actor.id, target.id, kind, allies))

    return TickInputs(
        efforts=efforts, pairs=pairs, interactions=interactions, removals=removals,
    )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

@dataclass
class SocialSession:
    """A running or completed social-dynamics session."""

    id: str
    name: str
    config: AppConfig
    settings: WorldSettings
    engine: TickEngine
    collector: MetricsCollector
    rng: np.random.Generator
    status: str = "created"  # created | running | completed
    last_result: TickResult | None = None
    lock: threading.Lock = field(default_factory=threading.Lock)

    @property
    def population(self) -> Population:
        return self.engine.population

    @property
    def archive(self) -> LegendArchive:
        return self.engine.archive

    @property
    def current_tick(self) -> int:
        return self.engine.tick


@contextmanager
def _locked(session: SocialSession) -> Iterator[SocialSession]:
    with session.lock:
        yield session


class SessionManager:
    """Manages in-memory sessions, with optional per-session legend stores.

    Parameters
    ----------
    legend_dir : str | None
        Directory for per-session SQLite legend databases. ``None`` keeps
        legends in memory only.
    """

    def __init__(self, legend_dir: str | None = None):
        self.sessions: dict[str, SocialSession] = {}
        self.legend_dir = legend_dir
        if legend_dir is not None:
            os.makedirs(legend_dir, exist_ok=True)

    def _build_archive(self, session_id: str) -> LegendArchive:
        if self.legend_dir is None:
            return LegendArchive()
        from tribesim.social.legend_store import SqliteLegendSink
        sink = SqliteLegendSink(os.path.join(self.legend_dir, f"{session_id}.db"))
        return LegendArchive.restore(sink.load_all(), sink=sink)

    def create_session(
        self,
        config: AppConfig | None = None,
        settings: WorldSettings | None = None,
        name: str | None = None,
    ) -> SocialSession:
        """Create a session with a freshly seeded founding population."""
        config = config or AppConfig()
        settings = settings or WorldSettings()
        session_id = uuid.uuid4().hex[:8]

        rng = np.random.default_rng(config.random_seed)
        population = create_initial_population(config, settings, rng)
        engine = TickEngine(config, population, archive=self._build_archive(session_id))

        session = SocialSession(
            id=session_id,
            name=name or f"session-{session_id}",
            config=config,
            settings=settings,
            engine=engine,
            collector=MetricsCollector(),
            rng=rng,
        )
        self.sessions[session_id] = session
        logger.info(
            "Created session %s with %d agents in %d tribes",
            session_id, len(population), population.tribe_count,
        )
        return session

    def get_session(self, session_id: str) -> SocialSession:
        """Raises KeyError if not found."""
        try:
            return self.sessions[session_id]
        except KeyError:
            raise KeyError(f"Session '{session_id}' not found") from None

    def read(self, session_id: str) -> ContextManager[SocialSession]:
        """
        Hold the session lock while a caller reads it.

        Raises KeyError immediately if the session does not exist, so the
        caller can map it before entering the block.
        """
        return _locked(self.get_session(session_id))

    def list_sessions(self) -> list[dict[str, Any]]:
        return [
            {
                "id": s.id,
                "name": s.name,
                "status": s.status,
                "current_tick": s.current_tick,
                "max_ticks": s.settings.max_ticks,
                "population_size": len(s.population),
            }
            for s in list(self.sessions.values())
        ]

    def delete_session(self, session_id: str) -> None:
        session = self.get_session(session_id)
        with session.lock:
            sink = session.archive.sink
            close = getattr(sink, "close", None)
            if close is not None:
                close()
            del self.sessions[session_id]

    def step(
        self, session_id: str, n: int = 1, inputs: TickInputs | None = None,
    ) -> list[TickResult]:
        """
        Advance a session by ``n`` ticks.

        Explicit ``inputs`` apply to the first tick only; the world driver
        supplies the rest.
        """
        session = self.get_session(session_id)
        results: list[TickResult] = []
        with session.lock:
            if session.status == "completed":
                return results
            session.status = "running"
            for i in range(n):
                if session.current_tick >= session.settings.max_ticks or not len(session.population):
                    session.status = "completed"
                    break
                if i == 0 and inputs is not None:
                    tick_inputs = inputs
                else:
                    tick_inputs = generate_tick_inputs(
                        session.population, session.current_tick,
                        session.config, session.settings, session.rng,
                    )
                result = session.engine.run_tick(tick_inputs)
                session.collector.collect(session.population, result, session.archive)
                session.last_result = result
                results.append(result)
            if session.current_tick >= session.settings.max_ticks or not len(session.population):
                session.status = "completed"
        return results

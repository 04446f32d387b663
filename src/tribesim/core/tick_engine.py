"""
Tick pipeline — runs the social stages in a fixed order.

Stages, each reading the previous stage's committed state:

1. specialization — apply role efforts to spec meters
2. tribes — recompute ranks, split tribes over their limits
3. reproduction — sexual pairs first, then asexual for everyone else
4. interactions — symbiotic/predatory exchanges, batched without overlap
5. legends — archive worthy agents flagged for removal, then remove them

Cancellation and the optional deadline are checked between stages only, so
a stage never commits partially. Skipped stages leave rank and tribe data
one tick stale, which callers accept. Caller errors (bad pairs, unknown ids)
and archive failures are recorded in the result instead of aborting the
tick; an agent whose archive write failed stays in the population and is
retried next tick.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

import numpy as np

from tribesim.core.config import AppConfig
from tribesim.core.errors import ArchiveWriteError, PairingError
from tribesim.core.genotype import SpecializationKind
from tribesim.core.population import Population
from tribesim.social.legend import LegendArchive, archive_if_legend
from tribesim.social.reproduction import ParentPair, ReproductionEngine
from tribesim.social.specialization import accrue_specialization
from tribesim.social.symbiosis import (
    InteractionKind,
    InteractionOutcome,
    OutcomeStatus,
    PredationContext,
    resolve_interactions,
)
from tribesim.social.tribes import TribeEngine

logger = logging.getLogger(__name__)


class TickStage(str, Enum):
    SPECIALIZATION = "specialization"
    TRIBES = "tribes"
    REPRODUCTION = "reproduction"
    INTERACTIONS = "interactions"
    LEGENDS = "legends"


STAGE_ORDER: tuple[TickStage, ...] = tuple(TickStage)


# ---------------------------------------------------------------------------
# Inputs and results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InteractionRequest:
    """Caller-chosen interaction; who meets whom is decided outside the core."""

    actor_id: int
    target_id: int
    kind: InteractionKind
    allies: int = 0


@dataclass
class TickInputs:
    """Everything the surrounding simulation hands to one tick."""

    efforts: list[tuple[int, SpecializationKind, float]] = field(default_factory=list)
    pairs: list[ParentPair] = field(default_factory=list)
    interactions: list[InteractionRequest] = field(default_factory=list)
    removals: list[int] = field(default_factory=list)
    asexual: bool = True


@dataclass
class TickResult:
    """What happened during one tick."""

    tick: int
    completed_stages: list[str] = field(default_factory=list)
    skipped_stages: list[str] = field(default_factory=list)
    cancelled: bool = False
    deadline_exceeded: bool = False
    newly_specialized: list[int] = field(default_factory=list)
    splits: list[dict[str, Any]] = field(default_factory=list)
    births: list[int] = field(default_factory=list)
    outcomes: list[InteractionOutcome] = field(default_factory=list)
    deaths: list[int] = field(default_factory=list)
    legends: list[int] = field(default_factory=list)
    removed: list[int] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.skipped_stages

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick": self.tick,
            "completed_stages": list(self.completed_stages),
            "skipped_stages": list(self.skipped_stages),
            "cancelled": self.cancelled,
            "deadline_exceeded": self.deadline_exceeded,
            "newly_specialized": list(self.newly_specialized),
            "splits": list(self.splits),
            "births": list(self.births),
            "interactions": [o.to_dict() for o in self.outcomes],
            "deaths": list(self.deaths),
            "legends": list(self.legends),
            "removed": list(self.removed),
            "errors": list(self.errors),
        }


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

class TickEngine:
    """
    Drives one population through successive ticks.

    The engine owns nothing but its tick counter; the population and the
    legend archive are handed in and mutated in place.
    """

    def __init__(
        self,
        config: AppConfig,
        population: Population,
        archive: LegendArchive | None = None,
        executor: Executor | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.population = population
        self.archive = archive if archive is not None else LegendArchive()
        self.executor = executor
        self.clock = clock
        self.tick = 0
        self.tribe_engine = TribeEngine(config)
        self.reproduction = ReproductionEngine(config, executor)

    def run_tick(
        self,
        inputs: TickInputs | None = None,
        cancel: threading.Event | None = None,
        deadline: float | None = None,
    ) -> TickResult:
        """
        Run every stage for the current tick and advance the counter.

        ``deadline`` is compared against ``clock()``; once passed, the
        remaining stages are skipped.
        """
        inputs = inputs or TickInputs()
        result = TickResult(tick=self.tick)
        self._apply_removals(inputs.removals, result)

        stages: dict[TickStage, Callable[[TickInputs, TickResult], None]] = {
            TickStage.SPECIALIZATION: self._stage_specialization,
            TickStage.TRIBES: self._stage_tribes,
            TickStage.REPRODUCTION: self._stage_reproduction,
            TickStage.INTERACTIONS: self._stage_interactions,
            TickStage.LEGENDS: self._stage_legends,
        }
        for i, stage in enumerate(STAGE_ORDER):
            if cancel is not None and cancel.is_set():
                result.cancelled = True
            elif deadline is not None and self.clock() >= deadline:
                result.deadline_exceeded = True
            if result.cancelled or result.deadline_exceeded:
                result.skipped_stages = [s.value for s in STAGE_ORDER[i:]]
                logger.warning(
                    "Tick %d stopped before '%s' (%s); skipped %s",
                    self.tick, stage.value,
                    "cancelled" if result.cancelled else "deadline exceeded",
                    result.skipped_stages,
                )
                break
            stages[stage](inputs, result)
            result.completed_stages.append(stage.value)

        logger.debug(
            "Tick %d: %d births, %d interactions, %d legends, %d errors",
            self.tick, len(result.births), len(result.outcomes),
            len(result.legends), len(result.errors),
        )
        self.tick += 1
        return result

    def run(self, n_ticks: int, inputs_fn: Callable[[int], TickInputs] | None = None) -> list[TickResult]:
        """Run ``n_ticks`` ticks, asking ``inputs_fn(tick)`` for each tick's inputs."""
        results = []
        for _ in range(n_ticks):
            inputs = inputs_fn(self.tick) if inputs_fn else None
            results.append(self.run_tick(inputs))
        return results

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------
    def _apply_removals(self, removals: list[int], result: TickResult) -> None:
        for agent_id in removals:
            agent = self.population.find(agent_id)
            if agent is None:
                result.errors.append(f"Removal requested for unknown agent {agent_id}")
                continue
            agent.marked_for_removal = True

    def _stage_specialization(self, inputs: TickInputs, result: TickResult) -> None:
        efforts = [e for e in inputs.efforts if self._known(e[0], "effort", result)]
        result.newly_specialized = accrue_specialization(
            self.population, efforts, self.config, self.executor,
        )
        for agent_id in result.newly_specialized:
            kind = self.population.get(agent_id).specialization.kind
            logger.debug("Agent %d specialized as %s", agent_id, kind.value)

    def _stage_tribes(self, inputs: TickInputs, result: TickResult) -> None:
        summary = self.tribe_engine.update(self.population, self.tick)
        result.splits = summary["splits"]

    def _stage_reproduction(self, inputs: TickInputs, result: TickResult) -> None:
        paired: set[int] = set()
        if inputs.pairs:
            try:
                children = self.reproduction.reproduce_sexual(
                    self.population, inputs.pairs, tick=self.tick,
                )
                result.births.extend(c.id for c in children)
                # Only parents that actually bred sit out the asexual pass
                for child in children:
                    paired.update(child.parent_ids)
            except PairingError as exc:
                logger.warning("Sexual reproduction aborted at tick %d: %s", self.tick, exc)
                result.errors.append(str(exc))
        if inputs.asexual:
            children = self.reproduction.reproduce_asexual(
                self.population, tick=self.tick, exclude_ids=paired,
            )
            result.births.extend(c.id for c in children)

    def _stage_interactions(self, inputs: TickInputs, result: TickResult) -> None:
        requests = [
            r for r in inputs.interactions
            if self._known(r.actor_id, "interaction", result)
            and self._known(r.target_id, "interaction", result)
        ]
        # Offset the stream so interaction draws never coincide with reproduction
        seeds = np.random.SeedSequence([self.config.random_seed + 2, self.tick]).spawn(len(requests))
        contexts = [
            PredationContext(
                actor_id=r.actor_id,
                target_id=r.target_id,
                kind=r.kind,
                population=self.population,
                config=self.config,
                rng=np.random.default_rng(s),
                allies=r.allies,
            )
            for r, s in zip(requests, seeds)
        ]
        result.outcomes = resolve_interactions(contexts)

        # Predation victims drained to zero leave the population this tick
        for outcome in result.outcomes:
            if outcome.status is not OutcomeStatus.APPLIED:
                continue
            if outcome.kind is not InteractionKind.PREDATORY:
                continue
            target = self.population.get(outcome.target_id)
            if target.energy <= 0 and not target.marked_for_removal:
                target.is_alive = False
                target.marked_for_removal = True
                result.deaths.append(target.id)

    def _stage_legends(self, inputs: TickInputs, result: TickResult) -> None:
        departing = sorted(a.id for a in self.population if a.marked_for_removal)
        for agent_id in departing:
            agent = self.population.get(agent_id)
            try:
                legend = archive_if_legend(agent, self.archive, self.config, self.tick)
            except ArchiveWriteError as exc:
                logger.warning("%s; agent kept for retry", exc)
                result.errors.append(str(exc))
                continue
            if legend is not None:
                result.legends.append(agent_id)
            agent.is_alive = False
            self.population.remove(agent_id)
            result.removed.append(agent_id)

    def _known(self, agent_id: int, what: str, result: TickResult) -> bool:
        if agent_id in self.population:
            return True
        result.errors.append(f"Unknown agent {agent_id} in {what}")
        return False

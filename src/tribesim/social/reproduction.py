"""
Reproduction Engine — parallel asexual and sexual offspring synthesis.

Each call runs in two phases:

1. Fan-out: eligible parents are frozen into ``ParentData`` snapshots and
   handed to a thread pool. Workers only read their snapshot and draw from
   their own random stream, so no worker touches a live record.
2. Commit: parent energy debits, offspring counts and child insertion are
   applied single-threaded in input order, so the outcome is reproducible
   for a fixed input order and seed.

Energy investment follows a safety rule: a parent never invests more than
``safe_investment_cap`` of its energy and always keeps
``min_parent_remaining``; parents that cannot meet that are skipped.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Collection, Sequence, TypeVar

import numpy as np

from tribesim.core.errors import PairingError
from tribesim.core.genetics import GeneticModel
from tribesim.core.genotype import Genotype, SpecializationKind
from tribesim.core.intel import Intel

if TYPE_CHECKING:
    from tribesim.core.config import AppConfig
    from tribesim.core.population import Population

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ParentData:
    """Read-only snapshot of a parent taken before the fan-out."""

    id: int
    energy: float
    generation: int
    lineage_id: str
    tribe_id: int | None
    specialization: SpecializationKind | None
    genotype: Genotype

    @classmethod
    def from_intel(cls, intel: Intel) -> ParentData:
        return cls(
            id=intel.id,
            energy=float(intel.energy),
            generation=intel.generation,
            lineage_id=intel.lineage_id,
            tribe_id=intel.tribe_id,
            specialization=intel.specialization.kind,
            genotype=intel.genotype,
        )


@dataclass(frozen=True)
class ParentPair:
    """Caller-chosen mating pair; matching policy lives outside this engine."""

    parent1_id: int
    parent2_id: int


@dataclass(frozen=True)
class ReproductionContext:
    """Per-worker environment for synthesizing one child."""

    tick: int
    population_size: int
    config: AppConfig
    rng: np.random.Generator


@dataclass(frozen=True)
class AsexualReproductionContext:
    parent: ParentData
    ctx: ReproductionContext


@dataclass(frozen=True)
class Offspring:
    """Worker output, applied to the population during commit."""

    genotype: Genotype
    energy: float
    generation: int
    parent_ids: tuple[int, ...]
    tribe_id: int | None
    debits: tuple[tuple[int, float], ...]
    genetic_distance: float


# ---------------------------------------------------------------------------
# Eligibility and investment
# ---------------------------------------------------------------------------

def is_eligible_parent(intel: Intel, tick: int, config: AppConfig) -> bool:
    """Alive, not leaving the population, mature and energetic enough."""
    rc = config.reproduction
    return (
        intel.is_alive
        and not intel.marked_for_removal
        and intel.energy >= rc.reproduction_threshold
        and intel.age(tick) >= rc.maturity_age
    )


def safe_investment(parent: ParentData, config: AppConfig) -> float | None:
    """
    Energy the parent can hand to a child, or None if it cannot afford one.
    """
    rc = config.reproduction
    if parent.energy < rc.min_parent_remaining or parent.energy <= 0:
        return None
    investment = min(parent.genotype.reproductive_investment, rc.safe_investment_cap)
    max_safe = float(np.clip(
        (parent.energy - rc.min_parent_remaining) / parent.energy,
        rc.min_investment, rc.safe_investment_cap,
    ))
    child_energy = parent.energy * min(investment, max_safe)
    if child_energy <= 0 or parent.energy - child_energy < rc.min_parent_remaining:
        return None
    return child_energy


# ---------------------------------------------------------------------------
# Workers (pure over their inputs)
# ---------------------------------------------------------------------------

def synthesize_asexual(job: AsexualReproductionContext) -> Offspring | None:
    """Clone-and-mutate one child from a single parent snapshot."""
    parent, ctx = job.parent, job.ctx
    child_energy = safe_investment(parent, ctx.config)
    if child_energy is None:
        return None

    model = GeneticModel(ctx.config)
    genotype = model.mutate(
        parent.genotype, ctx.rng,
        population_size=ctx.population_size,
        specialization=parent.specialization,
    )
    genotype, dist = model.speciate(parent.genotype, genotype, ctx.rng)
    return Offspring(
        genotype=genotype,
        energy=child_energy,
        generation=parent.generation + 1,
        parent_ids=(parent.id,),
        tribe_id=parent.tribe_id,
        debits=((parent.id, child_energy),),
        genetic_distance=dist,
    )


def synthesize_sexual(
    parents: tuple[ParentData, ParentData], ctx: ReproductionContext,
) -> Offspring | None:
    """Crossover-and-mutate one child from two parent snapshots."""
    p1, p2 = parents
    share1 = safe_investment(p1, ctx.config)
    share2 = safe_investment(p2, ctx.config)
    if share1 is None or share2 is None:
        return None

    model = GeneticModel(ctx.config)
    genotype = model.crossover(p1.genotype, p2.genotype, ctx.rng)
    genotype = model.mutate(genotype, ctx.rng, population_size=ctx.population_size)
    genotype, dist = model.speciate(p1.genotype, genotype, ctx.rng)
    return Offspring(
        genotype=genotype,
        energy=share1 + share2,
        generation=max(p1.generation, p2.generation) + 1,
        parent_ids=(p1.id, p2.id),
        tribe_id=p1.tribe_id if p1.tribe_id is not None else p2.tribe_id,
        debits=((p1.id, share1), (p2.id, share2)),
        genetic_distance=dist,
    )


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------

def _worker_rngs(seed: int, tick: int, n: int) -> list[np.random.Generator]:
    """Independent streams keyed by (seed, tick, input position)."""
    children = np.random.SeedSequence([seed, tick]).spawn(n)
    return [np.random.default_rng(s) for s in children]


def _fan_out(
    fn: Callable[[T], R], items: Sequence[T],
    executor: Executor | None, max_workers: int,
) -> list[R]:
    if not items:
        return []
    if executor is not None:
        return list(executor.map(fn, items))
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        return list(pool.map(fn, items))


def _commit(
    population: Population, results: Sequence[Offspring | None], tick: int,
) -> list[Intel]:
    children: list[Intel] = []
    for result in results:
        if result is None:
            continue
        for parent_id, amount in result.debits:
            population.apply_energy_delta(parent_id, -amount)
            population.get(parent_id).offspring_count += 1
        child = Intel(
            id=population.allocate_id(),
            genotype=result.genotype,
            parent_ids=result.parent_ids,
            generation=result.generation,
            birth_tick=tick,
            energy=min(result.energy, result.genotype.max_energy),
        )
        population.add(child)
        if result.tribe_id is not None:
            population.assign_tribe(child.id, result.tribe_id)
        children.append(child)
    return children


def validate_pairs(
    population: Population, pairs: Sequence[ParentPair],
) -> None:
    """
    Reject pairs naming unknown, dead or departing agents, self-pairs, and
    agents that appear in more than one pair.
    """
    seen: set[int] = set()
    for pair in pairs:
        key = (pair.parent1_id, pair.parent2_id)
        if pair.parent1_id == pair.parent2_id:
            raise PairingError(f"Agent {pair.parent1_id} cannot pair with itself", key)
        for agent_id in key:
            agent = population.find(agent_id)
            if agent is None:
                raise PairingError(f"Pair {key} references unknown agent {agent_id}", key)
            if not agent.is_alive or agent.marked_for_removal:
                raise PairingError(f"Pair {key} references ineligible agent {agent_id}", key)
            if agent_id in seen:
                raise PairingError(f"Agent {agent_id} appears in more than one pair", key)
            seen.add(agent_id)


class ReproductionEngine:
    """Runs parallel reproduction passes against a population."""

    def __init__(self, config: AppConfig, executor: Executor | None = None):
        self.config = config
        self.executor = executor

    def reproduce_asexual(
        self,
        population: Population,
        tick: int = 0,
        seed: int | None = None,
        exclude_ids: Collection[int] = (),
    ) -> list[Intel]:
        config = self.config
        seed = config.random_seed if seed is None else seed
        parents = [
            ParentData.from_intel(a) for a in population
            if a.id not in exclude_ids and is_eligible_parent(a, tick, config)
        ]
        rngs = _worker_rngs(seed, tick, len(parents))
        size = len(population)
        inputs = [
            AsexualReproductionContext(
                parent=p,
                ctx=ReproductionContext(tick=tick, population_size=size, config=config, rng=rng),
            )
            for p, rng in zip(parents, rngs)
        ]
        results = _fan_out(synthesize_asexual, inputs, self.executor, config.max_workers)
        children = _commit(population, results, tick)
        logger.debug(
            "Asexual pass at tick %d: %d eligible, %d born",
            tick, len(parents), len(children),
        )
        return children

    def reproduce_sexual(
        self,
        population: Population,
        pairs: Sequence[ParentPair],
        tick: int = 0,
        seed: int | None = None,
    ) -> list[Intel]:
        config = self.config
        validate_pairs(population, pairs)
        seed = config.random_seed if seed is None else seed

        eligible = [
            (ParentData.from_intel(population.get(p.parent1_id)),
             ParentData.from_intel(population.get(p.parent2_id)))
            for p in pairs
            if is_eligible_parent(population.get(p.parent1_id), tick, config)
            and is_eligible_parent(population.get(p.parent2_id), tick, config)
        ]
        # Offset the seed so sexual streams never coincide with asexual ones
        rngs = _worker_rngs(seed + 1, tick, len(eligible))
        size = len(population)
        inputs = [
            (parents, ReproductionContext(tick=tick, population_size=size, config=config, rng=rng))
            for parents, rng in zip(eligible, rngs)
        ]
        results = _fan_out(
            lambda item: synthesize_sexual(*item), inputs,
            self.executor, config.max_workers,
        )
        children = _commit(population, results, tick)
        logger.debug(
            "Sexual pass at tick %d: %d pairs, %d eligible, %d born",
            tick, len(pairs), len(eligible), len(children),
        )
        return children


def reproduce_asexual_parallel(
    population: Population,
    config: AppConfig,
    *,
    tick: int = 0,
    seed: int | None = None,
    executor: Executor | None = None,
    exclude_ids: Collection[int] = (),
) -> list[Intel]:
    """One mutated clone per eligible parent; returns the new offspring."""
    return ReproductionEngine(config, executor).reproduce_asexual(
        population, tick, seed, exclude_ids,
    )


def reproduce_sexual_parallel(
    population: Population,
    pairs: Sequence[ParentPair],
    config: AppConfig,
    *,
    tick: int = 0,
    seed: int | None = None,
    executor: Executor | None = None,
) -> list[Intel]:
    """
    One recombined child per eligible pair; returns the new offspring.

    Raises ``PairingError`` for malformed pairs before anything is mutated.
    """
    return ReproductionEngine(config, executor).reproduce_sexual(
        population, pairs, tick, seed,
    )

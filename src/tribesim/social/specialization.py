"""
Specialization Tracker — role effort accrual and one-shot role commitment.

Agents accumulate effort toward each role in ``spec_meters``. Genetic bias
scales effort linearly by ``1 + bias``; once any meter reaches the configured
threshold the role is committed for life and every meter goes inert.
"""

from __future__ import annotations

from collections import defaultdict
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

from tribesim.core.genotype import SpecializationKind, spec_index

if TYPE_CHECKING:
    from tribesim.core.config import AppConfig
    from tribesim.core.intel import Intel
    from tribesim.core.population import Population


def _next_meter(current: float, bias: float, amount: float) -> float:
    return current + amount * (1.0 + bias)


def increment_spec_meter(
    intel: Intel,
    spec: SpecializationKind,
    amount: float,
    config: AppConfig,
) -> None:
    """
    Add biased effort toward ``spec`` and commit the role at threshold.

    No-op once the agent is specialized.
    """
    if intel.specialization.committed:
        return
    bias = intel.genotype.specialization_bias[spec_index(spec)]
    meter = _next_meter(intel.spec_meters.get(spec, 0.0), bias, amount)
    intel.spec_meters[spec] = meter
    if meter >= config.social.specialization_threshold:
        intel.specialization.commit(spec)


@dataclass(frozen=True)
class SpecSnapshot:
    """Read-only copy of the specialization state a worker needs."""

    agent_id: int
    committed: bool
    bias: tuple[float, float, float]
    meters: tuple[tuple[SpecializationKind, float], ...]

    @classmethod
    def from_intel(cls, intel: Intel) -> SpecSnapshot:
        return cls(
            agent_id=intel.id,
            committed=intel.specialization.committed,
            bias=intel.genotype.specialization_bias,
            meters=tuple(intel.spec_meters.items()),
        )


@dataclass(frozen=True)
class SpecUpdate:
    """Worker output: the agent's new meters and the role to commit, if any."""

    agent_id: int
    meters: dict[SpecializationKind, float]
    commit: SpecializationKind | None


def plan_spec_updates(
    snapshot: SpecSnapshot,
    efforts: list[tuple[SpecializationKind, float]],
    threshold: float,
) -> SpecUpdate | None:
    """Replay one agent's efforts on its snapshot; None when nothing changes."""
    if snapshot.committed:
        return None
    meters = dict(snapshot.meters)
    for spec, amount in efforts:
        meters[spec] = _next_meter(
            meters.get(spec, 0.0), snapshot.bias[spec_index(spec)], amount,
        )
        if meters[spec] >= threshold:
            return SpecUpdate(snapshot.agent_id, meters, spec)
    return SpecUpdate(snapshot.agent_id, meters, None)


def accrue_specialization(
    population: Population,
    efforts: Iterable[tuple[int, SpecializationKind, float]],
    config: AppConfig,
    executor: Executor | None = None,
) -> list[int]:
    """
    Apply a batch of ``(agent_id, role, amount)`` efforts.

    Efforts are grouped per agent. Workers only see a ``SpecSnapshot`` and
    return a ``SpecUpdate``; updates are committed single-threaded in
    first-seen agent order. Returns ids of agents that committed a role
    during this call, in that order.
    """
    grouped: dict[int, list[tuple[SpecializationKind, float]]] = defaultdict(list)
    for agent_id, spec, amount in efforts:
        grouped[agent_id].append((spec, amount))

    jobs = [
        (SpecSnapshot.from_intel(population.get(aid)), group)
        for aid, group in grouped.items()
    ]
    threshold = config.social.specialization_threshold

    def work(job: tuple[SpecSnapshot, list[tuple[SpecializationKind, float]]]) -> SpecUpdate | None:
        return plan_spec_updates(job[0], job[1], threshold)

    if executor is None:
        updates = [work(job) for job in jobs]
    else:
        updates = list(executor.map(work, jobs))

    committed: list[int] = []
    for update in updates:
        if update is None:
            continue
        agent = population.get(update.agent_id)
        agent.spec_meters = update.meters
        if update.commit is not None:
            agent.specialization.commit(update.commit)
            committed.append(agent.id)
    return committed


def specialization_counts(population: Iterable[Intel]) -> dict[str, int]:
    """Count committed roles (plus 'none') across agents."""
    counts = {kind.value: 0 for kind in SpecializationKind}
    counts["none"] = 0
    for agent in population:
        kind = agent.specialization.kind
        counts[kind.value if kind else "none"] += 1
    return counts

"""
Symbiosis/Predation Resolver — pairwise energy exchange between agents.

Two interaction classes:
    SYMBIOTIC — the richer agent shares a fraction of the energy gap and both
                sides gain an exchange bonus (larger for Provider-Soldier).
    PREDATORY — the actor attacks; success depends on Soldier role/bias,
                relative rank and the target's nearby allies. On success the
                target loses energy and the actor gains a share of it.

Energies never drop below zero from one interaction. Both deltas of an
interaction are applied together; batches are packed so no agent appears
twice in the same batch.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Sequence

import numpy as np

from tribesim.core.genotype import SpecializationKind
from tribesim.social.rank import are_same_tribe

if TYPE_CHECKING:
    from tribesim.core.config import AppConfig
    from tribesim.core.intel import Intel
    from tribesim.core.population import Population


class InteractionKind(Enum):
    SYMBIOTIC = "symbiotic"
    PREDATORY = "predatory"


class OutcomeStatus(Enum):
    APPLIED = "applied"
    FAILED = "failed"      # Predation attempt that did not succeed
    SKIPPED = "skipped"    # A participant could not interact


@dataclass
class PredationContext:
    """Everything needed to resolve one interaction."""

    actor_id: int
    target_id: int
    kind: InteractionKind
    population: Population
    config: AppConfig
    rng: np.random.Generator | None = None
    allies: int = 0  # Target's kin within defensive range

    @property
    def participants(self) -> tuple[int, int]:
        return (self.actor_id, self.target_id)


@dataclass
class InteractionOutcome:
    kind: InteractionKind
    status: OutcomeStatus
    actor_id: int
    target_id: int
    actor_delta: float = 0.0
    target_delta: float = 0.0
    success_chance: float | None = None
    reason: str | None = None

    @property
    def applied(self) -> bool:
        return self.status is OutcomeStatus.APPLIED

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "status": self.status.value,
            "actor_id": self.actor_id,
            "target_id": self.target_id,
            "actor_delta": round(self.actor_delta, 4),
            "target_delta": round(self.target_delta, 4),
            "success_chance": self.success_chance,
            "reason": self.reason,
        }


def _can_interact(agent: Intel) -> bool:
    return agent.is_alive and not agent.archived and not agent.marked_for_removal


def _is_provider_soldier(a: Intel, b: Intel) -> bool:
    roles = {a.specialization.kind, b.specialization.kind}
    return roles == {SpecializationKind.PROVIDER, SpecializationKind.SOLDIER}


def _soldier_multiplier(agent: Intel, config: AppConfig) -> float:
    if agent.specialization.kind is SpecializationKind.SOLDIER:
        return config.social.soldier_damage_mult
    # Uncommitted agents lean on their genetic Soldier tendency
    if not agent.specialization.committed:
        bias = max(agent.genotype.bias_for(SpecializationKind.SOLDIER), 0.0)
        return 1.0 + (config.social.soldier_damage_mult - 1.0) * min(bias, 1.0)
    return 1.0


def predation_success_chance(
    actor: Intel, target: Intel, allies: int, config: AppConfig,
) -> float:
    """Probability that ``actor`` overpowers ``target``."""
    sc = config.social
    multiplier = _soldier_multiplier(actor, config)
    defense = max(1.0 - allies * sc.defense_per_ally_reduction, sc.min_defense_multiplier)
    # Rank edge: equal ranks are neutral, dominance helps up to 2x
    rank_ratio = (actor.social_rank + 0.05) / (target.social_rank + 0.05)
    rank_factor = float(np.clip(rank_ratio, 0.5, 2.0)) ** 0.5
    return float(np.clip(0.5 * multiplier * defense * rank_factor, 0.0, 1.0))


def _apply(agent: Intel, delta: float) -> float:
    """Apply a delta with clamping; return the delta actually applied."""
    before = agent.energy
    agent.set_energy(before + delta)
    return agent.energy - before


def _resolve_symbiotic(
    actor: Intel, target: Intel, config: AppConfig,
) -> InteractionOutcome:
    sc = config.social
    giver, receiver = (actor, target) if actor.energy >= target.energy else (target, actor)
    gap = giver.energy - receiver.energy
    if gap <= 0:
        return InteractionOutcome(
            kind=InteractionKind.SYMBIOTIC, status=OutcomeStatus.SKIPPED,
            actor_id=actor.id, target_id=target.id, reason="no energy gap",
        )
    transfer = gap * sc.sharing_fraction
    bonus = gap * sc.symbiosis_exchange_rate
    if _is_provider_soldier(actor, target):
        bonus *= sc.specialization_bonus

    # exchange_rate >= sharing_fraction, so the giver still nets a gain
    deltas = {
        giver.id: bonus - transfer,
        receiver.id: bonus + transfer,
    }
    actor_delta = _apply(actor, deltas[actor.id])
    target_delta = _apply(target, deltas[target.id])
    return InteractionOutcome(
        kind=InteractionKind.SYMBIOTIC, status=OutcomeStatus.APPLIED,
        actor_id=actor.id, target_id=target.id,
        actor_delta=actor_delta, target_delta=target_delta,
    )


def _resolve_predatory(
    actor: Intel, target: Intel, allies: int,
    config: AppConfig, rng: np.random.Generator,
) -> InteractionOutcome:
    sc = config.social
    chance = predation_success_chance(actor, target, allies, config)
    if rng.random() >= chance:
        return InteractionOutcome(
            kind=InteractionKind.PREDATORY, status=OutcomeStatus.FAILED,
            actor_id=actor.id, target_id=target.id, success_chance=chance,
        )
    damage = min(target.energy * sc.predation_damage_fraction * _soldier_multiplier(actor, config),
                 target.energy)
    gain = damage * sc.predation_energy_gain_fraction
    target_delta = _apply(target, -damage)
    actor_delta = _apply(actor, gain)
    # Attacking one's own tribe costs reputation
    if are_same_tribe(actor, target):
        actor.reputation = max(actor.reputation - 0.1, 0.0)
    return InteractionOutcome(
        kind=InteractionKind.PREDATORY, status=OutcomeStatus.APPLIED,
        actor_id=actor.id, target_id=target.id,
        actor_delta=actor_delta, target_delta=target_delta,
        success_chance=chance,
    )


def handle_symbiosis(context: PredationContext) -> InteractionOutcome:
    """
    Resolve one interaction and mutate both participants.

    Archived, dead or departing participants produce a SKIPPED outcome.
    Unknown agent ids raise ``KeyError``; a predatory interaction without
    an rng raises ``ValueError``.
    """
    population = context.population
    actor = population.get(context.actor_id)
    target = population.get(context.target_id)

    if actor.id == target.id:
        return InteractionOutcome(
            kind=context.kind, status=OutcomeStatus.SKIPPED,
            actor_id=actor.id, target_id=target.id, reason="self interaction",
        )
    for agent in (actor, target):
        if not _can_interact(agent):
            return InteractionOutcome(
                kind=context.kind, status=OutcomeStatus.SKIPPED,
                actor_id=actor.id, target_id=target.id,
                reason=f"agent {agent.id} cannot interact",
            )

    if context.kind is InteractionKind.SYMBIOTIC:
        return _resolve_symbiotic(actor, target, context.config)
    if context.rng is None:
        raise ValueError("predatory interactions need an rng")
    return _resolve_predatory(actor, target, context.allies, context.config, context.rng)


# ---------------------------------------------------------------------------
# Batching
# ---------------------------------------------------------------------------

def partition_interactions(
    contexts: Sequence[PredationContext],
) -> list[list[PredationContext]]:
    """
    Greedily pack interactions into batches with no shared agent.

    Input order is preserved within and across batches: an interaction always
    lands in a batch after every earlier interaction touching its agents.
    """
    batches: list[list[PredationContext]] = []
    batch_agents: list[set[int]] = []
    last_batch: dict[int, int] = {}
    for ctx in contexts:
        start = max((last_batch.get(a, -1) for a in ctx.participants), default=-1) + 1
        idx = start
        while idx < len(batches) and batch_agents[idx] & set(ctx.participants):
            idx += 1
        if idx == len(batches):
            batches.append([])
            batch_agents.append(set())
        batches[idx].append(ctx)
        batch_agents[idx].update(ctx.participants)
        for a in ctx.participants:
            last_batch[a] = idx
    return batches


def resolve_interactions(
    contexts: Iterable[PredationContext],
) -> list[InteractionOutcome]:
    """Resolve interactions batch by batch; outcomes follow batch order."""
    outcomes: list[InteractionOutcome] = []
    for batch in partition_interactions(list(contexts)):
        for ctx in batch:
            outcomes.append(handle_symbiosis(ctx))
    return outcomes

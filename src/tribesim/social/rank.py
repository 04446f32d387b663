"""
Social rank computation and tribe co-membership.

Rank is a weighted blend of energy, age, offspring and reputation, plus a
small bonus for committed roles and a pull toward the tribe's mean rank.
Everything here is a pure function of an agent's own state and read-only
tribe aggregates.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

import numpy as np

if TYPE_CHECKING:
    from tribesim.core.config import AppConfig
    from tribesim.core.intel import Intel


@dataclass(frozen=True)
class TribeContext:
    """Read-only aggregate statistics for one tribe."""

    tribe_id: int | None = None
    size: int = 0
    mean_rank: float = 0.0
    rank_std: float = 0.0

    @classmethod
    def from_members(cls, tribe_id: int | None, members: Iterable[Intel]) -> TribeContext:
        ranks = np.array([m.social_rank for m in members], dtype=float)
        if ranks.size == 0:
            return cls(tribe_id=tribe_id)
        return cls(
            tribe_id=tribe_id,
            size=int(ranks.size),
            mean_rank=float(ranks.mean()),
            rank_std=float(ranks.std()),
        )


def _age_score(age: int, normalization: float) -> float:
    # Peaks at 70% of the normalization age, then decays (floored at 30% of raw)
    raw = min(age / normalization, 1.0)
    peak_age = normalization * 0.7
    if age > peak_age:
        excess = (age - peak_age) / (normalization - peak_age)
        return max(1.0 - excess ** 2, 0.3) * raw
    return raw


def calculate_social_rank(
    intel: Intel,
    tribe_context: TribeContext | None,
    tick: int,
    config: AppConfig,
) -> float:
    """
    Compute an agent's social rank in [0, 1].

    Components (weighted by ``social.rank_weights``):
    - Energy relative to the genotype's max energy
    - Age with a post-peak decline
    - Offspring count
    - Reputation
    """
    sc = config.social
    energy_score = float(np.clip(intel.energy / intel.max_energy, 0.0, 1.0))
    age_score = _age_score(intel.age(tick), sc.age_rank_normalization)
    offspring_score = min(intel.offspring_count / sc.offspring_rank_normalization, 1.0)
    rep_score = float(np.clip(intel.reputation, 0.0, 1.0))

    w = sc.rank_weights
    rank = (
        w[0] * energy_score
        + w[1] * age_score
        + w[2] * offspring_score
        + w[3] * rep_score
    )
    if intel.specialization.committed:
        rank += sc.specialized_rank_bonus

    if tribe_context is not None and tribe_context.size > 1:
        tw = sc.tribe_rank_weight
        rank = (1.0 - tw) * rank + tw * tribe_context.mean_rank

    return float(np.clip(rank, 0.0, 1.0))


def are_same_tribe(a: Intel, b: Intel) -> bool:
    """True only when both agents carry the same non-None tribe id."""
    return a.tribe_id is not None and a.tribe_id == b.tribe_id

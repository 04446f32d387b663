"""
Tribe Engine — rank recomputation, split detection and tribal splits.

Tribes split when rank variance or head count exceeds the configured limit.
Members are ordered by rank (highest first, ties by agent id) and cut into
contiguous groups; the top group keeps the tribe id and the rest are given
fresh ids. Each agent is moved in one step, so nobody is ever tribeless or
in two tribes mid-split.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable

import numpy as np

from tribesim.core.population import Tribe
from tribesim.social.rank import TribeContext, calculate_social_rank

if TYPE_CHECKING:
    from tribesim.core.config import AppConfig
    from tribesim.core.intel import Intel
    from tribesim.core.population import Population

logger = logging.getLogger(__name__)


def _ordered_members(tribe: Tribe, population: Population) -> list[Intel]:
    members = [population.get(mid) for mid in tribe.member_ids]
    return sorted(members, key=lambda a: (-a.social_rank, a.id))


def should_split(tribe: Tribe, population: Population, config: AppConfig) -> bool:
    """Check whether a tribe is over its size or rank-variance limit."""
    sc = config.social
    if tribe.size > sc.max_tribe_size:
        return True
    if tribe.size < 2 * sc.min_split_size:
        return False
    ranks = np.array([population.get(mid).social_rank for mid in tribe.member_ids])
    return float(ranks.var()) > sc.tribe_split_variance_limit


def _segments_ok(cuts: list[int], n: int, min_size: int) -> bool:
    bounds = [0] + sorted(cuts) + [n]
    return all(b - a >= min_size for a, b in zip(bounds, bounds[1:]))


def _even_cuts(n: int, groups: int, min_size: int) -> list[int]:
    groups = min(groups, n // min_size)
    if groups < 2:
        return []
    size, extra = divmod(n, groups)
    cuts, pos = [], 0
    for i in range(groups - 1):
        pos += size + (1 if i < extra else 0)
        cuts.append(pos)
    return cuts


def _largest_gap_cuts(ranks: list[float], groups: int, min_size: int) -> list[int]:
    n = len(ranks)
    # Cut position c separates ordered[:c] from ordered[c:]
    candidates = sorted(
        (c for c in range(1, n) if ranks[c - 1] - ranks[c] > 0.0),
        key=lambda c: (-(ranks[c - 1] - ranks[c]), c),
    )
    cuts: list[int] = []
    for c in candidates:
        if len(cuts) == groups - 1:
            break
        if _segments_ok(cuts + [c], n, min_size):
            cuts.append(c)
    if not cuts:
        # Uniform ranks: fall back to an even partition
        return _even_cuts(n, groups, min_size)
    return sorted(cuts)


def partition_by_rank(
    members: list[Intel], config: AppConfig,
) -> list[list[Intel]]:
    """Cut rank-ordered members into groups using the configured policy."""
    sc = config.social
    n = len(members)
    if sc.split_policy == "median":
        cuts = _even_cuts(n, sc.split_groups, sc.min_split_size)
    else:
        cuts = _largest_gap_cuts(
            [m.social_rank for m in members], sc.split_groups, sc.min_split_size,
        )
    bounds = [0] + cuts + [n]
    return [members[a:b] for a, b in zip(bounds, bounds[1:])]


def start_tribal_split(
    tribe: Tribe, population: Population, config: AppConfig,
) -> list[Tribe]:
    """
    Split ``tribe`` into two or more tribes by rank.

    The highest-rank group keeps ``tribe.id`` (or receives a fresh id when
    ``split_keeps_tribe_id`` is off); remaining groups get fresh ids.
    Returns the resulting tribes, highest rank first. A tribe too small to
    cut is returned unchanged.
    """
    ordered = _ordered_members(tribe, population)
    groups = partition_by_rank(ordered, config)
    if len(groups) < 2:
        return [population.tribe(tribe.id)] if tribe.member_ids else [tribe]

    result_ids: list[int] = []
    for i, group in enumerate(groups):
        if i == 0 and config.social.split_keeps_tribe_id:
            new_id = tribe.id
        else:
            new_id = population.new_tribe_id()
        for agent in group:
            population.assign_tribe(agent.id, new_id)
        result_ids.append(new_id)

    logger.info(
        "Tribe %s split into %s (sizes %s)",
        tribe.id, result_ids, [len(g) for g in groups],
    )
    return [population.tribe(tid) for tid in result_ids]


class TribeEngine:
    """Recomputes ranks and maintains tribe structure each tick."""

    def __init__(self, config: AppConfig):
        self.config = config

    def found_tribe(self, population: Population, member_ids: Iterable[int]) -> Tribe:
        """Create a new tribe from the given agents."""
        tribe_id = population.new_tribe_id()
        for mid in member_ids:
            population.assign_tribe(mid, tribe_id)
        return population.tribe(tribe_id)

    def tribe_contexts(self, population: Population) -> dict[int, TribeContext]:
        return {
            t.id: TribeContext.from_members(t.id, population.tribe_members(t.id))
            for t in population.tribes()
        }

    def update_ranks(self, population: Population, tick: int) -> None:
        """
        Recompute every agent's rank.

        Tribe aggregates are taken before any rank is written, so the order
        agents are visited in does not matter.
        """
        contexts = self.tribe_contexts(population)
        new_ranks = {
            agent.id: calculate_social_rank(
                agent, contexts.get(agent.tribe_id) if agent.tribe_id is not None else None,
                tick, self.config,
            )
            for agent in population
        }
        for agent_id, rank in new_ranks.items():
            population.get(agent_id).social_rank = rank

    def update(self, population: Population, tick: int) -> dict[str, Any]:
        """
        Full tribe update: ranks → split detection → splits.

        Returns metrics dict.
        """
        self.update_ranks(population, tick)

        splits: list[dict[str, Any]] = []
        for tribe in population.tribes():
            if should_split(tribe, population, self.config):
                result = start_tribal_split(tribe, population, self.config)
                if len(result) > 1:
                    splits.append({
                        "tribe_id": tribe.id,
                        "result_ids": [t.id for t in result],
                    })

        ranks = [a.social_rank for a in population]
        return {
            "tribe_count": population.tribe_count,
            "splits": splits,
            "mean_rank": float(np.mean(ranks)) if ranks else 0.0,
            "rank_std": float(np.std(ranks)) if ranks else 0.0,
        }

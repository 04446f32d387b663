"""
Metrics Collector — per-tick social statistics.

Summarizes population, role mix, tribe structure, rank inequality and the
tick's events after each tick. Provides time series extraction and export
for visualization.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from tribesim.social.specialization import specialization_counts

if TYPE_CHECKING:
    from tribesim.core.population import Population
    from tribesim.core.tick_engine import TickResult
    from tribesim.social.legend import LegendArchive


@dataclass
class SocialMetrics:
    """Statistics for a single tick."""

    tick: int
    population_size: int

    # Roles
    specialization_counts: dict[str, int]
    newly_specialized: int

    # Tribes and rank
    tribe_count: int
    tribeless_count: int
    mean_tribe_size: float
    mean_rank: float
    rank_std: float
    rank_gini: float

    # Energy
    mean_energy: float
    total_energy: float

    # Events
    births: int
    deaths: int
    splits: int
    interactions: int
    successful_predations: int
    legends_archived: int
    total_legends: int
    skipped_stages: list[str] = field(default_factory=list)
    errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def gini(values: np.ndarray) -> float:
    """Gini coefficient of non-negative values (0 = perfectly equal)."""
    if values.size == 0:
        return 0.0
    sorted_vals = np.sort(values)
    total = sorted_vals.sum()
    if total <= 0:
        return 0.0
    n = sorted_vals.size
    index = np.arange(1, n + 1)
    return float((2 * np.sum(index * sorted_vals)) / (n * total) - (n + 1) / n)


class MetricsCollector:
    """Collects and aggregates metrics across ticks."""

    def __init__(self) -> None:
        self.metrics_history: list[SocialMetrics] = []

    def collect(
        self,
        population: Population,
        result: TickResult,
        archive: LegendArchive | None = None,
    ) -> SocialMetrics:
        """Collect metrics for the tick described by ``result``."""
        agents = list(population)
        ranks = np.array([a.social_rank for a in agents], dtype=float)
        energies = np.array([a.energy for a in agents], dtype=float)
        tribes = population.tribes()

        predations = sum(
            1 for o in result.outcomes
            if o.kind.value == "predatory" and o.applied
        )

        metrics = SocialMetrics(
            tick=result.tick,
            population_size=len(agents),
            specialization_counts=specialization_counts(agents),
            newly_specialized=len(result.newly_specialized),
            tribe_count=len(tribes),
            tribeless_count=sum(1 for a in agents if a.tribe_id is None),
            mean_tribe_size=float(np.mean([t.size for t in tribes])) if tribes else 0.0,
            mean_rank=float(ranks.mean()) if ranks.size else 0.0,
            rank_std=float(ranks.std()) if ranks.size else 0.0,
            rank_gini=gini(ranks),
            mean_energy=float(energies.mean()) if energies.size else 0.0,
            total_energy=float(energies.sum()),
            births=len(result.births),
            deaths=len(result.deaths),
            splits=len(result.splits),
            interactions=len(result.outcomes),
            successful_predations=predations,
            legends_archived=len(result.legends),
            total_legends=len(archive) if archive is not None else 0,
            skipped_stages=list(result.skipped_stages),
            errors=len(result.errors),
        )
        self.metrics_history.append(metrics)
        return metrics

    def get_time_series(self, field_name: str) -> list[Any]:
        """Extract a time series for a specific metric field."""
        if field_name not in SocialMetrics.__dataclass_fields__:
            raise KeyError(f"Unknown metric: '{field_name}'")
        return [getattr(m, field_name) for m in self.metrics_history]

    def export_for_visualization(self) -> list[dict[str, Any]]:
        """Export all metrics as a list of JSON-serializable dicts."""
        return [m.to_dict() for m in self.metrics_history]

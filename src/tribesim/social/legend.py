"""
Legend Archive — immutable snapshots of exceptional agents.

An agent is legend-worthy when it lived long, had many offspring, peaked
at high energy, or (optionally) held a high social rank. Archiving is
idempotent per agent and never changes simulation state beyond setting the
``archived`` flag. The archive is append-only; an optional durable sink is
written first so a failed write leaves the agent unarchived for retry.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections import Counter
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterator, Protocol

from tribesim.core.errors import ArchiveWriteError
from tribesim.core.genotype import Genotype

if TYPE_CHECKING:
    from tribesim.core.config import AppConfig
    from tribesim.core.intel import Intel

logger = logging.getLogger(__name__)

LEGEND_SORT_KEYS = ("peak_energy", "offspring_count", "lifespan", "generation", "social_rank")


@dataclass(frozen=True)
class Legend:
    """Snapshot of an archived agent plus its identity and lineage."""

    agent_id: int
    lineage_id: str
    parent_ids: tuple[int, ...]
    generation: int
    birth_tick: int
    archived_tick: int
    lifespan: int
    offspring_count: int
    peak_energy: float
    social_rank: float
    specialization: str | None
    tribe_id: int | None
    genotype: Genotype

    @classmethod
    def from_intel(cls, intel: Intel, tick: int) -> Legend:
        return cls(
            agent_id=intel.id,
            lineage_id=intel.lineage_id,
            parent_ids=tuple(intel.parent_ids),
            generation=intel.generation,
            birth_tick=intel.birth_tick,
            archived_tick=tick,
            lifespan=intel.age(tick),
            offspring_count=intel.offspring_count,
            peak_energy=float(intel.peak_energy),
            social_rank=float(intel.social_rank),
            specialization=(
                intel.specialization.kind.value if intel.specialization.committed else None
            ),
            tribe_id=intel.tribe_id,
            genotype=intel.genotype,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "lineage_id": self.lineage_id,
            "parent_ids": list(self.parent_ids),
            "generation": self.generation,
            "birth_tick": self.birth_tick,
            "archived_tick": self.archived_tick,
            "lifespan": self.lifespan,
            "offspring_count": self.offspring_count,
            "peak_energy": self.peak_energy,
            "social_rank": self.social_rank,
            "specialization": self.specialization,
            "tribe_id": self.tribe_id,
            "genotype": self.genotype.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Legend:
        d = dict(d)
        d["parent_ids"] = tuple(d.get("parent_ids", ()))
        d["genotype"] = Genotype.from_dict(d["genotype"])
        return cls(**d)


class LegendSink(Protocol):
    """Durable storage for legends. Failures surface as exceptions."""

    def append(self, legend: Legend) -> None: ...


# ---------------------------------------------------------------------------
# Archive
# ---------------------------------------------------------------------------

class LegendArchive:
    """Append-only collection of legends keyed by agent id."""

    def __init__(self, sink: LegendSink | None = None):
        self.sink = sink
        self._legends: list[Legend] = []
        self._by_agent: dict[int, Legend] = {}

    @classmethod
    def restore(cls, legends: list[Legend], sink: LegendSink | None = None) -> LegendArchive:
        """Rebuild an archive from previously stored legends (no sink writes)."""
        archive = cls(sink=sink)
        for legend in legends:
            archive._store(legend)
        return archive

    def _store(self, legend: Legend) -> None:
        self._legends.append(legend)
        self._by_agent[legend.agent_id] = legend

    def append(self, legend: Legend) -> None:
        """
        Add a legend, writing through the sink first.

        Raises ``ValueError`` if the agent is already archived and
        ``ArchiveWriteError`` if the sink fails (nothing is stored then).
        """
        if legend.agent_id in self._by_agent:
            raise ValueError(f"Agent {legend.agent_id} is already archived")
        if self.sink is not None:
            try:
                self.sink.append(legend)
            except ArchiveWriteError:
                raise
            except Exception as exc:
                # Sinks are pluggable, so any failure leaves the agent retryable
                raise ArchiveWriteError(legend.agent_id, str(exc)) from exc
        self._store(legend)
        logger.info(
            "Archived legend %d (lineage %s, lifespan %d, offspring %d)",
            legend.agent_id, legend.lineage_id, legend.lifespan, legend.offspring_count,
        )

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._by_agent

    def __len__(self) -> int:
        return len(self._legends)

    def __iter__(self) -> Iterator[Legend]:
        return iter(list(self._legends))

    def get(self, agent_id: int) -> Legend | None:
        return self._by_agent.get(agent_id)

    def legends(self) -> list[Legend]:
        """All legends in archive order."""
        return list(self._legends)

    def top(self, n: int = 10, key: str = "peak_energy") -> list[Legend]:
        """Highest ``n`` legends by ``key``; ties keep archive order."""
        if key not in LEGEND_SORT_KEYS:
            raise ValueError(
                f"Unknown legend sort key: '{key}' "
                f"(expected one of {', '.join(LEGEND_SORT_KEYS)})"
            )
        return sorted(self._legends, key=lambda lg: getattr(lg, key), reverse=True)[:n]

    def hall_of_fame(self) -> dict[str, Any]:
        """Summary of record holders across the archive."""
        if not self._legends:
            return {
                "count": 0,
                "longest_lived": None,
                "most_offspring": None,
                "highest_energy": None,
                "by_specialization": {},
                "lineages": 0,
            }
        specs = Counter(lg.specialization or "none" for lg in self._legends)
        return {
            "count": len(self._legends),
            "longest_lived": self.top(1, "lifespan")[0].to_dict(),
            "most_offspring": self.top(1, "offspring_count")[0].to_dict(),
            "highest_energy": self.top(1, "peak_energy")[0].to_dict(),
            "by_specialization": dict(sorted(specs.items())),
            "lineages": len({lg.lineage_id for lg in self._legends}),
        }

    def legends_hash(self) -> str:
        """SHA-256 over the canonical JSON of every legend, in archive order."""
        payload = json.dumps(
            [lg.to_dict() for lg in self._legends],
            sort_keys=True, separators=(",", ":"),
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Predicate and archiving
# ---------------------------------------------------------------------------

def is_legend_worthy(intel: Intel, config: AppConfig, tick: int) -> bool:
    """True when any configured legend criterion is exceeded."""
    lc = config.legend
    if intel.age(tick) > lc.min_lifespan:
        return True
    if intel.offspring_count > lc.min_offspring:
        return True
    if intel.peak_energy > lc.min_peak_energy:
        return True
    return lc.min_rank is not None and intel.social_rank >= lc.min_rank


def archive_if_legend(
    intel: Intel, archive: LegendArchive, config: AppConfig, tick: int,
) -> Legend | None:
    """
    Archive ``intel`` once if it is legend-worthy.

    Returns the new Legend, or None when the agent is not worthy or was
    archived before. ``ArchiveWriteError`` propagates and leaves the agent
    unarchived.
    """
    if intel.archived or intel.id in archive:
        return None
    if not is_legend_worthy(intel, config, tick):
        return None
    legend = Legend.from_intel(intel, tick)
    archive.append(legend)
    intel.archived = True
    return legend

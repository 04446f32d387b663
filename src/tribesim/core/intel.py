"""
Per-agent social/cognitive state record.

Intel carries everything the social core reads or writes about an agent:
committed role and role meters, genotype, rank, tribe membership, energy
bookkeeping and lineage. The population container owns every live record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from tribesim.core.errors import SpecializationLockedError
from tribesim.core.genotype import Genotype, SpecializationKind


class Specialization:
    """
    Write-once role slot with an explicit uncommitted/committed state.

    ``commit()`` succeeds exactly once; there is no way to clear it.
    """

    __slots__ = ("_kind",)

    def __init__(self, kind: SpecializationKind | None = None):
        self._kind = kind

    @property
    def committed(self) -> bool:
        return self._kind is not None

    @property
    def kind(self) -> SpecializationKind | None:
        return self._kind

    def commit(self, kind: SpecializationKind) -> None:
        if self._kind is not None:
            raise SpecializationLockedError(
                f"Specialization already committed to {self._kind.value}"
            )
        self._kind = kind

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Specialization):
            return self._kind == other._kind
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._kind)

    def __repr__(self) -> str:
        state = self._kind.value if self._kind else "uncommitted"
        return f"Specialization({state})"


@dataclass
class Intel:
    """A simulated agent's social state."""

    # === Identity / lineage ===
    id: int
    genotype: Genotype
    parent_ids: tuple[int, ...] = ()
    generation: int = 0
    birth_tick: int = 0

    # === Specialization ===
    specialization: Specialization = field(default_factory=Specialization)
    spec_meters: dict[SpecializationKind, float] = field(default_factory=dict)

    # === Social ===
    social_rank: float = 0.5
    reputation: float = 1.0
    tribe_id: int | None = None

    # === Energy ===
    energy: float = 100.0
    peak_energy: float = 0.0
    offspring_count: int = 0

    # === Lifecycle ===
    is_alive: bool = True
    marked_for_removal: bool = False
    archived: bool = False

    def __post_init__(self) -> None:
        self.peak_energy = max(self.peak_energy, self.energy)

    @property
    def lineage_id(self) -> str:
        return self.genotype.lineage_id

    @property
    def max_energy(self) -> float:
        return self.genotype.max_energy

    def age(self, tick: int) -> int:
        return max(tick - self.birth_tick, 0)

    def set_energy(self, value: float) -> None:
        """Clamp energy to [0, max_energy] and track the peak."""
        self.energy = min(max(value, 0.0), self.max_energy)
        if self.energy > self.peak_energy:
            self.peak_energy = self.energy

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "lineage_id": self.lineage_id,
            "parent_ids": list(self.parent_ids),
            "generation": self.generation,
            "birth_tick": self.birth_tick,
            "specialization": (
                self.specialization.kind.value if self.specialization.committed else None
            ),
            "spec_meters": {k.value: round(v, 4) for k, v in self.spec_meters.items()},
            "social_rank": round(self.social_rank, 4),
            "reputation": round(self.reputation, 4),
            "tribe_id": self.tribe_id,
            "energy": round(self.energy, 4),
            "peak_energy": round(self.peak_energy, 4),
            "offspring_count": self.offspring_count,
            "is_alive": self.is_alive,
            "archived": self.archived,
            "genotype": self.genotype.to_dict(),
        }

    def __repr__(self) -> str:
        status = "alive" if self.is_alive else "dead"
        return (
            f"Intel(id={self.id}, gen={self.generation}, tribe={self.tribe_id}, "
            f"rank={self.social_rank:.2f}, energy={self.energy:.1f}, "
            f"{self.specialization!r}, {status})"
        )

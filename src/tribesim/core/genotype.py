"""
Heritable trait set for a simulated agent.

A Genotype is immutable once created: reproduction produces new instances via
``tribesim.core.genetics`` instead of editing a parent's genes. The
specialization bias array is indexed through ``spec_index`` so the ordering
never depends on enum values.
"""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any

import numpy as np


class SpecializationKind(Enum):
    """Closed set of roles an agent can commit to."""

    SOLDIER = "soldier"
    ENGINEER = "engineer"
    PROVIDER = "provider"


_SPEC_INDEX: dict[SpecializationKind, int] = {
    SpecializationKind.SOLDIER: 0,
    SpecializationKind.ENGINEER: 1,
    SpecializationKind.PROVIDER: 2,
}

SPEC_KINDS: tuple[SpecializationKind, ...] = tuple(
    sorted(_SPEC_INDEX, key=_SPEC_INDEX.__getitem__)
)


def spec_index(kind: SpecializationKind) -> int:
    """Stable position of ``kind`` in ``Genotype.specialization_bias``."""
    return _SPEC_INDEX[kind]


# Trait ranges enforced after mutation (min, max)
TRAIT_BOUNDS: dict[str, tuple[float, float]] = {
    "sensing_range": (3.0, 15.0),
    "max_speed": (0.5, 3.0),
    "max_energy": (100.0, 500.0),
    "metabolic_niche": (0.0, 1.0),
    "trophic_potential": (0.0, 1.0),
    "reproductive_investment": (0.1, 0.9),
    "maturity_gene": (0.5, 2.0),
    "mate_preference": (0.0, 1.0),
    "pairing_bias": (0.0, 1.0),
}

# Mutation keeps biases inside this range; construction only rejects < -1
BIAS_BOUNDS: tuple[float, float] = (0.0, 1.0)


@dataclass(frozen=True)
class Genotype:
    """Heritable traits, including one specialization bias per role."""

    lineage_id: str
    specialization_bias: tuple[float, float, float] = (0.0, 0.0, 0.0)
    sensing_range: float = 5.0
    max_speed: float = 1.0
    max_energy: float = 200.0
    metabolic_niche: float = 0.5
    trophic_potential: float = 0.5
    reproductive_investment: float = 0.5
    maturity_gene: float = 1.0
    mate_preference: float = 0.5
    pairing_bias: float = 0.5

    def __post_init__(self) -> None:
        bias = tuple(float(b) for b in self.specialization_bias)
        if len(bias) != len(SPEC_KINDS):
            raise ValueError(
                f"specialization_bias needs {len(SPEC_KINDS)} entries, got {len(bias)}"
            )
        for kind, b in zip(SPEC_KINDS, bias):
            if math.isnan(b) or b < -1.0:
                raise ValueError(
                    f"specialization_bias for {kind.value} must be >= -1, got {b}"
                )
        object.__setattr__(self, "specialization_bias", bias)

    def bias_for(self, kind: SpecializationKind) -> float:
        return self.specialization_bias[spec_index(kind)]

    def trait_vector(self) -> np.ndarray:
        """Numeric traits (excluding lineage) as a flat vector."""
        return np.array(
            [getattr(self, name) for name in TRAIT_BOUNDS] + list(self.specialization_bias),
            dtype=float,
        )

    def with_traits(self, **changes: Any) -> Genotype:
        """Return a copy with some traits replaced."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["specialization_bias"] = list(self.specialization_bias)
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Genotype:
        d = dict(d)
        d["specialization_bias"] = tuple(d.get("specialization_bias", (0.0, 0.0, 0.0)))
        return cls(**d)

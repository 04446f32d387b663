"""
Genetic operators: random genotypes, mutation, crossover and distance.

Genotypes are immutable, so every operator returns a new instance. Mutation
scales with population size (bottlenecks mutate faster, crowded populations
slower) and a child that drifts past ``speciation_threshold`` from its parent
is assigned a fresh lineage.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from tribesim.core.genotype import (
    BIAS_BOUNDS,
    SPEC_KINDS,
    TRAIT_BOUNDS,
    Genotype,
    SpecializationKind,
    spec_index,
)

if TYPE_CHECKING:
    from tribesim.core.config import AppConfig

# Traits that mutate proportionally to their current value
_RELATIVE_TRAITS = ("sensing_range", "max_speed")
# Traits that mutate additively; max_energy is derived from maturity_gene
_ABSOLUTE_TRAITS = (
    "maturity_gene", "metabolic_niche", "trophic_potential",
    "reproductive_investment", "mate_preference", "pairing_bias",
)
# Committed role nudges its own bias upward when it mutates
_ROLE_BIAS_DRIFT = 0.05


def new_lineage_id(rng: np.random.Generator) -> str:
    """Draw a lineage identifier from ``rng`` (reproducible under a seed)."""
    return f"{int(rng.integers(0, 2**63)):016x}"


def _clip(name: str, value: float) -> float:
    lo, hi = TRAIT_BOUNDS[name]
    return float(np.clip(value, lo, hi))


class GeneticModel:
    """Mutation, crossover and distance over ``Genotype`` instances."""

    def __init__(self, config: AppConfig):
        self.config = config
        self._ec = config.evolution

    @property
    def mutation_rate(self) -> float:
        return self._ec.mutation_rate

    @property
    def mutation_amount(self) -> float:
        return self._ec.mutation_amount

    # ------------------------------------------------------------------
    # Genome generation
    # ------------------------------------------------------------------
    def random_genotype(self, rng: np.random.Generator) -> Genotype:
        """Sample a founder genotype uniformly inside the trait bounds."""
        values: dict[str, float] = {}
        for name, (lo, hi) in TRAIT_BOUNDS.items():
            if name == "max_energy":
                continue
            values[name] = float(rng.uniform(lo, hi))
        values["max_energy"] = _clip("max_energy", 200.0 * values["maturity_gene"])
        bias = tuple(float(b) for b in rng.uniform(*BIAS_BOUNDS, size=len(SPEC_KINDS)))
        return Genotype(
            lineage_id=new_lineage_id(rng),
            specialization_bias=bias,
            **values,
        )

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def effective_rates(self, population_size: int) -> tuple[float, float]:
        """Mutation (rate, amount) after population-aware scaling."""
        rate, amount = self.mutation_rate, self.mutation_amount
        ec = self._ec
        if ec.population_aware and population_size > 0:
            if population_size < ec.bottleneck_threshold:
                scaling = min(ec.bottleneck_threshold / max(population_size, 1), 3.0)
                rate *= scaling
                amount *= scaling
            elif population_size > ec.stasis_threshold:
                rate *= 0.5
        return min(rate, 1.0), amount

    def mutate(
        self,
        genotype: Genotype,
        rng: np.random.Generator,
        population_size: int = 0,
        specialization: SpecializationKind | None = None,
    ) -> Genotype:
        """
        Return a mutated copy of ``genotype``.

        Each trait mutates independently with the effective rate. A parent's
        committed role slightly favours its own bias in the child.
        """
        rate, amount = self.effective_rates(population_size)
        changes: dict[str, float] = {}

        for name in _RELATIVE_TRAITS:
            value = getattr(genotype, name)
            if rng.random() < rate:
                value = value + rng.uniform(-amount, amount) * value
            changes[name] = _clip(name, value)

        for name in _ABSOLUTE_TRAITS:
            value = getattr(genotype, name)
            if rng.random() < rate:
                value = value + rng.uniform(-amount, amount)
            changes[name] = _clip(name, value)

        changes["max_energy"] = _clip("max_energy", 200.0 * changes["maturity_gene"])

        bias = list(genotype.specialization_bias)
        for i in range(len(bias)):
            if rng.random() < rate:
                bias[i] = float(np.clip(bias[i] + rng.uniform(-amount, amount), *BIAS_BOUNDS))
        if specialization is not None:
            i = spec_index(specialization)
            bias[i] = max(bias[i], min(bias[i] + _ROLE_BIAS_DRIFT, BIAS_BOUNDS[1]))

        return genotype.with_traits(specialization_bias=tuple(bias), **changes)

    # ------------------------------------------------------------------
    # Crossover (sexual reproduction)
    # ------------------------------------------------------------------
    def crossover(
        self, parent1: Genotype, parent2: Genotype, rng: np.random.Generator,
    ) -> Genotype:
        """
        Uniform per-trait crossover.

        Every scalar trait is taken whole from one parent; the bias array is
        inherited as a unit so role tendencies stay coherent. The lineage
        follows parent 1.
        """
        values: dict[str, float] = {}
        for name in TRAIT_BOUNDS:
            source = parent1 if rng.random() < 0.5 else parent2
            values[name] = getattr(source, name)
        bias_source = parent1 if rng.random() < 0.5 else parent2
        return Genotype(
            lineage_id=parent1.lineage_id,
            specialization_bias=bias_source.specialization_bias,
            **values,
        )

    # ------------------------------------------------------------------
    # Distance / speciation
    # ------------------------------------------------------------------
    @staticmethod
    def distance(a: Genotype, b: Genotype) -> float:
        """Mean absolute trait difference, each trait normalized by its range."""
        spans = np.array(
            [hi - lo for lo, hi in TRAIT_BOUNDS.values()]
            + [BIAS_BOUNDS[1] - BIAS_BOUNDS[0]] * len(SPEC_KINDS),
            dtype=float,
        )
        diff = np.abs(a.trait_vector() - b.trait_vector()) / spans
        return float(diff.mean())

    def speciate(
        self, parent: Genotype, child: Genotype, rng: np.random.Generator,
    ) -> tuple[Genotype, float]:
        """Assign a fresh lineage when the child drifted far enough."""
        dist = self.distance(parent, child)
        if dist > self._ec.speciation_threshold:
            child = child.with_traits(lineage_id=new_lineage_id(rng))
        return child, dist

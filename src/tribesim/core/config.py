"""
Master configuration for the social-dynamics core.

ALL tunable thresholds live here. The config is loaded once per process and
treated as read-only during a tick; ``validate()`` runs at load time so a bad
threshold fails fast instead of surfacing per call.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Any

from tribesim.core.errors import ConfigError

SPLIT_POLICIES = ("largest_gap", "median")


@dataclass
class SocialConfig:
    """Thresholds for specialization, rank, tribes and interactions."""

    # === Specialization ===
    specialization_threshold: float = 100.0

    # === Rank ===
    # Weights for [energy, age, offspring, reputation]
    rank_weights: tuple[float, float, float, float] = (0.3, 0.3, 0.1, 0.3)
    age_rank_normalization: float = 2000.0
    offspring_rank_normalization: float = 20.0
    specialized_rank_bonus: float = 0.05
    tribe_rank_weight: float = 0.1  # Pull toward the tribe mean

    # === Tribes ===
    tribe_split_variance_limit: float = 0.04
    max_tribe_size: int = 50
    min_split_size: int = 2
    split_policy: str = "largest_gap"  # 'largest_gap' or 'median'
    split_groups: int = 2
    split_keeps_tribe_id: bool = True

    # === Symbiosis / predation ===
    sharing_fraction: float = 0.05
    symbiosis_exchange_rate: float = 0.1
    specialization_bonus: float = 1.25  # Provider-Soldier pairings
    soldier_damage_mult: float = 1.5
    defense_per_ally_reduction: float = 0.15
    min_defense_multiplier: float = 0.4
    predation_damage_fraction: float = 0.5
    predation_energy_gain_fraction: float = 0.5


@dataclass
class EvolutionConfig:
    """Mutation and speciation parameters applied at reproduction."""

    mutation_rate: float = 0.1
    mutation_amount: float = 0.2
    speciation_threshold: float = 0.5
    population_aware: bool = True
    bottleneck_threshold: int = 20
    stasis_threshold: int = 500


@dataclass
class ReproductionConfig:
    """Eligibility and energy-investment rules for reproduction."""

    reproduction_threshold: float = 150.0
    maturity_age: int = 150
    min_parent_remaining: float = 20.0
    safe_investment_cap: float = 0.7
    min_investment: float = 0.1


@dataclass
class LegendCriteria:
    """Any single criterion met makes an agent legend-worthy."""

    min_lifespan: int = 1000
    min_offspring: int = 10
    min_peak_energy: float = 300.0
    min_rank: float | None = None


@dataclass
class AppConfig:
    """
    Process-wide configuration — every threshold as a tunable slider.

    Use ``to_dict()`` / ``from_dict()`` for serialization and comparison.
    """

    random_seed: int = 0
    max_workers: int = 4

    social: SocialConfig = field(default_factory=SocialConfig)
    evolution: EvolutionConfig = field(default_factory=EvolutionConfig)
    reproduction: ReproductionConfig = field(default_factory=ReproductionConfig)
    legend: LegendCriteria = field(default_factory=LegendCriteria)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def validate(self) -> AppConfig:
        """Raise ``ConfigError`` on any invalid threshold; return self."""
        s = self.social
        if s.specialization_threshold <= 0:
            raise ConfigError("social.specialization_threshold must be positive")
        if len(s.rank_weights) != 4:
            raise ConfigError("social.rank_weights must have exactly 4 entries")
        if any(w < 0 for w in s.rank_weights):
            raise ConfigError("social.rank_weights must be non-negative")
        if s.age_rank_normalization <= 0 or s.offspring_rank_normalization <= 0:
            raise ConfigError("social rank normalizations must be positive")
        if s.tribe_split_variance_limit < 0:
            raise ConfigError("social.tribe_split_variance_limit must be >= 0")
        if s.max_tribe_size < 2:
            raise ConfigError("social.max_tribe_size must be at least 2")
        if s.split_policy not in SPLIT_POLICIES:
            raise ConfigError(
                f"Unknown split policy: '{s.split_policy}' "
                f"(expected one of {', '.join(SPLIT_POLICIES)})"
            )
        if s.split_groups < 2:
            raise ConfigError("social.split_groups must be at least 2")
        if s.min_split_size < 1:
            raise ConfigError("social.min_split_size must be at least 1")
        for name in ("sharing_fraction", "predation_damage_fraction",
                     "predation_energy_gain_fraction"):
            value = getattr(s, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigError(f"social.{name} must be in [0, 1]")
        if not 0.0 < s.min_defense_multiplier <= 1.0:
            raise ConfigError("social.min_defense_multiplier must be in (0, 1]")
        if s.symbiosis_exchange_rate < s.sharing_fraction:
            raise ConfigError(
                "social.symbiosis_exchange_rate must be >= social.sharing_fraction"
            )
        if s.specialization_bonus < 1.0 or s.soldier_damage_mult < 1.0:
            raise ConfigError("social bonus multipliers must be >= 1")

        e = self.evolution
        if not 0.0 <= e.mutation_rate <= 1.0:
            raise ConfigError("evolution.mutation_rate must be in [0, 1]")
        if e.mutation_amount < 0:
            raise ConfigError("evolution.mutation_amount must be >= 0")

        r = self.reproduction
        if r.reproduction_threshold <= 0:
            raise ConfigError("reproduction.reproduction_threshold must be positive")
        if not 0.0 < r.min_investment <= r.safe_investment_cap < 1.0:
            raise ConfigError(
                "reproduction investment bounds must satisfy "
                "0 < min_investment <= safe_investment_cap < 1"
            )
        if r.min_parent_remaining < 0:
            raise ConfigError("reproduction.min_parent_remaining must be >= 0")

        if self.max_workers < 1:
            raise ConfigError("max_workers must be at least 1")
        if self.random_seed < 0:
            raise ConfigError("random_seed must be >= 0")
        return self

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------
    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        d = asdict(self)
        d["social"]["rank_weights"] = list(self.social.rank_weights)
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> AppConfig:
        """Deserialize from a dict and validate."""
        sections = {
            "social": SocialConfig,
            "evolution": EvolutionConfig,
            "reproduction": ReproductionConfig,
            "legend": LegendCriteria,
        }
        kwargs: dict[str, Any] = {}
        known = {f.name for f in fields(cls)}
        for k, v in d.items():
            if k not in known:
                raise ConfigError(f"Unknown config key: '{k}'")
            if k in sections:
                kwargs[k] = _build_section(sections[k], k, v)
            else:
                kwargs[k] = v
        return cls(**kwargs).validate()

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, s: str) -> AppConfig:
        return cls.from_dict(json.loads(s))

    def diff(self, other: AppConfig) -> dict[str, tuple[Any, Any]]:
        """Return dotted parameter paths that differ between two configs."""
        diffs: dict[str, tuple[Any, Any]] = {}
        mine, theirs = self.to_dict(), other.to_dict()
        for k, v1 in mine.items():
            v2 = theirs[k]
            if isinstance(v1, dict):
                for sub, sv1 in v1.items():
                    if sv1 != v2[sub]:
                        diffs[f"{k}.{sub}"] = (sv1, v2[sub])
            elif v1 != v2:
                diffs[k] = (v1, v2)
        return diffs


def _build_section(section_cls: type, name: str, values: dict[str, Any]) -> Any:
    known = {f.name for f in fields(section_cls)}
    unknown = set(values) - known
    if unknown:
        raise ConfigError(
            f"Unknown keys in '{name}' config: {', '.join(sorted(unknown))}"
        )
    values = dict(values)
    if "rank_weights" in values:
        values["rank_weights"] = tuple(values["rank_weights"])
    return section_cls(**values)

"""Per-tick social dynamics: roles, ranks, tribes, reproduction, interactions, legends."""

from tribesim.social.specialization import increment_spec_meter, accrue_specialization
from tribesim.social.rank import TribeContext, calculate_social_rank, are_same_tribe
from tribesim.social.tribes import TribeEngine, should_split, start_tribal_split
from tribesim.social.reproduction import (
    ParentPair,
    ReproductionEngine,
    reproduce_asexual_parallel,
    reproduce_sexual_parallel,
)
from tribesim.social.symbiosis import (
    InteractionKind,
    InteractionOutcome,
    PredationContext,
    handle_symbiosis,
    resolve_interactions,
)
from tribesim.social.legend import (
    Legend,
    LegendArchive,
    archive_if_legend,
    is_legend_worthy,
)

__all__ = [
    "increment_spec_meter",
    "accrue_specialization",
    "TribeContext",
    "calculate_social_rank",
    "are_same_tribe",
    "TribeEngine",
    "should_split",
    "start_tribal_split",
    "ParentPair",
    "ReproductionEngine",
    "reproduce_asexual_parallel",
    "reproduce_sexual_parallel",
    "InteractionKind",
    "InteractionOutcome",
    "PredationContext",
    "handle_symbiosis",
    "resolve_interactions",
    "Legend",
    "LegendArchive",
    "archive_if_legend",
    "is_legend_worthy",
]

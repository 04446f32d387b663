"""
Pydantic models for API request/response validation.
"""

from __future__ import annotations

from pydantic import BaseModel, Field
from typing import Any, Literal


# === Sessions ===

class WorldSettingsModel(BaseModel):
    initial_population: int = Field(40, ge=0, le=5000)
    initial_tribes: int = Field(4, ge=1)
    max_age: int = Field(2500, ge=1)
    interaction_fraction: float = Field(0.3, ge=0.0, le=1.0)
    forage_mean: float = 2.0
    forage_std: float = Field(4.0, ge=0.0)
    max_ticks: int = Field(1000, ge=1)


class CreateSessionRequest(BaseModel):
    config: dict[str, Any] | None = None
    world: WorldSettingsModel | None = None
    name: str | None = None


class SessionSummary(BaseModel):
    id: str
    name: str
    status: str
    current_tick: int
    max_ticks: int
    population_size: int


class SessionResponse(SessionSummary):
    tribe_count: int
    legend_count: int
    config: dict[str, Any]


# === Stepping ===

class EffortModel(BaseModel):
    agent_id: int
    role: Literal["soldier", "engineer", "provider"]
    amount: float = Field(..., ge=0.0)


class PairModel(BaseModel):
    parent1_id: int
    parent2_id: int


class InteractionModel(BaseModel):
    actor_id: int
    target_id: int
    kind: Literal["symbiotic", "predatory"]
    allies: int = Field(0, ge=0)


class TickInputsModel(BaseModel):
    efforts: list[EffortModel] = []
    pairs: list[PairModel] = []
    interactions: list[InteractionModel] = []
    removals: list[int] = []
    asexual: bool = True


class StepRequest(BaseModel):
    n: int = Field(1, ge=1, le=10000)
    inputs: TickInputsModel | None = None


class StepResponse(BaseModel):
    session: SessionResponse
    ticks: list[dict[str, Any]]

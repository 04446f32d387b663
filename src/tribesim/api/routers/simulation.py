"""Session lifecycle and stepping endpoints."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from tribesim.api.schemas import (
    CreateSessionRequest,
    SessionResponse,
    SessionSummary,
    StepRequest,
    StepResponse,
    TickInputsModel,
)
from tribesim.api.sessions import WorldSettings
from tribesim.core.config import AppConfig
from tribesim.core.errors import ConfigError
from tribesim.core.genotype import SpecializationKind
from tribesim.core.tick_engine import InteractionRequest, TickInputs
from tribesim.social.reproduction import ParentPair
from tribesim.social.symbiosis import InteractionKind

router = APIRouter()


def _session_response(session) -> dict:
    return {
        "id": session.id,
        "name": session.name,
        "status": session.status,
        "current_tick": session.current_tick,
        "max_ticks": session.settings.max_ticks,
        "population_size": len(session.population),
        "tribe_count": session.population.tribe_count,
        "legend_count": len(session.archive),
        "config": session.config.to_dict(),
    }


def _to_tick_inputs(model: TickInputsModel) -> TickInputs:
    return TickInputs(
        efforts=[(e.agent_id, SpecializationKind(e.role), e.amount) for e in model.efforts],
        pairs=[ParentPair(p.parent1_id, p.parent2_id) for p in model.pairs],
        interactions=[
            InteractionRequest(i.actor_id, i.target_id, InteractionKind(i.kind), i.allies)
            for i in model.interactions
        ],
        removals=list(model.removals),
        asexual=model.asexual,
    )


@router.post("/sessions", response_model=SessionResponse)
def create_session(req: CreateSessionRequest, request: Request):
    mgr = request.app.state.session_manager
    try:
        config = AppConfig.from_dict(req.config) if req.config else None
    except (ConfigError, TypeError) as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    settings = WorldSettings(**req.world.model_dump()) if req.world else None

    session = mgr.create_session(config=config, settings=settings, name=req.name)
    return _session_response(session)


@router.get("/sessions", response_model=list[SessionSummary])
def list_sessions(request: Request):
    mgr = request.app.state.session_manager
    return mgr.list_sessions()


@router.get("/sessions/{session_id}", response_model=SessionResponse)
def get_session(session_id: str, request: Request):
    mgr = request.app.state.session_manager
    try:
        lock = mgr.read(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    with lock as session:
        return _session_response(session)


@router.delete("/sessions/{session_id}")
def delete_session(session_id: str, request: Request):
    mgr = request.app.state.session_manager
    try:
        mgr.delete_session(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return {"deleted": True}


@router.post("/sessions/{session_id}/step", response_model=StepResponse)
def step_session(session_id: str, req: StepRequest, request: Request):
    mgr = request.app.state.session_manager
    inputs = _to_tick_inputs(req.inputs) if req.inputs else None
    try:
        results = mgr.step(session_id, n=req.n, inputs=inputs)
        lock = mgr.read(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    with lock as session:
        return {
            "session": _session_response(session),
            "ticks": [r.to_dict() for r in results],
        }

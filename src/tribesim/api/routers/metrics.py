"""Per-tick metrics endpoints."""

from __future__ import annotations

from typing import Any, ContextManager

from fastapi import APIRouter, HTTPException, Query, Request

from tribesim.api.sessions import SocialSession

router = APIRouter()


def _read_session(request: Request, session_id: str) -> ContextManager[SocialSession]:
    mgr = request.app.state.session_manager
    try:
        return mgr.read(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")


@router.get("/{session_id}/ticks")
def get_ticks(
    session_id: str,
    request: Request,
    from_tick: int = Query(0, ge=0),
    to_tick: int | None = Query(None),
) -> list[dict[str, Any]]:
    with _read_session(request, session_id) as session:
        exported = session.collector.export_for_visualization()
    return [
        m for m in exported
        if m["tick"] >= from_tick and (to_tick is None or m["tick"] < to_tick)
    ]


@router.get("/{session_id}/time-series/{field_name}")
def get_time_series(session_id: str, field_name: str, request: Request):
    with _read_session(request, session_id) as session:
        collector = session.collector
        try:
            values = collector.get_time_series(field_name)
        except KeyError:
            raise HTTPException(status_code=400, detail=f"Unknown metric field: '{field_name}'")
        ticks = [m.tick for m in collector.metrics_history]

    return {"field": field_name, "ticks": ticks, "values": values}


@router.get("/{session_id}/summary")
def get_summary(session_id: str, request: Request):
    with _read_session(request, session_id) as session:
        history = list(session.collector.metrics_history)

    if not history:
        return {"ticks": 0}
    latest = history[-1]
    return {
        "ticks": len(history),
        "population_size": latest.population_size,
        "tribe_count": latest.tribe_count,
        "total_births": sum(m.births for m in history),
        "total_deaths": sum(m.deaths for m in history),
        "total_splits": sum(m.splits for m in history),
        "total_legends": latest.total_legends,
        "rank_gini": latest.rank_gini,
        "specialization_counts": latest.specialization_counts,
    }

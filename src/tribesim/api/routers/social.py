"""
Social structure API router — agents, tribes, ranks and legends.

Every handler reads under the session lock so a concurrent step never
exposes a half-committed tick.
"""

from __future__ import annotations

from typing import ContextManager

import numpy as np
from fastapi import APIRouter, HTTPException, Query, Request

from tribesim.api.sessions import SocialSession
from tribesim.social.legend import LEGEND_SORT_KEYS
from tribesim.social.specialization import specialization_counts

router = APIRouter()


def _read_session(request: Request, session_id: str) -> ContextManager[SocialSession]:
    """Helper to lock a session for reading or raise 404."""
    sm = request.app.state.session_manager
    try:
        return sm.read(session_id)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")


@router.get("/{session_id}/agents/{agent_id}")
def get_agent(request: Request, session_id: str, agent_id: int):
    with _read_session(request, session_id) as session:
        agent = session.population.find(agent_id)
        if agent is None:
            raise HTTPException(status_code=404, detail=f"Agent {agent_id} not found")
        return agent.to_dict()


@router.get("/{session_id}/tribes")
def get_tribes(request: Request, session_id: str):
    """All tribes with size, rank spread and role mix."""
    with _read_session(request, session_id) as session:
        population = session.population
        tribes = []
        for tribe in population.tribes():
            members = population.tribe_members(tribe.id)
            ranks = np.array([m.social_rank for m in members])
            tribes.append({
                "id": tribe.id,
                "size": tribe.size,
                "mean_rank": round(float(ranks.mean()), 4),
                "rank_variance": round(float(ranks.var()), 4),
                "specializations": specialization_counts(members),
                "member_ids": [m.id for m in members],
            })
        return {
            "tribe_count": len(tribes),
            "tribeless": sum(1 for a in population if a.tribe_id is None),
            "tribes": tribes,
        }


@router.get("/{session_id}/tribes/{tribe_id}")
def get_tribe(request: Request, session_id: str, tribe_id: int):
    with _read_session(request, session_id) as session:
        try:
            tribe = session.population.tribe(tribe_id)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Tribe {tribe_id} not found")
        members = session.population.tribe_members(tribe.id)
        return {
            "id": tribe.id,
            "size": tribe.size,
            "members": [m.to_dict() for m in sorted(members, key=lambda a: (-a.social_rank, a.id))],
        }


@router.get("/{session_id}/ranks")
def get_ranks(request: Request, session_id: str):
    """Rank distribution (bucketed) and the top-ranked agents."""
    with _read_session(request, session_id) as session:
        ranked = [(a.id, a.social_rank, a.tribe_id) for a in session.population]

    buckets = {"0.0-0.2": 0, "0.2-0.4": 0, "0.4-0.6": 0, "0.6-0.8": 0, "0.8-1.0": 0}
    for _, r, _ in ranked:
        if r < 0.2:
            buckets["0.0-0.2"] += 1
        elif r < 0.4:
            buckets["0.2-0.4"] += 1
        elif r < 0.6:
            buckets["0.4-0.6"] += 1
        elif r < 0.8:
            buckets["0.6-0.8"] += 1
        else:
            buckets["0.8-1.0"] += 1

    top = sorted(ranked, key=lambda row: (-row[1], row[0]))[:10]
    mean_rank = sum(r for _, r, _ in ranked) / max(len(ranked), 1)
    return {
        "distribution": buckets,
        "mean_rank": round(mean_rank, 4),
        "top": [
            {"id": agent_id, "rank": round(r, 4), "tribe_id": tribe_id}
            for agent_id, r, tribe_id in top
        ],
    }


@router.get("/{session_id}/specializations")
def get_specializations(request: Request, session_id: str):
    with _read_session(request, session_id) as session:
        return specialization_counts(session.population)


@router.get("/{session_id}/legends")
def get_legends(
    request: Request,
    session_id: str,
    sort: str | None = Query(None),
    limit: int = Query(20, ge=1, le=1000),
):
    if sort is not None and sort not in LEGEND_SORT_KEYS:
        raise HTTPException(status_code=400, detail=f"Unknown sort key: '{sort}'")
    with _read_session(request, session_id) as session:
        archive = session.archive
        legends = archive.legends()[:limit] if sort is None else archive.top(limit, sort)
        return {"count": len(archive), "legends": [lg.to_dict() for lg in legends]}


@router.get("/{session_id}/legends/hall-of-fame")
def get_hall_of_fame(request: Request, session_id: str):
    with _read_session(request, session_id) as session:
        summary = session.archive.hall_of_fame()
        summary["hash"] = session.archive.legends_hash()
        return summary

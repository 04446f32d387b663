"""
FastAPI application factory for the tribesim observer API.
"""

import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tribesim import __version__
from tribesim.api.sessions import SessionManager
from tribesim.api.routers import metrics, simulation, social


def create_app(legend_dir: str | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Legends are kept in memory unless ``legend_dir`` (or the
    ``TRIBESIM_LEGEND_DIR`` environment variable) names a directory for
    per-session SQLite stores.
    """
    application = FastAPI(
        title="tribesim API",
        description="REST API for observing the tribesim social-dynamics core",
        version=__version__,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    legend_dir = legend_dir or os.environ.get("TRIBESIM_LEGEND_DIR") or None
    application.state.session_manager = SessionManager(legend_dir=legend_dir)

    application.include_router(simulation.router, prefix="/api/simulation", tags=["simulation"])
    application.include_router(social.router, prefix="/api/social", tags=["social"])
    application.include_router(metrics.router, prefix="/api/metrics", tags=["metrics"])

    @application.get("/api/health")
    def health_check():
        return {"status": "ok"}

    return application


app = create_app()

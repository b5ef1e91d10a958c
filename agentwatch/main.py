"""agentwatch FastAPI service: main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agentwatch import config
from agentwatch.events import ActivityEventBus
from agentwatch.observability import initialize as initialize_observability, shutdown as shutdown_observability
from agentwatch.parsers.platforms.registry import supported_vendors
from agentwatch.routers.sessions import events_router, sessions_router, terminals_router
from agentwatch.session import ActivityContext
from agentwatch.session_manager import SessionManager

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("agentwatch")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("agentwatch starting up")
    initialize_observability(app)

    bus = ActivityEventBus()
    manager = SessionManager(ActivityContext(bus))
    app.state.event_bus = bus
    app.state.session_manager = manager
    manager.start()

    yield

    logger.info("agentwatch shutting down")
    await manager.stop()
    shutdown_observability(app)


app = FastAPI(
    title="agentwatch API",
    description="Live activity feed for AI coding CLI sessions",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: allow the visualization dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions_router)
app.include_router(terminals_router)
app.include_router(events_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    manager = getattr(app.state, "session_manager", None)
    bus = getattr(app.state, "event_bus", None)
    return {
        "status": "ok",
        "vendors": supported_vendors(),
        "sessions": len(manager.sessions) if manager else 0,
        "scanners": len(manager.scanners) if manager else 0,
        "streams": bus.stream_count if bus else 0,
    }


"""
agentrelay — session coordinator and event fan-out for agent processes.

Wires the SessionStore, EventBroadcaster, agent runtime and
SessionCoordinator together and exposes them over HTTP:

    POST /api/rpc     → method dispatch (see http/rpc.py)
    GET  /api/events  → Server-Sent Events stream
    GET  /api/health  → liveness

Run: uv run uvicorn agentrelay.main:app --host 127.0.0.1 --port 3001
 or: agentrelay
"""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import agentrelay.core.config as config_module
from agentrelay.agent.runtime import AgentRuntime
from agentrelay.agent.subprocess_runtime import SubprocessAgentRuntime
from agentrelay.core.config import RelayConfig
from agentrelay.core.crypto import CredentialCipher
from agentrelay.core.logging import setup_logging
from agentrelay.events.broadcaster import EventBroadcaster
from agentrelay.http.events import create_events_router
from agentrelay.http.rpc import create_rpc_router
from agentrelay.services.api_setup import ApiSetupService
from agentrelay.services.preferences import PreferencesService
from agentrelay.session.coordinator import SessionCoordinator
from agentrelay.session.store import SessionStore

__version__ = "0.1.0"

# --- Setup ---
setup_logging()
logger = logging.getLogger("agentrelay")


def create_app(
    cfg: RelayConfig | None = None,
    runtime: AgentRuntime | None = None,
) -> FastAPI:
    """Build the application. Services are created once and shared by reference."""
    cfg = cfg or config_module.config

    store = SessionStore(db_path=cfg.storage.db_path)
    broadcaster = EventBroadcaster(queue_size=cfg.stream.subscriber_queue_size)
    api_setup = ApiSetupService(
        store,
        CredentialCipher(cfg.agent.secret),
        default_model=cfg.agent.model,
        default_base_url=cfg.agent.base_url,
    )
    preferences = PreferencesService(cfg.storage.preferences_path)
    coordinator = SessionCoordinator(
        store,
        runtime or SubprocessAgentRuntime(cfg.agent.command, line_limit=cfg.agent.line_limit),
        broadcaster,
        api_setup=api_setup,
    )

    app = FastAPI(title="agentrelay", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cfg.server.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(create_rpc_router(coordinator, store, api_setup, preferences))
    app.include_router(create_events_router(broadcaster))

    app.state.config = cfg
    app.state.store = store
    app.state.broadcaster = broadcaster
    app.state.coordinator = coordinator
    app.state.api_setup = api_setup

    @app.on_event("startup")
    async def startup() -> None:
        await store.start()
        if not cfg.agent.command and runtime is None:
            logger.warning(
                "AGENTRELAY_AGENT_COMMAND not set — turns will fail until it is configured"
            )
        logger.info(
            "agentrelay %s ready (home=%s, model=%s)",
            __version__,
            cfg.storage.home,
            await api_setup.get_model(),
        )

    @app.on_event("shutdown")
    async def shutdown() -> None:
        await coordinator.shutdown()
        broadcaster.close_all()
        await store.stop()

    return app


app = create_app()


def run() -> None:
    """Console entry point."""
    import uvicorn

    cfg = config_module.config
    uvicorn.run(
        "agentrelay.main:app",
        host=cfg.server.host,
        port=cfg.server.port,
        log_config=None,
    )

"""
RPC API — method dispatch for the web client.

Endpoint:
    POST /api/rpc   {"method": "sendMessage", "args": [...]}  → {"result": ...}

Errors come back as {"error": message}:
    404  unknown session or workspace
    400  unknown method or bad arguments
    500  anything else

sendMessage returns {"started": true} once the user message is accepted;
the turn itself is observed through GET /api/events.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from agentrelay.services.git import get_git_branch
from agentrelay.session.errors import NotFoundError

if TYPE_CHECKING:
    from agentrelay.services.api_setup import ApiSetupService
    from agentrelay.services.preferences import PreferencesService
    from agentrelay.session.coordinator import SessionCoordinator
    from agentrelay.session.store import SessionStore

logger = logging.getLogger(__name__)

RpcHandler = Callable[[list[Any]], Awaitable[Any]]

_MISSING = object()


class RpcArgumentError(ValueError):
    """A required argument is missing or has the wrong shape."""


def _arg(args: list[Any], index: int, default: Any = _MISSING) -> Any:
    if index < len(args) and args[index] is not None:
        return args[index]
    if default is _MISSING:
        raise RpcArgumentError(f"Missing argument #{index}")
    return default


def create_rpc_router(
    coordinator: "SessionCoordinator",
    store: "SessionStore",
    api_setup: "ApiSetupService",
    preferences: "PreferencesService",
) -> APIRouter:
    """Create the RPC router."""

    router = APIRouter(prefix="/api", tags=["rpc"])

    # ─── Workspaces & Sessions ────────────────────────────────

    async def get_workspaces(args: list[Any]) -> Any:
        return [w.to_dict() for w in await coordinator.get_workspaces()]

    async def create_workspace(args: list[Any]) -> Any:
        workspace = await coordinator.create_workspace(
            os.path.expanduser(_arg(args, 0)), _arg(args, 1, None)
        )
        return workspace.to_dict()

    async def get_sessions(args: list[Any]) -> Any:
        return [
            s.to_dict(is_processing=coordinator.is_processing(s.id))
            for s in await coordinator.get_sessions()
        ]

    async def get_session_messages(args: list[Any]) -> Any:
        session_id = _arg(args, 0)
        session = await coordinator.get_session(session_id)
        if session is None:
            return None
        return session.to_dict(is_processing=coordinator.is_processing(session_id))

    async def create_session(args: list[Any]) -> Any:
        options = _arg(args, 1, {})
        if not isinstance(options, dict):
            raise RpcArgumentError("createSession options must be an object")
        session = await coordinator.create_session(
            _arg(args, 0),
            name=options.get("name"),
            working_directory=options.get("workingDirectory"),
        )
        return session.to_dict()

    async def delete_session(args: list[Any]) -> Any:
        await coordinator.delete_session(_arg(args, 0))
        return None

    # ─── Turns ────────────────────────────────────────────────

    async def send_message(args: list[Any]) -> Any:
        await coordinator.send_message(
            _arg(args, 0),
            _arg(args, 1),
            attachments=_arg(args, 2, None),
            stored_attachments=_arg(args, 3, None),
            options=_arg(args, 4, None),
        )
        return {"started": True}

    async def cancel_processing(args: list[Any]) -> Any:
        await coordinator.cancel_processing(_arg(args, 0), silent=bool(_arg(args, 1, False)))
        return None

    async def respond_to_permission(args: list[Any]) -> Any:
        return coordinator.respond_to_permission(
            _arg(args, 0),
            _arg(args, 1),
            bool(_arg(args, 2)),
            bool(_arg(args, 3, False)),
        )

    async def session_command(args: list[Any]) -> Any:
        command = _arg(args, 1)
        if not isinstance(command, dict):
            raise RpcArgumentError("sessionCommand command must be an object")
        return await coordinator.handle_session_command(_arg(args, 0), command)

    # ─── Model & API Setup ────────────────────────────────────

    async def get_model(args: list[Any]) -> Any:
        return await api_setup.get_model()

    async def set_model(args: list[Any]) -> Any:
        await api_setup.set_model(_arg(args, 0))
        return None

    async def get_api_setup(args: list[Any]) -> Any:
        return await api_setup.get_api_setup()

    async def update_api_setup(args: list[Any]) -> Any:
        # An omitted base URL or custom model leaves the stored value alone
        await api_setup.update_api_setup(
            _arg(args, 0),
            credential=_arg(args, 1, None),
            base_url=_arg(args, 2, None),
            custom_model=_arg(args, 3, None),
            update_base_url=len(args) > 2,
            update_custom_model=len(args) > 3,
        )
        return None

    async def test_api_connection(args: list[Any]) -> Any:
        return await api_setup.test_api_connection(
            _arg(args, 0), _arg(args, 1, None), _arg(args, 2, None)
        )

    # ─── Drafts ───────────────────────────────────────────────

    async def get_all_drafts(args: list[Any]) -> Any:
        return await store.get_all_drafts()

    async def get_draft(args: list[Any]) -> Any:
        return await store.get_draft(_arg(args, 0))

    async def set_draft(args: list[Any]) -> Any:
        await store.set_draft(_arg(args, 0), _arg(args, 1, ""))
        return None

    async def delete_draft(args: list[Any]) -> Any:
        await store.delete_draft(_arg(args, 0))
        return None

    # ─── Preferences & System ─────────────────────────────────

    async def read_preferences(args: list[Any]) -> Any:
        return preferences.read_preferences()

    async def write_preferences(args: list[Any]) -> Any:
        return preferences.write_preferences(_arg(args, 0, ""))

    async def git_branch(args: list[Any]) -> Any:
        return await get_git_branch(_arg(args, 0))

    async def get_home_dir(args: list[Any]) -> Any:
        return str(Path.home())

    async def is_debug_mode(args: list[Any]) -> Any:
        return os.getenv("DEBUG", "").lower() == "true"

    methods: dict[str, RpcHandler] = {
        "getWorkspaces": get_workspaces,
        "createWorkspace": create_workspace,
        "getSessions": get_sessions,
        "getSessionMessages": get_session_messages,
        "createSession": create_session,
        "deleteSession": delete_session,
        "sendMessage": send_message,
        "cancelProcessing": cancel_processing,
        "respondToPermission": respond_to_permission,
        "sessionCommand": session_command,
        "getModel": get_model,
        "setModel": set_model,
        "getApiSetup": get_api_setup,
        "updateApiSetup": update_api_setup,
        "testApiConnection": test_api_connection,
        "getAllDrafts": get_all_drafts,
        "getDraft": get_draft,
        "setDraft": set_draft,
        "deleteDraft": delete_draft,
        "readPreferences": read_preferences,
        "writePreferences": write_preferences,
        "getGitBranch": git_branch,
        "getHomeDir": get_home_dir,
        "isDebugMode": is_debug_mode,
    }

    @router.post("/rpc")
    async def rpc(request: Request) -> JSONResponse:
        try:
            body = await request.json()
        except ValueError:
            return JSONResponse({"error": "Invalid JSON body"}, status_code=400)
        if not isinstance(body, dict):
            return JSONResponse({"error": "Body must be an object"}, status_code=400)

        method = body.get("method")
        args = body.get("args") or []
        handler = methods.get(method) if isinstance(method, str) else None
        if handler is None:
            return JSONResponse({"error": f"Unknown method: {method}"}, status_code=400)
        if not isinstance(args, list):
            return JSONResponse({"error": "args must be a list"}, status_code=400)

        try:
            result = await handler(args)
        except NotFoundError as e:
            return JSONResponse({"error": str(e)}, status_code=404)
        except (ValueError, TypeError) as e:
            logger.warning("RPC %s rejected: %s", method, e)
            return JSONResponse({"error": str(e)}, status_code=400)
        except Exception as e:
            logger.error("RPC %s failed: %s", method, e, exc_info=True)
            return JSONResponse({"error": str(e) or type(e).__name__}, status_code=500)

        return JSONResponse({"result": result})

    return router

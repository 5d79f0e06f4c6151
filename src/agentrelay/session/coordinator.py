"""
Session Coordinator — owns every live session and drives agent turns.

One coordinator per process. It keeps a ManagedSessionState per session
that has been touched, runs each turn as an asyncio.Task, and publishes
the resulting SessionEvents through the EventBroadcaster.

Turn lifecycle:
1. send_message() aborts an in-flight turn (reason Redirect) and closes it
   with `complete`, bumps the session's generation, resets per-turn state,
   appends the user message and publishes `user_message`
2. A background task obtains the agent handle and feeds every agent event
   through process_agent_event()
3. The turn ends with exactly one `complete`: on the agent's Complete, on
   an exhausted sequence, or after an `error` when anything raises
4. A snapshot is saved to the SessionStore

A task only publishes while its generation is still current, so a turn
that was redirected or cancelled can never emit again.

Usage:
    coordinator = SessionCoordinator(store, runtime, broadcaster)
    task = await coordinator.send_message(session_id, "hello")
    await coordinator.cancel_processing(session_id)
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from agentrelay.agent.contracts import AbortReason, Complete as AgentComplete
from agentrelay.agent.runtime import AgentHandle, AgentRuntime, HandleConfig
from agentrelay.events import contracts as events
from agentrelay.session.errors import SessionNotFoundError, WorkspaceNotFoundError
from agentrelay.session.models import (
    ManagedSessionState,
    Message,
    MessageRole,
    Session,
    Workspace,
)
from agentrelay.session.processor import process_agent_event

if TYPE_CHECKING:
    from agentrelay.events.broadcaster import EventBroadcaster
    from agentrelay.services.api_setup import ApiSetupService
    from agentrelay.session.store import SessionStore

logger = logging.getLogger(__name__)

# Session command → (session field, value or command key holding it)
_FLAG_COMMANDS: dict[str, tuple[str, bool]] = {
    "flag": ("is_flagged", True),
    "unflag": ("is_flagged", False),
    "markRead": ("is_unread", False),
    "markUnread": ("is_unread", True),
}
_VALUE_COMMANDS: dict[str, tuple[str, str]] = {
    "rename": ("name", "name"),
    "setTodoState": ("todo_state", "state"),
    "setLabels": ("labels", "labels"),
}
_UNSUPPORTED_COMMANDS = frozenset({"showInFinder", "copyPath"})


class SessionCoordinator:
    """Single-flight turn execution plus the session-level operations around it."""

    def __init__(
        self,
        store: "SessionStore",
        runtime: AgentRuntime,
        broadcaster: "EventBroadcaster",
        api_setup: "ApiSetupService | None" = None,
    ) -> None:
        self.store = store
        self.runtime = runtime
        self.broadcaster = broadcaster
        self.api_setup = api_setup
        self._sessions: dict[str, ManagedSessionState] = {}
        self._turn_tasks: dict[str, asyncio.Task] = {}

    # ─── Managed State ────────────────────────────────────────

    def get_managed(self, session_id: str) -> ManagedSessionState | None:
        """The live state of a session, if it has been loaded."""
        return self._sessions.get(session_id)

    def is_processing(self, session_id: str) -> bool:
        managed = self._sessions.get(session_id)
        return managed is not None and managed.is_processing

    async def _get_or_create_managed(self, session_id: str) -> ManagedSessionState:
        managed = self._sessions.get(session_id)
        if managed is not None:
            return managed

        session = await self.store.load(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        workspace = await self.store.get_workspace(session.workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(session.workspace_id)

        # Another caller may have loaded it while we awaited storage
        managed = self._sessions.get(session_id)
        if managed is not None:
            return managed

        managed = ManagedSessionState(
            id=session_id,
            session=session,
            workspace=workspace,
            messages=list(session.messages),
        )
        self._sessions[session_id] = managed
        return managed

    async def _get_or_create_handle(self, managed: ManagedSessionState) -> AgentHandle:
        if managed.agent_handle is not None:
            if managed.agent_handle.is_alive:
                return managed.agent_handle
            logger.info(
                "Agent handle for %s is gone, replacing it",
                managed.id,
                extra={"session_id": managed.id},
            )
            await self._close_handle(managed)

        model: str | None = None
        env: dict[str, str] = {}
        if self.api_setup is not None:
            model = await self.api_setup.get_model()
            env = await self.api_setup.agent_env()

        logger.info(
            "Creating agent handle for %s (workspace=%s)",
            managed.id,
            managed.workspace.root_path,
            extra={"session_id": managed.id},
        )
        handle = await self.runtime.create_handle(
            HandleConfig(
                session_id=managed.id,
                workspace_root=managed.workspace.root_path,
                working_directory=managed.session.working_directory,
                model=model,
                env=env,
            )
        )

        if managed.agent_handle is not None:
            # Lost a race with a concurrent turn
            await handle.close()
            return managed.agent_handle
        managed.agent_handle = handle
        return handle

    # ─── Turns ────────────────────────────────────────────────

    async def send_message(
        self,
        session_id: str,
        text: str,
        attachments: list[dict[str, Any]] | None = None,
        stored_attachments: list[dict[str, Any]] | None = None,
        options: dict[str, Any] | None = None,
    ) -> asyncio.Task:
        """
        Start a turn. Returns once the user message is accepted.

        The returned task runs the turn; callers normally ignore it and
        follow the event stream instead.
        """
        managed = await self._get_or_create_managed(session_id)

        superseded = managed.is_processing
        if superseded and managed.agent_handle is not None:
            logger.info(
                "Session %s is processing, aborting previous turn",
                session_id,
                extra={"session_id": session_id},
            )
            managed.agent_handle.force_abort(AbortReason.REDIRECT)

        generation = managed.begin_turn()
        if superseded:
            # The old task can no longer publish; close its turn here
            await self.broadcaster.publish(events.Complete(session_id=session_id))

        user_message = Message(
            role=MessageRole.USER.value,
            content=text,
            attachments=stored_attachments,
        )
        managed.messages.append(user_message)
        await self.broadcaster.publish(
            events.UserMessage(
                session_id=session_id,
                message=user_message.to_dict(),
                status="accepted",
            )
        )

        task = asyncio.create_task(
            self._run_turn(managed, generation, text, attachments, options),
            name=f"turn:{session_id}:{generation}",
        )
        self._turn_tasks[session_id] = task

        def _on_done(t: asyncio.Task) -> None:
            if self._turn_tasks.get(session_id) is t:
                self._turn_tasks.pop(session_id, None)

        task.add_done_callback(_on_done)
        return task

    async def _run_turn(
        self,
        managed: ManagedSessionState,
        generation: int,
        text: str,
        attachments: list[dict[str, Any]] | None,
        options: dict[str, Any] | None,
    ) -> None:
        session_id = managed.id
        started_at = time.monotonic()
        stream = None

        def current() -> bool:
            return managed.generation == generation

        try:
            handle = await self._get_or_create_handle(managed)
            if not current():
                return

            stream = handle.chat(text, attachments, options)
            async for event in stream:
                if not current():
                    return
                for outward in process_agent_event(managed, event):
                    await self.broadcaster.publish(outward)
                if isinstance(event, AgentComplete):
                    # Anything the agent yields after Complete is discarded
                    break

            if current():
                managed.is_processing = False
                await self.broadcaster.publish(events.Complete(session_id=session_id))
                logger.info(
                    "Turn completed for %s",
                    session_id,
                    extra={
                        "session_id": session_id,
                        "duration_ms": int((time.monotonic() - started_at) * 1000),
                    },
                )

        except asyncio.CancelledError:
            logger.info("Turn for %s cancelled", session_id)
            raise

        except Exception as e:
            logger.error(
                "Turn failed for %s: %s",
                session_id,
                e,
                exc_info=True,
                extra={"session_id": session_id},
            )
            if current():
                managed.is_processing = False
                await self.broadcaster.publish(
                    events.Error(session_id=session_id, error=str(e) or type(e).__name__)
                )
                await self.broadcaster.publish(events.Complete(session_id=session_id))

        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception:
                    logger.debug("Closing agent stream for %s failed", session_id, exc_info=True)
            await self._save_snapshot(managed)

    async def cancel_processing(self, session_id: str, silent: bool = False) -> None:
        """Stop the running turn. A no-op when nothing is running."""
        managed = self._sessions.get(session_id)
        if managed is None or managed.agent_handle is None or not managed.is_processing:
            return

        managed.agent_handle.force_abort(AbortReason.USER_STOP)
        managed.is_processing = False
        managed.generation += 1
        logger.info(
            "Turn cancelled for %s (silent=%s)",
            session_id,
            silent,
            extra={"session_id": session_id},
        )

        if not silent:
            await self.broadcaster.publish(events.Complete(session_id=session_id))
        await self._save_snapshot(managed)

    def respond_to_permission(
        self, session_id: str, request_id: str, allowed: bool, always_allow: bool
    ) -> bool:
        managed = self._sessions.get(session_id)
        if managed is None or managed.agent_handle is None:
            return False
        managed.agent_handle.respond_to_permission(request_id, allowed, always_allow)
        return True

    async def _save_snapshot(self, managed: ManagedSessionState) -> None:
        # Deleted sessions must not be written back
        if self._sessions.get(managed.id) is not managed:
            return
        try:
            await self.store.save(managed.snapshot())
        except Exception as e:
            logger.error(
                "Failed to save session %s: %s",
                managed.id,
                e,
                exc_info=True,
                extra={"session_id": managed.id},
            )

    # ─── Workspaces ───────────────────────────────────────────

    async def get_workspaces(self) -> list[Workspace]:
        return await self.store.list_workspaces()

    async def create_workspace(self, root_path: str, name: str | None = None) -> Workspace:
        workspace = await self.store.add_workspace(root_path, name)
        logger.info("Workspace created: %s (%s)", workspace.name, workspace.root_path)
        return workspace

    # ─── Sessions ─────────────────────────────────────────────

    async def get_sessions(self) -> list[Session]:
        """Every session of every workspace, most recently updated first."""
        sessions: list[Session] = []
        for workspace in await self.store.list_workspaces():
            try:
                stored = await self.store.list_sessions(workspace.id)
            except Exception as e:
                logger.error("Error loading sessions for workspace %s: %s", workspace.id, e)
                continue
            for session in stored:
                managed = self._sessions.get(session.id)
                sessions.append(managed.session if managed else session)
        sessions.sort(key=lambda s: s.updated_at, reverse=True)
        return sessions

    async def get_session(self, session_id: str) -> Session | None:
        managed = self._sessions.get(session_id)
        if managed is not None:
            managed.session.messages = list(managed.messages)
            return managed.session
        return await self.store.load(session_id)

    async def create_session(
        self,
        workspace_id: str,
        name: str | None = None,
        working_directory: str | None = None,
    ) -> Session:
        workspace = await self.store.get_workspace(workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(workspace_id)
        session = await self.store.create_session(
            workspace.id,
            name=name,
            working_directory=working_directory or workspace.root_path,
        )
        logger.info(
            "Session created: %s in %s",
            session.id,
            workspace.name,
            extra={"session_id": session.id},
        )
        return session

    async def delete_session(self, session_id: str) -> bool:
        await self.cancel_processing(session_id, silent=True)
        managed = self._sessions.pop(session_id, None)
        if managed is not None and managed.agent_handle is not None:
            await self._close_handle(managed)
        deleted = await self.store.delete_session(session_id)
        logger.info("Session deleted: %s (found=%s)", session_id, deleted)
        return deleted

    async def handle_session_command(
        self, session_id: str, command: dict[str, Any]
    ) -> Any:
        """Apply a metadata command such as flag, rename or setLabels."""
        managed = self._sessions.get(session_id)
        if managed is None and await self.store.load(session_id) is None:
            raise SessionNotFoundError(session_id)

        command_type = command.get("type")
        if command_type in _FLAG_COMMANDS:
            field_name, value = _FLAG_COMMANDS[command_type]
        elif command_type in _VALUE_COMMANDS:
            field_name, key = _VALUE_COMMANDS[command_type]
            value = command.get(key)
            if field_name == "labels":
                value = list(value or [])
        elif command_type in _UNSUPPORTED_COMMANDS:
            return {"success": False}
        else:
            logger.warning("Unhandled session command: %s", command_type)
            return None

        if managed is not None:
            setattr(managed.session, field_name, value)
        await self.store.update_metadata(session_id, **{field_name: value})
        return None

    # ─── Shutdown ─────────────────────────────────────────────

    async def _close_handle(self, managed: ManagedSessionState) -> None:
        handle = managed.agent_handle
        managed.agent_handle = None
        if handle is None:
            return
        try:
            await handle.close()
        except Exception as e:
            logger.warning("Failed to close agent handle for %s: %s", managed.id, e)

    async def shutdown(self) -> None:
        """Silently stop every running turn and release every agent handle."""
        for session_id in list(self._sessions):
            await self.cancel_processing(session_id, silent=True)

        tasks = [t for t in self._turn_tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._turn_tasks.clear()

        for managed in list(self._sessions.values()):
            await self._close_handle(managed)
        logger.info("SessionCoordinator shut down (%d sessions)", len(self._sessions))

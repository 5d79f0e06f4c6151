"""
Subprocess agent runtime — one agent process per session, NDJSON over stdio.

Outbound (stdin), one JSON object per line:
    {"type": "chat", "text": ..., "attachments": [...], "options": {...}}
    {"type": "abort", "reason": "UserStop" | "Redirect"}
    {"type": "permission_response", "requestId": ..., "allowed": ..., "alwaysAllow": ...}

Inbound (stdout): one agent event object per line (see agent.contracts).
Lines that are not JSON objects are logged and skipped. A line may be up
to `line_limit` bytes; output that cannot be read ends the process. The
process's stderr is inherited so its own logs land next to ours.

After an abort the agent is expected to finish the aborted turn with a
`complete` event; everything it emits up to and including that event is
discarded, so a redirected turn never leaks into the next one.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, AsyncIterator, Sequence

from agentrelay.agent.contracts import (
    AbortReason,
    AgentEvent,
    Complete,
    parse_agent_event,
)
from agentrelay.agent.runtime import AgentHandle, AgentRuntime, HandleConfig

logger = logging.getLogger(__name__)

# Longest NDJSON line accepted from an agent (asyncio defaults to 64 KiB)
DEFAULT_LINE_LIMIT = 16 * 1024 * 1024

# Seconds to wait for the exit code once stdout has closed
EXIT_WAIT_TIMEOUT = 2.0

# Queue sentinels
_ABORTED = object()
_PROCESS_EXIT = object()


class AgentProcessError(RuntimeError):
    """The agent process could not be started or went away mid-turn."""


class SubprocessAgentHandle(AgentHandle):
    """Drives one long-lived agent process."""

    def __init__(self, session_id: str, process: asyncio.subprocess.Process):
        self.session_id = session_id
        self._process = process
        self._queue: asyncio.Queue | None = None
        self._turn_active = False
        self._discard_turns = 0
        self._exited = False
        self._reader = asyncio.create_task(self._read_loop())

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def is_alive(self) -> bool:
        return not self._exited

    async def _exit_code(self) -> int | None:
        # stdout closes slightly before the process is reaped
        try:
            return await asyncio.wait_for(self._process.wait(), timeout=EXIT_WAIT_TIMEOUT)
        except asyncio.TimeoutError:
            return self._process.returncode

    # ─── Outbound ─────────────────────────────────────────────

    def _write(self, payload: dict[str, Any]) -> None:
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing() or self._exited:
            logger.warning(
                "Agent process for %s is gone, dropping %s",
                self.session_id,
                payload.get("type"),
            )
            return
        stdin.write((json.dumps(payload) + "\n").encode("utf-8"))

    async def _send(self, payload: dict[str, Any]) -> None:
        self._write(payload)
        stdin = self._process.stdin
        if stdin is not None and not stdin.is_closing():
            try:
                await stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise AgentProcessError(f"Agent process closed its input: {e}") from e

    # ─── Inbound ──────────────────────────────────────────────

    async def _read_loop(self) -> None:
        stdout = self._process.stdout
        assert stdout is not None, "Agent process started without stdout pipe"

        try:
            while True:
                line = await stdout.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").strip()
                if not text:
                    continue
                try:
                    data = json.loads(text)
                except json.JSONDecodeError:
                    logger.warning("Agent %s: non-JSON output: %s", self.session_id, text)
                    continue
                if not isinstance(data, dict):
                    logger.warning("Agent %s: unexpected output: %s", self.session_id, text)
                    continue
                self._dispatch(parse_agent_event(data))
            logger.info(
                "Agent process for %s exited (pid=%s)", self.session_id, self._process.pid
            )
        except Exception as e:
            # Output is no longer readable; the process is useless from here on
            logger.error(
                "Reading agent output for %s failed: %s",
                self.session_id,
                e,
                exc_info=True,
                extra={"session_id": self.session_id},
            )
            if self._process.returncode is None:
                try:
                    self._process.kill()
                except ProcessLookupError:
                    pass
        finally:
            self._exited = True
            if self._queue is not None:
                self._queue.put_nowait(_PROCESS_EXIT)

    def _dispatch(self, event: AgentEvent) -> None:
        if self._discard_turns > 0:
            if isinstance(event, Complete):
                self._discard_turns -= 1
            return

        if self._queue is None:
            logger.debug(
                "Agent %s: event outside a turn dropped: %s", self.session_id, event
            )
            return

        self._queue.put_nowait(event)
        if isinstance(event, Complete):
            self._turn_active = False

    # ─── AgentHandle ──────────────────────────────────────────

    async def chat(
        self,
        text: str,
        attachments: list[dict[str, Any]] | None = None,
        options: dict[str, Any] | None = None,
    ) -> AsyncIterator[AgentEvent]:
        if self._exited:
            raise AgentProcessError("Agent process is not running")

        queue: asyncio.Queue = asyncio.Queue()
        self._queue = queue
        self._turn_active = True
        await self._send(
            {
                "type": "chat",
                "text": text,
                "attachments": attachments or [],
                "options": options or {},
            }
        )

        try:
            while True:
                item = await queue.get()
                if item is _ABORTED:
                    return
                if item is _PROCESS_EXIT:
                    raise AgentProcessError(
                        f"Agent process exited mid-turn (code {await self._exit_code()})"
                    )
                yield item
                if isinstance(item, Complete):
                    return
        finally:
            if self._queue is queue:
                self._queue = None

    def force_abort(self, reason: AbortReason) -> None:
        if not self._turn_active:
            return
        self._turn_active = False
        self._discard_turns += 1
        if self._queue is not None:
            self._queue.put_nowait(_ABORTED)
            self._queue = None
        self._write({"type": "abort", "reason": reason.value})

    def respond_to_permission(
        self, request_id: str, allowed: bool, always_allow: bool
    ) -> None:
        self._write(
            {
                "type": "permission_response",
                "requestId": request_id,
                "allowed": allowed,
                "alwaysAllow": always_allow,
            }
        )

    async def close(self) -> None:
        stdin = self._process.stdin
        if stdin is not None and not stdin.is_closing():
            stdin.close()
        if self._process.returncode is None:
            try:
                await asyncio.wait_for(self._process.wait(), timeout=5.0)
            except asyncio.TimeoutError:
                logger.warning("Agent process for %s did not exit, killing", self.session_id)
                self._process.kill()
                await self._process.wait()
        self._reader.cancel()
        try:
            await self._reader
        except asyncio.CancelledError:
            pass


class SubprocessAgentRuntime(AgentRuntime):
    """Launches `command` once per session."""

    def __init__(self, command: Sequence[str], line_limit: int = DEFAULT_LINE_LIMIT):
        self.command = tuple(command)
        self.line_limit = line_limit

    async def create_handle(self, config: HandleConfig) -> SubprocessAgentHandle:
        if not self.command:
            raise AgentProcessError("No agent command configured (AGENTRELAY_AGENT_COMMAND)")

        env = {**os.environ, **config.env, "AGENTRELAY_SESSION_ID": config.session_id}
        if config.model:
            env["AGENTRELAY_MODEL"] = config.model

        cwd = config.working_directory or config.workspace_root
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                limit=self.line_limit,
                cwd=cwd if cwd and os.path.isdir(cwd) else None,
                env=env,
            )
        except OSError as e:
            raise AgentProcessError(f"Failed to start agent process: {e}") from e

        logger.info(
            "Agent process started for %s (pid=%s)",
            config.session_id,
            process.pid,
            extra={"session_id": config.session_id},
        )
        return SubprocessAgentHandle(config.session_id, process)

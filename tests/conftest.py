"""Shared fixtures: a temp SessionStore and a scripted agent runtime."""

import asyncio
import json
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio

from agentrelay.agent.contracts import Complete
from agentrelay.agent.runtime import AgentHandle, AgentRuntime, HandleConfig
from agentrelay.events.broadcaster import EventBroadcaster, Subscriber
from agentrelay.session.coordinator import SessionCoordinator
from agentrelay.session.store import SessionStore

# Script marker: wait here until the turn is aborted
BLOCK = object()


class Gate:
    """Script marker that parks a turn until the test opens it."""

    def __init__(self):
        self.reached = asyncio.Event()
        self._opened = asyncio.Event()

    def open(self):
        self._opened.set()

    async def wait(self):
        self.reached.set()
        await self._opened.wait()


class ScriptedHandle(AgentHandle):
    """Plays back one scripted list of agent events per chat() call.

    A script item may be an AgentEvent, an Exception (raised), a Gate
    (park until opened) or BLOCK (park until force_abort). With no script
    left, a turn is just Complete.
    """

    def __init__(self, turns=None):
        self.turns = list(turns or [])
        self.chats: list[str] = []
        self.aborts = []
        self.permission_responses = []
        self.closed = False
        self.alive = True
        self.blocked = asyncio.Event()
        self._abort = asyncio.Event()

    @property
    def is_alive(self):
        return self.alive

    async def chat(self, text, attachments=None, options=None):
        self.chats.append(text)
        self._abort = asyncio.Event()
        abort = self._abort
        script = self.turns.pop(0) if self.turns else [Complete()]
        for item in script:
            if item is BLOCK:
                self.blocked.set()
                await abort.wait()
                return
            if isinstance(item, Gate):
                await item.wait()
                continue
            if isinstance(item, Exception):
                raise item
            yield item

    def force_abort(self, reason):
        self.aborts.append(reason)
        self._abort.set()

    def respond_to_permission(self, request_id, allowed, always_allow):
        self.permission_responses.append((request_id, allowed, always_allow))

    async def close(self):
        self.closed = True


class ScriptedRuntime(AgentRuntime):
    """Hands out one shared ScriptedHandle, or raises `fail` on creation."""

    def __init__(self, turns=None, fail: Exception | None = None):
        self.handle = ScriptedHandle(turns)
        self.fail = fail
        self.configs: list[HandleConfig] = []

    async def create_handle(self, config: HandleConfig) -> AgentHandle:
        self.configs.append(config)
        if self.fail is not None:
            raise self.fail
        return self.handle


class PerSessionRuntime(AgentRuntime):
    """Hands out a fresh ScriptedHandle on every create_handle() call.

    `scripts` maps a session id to the turns its next handle plays back.
    """

    def __init__(self, scripts=None):
        self.scripts = dict(scripts or {})
        self.handles: list[ScriptedHandle] = []
        self.configs: list[HandleConfig] = []

    async def create_handle(self, config: HandleConfig) -> AgentHandle:
        self.configs.append(config)
        handle = ScriptedHandle(self.scripts.pop(config.session_id, None))
        self.handles.append(handle)
        return handle

    def handles_for(self, session_id: str) -> list[ScriptedHandle]:
        return [
            h for h, c in zip(self.handles, self.configs) if c.session_id == session_id
        ]


def drain(subscriber: Subscriber) -> list[dict]:
    """Decode every frame queued for a subscriber, skipping `connected`."""
    frames = []
    while not subscriber.queue.empty():
        item = subscriber.queue.get_nowait()
        if not isinstance(item, str):
            continue
        assert item.startswith("data: ") and item.endswith("\n\n")
        payload = json.loads(item[len("data: ") : -2])
        if payload["type"] != "connected":
            frames.append(payload)
    return frames


@pytest_asyncio.fixture
async def store():
    """Create a SessionStore with a temp DB for each test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test_agentrelay.db"
        s = SessionStore(db_path=db_path)
        await s.start()
        yield s
        await s.stop()


@pytest.fixture
def broadcaster():
    return EventBroadcaster()


@pytest.fixture
def runtime():
    return ScriptedRuntime()


@pytest_asyncio.fixture
async def coordinator(store, runtime, broadcaster):
    c = SessionCoordinator(store, runtime, broadcaster)
    yield c
    await c.shutdown()


@pytest_asyncio.fixture
async def session(store, tmp_path):
    """A stored session in a fresh workspace."""
    workspace = await store.add_workspace(str(tmp_path), "test-ws")
    return await store.create_session(workspace.id, working_directory=str(tmp_path))

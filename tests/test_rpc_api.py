"""Tests for the RPC endpoint — POST /api/rpc."""

import time
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from agentrelay.agent import contracts as agent
from agentrelay.core.config import RelayConfig, StorageConfig
from agentrelay.http.rpc import create_rpc_router
from agentrelay.main import create_app

from conftest import ScriptedRuntime


# ─── Fixtures ─────────────────────────────────────────────────


@pytest.fixture
def runtime():
    return ScriptedRuntime()


@pytest.fixture
def client(tmp_path, runtime):
    cfg = RelayConfig(storage=StorageConfig(home=str(tmp_path / "home")))
    with TestClient(create_app(cfg, runtime=runtime)) as test_client:
        yield test_client


def _call(client, method, *args, status=200):
    response = client.post("/api/rpc", json={"method": method, "args": list(args)})
    assert response.status_code == status, response.text
    body = response.json()
    return body["result"] if status == 200 else body["error"]


def _new_session(client, tmp_path):
    workspace = _call(client, "createWorkspace", str(tmp_path), "proj")
    return _call(client, "createSession", workspace["id"], {"name": "Chat"})


def _wait_idle(client, session_id):
    for _ in range(200):
        session = _call(client, "getSessionMessages", session_id)
        if not session["isProcessing"]:
            return session
        time.sleep(0.01)
    raise AssertionError("turn did not finish")


# ─── Workspaces & Sessions ────────────────────────────────────


def test_workspace_and_session_crud(client, tmp_path):
    workspace = _call(client, "createWorkspace", str(tmp_path), "proj")
    assert workspace["name"] == "proj"
    assert workspace["rootPath"] == str(tmp_path)
    assert _call(client, "getWorkspaces") == [workspace]

    session = _call(
        client, "createSession", workspace["id"], {"name": "Chat", "workingDirectory": "/tmp"}
    )
    assert session["name"] == "Chat"
    assert session["workingDirectory"] == "/tmp"
    assert session["isProcessing"] is False

    sessions = _call(client, "getSessions")
    assert [s["id"] for s in sessions] == [session["id"]]

    assert _call(client, "deleteSession", session["id"]) is None
    assert _call(client, "getSessions") == []
    assert _call(client, "getSessionMessages", session["id"]) is None


def test_create_session_unknown_workspace_is_404(client):
    error = _call(client, "createSession", "missing", status=404)
    assert "missing" in error


def test_session_command(client, tmp_path):
    session = _new_session(client, tmp_path)

    _call(client, "sessionCommand", session["id"], {"type": "flag"})
    _call(client, "sessionCommand", session["id"], {"type": "setLabels", "labels": ["x"]})

    [listed] = _call(client, "getSessions")
    assert listed["isFlagged"] is True
    assert listed["labels"] == ["x"]
    assert _call(client, "sessionCommand", session["id"], {"type": "copyPath"}) == {
        "success": False
    }


# ─── Turns ────────────────────────────────────────────────────


def test_send_message_starts_turn(client, runtime, tmp_path):
    runtime.handle.turns = [[agent.TextComplete(text="Hello"), agent.Complete()]]
    session = _new_session(client, tmp_path)

    assert _call(client, "sendMessage", session["id"], "Say hello") == {"started": True}

    loaded = _wait_idle(client, session["id"])
    assert [(m["role"], m["content"]) for m in loaded["messages"]] == [
        ("user", "Say hello"),
        ("assistant", "Hello"),
    ]


def test_send_message_unknown_session_is_404(client):
    error = _call(client, "sendMessage", "nope", "hi", status=404)
    assert error == "Session not found: nope"


def test_cancel_and_permission_on_idle_session(client, tmp_path):
    session = _new_session(client, tmp_path)
    assert _call(client, "cancelProcessing", session["id"]) is None
    assert _call(client, "respondToPermission", session["id"], "req-1", True, False) is False


# ─── Settings & Drafts ────────────────────────────────────────


def test_model_and_api_setup(client):
    assert _call(client, "getModel") == "claude-sonnet-4-5"
    _call(client, "setModel", "claude-opus")
    assert _call(client, "getModel") == "claude-opus"

    _call(client, "updateApiSetup", "api_key", "sk-test", "https://proxy.local", "my-model")
    assert _call(client, "getApiSetup") == {
        "authType": "api_key",
        "hasCredential": True,
        "anthropicBaseUrl": "https://proxy.local",
        "customModel": "my-model",
    }
    assert _call(client, "getModel") == "my-model"

    # Omitting base URL and custom model leaves them untouched
    _call(client, "updateApiSetup", "api_key")
    assert _call(client, "getApiSetup")["anthropicBaseUrl"] == "https://proxy.local"

    _call(client, "updateApiSetup", "carrier_pigeon", status=400)


def test_drafts(client):
    _call(client, "setDraft", "s1", "half-written")
    assert _call(client, "getDraft", "s1") == "half-written"
    assert _call(client, "getAllDrafts") == {"s1": "half-written"}
    _call(client, "deleteDraft", "s1")
    assert _call(client, "getDraft", "s1") is None


def test_preferences_roundtrip(client):
    before = _call(client, "readPreferences")
    assert before["exists"] is False
    assert before["content"] == ""

    assert _call(client, "writePreferences", "# Be terse") == {"success": True}

    after = _call(client, "readPreferences")
    assert after == {"content": "# Be terse", "exists": True, "path": before["path"]}


def test_system_methods(client, tmp_path, monkeypatch):
    assert _call(client, "getHomeDir") == str(Path.home())
    assert _call(client, "getGitBranch", str(tmp_path)) is None

    monkeypatch.setenv("DEBUG", "true")
    assert _call(client, "isDebugMode") is True
    monkeypatch.setenv("DEBUG", "false")
    assert _call(client, "isDebugMode") is False


# ─── Errors ───────────────────────────────────────────────────


def test_unknown_method_is_400(client):
    assert "Unknown method" in _call(client, "launchRockets", status=400)


def test_missing_argument_is_400(client):
    assert "Missing argument" in _call(client, "getDraft", status=400)


def test_malformed_bodies_are_400(client):
    response = client.post(
        "/api/rpc", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400

    response = client.post("/api/rpc", json=["getModel"])
    assert response.status_code == 400

    response = client.post("/api/rpc", json={"method": "getModel", "args": "nope"})
    assert response.status_code == 400


def test_unexpected_failure_is_500():
    coordinator = MagicMock()
    coordinator.get_workspaces = AsyncMock(side_effect=RuntimeError("disk on fire"))
    app = FastAPI()
    app.include_router(create_rpc_router(coordinator, MagicMock(), MagicMock(), MagicMock()))

    response = TestClient(app).post("/api/rpc", json={"method": "getWorkspaces"})

    assert response.status_code == 500
    assert response.json() == {"error": "disk on fire"}

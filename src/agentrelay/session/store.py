"""
Session Store — SQLite-backed durable state.

Holds workspaces, sessions and their message snapshots, per-session
drafts, and a small key/value settings table (selected model, stored
credentials). The coordinator keeps the live copy of a session in memory
and saves a full snapshot here after every turn.

Usage:
    store = SessionStore(db_path=Path("~/.agentrelay/agentrelay.db"))
    await store.start()

    ws = await store.add_workspace("/home/me/project", "project")
    session = await store.create_session(ws.id)
    await store.save(session)
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import Any

import aiosqlite

import agentrelay.core.config as config_module
from agentrelay.session.models import Message, Session, Workspace, now_ms

logger = logging.getLogger(__name__)

# Session attribute → column for update_metadata()
_METADATA_COLUMNS = {
    "name": "name",
    "is_flagged": "is_flagged",
    "is_unread": "is_unread",
    "labels": "labels",
    "todo_state": "todo_state",
    "working_directory": "working_directory",
}

_SESSION_COLUMNS = (
    "session_id, workspace_id, name, is_flagged, is_unread, labels, "
    "todo_state, working_directory, created_at, updated_at"
)


class SessionStore:
    """
    SQLite-backed persistence.

    Five tables:
    - workspaces: root folders that group sessions
    - sessions: session identity and metadata
    - messages: ordered message snapshot per session (JSON payload)
    - drafts: unsent composer text per session
    - settings: key/value pairs

    Single writer (this process) via aiosqlite.
    """

    def __init__(self, db_path: Path | None = None):
        if db_path is None:
            db_path = config_module.config.storage.db_path
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None
        # Snapshot saves are delete-then-insert and must not interleave
        self._save_lock = asyncio.Lock()

    async def start(self) -> None:
        """Open the database and create tables."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS workspaces (
                workspace_id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                root_path TEXT NOT NULL,
                created_at INTEGER NOT NULL
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                session_id TEXT PRIMARY KEY,
                workspace_id TEXT NOT NULL,
                name TEXT NOT NULL DEFAULT 'New Chat',
                is_flagged INTEGER NOT NULL DEFAULT 0,
                is_unread INTEGER NOT NULL DEFAULT 0,
                labels TEXT NOT NULL DEFAULT '[]',
                todo_state TEXT,
                working_directory TEXT,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                FOREIGN KEY (workspace_id) REFERENCES workspaces(workspace_id)
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                session_id TEXT NOT NULL,
                sequence INTEGER NOT NULL,
                message_id TEXT NOT NULL,
                payload TEXT NOT NULL,
                PRIMARY KEY (session_id, sequence),
                FOREIGN KEY (session_id) REFERENCES sessions(session_id) ON DELETE CASCADE
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS drafts (
                session_id TEXT PRIMARY KEY,
                text TEXT NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)

        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_sessions_workspace
            ON sessions(workspace_id, updated_at)
        """)

        await self._db.commit()
        logger.info("SessionStore started (db=%s)", self.db_path)

    async def stop(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    # ─── Workspaces ───────────────────────────────────────────────

    async def add_workspace(self, root_path: str, name: str | None = None) -> Workspace:
        assert self._db is not None, "SessionStore not started"

        workspace = Workspace(
            id=f"ws-{uuid.uuid4().hex[:12]}",
            name=name or Path(root_path).name or root_path,
            root_path=root_path,
        )
        await self._db.execute(
            "INSERT INTO workspaces (workspace_id, name, root_path, created_at) VALUES (?, ?, ?, ?)",
            (workspace.id, workspace.name, workspace.root_path, workspace.created_at),
        )
        await self._db.commit()
        return workspace

    async def list_workspaces(self) -> list[Workspace]:
        assert self._db is not None, "SessionStore not started"

        workspaces = []
        async with self._db.execute(
            "SELECT workspace_id, name, root_path, created_at FROM workspaces ORDER BY created_at"
        ) as cursor:
            async for row in cursor:
                workspaces.append(
                    Workspace(id=row[0], name=row[1], root_path=row[2], created_at=row[3])
                )
        return workspaces

    async def get_workspace(self, id_or_name: str) -> Workspace | None:
        """Look up a workspace by id, falling back to its name."""
        assert self._db is not None, "SessionStore not started"

        async with self._db.execute(
            "SELECT workspace_id, name, root_path, created_at FROM workspaces "
            "WHERE workspace_id = ? OR name = ? ORDER BY workspace_id = ? DESC LIMIT 1",
            (id_or_name, id_or_name, id_or_name),
        ) as cursor:
            row = await cursor.fetchone()
            if row is None:
                return None
            return Workspace(id=row[0], name=row[1], root_path=row[2], created_at=row[3])

    # ─── Sessions ─────────────────────────────────────────────────

    async def create_session(
        self,
        workspace_id: str,
        name: str | None = None,
        working_directory: str | None = None,
    ) -> Session:
        assert self._db is not None, "SessionStore not started"

        session = Session(
            id=f"session-{uuid.uuid4().hex[:12]}",
            workspace_id=workspace_id,
            name=name or "New Chat",
            working_directory=working_directory,
        )
        await self._upsert_session(session)
        await self._db.commit()
        return session

    async def load(self, session_id: str) -> Session | None:
        """Load a session with its messages. Returns None if not found."""
        assert self._db is not None, "SessionStore not started"

        async with self._db.execute(
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE session_id = ?",
            (session_id,),
        ) as cursor:
            row = await cursor.fetchone()
            if row is None:
                return None
            session = self._row_to_session(row)

        async with self._db.execute(
            "SELECT payload FROM messages WHERE session_id = ? ORDER BY sequence",
            (session_id,),
        ) as cursor:
            async for (payload,) in cursor:
                session.messages.append(Message.from_dict(json.loads(payload)))

        return session

    async def save(self, session: Session) -> None:
        """Write a full snapshot: metadata plus the complete message list."""
        assert self._db is not None, "SessionStore not started"

        rows = [
            (session.id, i, m.id, json.dumps(m.to_dict()))
            for i, m in enumerate(session.messages)
        ]
        async with self._save_lock:
            await self._upsert_session(session)
            await self._db.execute(
                "DELETE FROM messages WHERE session_id = ?", (session.id,)
            )
            await self._db.executemany(
                "INSERT INTO messages (session_id, sequence, message_id, payload) VALUES (?, ?, ?, ?)",
                rows,
            )
            await self._db.commit()

    async def list_sessions(self, workspace_id: str) -> list[Session]:
        """Sessions of one workspace, newest first. Messages are not loaded."""
        assert self._db is not None, "SessionStore not started"

        sessions = []
        async with self._db.execute(
            f"SELECT {_SESSION_COLUMNS} FROM sessions WHERE workspace_id = ? "
            "ORDER BY updated_at DESC",
            (workspace_id,),
        ) as cursor:
            async for row in cursor:
                sessions.append(self._row_to_session(row))
        return sessions

    async def update_metadata(self, session_id: str, **fields: Any) -> bool:
        """
        Update some metadata columns of a session.

        Accepted fields: name, is_flagged, is_unread, labels, todo_state,
        working_directory. Returns False if the session does not exist.
        """
        assert self._db is not None, "SessionStore not started"

        unknown = set(fields) - set(_METADATA_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown session fields: {sorted(unknown)}")

        assignments = []
        params: list[Any] = []
        for key, value in fields.items():
            if key == "labels":
                value = json.dumps(list(value or []))
            elif key in ("is_flagged", "is_unread"):
                value = int(bool(value))
            assignments.append(f"{_METADATA_COLUMNS[key]} = ?")
            params.append(value)
        assignments.append("updated_at = ?")
        params.append(now_ms())
        params.append(session_id)

        cursor = await self._db.execute(
            f"UPDATE sessions SET {', '.join(assignments)} WHERE session_id = ?",
            params,
        )
        await self._db.commit()
        return cursor.rowcount > 0

    async def delete_session(self, session_id: str) -> bool:
        assert self._db is not None, "SessionStore not started"

        await self._db.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
        await self._db.execute("DELETE FROM drafts WHERE session_id = ?", (session_id,))
        cursor = await self._db.execute(
            "DELETE FROM sessions WHERE session_id = ?", (session_id,)
        )
        await self._db.commit()
        return cursor.rowcount > 0

    # ─── Drafts ───────────────────────────────────────────────────

    async def get_draft(self, session_id: str) -> str | None:
        assert self._db is not None, "SessionStore not started"

        async with self._db.execute(
            "SELECT text FROM drafts WHERE session_id = ?", (session_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return row[0] if row else None

    async def set_draft(self, session_id: str, text: str) -> None:
        """Store a draft. Empty text removes it."""
        assert self._db is not None, "SessionStore not started"

        if not text:
            await self.delete_draft(session_id)
            return
        await self._db.execute(
            "INSERT OR REPLACE INTO drafts (session_id, text, updated_at) VALUES (?, ?, ?)",
            (session_id, text, now_ms()),
        )
        await self._db.commit()

    async def delete_draft(self, session_id: str) -> None:
        assert self._db is not None, "SessionStore not started"

        await self._db.execute("DELETE FROM drafts WHERE session_id = ?", (session_id,))
        await self._db.commit()

    async def get_all_drafts(self) -> dict[str, str]:
        assert self._db is not None, "SessionStore not started"

        drafts = {}
        async with self._db.execute("SELECT session_id, text FROM drafts") as cursor:
            async for row in cursor:
                drafts[row[0]] = row[1]
        return drafts

    # ─── Settings ─────────────────────────────────────────────────

    async def get_setting(self, key: str) -> str | None:
        assert self._db is not None, "SessionStore not started"

        async with self._db.execute(
            "SELECT value FROM settings WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
            return row[0] if row else None

    async def set_setting(self, key: str, value: str | None) -> None:
        """Set a setting. None removes it."""
        assert self._db is not None, "SessionStore not started"

        if value is None:
            await self._db.execute("DELETE FROM settings WHERE key = ?", (key,))
        else:
            await self._db.execute(
                "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                (key, value),
            )
        await self._db.commit()

    # ─── Helpers ──────────────────────────────────────────────────

    async def _upsert_session(self, session: Session) -> None:
        assert self._db is not None, "SessionStore not started"

        await self._db.execute(
            """
            INSERT INTO sessions
                (session_id, workspace_id, name, is_flagged, is_unread, labels,
                 todo_state, working_directory, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(session_id) DO UPDATE SET
                name = excluded.name,
                is_flagged = excluded.is_flagged,
                is_unread = excluded.is_unread,
                labels = excluded.labels,
                todo_state = excluded.todo_state,
                working_directory = excluded.working_directory,
                updated_at = excluded.updated_at
            """,
            (
                session.id,
                session.workspace_id,
                session.name,
                int(session.is_flagged),
                int(session.is_unread),
                json.dumps(session.labels),
                session.todo_state,
                session.working_directory,
                session.created_at,
                session.updated_at,
            ),
        )

    @staticmethod
    def _row_to_session(row: Any) -> Session:
        return Session(
            id=row[0],
            workspace_id=row[1],
            name=row[2],
            is_flagged=bool(row[3]),
            is_unread=bool(row[4]),
            labels=json.loads(row[5]) if row[5] else [],
            todo_state=row[6],
            working_directory=row[7],
            created_at=row[8],
            updated_at=row[9],
        )

"""Preferences file — a free-form markdown file the agent can read."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class PreferencesService:
    def __init__(self, path: Path):
        self.path = Path(path)

    def read_preferences(self) -> dict[str, Any]:
        try:
            content = self.path.read_text(encoding="utf-8")
            exists = True
        except FileNotFoundError:
            content = ""
            exists = False
        except OSError as e:
            logger.warning("Failed to read preferences %s: %s", self.path, e)
            content = ""
            exists = False
        return {"content": content, "exists": exists, "path": str(self.path)}

    def write_preferences(self, content: str) -> dict[str, Any]:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(content, encoding="utf-8")
        except OSError as e:
            logger.error("Failed to write preferences %s: %s", self.path, e)
            return {"success": False, "error": str(e)}
        return {"success": True}

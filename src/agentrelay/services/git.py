"""Git introspection for the session info panel."""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)

TIMEOUT = 10  # seconds


async def get_git_branch(path: str) -> str | None:
    """Current branch of the repository at `path`, or None."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "git",
            "rev-parse",
            "--abbrev-ref",
            "HEAD",
            cwd=path,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        logger.debug("git branch lookup failed for %s: %s", path, e)
        return None

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=TIMEOUT)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        logger.warning("git branch lookup timed out for %s", path)
        return None

    if proc.returncode != 0:
        return None
    branch = stdout.decode("utf-8", errors="replace").strip()
    return branch or None

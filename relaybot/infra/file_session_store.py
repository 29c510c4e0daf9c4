from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any

from relaybot.core.engine.ports import AsyncSessionStore
from relaybot.infra.logging_config import get_logger

logger = get_logger(__name__)


class FileSessionStore(AsyncSessionStore):
    """
    JSON-file session store: one file holding ``{session_id: state}``.

    Suitable for a single dispatching process. Writes go to a temp file and
    are swapped in with ``os.replace`` so a crash never leaves a torn file.
    """

    def __init__(self, path: str | Path = "sessions.json"):
        self.path = Path(path)
        self._lock = asyncio.Lock()
        if not self.path.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text("{}", encoding="utf-8")

    def _read(self) -> dict[str, Any]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        if not raw.strip():
            return {}
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError(f"Session file {self.path} does not contain a JSON object")
        return data

    def _write(self, sessions: dict[str, Any]) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=".sessions-", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(sessions, fh, indent=2, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except Exception:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def get(self, session_id: str) -> dict[str, Any]:
        async with self._lock:
            sessions = await asyncio.to_thread(self._read)
        state = sessions.get(session_id)
        return state if isinstance(state, dict) else {}

    async def set(self, session_id: str, state: dict[str, Any]) -> None:
        async with self._lock:
            sessions = await asyncio.to_thread(self._read)
            sessions[session_id] = state
            await asyncio.to_thread(self._write, sessions)

    async def clear(self, session_id: str) -> None:
        async with self._lock:
            sessions = await asyncio.to_thread(self._read)
            if sessions.pop(session_id, None) is not None:
                await asyncio.to_thread(self._write, sessions)

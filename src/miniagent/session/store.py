"""Session persistence — one pretty-printed JSON file per saved session."""

from __future__ import annotations

import json
import logging
import os
import re
from datetime import datetime, timezone
from pathlib import Path

import aiofiles
from pydantic import BaseModel, Field, ValidationError

from miniagent.context import ConversationStore
from miniagent.llm.message import Message

logger = logging.getLogger(__name__)

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")


class SessionError(Exception):
    """A session could not be saved or loaded."""


class SessionMessage(BaseModel):
    role: str
    content: str | None = ""


class SessionData(BaseModel):
    """On-disk session record."""

    id: str
    messages: list[SessionMessage] = Field(default_factory=list)
    created_at: str


def _now_rfc3339() -> str:
    return datetime.now(timezone.utc).isoformat()


class SessionManager:
    """Save and restore conversations under ``storage_dir``."""

    def __init__(self, storage_dir: str | Path) -> None:
        self.storage_dir = Path(storage_dir).expanduser()

    def _path(self, session_id: str) -> Path:
        if not _SESSION_ID_RE.match(session_id):
            raise SessionError(f"Invalid session name: {session_id!r}")
        return self.storage_dir / f"{session_id}.json"

    async def save(self, session_id: str, store: ConversationStore) -> Path:
        """Write the store's history, overwriting any earlier save."""
        path = self._path(session_id)
        data = SessionData(
            id=session_id,
            messages=[SessionMessage(**m.to_dict()) for m in store.snapshot()],
            created_at=_now_rfc3339(),
        )
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "w", encoding="utf-8") as f:
                await f.write(
                    json.dumps(data.model_dump(), indent=2, ensure_ascii=False)
                )
        except OSError as e:
            raise SessionError(f"Cannot save session {session_id}: {e}") from e

        logger.info("Saved session %s (%d messages)", session_id, len(data.messages))
        return path

    async def load(self, session_id: str, store: ConversationStore) -> int:
        """Replace the store's history with a saved session.

        Returns the number of messages loaded.
        """
        path = self._path(session_id)
        if not path.exists():
            raise SessionError(f"Session not found: {session_id}")

        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                raw = await f.read()
            data = SessionData.model_validate_json(raw)
            messages = [Message.from_dict(m.model_dump()) for m in data.messages]
        except OSError as e:
            raise SessionError(f"Cannot read session {session_id}: {e}") from e
        except (ValidationError, ValueError) as e:
            raise SessionError(f"Corrupt session {session_id}: {e}") from e

        store.load(messages)
        logger.info("Loaded session %s (%d messages)", session_id, len(messages))
        return len(messages)

    def list_sessions(self) -> list[str]:
        """Saved session ids, sorted."""
        if not self.storage_dir.is_dir():
            return []
        return sorted(
            name[: -len(".json")]
            for name in os.listdir(self.storage_dir)
            if name.endswith(".json")
        )

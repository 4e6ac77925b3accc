"""In-memory session registry and the key-value store that keeps a session's raw statement text."""
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Optional, Protocol

logger = logging.getLogger("store")

RAW_TEXT_KEY = "statementContent"
FILE_NAME_KEY = "fileName"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...


class InMemoryKeyValueStore:
    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value


class JsonFileKeyValueStore:
    """All keys in one JSON object on disk; written atomically on every change."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning("store: %s is not valid JSON (%s), starting empty", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return None if value is None else str(value)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False)
        os.replace(tmp_path, self.path)


sessions: dict[str, Any] = {}


def create_session_id() -> str:
    return str(uuid.uuid4())


def set_session(session_id: str, session: Any) -> None:
    sessions[session_id] = session


def get_session(session_id: str) -> Any | None:
    return sessions.get(session_id)

# site_cloner/persistence.py
"""
Key-value persistence used by the capture store to survive restarts.
"""
from __future__ import annotations

import asyncio
import json
import os
import re
from pathlib import Path
from typing import Any, Optional, Protocol

from site_cloner.errors import PersistenceError

__all__ = ["StateStorage", "JsonFileStateStorage"]

_KEY_RE = re.compile(r"[^A-Za-z0-9_.-]")


class StateStorage(Protocol):
    """Minimal async key-value store."""

    async def persist_state(self, key: str, value: Any) -> None: ...

    async def load_state(self, key: str) -> Optional[Any]: ...

    async def clear_state(self, key: str) -> None: ...


class JsonFileStateStorage:
    """One JSON document per key under *directory*, written atomically."""

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory).expanduser()

    def path_for(self, key: str) -> Path:
        return self.directory / f"{_KEY_RE.sub('_', key)}.json"

    async def persist_state(self, key: str, value: Any) -> None:
        await asyncio.to_thread(self._write, key, value)

    async def load_state(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._read, key)

    async def clear_state(self, key: str) -> None:
        await asyncio.to_thread(self._remove, key)

    def _write(self, key: str, value: Any) -> None:
        path = self.path_for(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(value, ensure_ascii=False)
            tmp.write_text(payload, encoding="utf-8")
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceError(f"Cannot save state {key!r} to {path}: {exc}") from exc

    def _read(self, key: str) -> Optional[Any]:
        path = self.path_for(key)
        if not path.is_file():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Cannot load state {key!r} from {path}: {exc}") from exc

    def _remove(self, key: str) -> None:
        try:
            self.path_for(key).unlink(missing_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot clear state {key!r}: {exc}") from exc

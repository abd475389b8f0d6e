"""Local device storage: a small JSON key/value file.

Values are re-read from disk on every access, so anything stored here is
advisory. Another process may have rewritten the file since we last looked.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional, Union

LOGGER = logging.getLogger(__name__)


class LocalStore:
    def __init__(self, path: Union[str, Path, None] = None):
        # path=None keeps everything in memory (tests, one-shot commands)
        self.path = Path(path) if path else None
        self._memory: dict[str, Any] = {}

    def _load(self) -> dict[str, Any]:
        if self.path is None:
            return dict(self._memory)
        if not self.path.exists():
            return {}
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            LOGGER.warning("local store %s unreadable (%s); starting empty", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        if self.path is None:
            self._memory = dict(data)
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(data, f, ensure_ascii=False, indent=2, default=str)
        os.replace(tmp, self.path)

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def remove(self, key: str) -> None:
        data = self._load()
        if data.pop(key, None) is not None:
            self._save(data)

    def keys(self) -> list[str]:
        return list(self._load().keys())

    def purge_prefix(self, prefix: str) -> int:
        """Delete every key starting with ``prefix``; returns how many went."""
        data = self._load()
        doomed = [k for k in data if k.startswith(prefix)]
        for k in doomed:
            del data[k]
        if doomed:
            self._save(data)
        return len(doomed)

"""Persistent key-value storage for per-course targets and the session token.

Backed by a single JSON object on disk inside the configured state directory.
Loading is defensive: a missing or corrupted file behaves like an empty store,
so a damaged state file never stops alerts from being planned.
"""

import json
import os
from pathlib import Path
from typing import Any

from src.attendance_alerts.logging import get_logger

logger = get_logger(__name__)

TARGET_KEY_PREFIX = "target:"


class JsonKeyValueStore:
    """String-keyed store persisted as one JSON document."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("store_unreadable", path=str(self.path), error=str(e))
            return {}
        if not isinstance(data, dict):
            logger.warning("store_unreadable", path=str(self.path), error="not an object")
            return {}
        return data

    def _save(self, data: dict[str, Any]) -> None:
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, self.path)

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._load()
        data[key] = value
        self._save(data)

    def delete(self, *keys: str) -> None:
        data = self._load()
        removed = [k for k in keys if data.pop(k, None) is not None]
        if removed:
            self._save(data)

    def keys(self) -> list[str]:
        return sorted(self._load())


class TargetStore:
    """Per-course attendance targets stored under `target:<courseId>`."""

    def __init__(self, store: JsonKeyValueStore, default_target: int = 75) -> None:
        self.store = store
        self.default_target = default_target

    @staticmethod
    def key(course_id: int) -> str:
        return f"{TARGET_KEY_PREFIX}{course_id}"

    def get_target(self, course_id: int) -> int:
        """Stored target for the course, or the default when absent or invalid."""
        raw = self.store.get(self.key(course_id))
        if raw is None:
            return self.default_target
        try:
            value = int(raw)
        except (TypeError, ValueError):
            logger.warning("target_invalid", course_id=course_id, raw=raw)
            return self.default_target
        if not 0 <= value <= 100:
            logger.warning("target_out_of_range", course_id=course_id, value=value)
            return self.default_target
        return value

    def set_target(self, course_id: int, target: int) -> None:
        """Persist an explicit user edit.

        Raises:
            ValueError: If target is not a whole percentage between 0 and 100.
        """
        if isinstance(target, bool) or not isinstance(target, int):
            raise ValueError(f"Target must be an integer percentage, got {target!r}")
        if not 0 <= target <= 100:
            raise ValueError(f"Target must be between 0 and 100, got {target}")
        self.store.set(self.key(course_id), target)
        logger.info("target_updated", course_id=course_id, target=target)

    def all_targets(self) -> dict[int, int]:
        out: dict[int, int] = {}
        for key in self.store.keys():
            if key.startswith(TARGET_KEY_PREFIX):
                suffix = key[len(TARGET_KEY_PREFIX):]
                if suffix.isdigit():
                    out[int(suffix)] = self.get_target(int(suffix))
        return out

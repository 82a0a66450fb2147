"""Persisted mirrors of the entitlement flag for cold starts and the widget."""
from __future__ import annotations

import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

LOCAL_MIRROR_KEY = "subscriptionStatus"
SHARED_MIRROR_KEY = "widget.isSubscribed"


class KeyValueStore(Protocol):
    """Protocol describing the small key-value stores used for mirrors and counters."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MirrorRecord(BaseModel):
    is_entitled: bool
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


class InMemoryKeyValueStore:
    """Simple in-memory store suitable for tests and local development."""

    def __init__(self) -> None:
        self._values: Dict[str, Any] = {}
        self._lock = Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()


class JsonFileKeyValueStore:
    """Key-value store backed by a single JSON document on disk.

    Writes go through a temporary file and ``os.replace`` so a reader in
    another process never observes a half-written document.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)
        self._lock = Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> Dict[str, Any]:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        if not raw.strip():
            return {}
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object in {self._path}")
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, sort_keys=True, default=str)
            os.replace(tmp_name, self._path)
        except Exception:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                data.pop(key)
                self._write(data)


class EntitlementMirror:
    """Stores the entitlement flag and its timestamp under a fixed key."""

    def __init__(self, store: KeyValueStore, key: str) -> None:
        self._store = store
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    def load(self) -> Optional[MirrorRecord]:
        raw = self._store.get(self._key)
        if raw is None:
            return None
        if isinstance(raw, bool):
            return MirrorRecord(is_entitled=raw)
        try:
            return MirrorRecord.model_validate(raw)
        except ValidationError:
            return None

    def save(self, record: MirrorRecord) -> None:
        self._store.set(self._key, record.model_dump(mode="json"))


def load_widget_entitlement(store: KeyValueStore, key: str = SHARED_MIRROR_KEY) -> bool:
    """Read the shared flag from an out-of-process consumer such as the widget."""

    record = EntitlementMirror(store, key).load()
    return bool(record and record.is_entitled)


__all__ = [
    "EntitlementMirror",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "LOCAL_MIRROR_KEY",
    "MirrorRecord",
    "SHARED_MIRROR_KEY",
    "load_widget_entitlement",
]

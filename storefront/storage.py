"""
Shared key-value storage visible to every execution context.

A ``SharedStorage`` backend plays the part of a browser origin's durable
storage; each ``StorageContext`` obtained from ``backend.context()`` plays a
tab. Writes made through one context are broadcast as ``StorageEvent`` to the
listeners of every *other* context on the same backend, never to the writer.

``FileStorage`` keeps the data in one JSON file so separate processes can
share it. Changes made by another process are only noticed by ``watch()``,
which polls the file and broadcasts the difference to all local contexts.
"""
import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .errors import QuotaExceededError, StorageError

logger = logging.getLogger(__name__)

DEFAULT_QUOTA_BYTES = 5 * 1024 * 1024


@dataclass(frozen=True)
class StorageEvent:
    key: str
    old_value: Optional[str]
    new_value: Optional[str]


StorageListener = Callable[[StorageEvent], None]


class SharedStorage:
    def __init__(self, quota_bytes: int = DEFAULT_QUOTA_BYTES):
        self.quota_bytes = quota_bytes
        self._contexts: List["StorageContext"] = []

    # backend primitives, overridden by subclasses
    def _read_all(self) -> Dict[str, str]:
        raise NotImplementedError

    def _write_all(self, data: Dict[str, str]) -> None:
        raise NotImplementedError

    # ---------------------------
    # Public API
    # ---------------------------
    def context(self) -> "StorageContext":
        ctx = StorageContext(self)
        self._contexts.append(ctx)
        return ctx

    def detach(self, ctx: "StorageContext") -> None:
        if ctx in self._contexts:
            self._contexts.remove(ctx)

    def keys(self) -> List[str]:
        return list(self._read_all().keys())

    def get_item(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def set_item(self, key: str, value: str, source: Optional["StorageContext"] = None) -> None:
        if not isinstance(value, str):
            value = str(value)
        data = self._read_all()
        old = data.get(key)
        data[key] = value
        size = _size_of(data)
        if size > self.quota_bytes:
            raise QuotaExceededError(key, size, self.quota_bytes)
        self._write_all(data)
        if old != value:
            self._broadcast(StorageEvent(key, old, value), source)

    def remove_item(self, key: str, source: Optional["StorageContext"] = None) -> None:
        data = self._read_all()
        if key not in data:
            return
        old = data.pop(key)
        self._write_all(data)
        self._broadcast(StorageEvent(key, old, None), source)

    def clear(self, source: Optional["StorageContext"] = None) -> None:
        for key in self.keys():
            self.remove_item(key, source)

    def _broadcast(self, event: StorageEvent, source: Optional["StorageContext"]) -> None:
        for ctx in list(self._contexts):
            if ctx is source:
                continue
            ctx._dispatch(event)


def _size_of(data: Dict[str, str]) -> int:
    return sum(len(k.encode("utf-8")) + len(v.encode("utf-8")) for k, v in data.items())


class MemoryStorage(SharedStorage):
    def __init__(self, quota_bytes: int = DEFAULT_QUOTA_BYTES):
        super().__init__(quota_bytes)
        self._data: Dict[str, str] = {}

    def _read_all(self) -> Dict[str, str]:
        return dict(self._data)

    def _write_all(self, data: Dict[str, str]) -> None:
        self._data = dict(data)


class FileStorage(SharedStorage):
    def __init__(self, path, quota_bytes: int = DEFAULT_QUOTA_BYTES):
        super().__init__(quota_bytes)
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._snapshot: Dict[str, str] = self._read_all()

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                text = f.read().strip()
        except OSError as e:
            raise StorageError(f"cannot read {self.path}: {e}") from e
        if text == "":
            return {}
        try:
            data = json.loads(text)
        except ValueError:
            logger.warning("Storage file %s is corrupt, treating it as empty", self.path)
            return {}
        if not isinstance(data, dict):
            logger.warning("Storage file %s does not hold an object, treating it as empty", self.path)
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _write_all(self, data: Dict[str, str]) -> None:
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".storage-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, ensure_ascii=False)
            os.replace(tmp, self.path)
        except OSError as e:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise StorageError(f"cannot write {self.path}: {e}") from e
        self._snapshot = dict(data)

    def set_item(self, key: str, value: str, source: Optional["StorageContext"] = None) -> None:
        # surface other processes' writes before ours replaces the snapshot
        self.poll()
        super().set_item(key, value, source)

    def remove_item(self, key: str, source: Optional["StorageContext"] = None) -> None:
        self.poll()
        super().remove_item(key, source)

    def poll(self) -> List[StorageEvent]:
        """Broadcast keys changed on disk since the last read or write of this instance."""
        current = self._read_all()
        events = []
        for key in set(self._snapshot) | set(current):
            old, new = self._snapshot.get(key), current.get(key)
            if old != new:
                events.append(StorageEvent(key, old, new))
        self._snapshot = current
        for event in events:
            self._broadcast(event, None)
        return events

    async def watch(self, interval: float = 0.25) -> None:
        while True:
            try:
                self.poll()
            except StorageError as e:
                logger.error("Storage watch failed: %s", e)
            await asyncio.sleep(interval)


class StorageContext:
    """One execution context's view of a shared backend."""

    def __init__(self, backend: SharedStorage):
        self.backend = backend
        self._listeners: List[StorageListener] = []

    def get_item(self, key: str) -> Optional[str]:
        return self.backend.get_item(key)

    def set_item(self, key: str, value: str) -> None:
        self.backend.set_item(key, value, source=self)

    def remove_item(self, key: str) -> None:
        self.backend.remove_item(key, source=self)

    def add_listener(self, listener: StorageListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StorageListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def close(self) -> None:
        self._listeners.clear()
        self.backend.detach(self)

    def _dispatch(self, event: StorageEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Error in storage listener for key %s", event.key)

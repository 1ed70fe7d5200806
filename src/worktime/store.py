"""Persistence collaborators holding the live snapshot."""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import timedelta
from pathlib import Path
from typing import Optional, Protocol

from .models import Snapshot

logger = logging.getLogger(__name__)


class SnapshotStore(Protocol):
    """The narrow interface the tracker uses to read and write the live dataset."""

    def get(self) -> Snapshot: ...

    def set(self, snapshot: Snapshot) -> None: ...

    def save(self) -> None: ...

    def save_immediate(self) -> None: ...


class MemorySnapshotStore:
    """Keeps the snapshot in memory and counts saves."""

    def __init__(self, snapshot: Optional[Snapshot] = None) -> None:
        self._snapshot = snapshot or Snapshot()
        self.set_calls = 0
        self.save_calls = 0
        self.immediate_saves = 0

    def get(self) -> Snapshot:
        return self._snapshot

    def set(self, snapshot: Snapshot) -> None:
        self._snapshot = snapshot
        self.set_calls += 1

    def save(self) -> None:
        self.save_calls += 1

    def save_immediate(self) -> None:
        self.immediate_saves += 1


class JsonSnapshotStore:
    """Stores the snapshot as one JSON document with debounced writes."""

    def __init__(self, path: Path, *, debounce: timedelta = timedelta(seconds=1)) -> None:
        self.path = Path(path)
        self.debounce = debounce
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._snapshot = self._load()

    def get(self) -> Snapshot:
        with self._lock:
            return self._snapshot

    def set(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._snapshot = snapshot

    def save(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self.debounce.total_seconds(), self._flush_debounced)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def save_immediate(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._write_locked()

    def _flush_debounced(self) -> None:
        with self._lock:
            self._timer = None
            try:
                self._write_locked()
            except OSError:
                logger.exception("Failed to save %s", self.path)

    def _write_locked(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_name(self.path.name + ".tmp")
        temp_path.write_text(
            json.dumps(self._snapshot.to_dict(), indent=2), encoding="utf-8"
        )
        os.replace(temp_path, self.path)
        logger.debug("Saved snapshot to %s", self.path)

    def _load(self) -> Snapshot:
        if not self.path.exists():
            logger.info("No snapshot at %s; starting empty.", self.path)
            return Snapshot()
        content = self.path.read_text(encoding="utf-8")
        if not content.strip():
            return Snapshot()
        raw = json.loads(content)
        if not isinstance(raw, dict):
            raise ValueError(f"{self.path} does not contain a JSON object")
        return Snapshot.from_dict(raw)

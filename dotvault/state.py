"""Checksum state: the last content hash agreed on by both sides."""

import json
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import filelock

from dotvault.errors import StateCorruptError
from dotvault.util import atomic_write, utc_now

logger = logging.getLogger(__name__)

STATE_VERSION = 1
LOCK_TIMEOUT = 10


class Direction(Enum):
    """Which way content moved when a baseline was recorded."""

    PUSHED = "pushed"
    PULLED = "pulled"


@dataclass(frozen=True)
class ChecksumRecord:
    """Baseline for one item."""

    item_name: str
    checksum: str
    last_synced_at: str
    direction: Direction

    def to_dict(self) -> dict[str, str]:
        return {
            "checksum": self.checksum,
            "last_synced_at": self.last_synced_at,
            "direction": self.direction.value,
        }

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "ChecksumRecord":
        return cls(
            item_name=name,
            checksum=data["checksum"],
            last_synced_at=data.get("last_synced_at", ""),
            direction=Direction(data.get("direction", Direction.PUSHED.value)),
        )


class ChecksumStore:
    """Persistent map of item name to baseline.

    Every mutation re-reads the file under a lock so that two invocations
    updating different items never lose each other's records.
    """

    def __init__(self, path: Path, lock_path: Path | None = None):
        """Initialize the store.

        Args:
            path: JSON state file
            lock_path: Lock file guarding read-modify-write (defaults to a
                sibling of ``path``)
        """
        self.path = path
        self.lock_path = lock_path or path.with_name(path.name + ".lock")
        self._thread_lock = threading.Lock()
        self._records: dict[str, ChecksumRecord] = {}
        self._loaded = False

    def exists(self) -> bool:
        return self.path.exists()

    def load(self, strict: bool = False) -> None:
        """Load baselines from disk.

        Args:
            strict: Raise on a corrupt file instead of treating it as empty

        Raises:
            StateCorruptError: If ``strict`` and the file cannot be parsed
        """
        try:
            document = self._read_document()
        except StateCorruptError:
            if strict:
                raise
            logger.warning(f"Ignoring unreadable state file {self.path}")
            document = {}

        self._records = self._parse_records(document, strict=strict)
        self._loaded = True

    def get_baseline(self, name: str) -> ChecksumRecord | None:
        """Get the baseline for an item, or None if it never synced."""
        if not self._loaded:
            self.load()
        return self._records.get(name)

    def records(self) -> dict[str, ChecksumRecord]:
        if not self._loaded:
            self.load()
        return dict(self._records)

    def set_baseline(self, name: str, checksum: str, direction: Direction) -> ChecksumRecord:
        """Record a successful push or pull.

        Args:
            name: Item name
            checksum: Hash of the content now on both sides
            direction: Which way the content moved

        Returns:
            The stored record
        """
        record = ChecksumRecord(
            item_name=name,
            checksum=checksum,
            last_synced_at=utc_now(),
            direction=direction,
        )

        def update(document: dict[str, Any]) -> None:
            document.setdefault("items", {})[name] = record.to_dict()

        self._mutate(update)
        logger.debug(f"Baseline for {name} set to {checksum} ({direction.value})")
        return record

    def invalidate(self, name: str) -> None:
        """Forget an item's baseline."""

        def update(document: dict[str, Any]) -> None:
            document.get("items", {}).pop(name, None)

        self._mutate(update)

    def mark_synced(self, kind: str) -> None:
        """Stamp ``last_<kind>`` (push, pull or sync) with the current time."""

        def update(document: dict[str, Any]) -> None:
            document[f"last_{kind}"] = utc_now()

        self._mutate(update)

    def last_synced(self, kind: str) -> str | None:
        """Timestamp written by ``mark_synced``."""
        try:
            document = self._read_document()
        except StateCorruptError:
            return None
        value = document.get(f"last_{kind}")
        return value if isinstance(value, str) else None

    def _mutate(self, update) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        with self._thread_lock:
            with filelock.FileLock(str(self.lock_path), timeout=LOCK_TIMEOUT):
                document = self._read_document()
                document["version"] = STATE_VERSION
                document.setdefault("items", {})
                update(document)

                atomic_write(
                    self.path,
                    json.dumps(document, indent=2, sort_keys=True) + "\n",
                    mode=0o600,
                )
                self._records = self._parse_records(document, strict=False)
                self._loaded = True

    def _read_document(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}

        # A writer may replace the file between our open and read; retry once
        for attempt in range(2):
            try:
                with open(self.path, encoding="utf-8") as f:
                    document = json.load(f)
                break
            except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
                if attempt == 1:
                    raise StateCorruptError(f"Cannot read state file {self.path}: {e}") from e
                if not self.path.exists():
                    return {}

        if not isinstance(document, dict):
            raise StateCorruptError(f"State file {self.path} is not a JSON object")
        return document

    def _parse_records(self, document: dict[str, Any], strict: bool) -> dict[str, ChecksumRecord]:
        items = document.get("items") or {}
        if not isinstance(items, dict):
            if strict:
                raise StateCorruptError(f"State file {self.path} has a malformed 'items' section")
            logger.warning(f"Ignoring malformed 'items' section in {self.path}")
            return {}

        records = {}
        for name, data in items.items():
            try:
                records[name] = ChecksumRecord.from_dict(name, data)
            except (KeyError, TypeError, ValueError) as e:
                if strict:
                    raise StateCorruptError(f"Bad state entry for {name}: {e}") from e
                logger.warning(f"Skipping bad state entry for {name}: {e}")
        return records

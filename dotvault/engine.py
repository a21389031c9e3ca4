"""Three-way sync decisions and the engine that carries them out.

Each item is compared on three hashes: the local content, the remote
content and the baseline recorded at the last successful sync. The
baseline tells which side moved, so a change is never mistaken for the
other side being stale.
"""

import logging
import shutil
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

from dotvault import keypair
from dotvault.backends import Backend
from dotvault.config import Settings
from dotvault.errors import (
    AuthError,
    BackendUnavailableError,
    ConflictError,
    DotvaultError,
    ItemIOError,
    NotFoundError,
    UsageError,
)
from dotvault.manifest import ItemKind, SyncItem, VaultLocation
from dotvault.state import ChecksumStore, Direction
from dotvault.util import atomic_write, content_digest, short_digest

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CONFLICT = 2

BACKUP_TIME_FORMAT = "%Y%m%d%H%M%S"


class Decision(Enum):
    SKIP = "skip"
    PUSH = "push"
    PULL = "pull"
    CONFLICT = "conflict"


class Outcome(Enum):
    """What actually happened to an item."""

    SKIPPED = "skipped"
    PUSHED = "pushed"
    PULLED = "pulled"
    CONFLICT = "conflict"
    ERROR = "error"
    PLANNED = "planned"


def decide(
    local: Optional[str], remote: Optional[str], baseline: Optional[str]
) -> tuple[Decision, str]:
    """Decide the sync direction from three hashes.

    Args:
        local: Hash of the local content, None if absent
        remote: Hash of the remote content, None if absent
        baseline: Hash recorded at the last successful sync, None if never

    Returns:
        Tuple of (decision, human-readable reason)
    """
    if local is None and remote is None:
        if baseline is None:
            return Decision.SKIP, "absent on both sides"
        return Decision.SKIP, "removed on both sides since last sync"

    if local is not None and local == remote:
        return Decision.SKIP, "in sync"

    if baseline is None:
        if remote is None:
            return Decision.PUSH, "new local item"
        if local is None:
            return Decision.PULL, "new remote item"
        return Decision.CONFLICT, "both sides differ and there is no sync history"

    if local is None:
        if remote == baseline:
            return Decision.PULL, "local file missing, restoring from vault"
        return Decision.CONFLICT, "local file removed while the vault changed"

    if remote is None:
        # Never delete remotely on our own initiative
        return Decision.PUSH, "remote item missing, re-creating from local"

    local_changed = local != baseline
    remote_changed = remote != baseline

    if local_changed and not remote_changed:
        return Decision.PUSH, "local changed since last sync"
    if remote_changed and not local_changed:
        return Decision.PULL, "vault changed since last sync"
    return Decision.CONFLICT, "both sides changed since last sync"


@dataclass
class ItemState:
    """Observed state of one item at evaluation time."""

    item: SyncItem
    local_hash: Optional[str]
    remote_hash: Optional[str]
    baseline_hash: Optional[str]
    decision: Decision
    reason: str
    local_content: Optional[str] = field(default=None, repr=False)
    remote_content: Optional[str] = field(default=None, repr=False)


@dataclass
class ItemResult:
    """Per-item entry in a report."""

    name: str
    outcome: Outcome
    reason: str = ""
    decision: Optional[Decision] = None
    local_hash: Optional[str] = None
    remote_hash: Optional[str] = None
    baseline_hash: Optional[str] = None
    vault_locked: bool = False

    def describe_hashes(self) -> str:
        return (
            f"local={short_digest(self.local_hash)} "
            f"vault={short_digest(self.remote_hash)} "
            f"base={short_digest(self.baseline_hash)}"
        )


@dataclass
class SyncReport:
    """Outcome of a multi-item run."""

    results: list[ItemResult] = field(default_factory=list)
    dry_run: bool = False

    def by_outcome(self, outcome: Outcome) -> list[ItemResult]:
        return [r for r in self.results if r.outcome == outcome]

    def counts(self) -> dict[Outcome, int]:
        counts = {outcome: 0 for outcome in Outcome}
        for result in self.results:
            counts[result.outcome] += 1
        return counts

    @property
    def vault_locked(self) -> bool:
        """True if any item failed because the vault needs unlocking."""
        return any(r.vault_locked for r in self.results)

    @property
    def exit_code(self) -> int:
        """1 if anything failed, 2 if conflicts remain, else 0."""
        if self.by_outcome(Outcome.ERROR):
            return EXIT_ERROR
        if self.by_outcome(Outcome.CONFLICT):
            return EXIT_CONFLICT
        return EXIT_OK


class KeyedLock:
    """One lock per key, created on demand."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            yield


def failed_result(item: SyncItem, error: DotvaultError) -> ItemResult:
    """Turn an item's error into a report entry."""
    if isinstance(error, AuthError):
        reason = f"vault locked: run 'dotvault unlock' ({error})"
    elif isinstance(error, BackendUnavailableError):
        reason = f"vault tool unavailable: {error}"
    else:
        reason = str(error)
    logger.error(f"{item.name}: {reason}")
    return ItemResult(
        item.name,
        Outcome.ERROR,
        reason=reason,
        vault_locked=isinstance(error, AuthError),
    )


def backup_item(item: SyncItem, backup_dir: Path) -> Optional[Path]:
    """Copy an item's current local file(s) into ``backup_dir/<item>/``.

    Key pairs get their ``.pub`` copied alongside the private key.

    Returns:
        Path of the backup, or None if there was nothing to back up

    Raises:
        ItemIOError: If the copy fails
    """
    source = item.local_path
    if not source.exists():
        return None

    stamp = datetime.now().strftime(BACKUP_TIME_FORMAT)
    target_dir = backup_dir / item.name
    target = target_dir / f"{source.name}.bak-{stamp}"

    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, target)
        if item.kind is ItemKind.SSH_KEY:
            public = keypair.public_key_path(source)
            if public.exists():
                shutil.copy2(public, target_dir / f"{public.name}.bak-{stamp}")
    except OSError as e:
        raise ItemIOError(f"{item.name}: backup of {source} failed: {e}") from e

    logger.info(f"Backed up {source} -> {target}")
    return target


def read_local_content(item: SyncItem) -> Optional[str]:
    """Read an item from disk, packing key pairs. None if absent."""
    try:
        if item.kind is ItemKind.SSH_KEY:
            return keypair.read_pair(item.local_path)
        if not item.local_path.exists():
            return None
        return item.local_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ItemIOError(f"{item.name}: cannot read {item.local_path}: {e}") from e


def item_digest(item: SyncItem, content: Optional[str]) -> Optional[str]:
    """Hash content in the form it takes on both sides.

    Key pairs are hashed in packed form so a remote entry written by another
    tool compares equal to the same keys on disk.
    """
    if content is None:
        return None
    if item.kind is ItemKind.SSH_KEY:
        private_key, public_key = keypair.unpack(content)
        if private_key:
            content = keypair.pack(private_key, public_key)
    return content_digest(content)


class SyncEngine:
    """Moves item content between the local disk and a backend."""

    def __init__(
        self,
        backend: Backend,
        store: ChecksumStore,
        settings: Settings | None = None,
        location: VaultLocation | None = None,
        backup_dir: Path | None = None,
    ):
        self.backend = backend
        self.store = store
        self.settings = settings or Settings()
        self.location = location
        # None disables backups before pulls
        self.backup_dir = backup_dir
        self.item_locks = KeyedLock()

    # Reading both sides

    def read_local(self, item: SyncItem) -> Optional[str]:
        """Local content, or None if the file is absent."""
        return read_local_content(item)

    def read_remote(self, item: SyncItem) -> Optional[str]:
        """Remote content, or None if the entry is absent. Auth errors propagate."""
        try:
            return self.backend.read(item.name, self.location)
        except NotFoundError:
            return None

    def evaluate(self, item: SyncItem) -> ItemState:
        """Hash both sides and decide what to do."""
        local_content = self.read_local(item)
        remote_content = self.read_remote(item)
        baseline = self.store.get_baseline(item.name)

        local_hash = item_digest(item, local_content)
        remote_hash = item_digest(item, remote_content)
        baseline_hash = baseline.checksum if baseline else None
        decision, reason = decide(local_hash, remote_hash, baseline_hash)

        logger.debug(
            f"{item.name}: local={short_digest(local_hash)} vault={short_digest(remote_hash)} "
            f"base={short_digest(baseline_hash)} -> {decision.value}"
        )
        return ItemState(
            item=item,
            local_hash=local_hash,
            remote_hash=remote_hash,
            baseline_hash=baseline_hash,
            decision=decision,
            reason=reason,
            local_content=local_content,
            remote_content=remote_content,
        )

    # Writing one side

    def push_item(self, item: SyncItem, content: str, expected_remote: Optional[str]) -> str:
        """Write local content to the backend and record the baseline.

        Args:
            item: Item being pushed
            content: Local content
            expected_remote: Remote hash the caller based its decision on

        Returns:
            Hash of the pushed content

        Raises:
            ConflictError: If the remote changed after it was read
        """
        current = item_digest(item, self.read_remote(item))
        if current != expected_remote:
            raise ConflictError(f"{item.name}: vault copy changed while syncing; run sync again")

        self.backend.write(item.name, content, self.location)
        digest = item_digest(item, content)
        self.store.set_baseline(item.name, digest, Direction.PUSHED)
        logger.info(f"Pushed {item.name}")
        return digest

    def pull_item(self, item: SyncItem, content: str) -> str:
        """Write remote content to disk and record the baseline.

        Items marked for backup have their existing file copied first; if
        that copy fails nothing is overwritten.

        Raises:
            ItemIOError: If the backup or the write fails
        """
        if item.backup and self.backup_dir is not None:
            backup_item(item, self.backup_dir)
        self.write_local(item, content)
        digest = item_digest(item, content)
        self.store.set_baseline(item.name, digest, Direction.PULLED)
        logger.info(f"Pulled {item.name} -> {item.local_path}")
        return digest

    def write_local(self, item: SyncItem, content: str) -> None:
        """Atomically replace the item's local file(s)."""
        try:
            if item.kind is ItemKind.SSH_KEY:
                private_key, public_key = keypair.unpack(content)
                if not private_key:
                    raise ItemIOError(f"{item.name}: vault entry holds no private key")
                atomic_write(item.local_path, private_key, mode=0o600)
                if public_key:
                    atomic_write(keypair.public_key_path(item.local_path), public_key, mode=0o644)
                return

            mode = 0o600
            if item.local_path.exists():
                mode = item.local_path.stat().st_mode & 0o777
            atomic_write(item.local_path, content, mode=mode)
        except OSError as e:
            raise ItemIOError(f"{item.name}: cannot write {item.local_path}: {e}") from e

    # Bulk sync

    def sync(
        self,
        items: list[SyncItem],
        dry_run: bool = False,
        force_local: bool = False,
        force_vault: bool = False,
        verbose: bool = False,
    ) -> SyncReport:
        """Bidirectional sync of the given items.

        Args:
            items: Items to process
            dry_run: Report decisions without changing anything
            force_local: Resolve conflicts in favor of local files
            force_vault: Resolve conflicts in favor of the vault
            verbose: Log each item's hashes

        Returns:
            Report with one result per item, in input order

        Raises:
            UsageError: If both force flags are given
            StateCorruptError: If the state file cannot be parsed
        """
        if force_local and force_vault:
            raise UsageError("--force-local and --force-vault are mutually exclusive")

        self.store.load(strict=True)
        report = SyncReport(dry_run=dry_run)

        def process(item: SyncItem) -> ItemResult:
            with self.item_locks.hold(item.name):
                return self._sync_one(item, dry_run, force_local, force_vault, verbose)

        workers = max(1, min(self.settings.workers, len(items) or 1))
        if workers == 1:
            report.results = [process(item) for item in items]
        else:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                report.results = list(pool.map(process, items))

        if not dry_run:
            self.store.mark_synced("sync")
        return report

    def _sync_one(
        self,
        item: SyncItem,
        dry_run: bool,
        force_local: bool,
        force_vault: bool,
        verbose: bool,
    ) -> ItemResult:
        try:
            state = self.evaluate(item)
        except DotvaultError as e:
            return failed_result(item, e)

        result = ItemResult(
            name=item.name,
            outcome=Outcome.SKIPPED,
            reason=state.reason,
            decision=state.decision,
            local_hash=state.local_hash,
            remote_hash=state.remote_hash,
            baseline_hash=state.baseline_hash,
        )
        if verbose:
            logger.info(f"{item.name}: {result.describe_hashes()} -> {state.decision.value}")

        decision = state.decision
        if decision is Decision.CONFLICT:
            if force_local:
                if state.local_content is None:
                    result.reason = "local removed; vault copy left untouched"
                    return result
                decision = Decision.PUSH
                result.reason = "conflict resolved with --force-local"
            elif force_vault:
                decision = Decision.PULL
                result.reason = "conflict resolved with --force-vault"
            else:
                result.outcome = Outcome.CONFLICT
                logger.warning(f"{item.name}: conflict ({state.reason})")
                return result

        if decision is Decision.SKIP:
            return result

        if dry_run:
            result.outcome = Outcome.PLANNED
            result.decision = decision
            return result

        try:
            if decision is Decision.PUSH:
                self.push_item(item, state.local_content, state.remote_hash)
                result.outcome = Outcome.PUSHED
            else:
                self.pull_item(item, state.remote_content)
                result.outcome = Outcome.PULLED
            result.decision = decision
        except ConflictError as e:
            result.outcome = Outcome.CONFLICT
            result.reason = str(e)
        except DotvaultError as e:
            failure = failed_result(item, e)
            result.outcome = Outcome.ERROR
            result.reason = failure.reason
            result.vault_locked = failure.vault_locked
        except OSError as e:
            logger.error(f"{item.name}: {e}")
            result.outcome = Outcome.ERROR
            result.reason = str(e)
        return result



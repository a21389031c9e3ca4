"""One-directional operations on top of the engine: push, pull, create, delete, check."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotvault.drift import DriftDetector
from dotvault.engine import (
    ItemResult,
    Outcome,
    SyncEngine,
    SyncReport,
    backup_item,
    failed_result,
    item_digest,
)
from dotvault.errors import (
    ConfirmationError,
    ConflictError,
    DotvaultError,
    DriftError,
    UsageError,
)
from dotvault.manifest import Manifest, SyncItem, is_protected_name
from dotvault.paths import PathResolver
from dotvault.state import Direction

logger = logging.getLogger(__name__)


@dataclass
class RequiredStatus:
    """Presence of one manifest item in the vault."""

    name: str
    required: bool
    present: bool
    error: Optional[str] = None


class VaultOperations:
    """Push, pull and delete with backups and confirmation gates."""

    def __init__(self, engine: SyncEngine, manifest: Manifest, paths: PathResolver):
        self.engine = engine
        self.manifest = manifest
        self.paths = paths
        if engine.backup_dir is None:
            engine.backup_dir = paths.backup_dir

    @property
    def store(self):
        return self.engine.store

    @property
    def backend(self):
        return self.engine.backend

    # Backups

    def backup(self, item: SyncItem) -> Optional[Path]:
        """Copy the current local file(s) into the backup directory.

        Returns:
            Path of the backup, or None if there was nothing to back up

        Raises:
            ItemIOError: If the copy fails
        """
        return backup_item(item, self.paths.backup_dir)

    # Pull

    def pull(
        self,
        items: list[SyncItem] | None = None,
        force: bool = False,
        dry_run: bool = False,
    ) -> SyncReport:
        """Restore items from the vault.

        Args:
            items: Items to pull (defaults to every syncable item)
            force: Overwrite local files even if they changed since last sync
            dry_run: Report what would happen without writing

        Returns:
            Per-item report

        Raises:
            DriftError: If local files changed and ``force`` is not set
        """
        items = items if items is not None else self.manifest.syncable()
        self.store.load(strict=True)

        if not force:
            drift = DriftDetector(self.manifest, self.store).check(items)
            if drift.changed:
                raise DriftError(drift.changed)

        report = SyncReport(dry_run=dry_run)
        for item in items:
            with self.engine.item_locks.hold(item.name):
                report.results.append(self._guard(item, self._pull_one, dry_run))

        if not dry_run:
            self.store.mark_synced("pull")
        return report

    def _pull_one(self, item: SyncItem, dry_run: bool) -> ItemResult:
        remote = self.engine.read_remote(item)
        if remote is None:
            if item.required:
                return ItemResult(item.name, Outcome.ERROR, reason="required item missing from vault")
            return ItemResult(item.name, Outcome.SKIPPED, reason="not in vault")

        remote_hash = item_digest(item, remote)
        local_hash = item_digest(item, self.engine.read_local(item))
        result = ItemResult(item.name, Outcome.SKIPPED, local_hash=local_hash, remote_hash=remote_hash)

        if local_hash == remote_hash:
            result.reason = "already up to date"
            if not dry_run:
                self._record_if_changed(item, remote_hash, Direction.PULLED)
            return result

        if dry_run:
            result.outcome = Outcome.PLANNED
            result.reason = "would restore from vault"
            return result

        self.engine.pull_item(item, remote)
        result.outcome = Outcome.PULLED
        result.reason = "restored from vault"
        return result

    # Push

    def push(
        self,
        items: list[SyncItem] | None = None,
        dry_run: bool = False,
        force: bool = False,
    ) -> SyncReport:
        """Upload local files to the vault.

        Args:
            items: Items to push (defaults to every syncable item)
            dry_run: Report what would happen without writing
            force: Overwrite vault entries that changed since last sync

        Returns:
            Per-item report
        """
        items = items if items is not None else self.manifest.syncable()
        self.store.load(strict=True)

        report = SyncReport(dry_run=dry_run)
        for item in items:
            with self.engine.item_locks.hold(item.name):
                report.results.append(self._guard(item, self._push_one, dry_run, force))

        if not dry_run:
            self.store.mark_synced("push")
        return report

    def _push_one(self, item: SyncItem, dry_run: bool, force: bool) -> ItemResult:
        local = self.engine.read_local(item)
        if local is None:
            return ItemResult(item.name, Outcome.SKIPPED, reason=f"no local file at {item.local_path}")

        local_hash = item_digest(item, local)
        remote_hash = item_digest(item, self.engine.read_remote(item))
        baseline = self.store.get_baseline(item.name)
        baseline_hash = baseline.checksum if baseline else None
        result = ItemResult(
            item.name,
            Outcome.SKIPPED,
            local_hash=local_hash,
            remote_hash=remote_hash,
            baseline_hash=baseline_hash,
        )

        if local_hash == remote_hash:
            result.reason = "identical to vault"
            if not dry_run:
                self._record_if_changed(item, local_hash, Direction.PUSHED)
            return result

        if not force and remote_hash is not None and remote_hash != baseline_hash:
            result.outcome = Outcome.CONFLICT
            result.reason = "vault changed since last sync (use --force to overwrite)"
            return result

        if dry_run:
            result.outcome = Outcome.PLANNED
            result.reason = "would update vault" if remote_hash else "would create in vault"
            return result

        self.engine.push_item(item, local, remote_hash)
        result.outcome = Outcome.PUSHED
        result.reason = "updated vault" if remote_hash else "created in vault"
        return result

    # Ad-hoc entries

    def create(self, name: str, content: str, force: bool = False, dry_run: bool = False) -> bool:
        """Store content under a vault entry name, outside the manifest.

        A dry run never contacts the vault.

        Returns:
            True if an existing entry was replaced

        Raises:
            UsageError: If the name is empty
            ConflictError: If the entry exists and ``force`` is not set
        """
        if not name.strip():
            raise UsageError("Item name must not be empty")
        if dry_run:
            logger.info(f"Would store {len(content)} bytes as {name}")
            return False

        with self.engine.item_locks.hold(name):
            exists = self.backend.exists(name, self.engine.location)
            if exists and not force:
                raise ConflictError(f"'{name}' already exists in the vault (use --force to overwrite)")
            self.backend.write(name, content, self.engine.location)

        logger.info(f"{'Updated' if exists else 'Created'} {name} in vault")
        return exists

    # Delete

    def delete(
        self,
        name: str,
        force: bool = False,
        confirmation: str | None = None,
        dry_run: bool = False,
    ) -> None:
        """Delete a vault entry.

        Protected items need both ``force`` and the item name typed back as
        ``confirmation``; other items need ``force``.

        Raises:
            ConfirmationError: If the gate is not satisfied; nothing is touched
            NotFoundError: If the entry does not exist
        """
        if self.is_protected(name):
            if not force or confirmation != name:
                raise ConfirmationError(
                    f"'{name}' is protected; deleting it requires --force and --confirm {name}"
                )
        elif not force:
            raise ConfirmationError(f"Deleting '{name}' requires --force")

        if dry_run:
            logger.info(f"Would delete {name}")
            return

        with self.engine.item_locks.hold(name):
            self.backend.delete(name, self.engine.location)
            self.store.invalidate(name)
        logger.info(f"Deleted {name} from vault")

    def is_protected(self, name: str) -> bool:
        item = self.manifest.get(name)
        return item.protected if item else is_protected_name(name)

    # Check

    def check_required(self) -> list[RequiredStatus]:
        """Report which manifest items exist in the vault."""
        statuses = []
        for item in self.manifest.items:
            try:
                present = self.backend.exists(item.name, self.engine.location)
                statuses.append(RequiredStatus(item.name, item.required, present))
            except DotvaultError as e:
                reason = failed_result(item, e).reason
                statuses.append(RequiredStatus(item.name, item.required, False, error=reason))
        return statuses

    # Helpers

    def _record_if_changed(self, item: SyncItem, digest: str, direction: Direction) -> None:
        baseline = self.store.get_baseline(item.name)
        if baseline is None or baseline.checksum != digest:
            self.store.set_baseline(item.name, digest, direction)

    def _guard(self, item: SyncItem, operation, *args) -> ItemResult:
        """Run one item's operation, turning its failure into a report entry."""
        try:
            return operation(item, *args)
        except ConflictError as e:
            return ItemResult(item.name, Outcome.CONFLICT, reason=str(e))
        except DotvaultError as e:
            return failed_result(item, e)

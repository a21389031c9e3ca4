"""Drift detection: which local files changed since their last sync."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from dotvault.backends import Backend
from dotvault.engine import item_digest, read_local_content
from dotvault.errors import ItemIOError, NotFoundError
from dotvault.manifest import Manifest, SyncItem, VaultLocation
from dotvault.state import ChecksumStore

logger = logging.getLogger(__name__)


@dataclass
class DriftReport:
    """Items grouped by how their local copy relates to the reference."""

    in_sync: list[str] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    untracked: list[str] = field(default_factory=list)
    unreadable: list[str] = field(default_factory=list)
    available: bool = True

    @property
    def has_drift(self) -> bool:
        return bool(self.changed or self.missing or self.unreadable)


def _local_digest(item: SyncItem) -> Optional[str]:
    return item_digest(item, read_local_content(item))


class DriftDetector:
    """Compares local files with the recorded baselines.

    Works entirely offline: only local files and the state file are read.
    """

    def __init__(self, manifest: Manifest, store: ChecksumStore):
        self.manifest = manifest
        self.store = store

    def check(self, items: list[SyncItem] | None = None) -> DriftReport:
        """Run the quick drift check.

        Args:
            items: Items to check (defaults to every syncable item)

        Returns:
            Report; ``available`` is False when there is no sync history yet
        """
        if not self.store.exists():
            return DriftReport(available=False)

        self.store.load(strict=False)
        report = DriftReport()

        for item in items if items is not None else self.manifest.syncable():
            try:
                local = _local_digest(item)
            except ItemIOError as e:
                logger.warning(f"{e}; skipped in drift check")
                report.unreadable.append(item.name)
                continue
            baseline = self.store.get_baseline(item.name)

            if baseline is None:
                if local is not None:
                    report.untracked.append(item.name)
            elif local is None:
                report.missing.append(item.name)
            elif local == baseline.checksum:
                report.in_sync.append(item.name)
            else:
                report.changed.append(item.name)

        logger.debug(
            f"Drift: {len(report.changed)} changed, {len(report.missing)} missing, "
            f"{len(report.untracked)} untracked, {len(report.unreadable)} unreadable"
        )
        return report


def compare_remote(
    manifest: Manifest,
    backend: Backend,
    location: VaultLocation | None = None,
    items: list[SyncItem] | None = None,
) -> DriftReport:
    """Full drift check: compare local files with the current vault content.

    Items with no vault entry and no local file are left out; items only on
    one side are reported as missing (local) or untracked (vault).
    """
    report = DriftReport()

    for item in items if items is not None else manifest.syncable():
        try:
            local = _local_digest(item)
        except ItemIOError as e:
            logger.warning(f"{e}; skipped in drift check")
            report.unreadable.append(item.name)
            continue
        try:
            remote = item_digest(item, backend.read(item.name, location))
        except NotFoundError:
            remote = None

        if remote is None:
            if local is not None:
                report.untracked.append(item.name)
        elif local is None:
            report.missing.append(item.name)
        elif local == remote:
            report.in_sync.append(item.name)
        else:
            report.changed.append(item.name)

    return report

"""Item registry: the user-editable manifest of syncable items."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from dotvault.errors import ValidationError
from dotvault.paths import PathResolver, has_path_anchor

logger = logging.getLogger(__name__)

PROTECTED_PREFIXES = ("SSH-", "AWS-", "Git-")
PROTECTED_NAMES = ("Environment-Secrets",)


class ItemKind(Enum):
    """What a manifest item maps to on disk."""

    FILE = "file"
    SSH_KEY = "sshkey"


_KIND_ALIASES = {
    "file": ItemKind.FILE,
    "plainfile": ItemKind.FILE,
    "sshkey": ItemKind.SSH_KEY,
    "sshkeypair": ItemKind.SSH_KEY,
}


def is_protected_name(name: str) -> bool:
    """Check if a name follows the credential naming convention."""
    return name.startswith(PROTECTED_PREFIXES) or name in PROTECTED_NAMES


@dataclass(frozen=True)
class VaultLocation:
    """Namespace scoping remote lookups (folder, vault or directory)."""

    kind: str = "none"
    value: str = ""

    @property
    def is_default(self) -> bool:
        return self.kind == "none" or not self.value

    def __str__(self) -> str:
        return "(default)" if self.is_default else f"{self.kind}:{self.value}"


@dataclass(frozen=True)
class SyncItem:
    """One managed secret or config file."""

    name: str
    path: str
    local_path: Path
    kind: ItemKind = ItemKind.FILE
    required: bool = False
    sync: bool = True
    backup: bool = True
    protected: bool = False


@dataclass
class Manifest:
    """Validated set of items plus the optional location."""

    items: list[SyncItem]
    location: VaultLocation = field(default_factory=VaultLocation)
    source: Path | None = None
    warnings: list[str] = field(default_factory=list)

    def get(self, name: str) -> SyncItem | None:
        """Get item by name."""
        for item in self.items:
            if item.name == name:
                return item
        return None

    def names(self) -> list[str]:
        return [item.name for item in self.items]

    def syncable(self) -> list[SyncItem]:
        """Items included in bulk push/pull/sync."""
        return [item for item in self.items if item.sync]

    def required(self) -> list[SyncItem]:
        return [item for item in self.items if item.required]

    def select(self, names: list[str] | None, syncable_only: bool = True) -> list[SyncItem]:
        """Resolve item names given on the command line.

        Args:
            names: Requested names; empty or None selects every candidate
            syncable_only: Restrict candidates to ``sync: true`` items

        Returns:
            Items in the order requested

        Raises:
            ValidationError: If any name is unknown
        """
        candidates = self.syncable() if syncable_only else list(self.items)
        if not names:
            return candidates

        by_name = {item.name: item for item in candidates}
        unknown = [name for name in names if name not in by_name]
        if unknown:
            valid = ", ".join(sorted(by_name)) or "(none)"
            raise ValidationError(
                [f"{name}: unknown item (valid items: {valid})" for name in unknown],
                source=str(self.source) if self.source else None,
            )

        selected = []
        for name in names:
            if by_name[name] not in selected:
                selected.append(by_name[name])
        return selected


def load_manifest(path: Path, paths: PathResolver | None = None) -> Manifest:
    """Load and validate a manifest file.

    Args:
        path: YAML (or JSON) manifest file
        paths: Resolver used to expand item paths

    Returns:
        The validated manifest

    Raises:
        ValidationError: With every violation found; partial manifests are
            never returned
    """
    paths = paths or PathResolver()
    source = str(path)

    if not path.exists():
        raise ValidationError([f"manifest not found at {path}"], source=source)

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValidationError([f"not a well-formed document: {e}"], source=source)

    return parse_manifest(data, paths, source=path)


def parse_manifest(data: Any, paths: PathResolver, source: Path | None = None) -> Manifest:
    """Validate an already-parsed manifest document."""
    src = str(source) if source else None

    if not isinstance(data, dict):
        raise ValidationError(["top level must be a mapping"], source=src)

    violations: list[str] = []
    warnings: list[str] = []

    raw_items = _raw_items(data, violations)
    location = _parse_location(data.get("location"), violations)

    items = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_items):
        item = _parse_item(raw, index, paths, violations, warnings)
        if item is None:
            continue
        if item.name in seen:
            violations.append(f"{item.name}: name: duplicate item name")
            continue
        seen.add(item.name)
        items.append(item)

    if violations:
        raise ValidationError(violations, source=src)

    for warning in warnings:
        logger.warning(warning)

    return Manifest(items=items, location=location, source=source, warnings=warnings)


def _raw_items(data: dict[str, Any], violations: list[str]) -> list[dict[str, Any]]:
    # List form: items: [{name: ..., path: ...}]
    if "items" in data:
        raw = data["items"]
        if raw is None:
            return []
        if not isinstance(raw, list):
            violations.append("items: must be a list")
            return []
        return raw

    # Map form: vault_items: {Name: {path: ..., type: ...}}
    if "vault_items" in data:
        raw = data["vault_items"] or {}
        if not isinstance(raw, dict):
            violations.append("vault_items: must be a mapping")
            return []
        converted = []
        for name, fields in raw.items():
            if not isinstance(fields, dict):
                converted.append({"name": name, "__invalid__": True})
                continue
            entry = {"name": name, **fields}
            if "type" in entry and "kind" not in entry:
                entry["kind"] = entry.pop("type")
            converted.append(entry)
        return converted

    violations.append("items: missing (expected a list of item descriptors)")
    return []


def _parse_location(raw: Any, violations: list[str]) -> VaultLocation:
    if raw is None:
        return VaultLocation()
    if isinstance(raw, str):
        kind, sep, value = raw.partition(":")
        return VaultLocation(kind, value) if sep else VaultLocation("auto", raw)
    if not isinstance(raw, dict):
        violations.append("location: must be a mapping with 'type' and 'value'")
        return VaultLocation()

    kind = str(raw.get("type") or "none")
    value = str(raw.get("value") or "")
    if kind not in ("none", "auto", "folder", "prefix", "vault", "directory"):
        violations.append(f"location: type: unknown location type '{kind}'")
    return VaultLocation(kind, value)


def _parse_item(
    raw: Any,
    index: int,
    paths: PathResolver,
    violations: list[str],
    warnings: list[str],
) -> SyncItem | None:
    if not isinstance(raw, dict) or raw.get("__invalid__"):
        label = raw.get("name", f"item #{index + 1}") if isinstance(raw, dict) else f"item #{index + 1}"
        violations.append(f"{label}: invalid item format (expected a mapping)")
        return None

    name = raw.get("name")
    label = name if isinstance(name, str) and name else f"item #{index + 1}"
    ok = True

    if not isinstance(name, str) or not name.strip():
        violations.append(f"{label}: name: missing or empty")
        ok = False
    elif not name[0].isupper():
        warnings.append(f"{name}: name should start with an uppercase letter")

    path = raw.get("path")
    if not isinstance(path, str) or not path.strip():
        violations.append(f"{label}: path: missing or empty")
        ok = False
    elif not has_path_anchor(path):
        violations.append(
            f"{label}: path: '{path}' must start with ~/, /, $HOME/ or an environment variable"
        )
        ok = False

    raw_kind = raw.get("kind", "file")
    kind = _KIND_ALIASES.get(str(raw_kind).lower()) if raw_kind is not None else None
    if kind is None:
        violations.append(f"{label}: kind: '{raw_kind}' is not one of file, sshkey")
        ok = False

    flags = {}
    defaults = {
        "required": False,
        "sync": kind is not ItemKind.SSH_KEY,
        "backup": True,
        "protected": False,
    }
    for flag, default in defaults.items():
        value = raw.get(flag, default)
        if not isinstance(value, bool):
            violations.append(f"{label}: {flag}: must be true or false")
            ok = False
        flags[flag] = value

    if not ok:
        return None

    return SyncItem(
        name=name,
        path=path,
        local_path=paths.expand(path),
        kind=kind,
        required=flags["required"],
        sync=flags["sync"],
        backup=flags["backup"],
        protected=flags["protected"] or is_protected_name(name),
    )

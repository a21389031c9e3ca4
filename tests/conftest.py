"""Shared test fixtures for dotvault."""

from pathlib import Path
from typing import Callable, Optional

import pytest
import yaml

from dotvault.backends import Backend
from dotvault.config import Settings
from dotvault.engine import SyncEngine
from dotvault.errors import AuthError, BackendError, NotFoundError
from dotvault.manifest import Manifest, VaultLocation, load_manifest
from dotvault.operations import VaultOperations
from dotvault.paths import PathResolver
from dotvault.state import ChecksumStore


class FakeBackend(Backend):
    """In-memory backend. Instances sharing ``entries`` act as one vault."""

    name = "fake"
    location_kinds = ("folder",)

    def __init__(
        self,
        settings: Settings,
        paths: PathResolver,
        entries: Optional[dict[str, dict[str, str]]] = None,
    ):
        super().__init__(settings, paths)
        self.entries = entries if entries is not None else {}
        self.calls: list[tuple[str, str]] = []
        self.locked = False
        self.fail_writes: set[str] = set()
        self.before_write: Optional[Callable[[str], None]] = None

    def _scope(self, location: VaultLocation | None) -> dict[str, str]:
        location = self.resolve_location(location)
        return self.entries.setdefault(location.value, {})

    def _check(self) -> None:
        if self.locked:
            raise AuthError("vault is locked")

    def read(self, name, location=None):
        self.calls.append(("read", name))
        self._check()
        scope = self._scope(location)
        if name not in scope:
            raise NotFoundError(f"{name} not found")
        return scope[name]

    def write(self, name, content, location=None):
        self.calls.append(("write", name))
        self._check()
        if self.before_write is not None:
            self.before_write(name)
        if name in self.fail_writes:
            raise BackendError(f"write of {name} refused")
        self._scope(location)[name] = content

    def delete(self, name, location=None):
        self.calls.append(("delete", name))
        self._check()
        scope = self._scope(location)
        if name not in scope:
            raise NotFoundError(f"{name} not found")
        del scope[name]

    def list(self, location=None):
        self.calls.append(("list", ""))
        self._check()
        return sorted(self._scope(location))

    def is_unlocked(self):
        return not self.locked


MANIFEST = {
    "items": [
        {"name": "Git-Config", "path": "~/.gitconfig", "required": True},
        {"name": "Zshrc", "path": "~/.zshrc"},
        {"name": "Starship", "path": "~/.config/starship.toml"},
        {"name": "SSH-Personal", "path": "~/.ssh/id_ed25519", "kind": "sshkey"},
    ]
}


@pytest.fixture
def paths(tmp_path: Path) -> PathResolver:
    """Provide a path resolver rooted in a temporary directory."""
    resolver = PathResolver(root=tmp_path / "machine", env={})
    resolver.home.mkdir(parents=True)
    return resolver


@pytest.fixture
def settings(paths: PathResolver) -> Settings:
    return Settings(config_path=paths.config_file, password_store_dir=paths.home / ".password-store")


@pytest.fixture
def vault_entries() -> dict[str, dict[str, str]]:
    """Storage behind the fake vault, shared by every backend in a test."""
    return {}


@pytest.fixture
def backend(settings: Settings, paths: PathResolver, vault_entries) -> FakeBackend:
    return FakeBackend(settings, paths, vault_entries)


@pytest.fixture
def store(paths: PathResolver) -> ChecksumStore:
    return ChecksumStore(paths.state_file, paths.lock_file)


def write_manifest(paths: PathResolver, data: dict) -> Path:
    """Write a manifest document where the CLI looks for it."""
    paths.manifest_file.parent.mkdir(parents=True, exist_ok=True)
    paths.manifest_file.write_text(yaml.safe_dump(data, sort_keys=False))
    return paths.manifest_file


@pytest.fixture
def manifest(paths: PathResolver) -> Manifest:
    return load_manifest(write_manifest(paths, MANIFEST), paths)


@pytest.fixture
def engine(
    backend: FakeBackend, store: ChecksumStore, settings: Settings, paths: PathResolver
) -> SyncEngine:
    return SyncEngine(backend, store, settings, backup_dir=paths.backup_dir)


@pytest.fixture
def ops(engine: SyncEngine, manifest: Manifest, paths: PathResolver) -> VaultOperations:
    return VaultOperations(engine, manifest, paths)


class Machine:
    """One workstation: its own home, state file and engine, sharing a vault."""

    def __init__(self, root: Path, vault_entries: dict[str, dict[str, str]]):
        self.paths = PathResolver(root=root, env={})
        self.paths.home.mkdir(parents=True)
        self.settings = Settings(config_path=self.paths.config_file)
        self.backend = FakeBackend(self.settings, self.paths, vault_entries)
        self.store = ChecksumStore(self.paths.state_file, self.paths.lock_file)
        self.engine = SyncEngine(
            self.backend, self.store, self.settings, backup_dir=self.paths.backup_dir
        )
        self.manifest = load_manifest(write_manifest(self.paths, MANIFEST), self.paths)

    def item(self, name: str):
        return self.manifest.get(name)

    def write(self, name: str, content: str) -> None:
        path = self.item(name).local_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)

    def read(self, name: str) -> str:
        return self.item(name).local_path.read_text()

    def sync(self, *names: str, **kwargs):
        items = [self.item(n) for n in names] if names else self.manifest.syncable()
        return self.engine.sync(items, **kwargs)


@pytest.fixture
def make_machine(tmp_path: Path, vault_entries):
    """Factory for machines sharing one vault."""

    def factory(name: str) -> Machine:
        return Machine(tmp_path / name, vault_entries)

    return factory

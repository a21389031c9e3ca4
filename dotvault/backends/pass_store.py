"""pass backend: gpg-encrypted files under the password store."""

import logging
from pathlib import Path

from dotvault.backends.base import CliBackend
from dotvault.errors import NotFoundError
from dotvault.manifest import VaultLocation

logger = logging.getLogger(__name__)


class PassBackend(CliBackend):
    """Entries at ``<store>/<prefix>/<name>.gpg``.

    There is no session: gpg-agent handles the passphrase.
    """

    name = "pass"
    tool = "pass"
    location_kinds = ("directory",)
    auth_markers = (
        "decryption failed",
        "no secret key",
        "inappropriate ioctl for device",
        "gpg-agent",
    )
    not_found_markers = ("is not in the password store",)

    @property
    def store_dir(self) -> Path:
        return self.settings.password_store_dir or self.paths.home / ".password-store"

    def _prefix(self, location: VaultLocation | None) -> str:
        location = self.resolve_location(location)
        prefix = location.value if location.kind == "directory" else self.settings.pass_prefix
        return prefix.strip("/")

    def _entry(self, name: str, location: VaultLocation | None) -> str:
        prefix = self._prefix(location)
        return f"{prefix}/{name}" if prefix else name

    def _entry_file(self, entry: str) -> Path:
        return self.store_dir / f"{entry}.gpg"

    def _pass(self, args: list[str], input: str | None = None) -> str:
        return self._run(args, input=input, env=self._child_env(PASSWORD_STORE_DIR=str(self.store_dir)))

    def exists(self, name: str, location: VaultLocation | None = None) -> bool:
        return self._entry_file(self._entry(name, location)).exists()

    def read(self, name: str, location: VaultLocation | None = None) -> str:
        entry = self._entry(name, location)
        if not self._entry_file(entry).exists():
            raise NotFoundError(f"{entry} is not in the password store")
        return self._pass(["show", entry])

    def write(self, name: str, content: str, location: VaultLocation | None = None) -> None:
        entry = self._entry(name, location)
        self._pass(["insert", "--multiline", "--force", entry], input=content)
        logger.debug(f"Stored {entry} in the password store")

    def delete(self, name: str, location: VaultLocation | None = None) -> None:
        entry = self._entry(name, location)
        if not self._entry_file(entry).exists():
            raise NotFoundError(f"{entry} is not in the password store")
        self._pass(["rm", "--force", entry])

    def list(self, location: VaultLocation | None = None) -> list[str]:
        base = self.store_dir / self._prefix(location)
        if not base.is_dir():
            return []
        return sorted(
            path.relative_to(base).with_suffix("").as_posix()
            for path in base.rglob("*.gpg")
        )

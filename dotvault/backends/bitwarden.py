"""Bitwarden backend (``bw`` CLI).

Items are stored as secure notes whose notes field holds the content.
"""

import base64
import json
import logging
import threading
from typing import Any

from dotvault.backends.base import CliBackend
from dotvault.errors import AuthError, BackendError, NotFoundError
from dotvault.manifest import VaultLocation

logger = logging.getLogger(__name__)

SECURE_NOTE_TYPE = 2


def encode_payload(data: dict[str, Any]) -> str:
    """Encode a JSON payload the way ``bw encode`` does."""
    return base64.b64encode(json.dumps(data).encode("utf-8")).decode("ascii")


class BitwardenBackend(CliBackend):
    """Bitwarden vault accessed through ``bw``."""

    name = "bitwarden"
    tool = "bw"
    location_kinds = ("folder", "prefix")
    auth_markers = (
        "vault is locked",
        "you are not logged in",
        "not logged in",
        "session key is invalid",
        "invalid master password",
    )

    def __init__(self, settings, paths):
        super().__init__(settings, paths)
        self._session: str | None = None
        self._session_lock = threading.Lock()
        self._folder_ids: dict[str, str] = {}

    # Session handling

    def _session_token(self) -> str:
        """Get a validated session, trying settings then the cached file."""
        with self._session_lock:
            if self._session:
                return self._session

            for candidate in (self.settings.bw_session, self._read_cached_session()):
                if candidate and self._check_session(candidate):
                    self._session = candidate
                    return candidate

        raise AuthError("Bitwarden vault is locked. Run 'dotvault unlock' first.")

    def _check_session(self, session: str) -> bool:
        return self._succeeds(["unlock", "--check", "--session", session])

    def _bw(self, args: list[str], input: str | None = None) -> str:
        return self._run([*args, "--session", self._session_token(), "--nointeraction"], input=input)

    def is_unlocked(self) -> bool:
        try:
            self._session_token()
        except AuthError:
            return False
        return True

    def unlock(self, password: str | None = None) -> str:
        """Unlock the vault and cache the session.

        Args:
            password: Master password; only needed when no valid session exists

        Returns:
            The session key
        """
        if self.is_unlocked():
            return self._session

        if not password:
            raise AuthError("Bitwarden master password required to unlock")

        token = self._run(
            ["unlock", "--raw", "--passwordenv", "DOTVAULT_BW_PASSWORD"],
            env=self._child_env(DOTVAULT_BW_PASSWORD=password),
        ).strip()
        if not token:
            raise AuthError("bw unlock returned no session key")

        self._cache_session(token)
        with self._session_lock:
            self._session = token

        # Pull the latest vault contents from the server
        self._bw(["sync"])
        logger.info("Bitwarden vault unlocked")
        return token

    def lock(self) -> None:
        self._clear_cached_session()
        with self._session_lock:
            self._session = None
        try:
            self._run(["lock"])
        except BackendError as e:
            logger.warning(f"bw lock failed: {e}")

    # Item access

    def _remote_name(self, name: str, location: VaultLocation) -> str:
        if location.kind == "prefix":
            return f"{location.value}{name}"
        return name

    def _folder_id(self, folder: str, create: bool = False) -> str | None:
        if folder in self._folder_ids:
            return self._folder_ids[folder]

        folders = json.loads(self._bw(["list", "folders", "--search", folder]) or "[]")
        for entry in folders:
            if entry.get("name") == folder:
                self._folder_ids[folder] = entry["id"]
                return entry["id"]

        if not create:
            return None

        created = json.loads(self._bw(["create", "folder", encode_payload({"name": folder})]))
        logger.info(f"Created Bitwarden folder '{folder}'")
        self._folder_ids[folder] = created["id"]
        return created["id"]

    def _find(self, name: str, location: VaultLocation) -> dict[str, Any] | None:
        remote_name = self._remote_name(name, location)
        args = ["list", "items", "--search", remote_name]
        if location.kind == "folder":
            folder_id = self._folder_id(location.value)
            if folder_id is None:
                return None
            args += ["--folderid", folder_id]

        items = json.loads(self._bw(args) or "[]")
        matches = [item for item in items if item.get("name") == remote_name]
        if len(matches) > 1:
            raise BackendError(
                f"More than one Bitwarden item is named '{remote_name}'; rename or remove the duplicates"
            )
        return matches[0] if matches else None

    def exists(self, name: str, location: VaultLocation | None = None) -> bool:
        return self._find(name, self.resolve_location(location)) is not None

    def read(self, name: str, location: VaultLocation | None = None) -> str:
        item = self._find(name, self.resolve_location(location))
        if item is None:
            raise NotFoundError(f"Bitwarden item '{name}' not found")
        return item.get("notes") or ""

    def write(self, name: str, content: str, location: VaultLocation | None = None) -> None:
        location = self.resolve_location(location)
        existing = self._find(name, location)

        if existing is not None:
            existing["notes"] = content
            self._bw(["edit", "item", existing["id"], encode_payload(existing)])
            logger.debug(f"Updated Bitwarden item {name}")
            return

        folder_id = None
        if location.kind == "folder":
            folder_id = self._folder_id(location.value, create=True)

        item = {
            "type": SECURE_NOTE_TYPE,
            "secureNote": {"type": 0},
            "name": self._remote_name(name, location),
            "notes": content,
            "folderId": folder_id,
        }
        self._bw(["create", "item", encode_payload(item)])
        logger.debug(f"Created Bitwarden item {name}")

    def delete(self, name: str, location: VaultLocation | None = None) -> None:
        item = self._find(name, self.resolve_location(location))
        if item is None:
            raise NotFoundError(f"Bitwarden item '{name}' not found")
        self._bw(["delete", "item", item["id"]])

    def list(self, location: VaultLocation | None = None) -> list[str]:
        location = self.resolve_location(location)
        args = ["list", "items"]
        if location.kind == "folder":
            folder_id = self._folder_id(location.value)
            if folder_id is None:
                return []
            args += ["--folderid", folder_id]

        names = [item.get("name", "") for item in json.loads(self._bw(args) or "[]")]
        if location.kind == "prefix":
            names = [n[len(location.value):] for n in names if n.startswith(location.value)]
        return sorted(n for n in names if n)

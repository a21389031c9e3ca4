"""1Password backend (``op`` CLI v2)."""

import json
import logging
import threading

from dotvault.backends.base import CliBackend
from dotvault.errors import AuthError, NotFoundError
from dotvault.manifest import VaultLocation

logger = logging.getLogger(__name__)

NOTES_FIELD = "notesPlain"


class OnePasswordBackend(CliBackend):
    """Secure notes in a 1Password vault."""

    name = "1password"
    tool = "op"
    location_kinds = ("vault",)
    auth_markers = (
        "not currently signed in",
        "no accounts configured",
        "authentication required",
        "session expired",
        "invalid session",
        "account is not signed in",
    )
    not_found_markers = ("isn't an item", "not found", "no item found")

    def __init__(self, settings, paths):
        super().__init__(settings, paths)
        self._token: str | None = None
        self._token_lock = threading.Lock()

    def _session_token(self) -> str:
        """Service account token, then cached session, then desktop integration."""
        with self._token_lock:
            if self._token is None:
                self._token = (
                    self.settings.op_service_account_token or self._read_cached_session()
                )
            return self._token

    def _op(self, args: list[str]) -> str:
        token = self._session_token()
        if self.settings.op_service_account_token:
            return self._run(args, env=self._child_env(OP_SERVICE_ACCOUNT_TOKEN=token))
        if token:
            return self._run([*args, "--session", token])
        return self._run(args)

    def _vault(self, location: VaultLocation | None) -> str:
        location = self.resolve_location(location)
        return location.value if location.kind == "vault" else self.settings.onepassword_vault

    def is_unlocked(self) -> bool:
        try:
            self._op(["whoami", "--format", "json"])
        except AuthError:
            return False
        return True

    def unlock(self, password: str | None = None) -> str:
        if self.settings.op_service_account_token or self.is_unlocked():
            return self._session_token()

        if not password:
            raise AuthError("1Password account password required to sign in")

        token = self._run(["signin", "--raw"], input=password + "\n").strip()
        if token:
            self._cache_session(token)
        with self._token_lock:
            self._token = token
        logger.info("Signed in to 1Password")
        return token

    def lock(self) -> None:
        self._clear_cached_session()
        with self._token_lock:
            self._token = None

    def read(self, name: str, location: VaultLocation | None = None) -> str:
        output = self._op(["item", "get", name, "--vault", self._vault(location), "--format", "json"])
        item = json.loads(output)
        for field in item.get("fields", []):
            if field.get("id") == NOTES_FIELD or field.get("purpose") == "NOTES":
                return field.get("value") or ""
        return ""

    def exists(self, name: str, location: VaultLocation | None = None) -> bool:
        return name in self.list(location)

    def write(self, name: str, content: str, location: VaultLocation | None = None) -> None:
        vault = self._vault(location)
        assignment = f"{NOTES_FIELD}={content}"

        if self.exists(name, location):
            self._op(["item", "edit", name, "--vault", vault, assignment])
            logger.debug(f"Updated 1Password item {name}")
        else:
            self._op([
                "item", "create",
                "--category", "Secure Note",
                "--title", name,
                "--vault", vault,
                assignment,
            ])
            logger.debug(f"Created 1Password item {name}")

    def delete(self, name: str, location: VaultLocation | None = None) -> None:
        vault = self._vault(location)
        if not self.exists(name, location):
            raise NotFoundError(f"1Password item '{name}' not found in vault '{vault}'")
        self._op(["item", "delete", name, "--vault", vault])

    def list(self, location: VaultLocation | None = None) -> list[str]:
        output = self._op(["item", "list", "--vault", self._vault(location), "--format", "json"])
        return sorted(item.get("title", "") for item in json.loads(output or "[]") if item.get("title"))

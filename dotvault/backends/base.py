"""Backend interface and the shared command-line runner."""

import logging
import os
import shutil
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from dotvault.config import Settings
from dotvault.errors import (
    AuthError,
    BackendError,
    BackendTimeoutError,
    BackendUnavailableError,
    NotFoundError,
)
from dotvault.manifest import VaultLocation
from dotvault.paths import PathResolver
from dotvault.util import atomic_write

logger = logging.getLogger(__name__)


class Backend(ABC):
    """A secret store holding one text entry per item name."""

    name = "backend"
    location_kinds: tuple[str, ...] = ()

    def __init__(self, settings: Settings, paths: PathResolver):
        self.settings = settings
        self.paths = paths
        self.default_location = VaultLocation(settings.location_type, settings.location_value)

    @abstractmethod
    def read(self, name: str, location: VaultLocation | None = None) -> str:
        """Read an entry's content.

        Raises:
            NotFoundError: If no entry has this name
            AuthError: If the store is locked
        """

    @abstractmethod
    def write(self, name: str, content: str, location: VaultLocation | None = None) -> None:
        """Create the entry or replace its content."""

    @abstractmethod
    def delete(self, name: str, location: VaultLocation | None = None) -> None:
        """Remove an entry.

        Raises:
            NotFoundError: If no entry has this name
        """

    @abstractmethod
    def list(self, location: VaultLocation | None = None) -> list[str]:
        """Sorted entry names within the location."""

    def exists(self, name: str, location: VaultLocation | None = None) -> bool:
        """Check whether an entry exists. Auth failures propagate."""
        try:
            self.read(name, location)
        except NotFoundError:
            return False
        return True

    def is_available(self) -> bool:
        """Check if the backend can be used on this machine."""
        return True

    def is_unlocked(self) -> bool:
        """Check if a usable session exists."""
        return True

    def unlock(self, password: str | None = None) -> str:
        """Acquire and cache a session. Returns the session token, if any."""
        return ""

    def lock(self) -> None:
        """Forget the cached session."""

    def resolve_location(self, location: VaultLocation | None) -> VaultLocation:
        """Pick the effective location, falling back to the default scope.

        ``auto`` maps to the backend's native grouping; a kind the backend
        does not understand is logged and ignored.
        """
        location = location if location is not None else self.default_location
        if location.is_default:
            return VaultLocation()
        if location.kind == "auto" and self.location_kinds:
            return VaultLocation(self.location_kinds[0], location.value)
        if location.kind not in self.location_kinds:
            logger.warning(
                f"{self.name} does not support location type '{location.kind}', "
                f"using its default scope"
            )
            return VaultLocation()
        return location


class CliBackend(Backend):
    """Backend driven through the store's own command-line tool.

    Subclasses list the phrases their tool prints for locked sessions and
    missing entries; everything else becomes a ``BackendError``.
    """

    tool = ""
    auth_markers: tuple[str, ...] = ()
    not_found_markers: tuple[str, ...] = ("not found",)

    def __init__(self, settings: Settings, paths: PathResolver):
        super().__init__(settings, paths)
        self.timeout = settings.timeout

    def is_available(self) -> bool:
        return shutil.which(self.tool) is not None

    def _run(
        self,
        args: list[str],
        input: str | None = None,
        env: dict[str, str] | None = None,
    ) -> str:
        """Run the tool and return its stdout.

        Raises:
            BackendUnavailableError: If the tool is not installed
            BackendTimeoutError: If the call exceeds the timeout
            AuthError: If the tool reports a locked session
            NotFoundError: If the tool reports a missing entry
            BackendError: For any other failure
        """
        command = [self.tool, *args]
        logger.debug(f"Running {self.tool} {args[0] if args else ''}")

        try:
            result = subprocess.run(
                command,
                input=input,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
            )
        except FileNotFoundError:
            raise BackendUnavailableError(f"'{self.tool}' is not installed or not on PATH")
        except subprocess.TimeoutExpired:
            raise BackendTimeoutError(
                f"{self.tool} {' '.join(args[:2])} timed out after {self.timeout:g}s"
            )

        if result.returncode != 0:
            self._raise_for_failure(args, (result.stderr or "") + (result.stdout or ""))
        return result.stdout

    def _succeeds(self, args: list[str], env: dict[str, str] | None = None) -> bool:
        """Run the tool and report only whether it exited cleanly."""
        try:
            self._run(args, env=env)
        except (AuthError, NotFoundError, BackendError):
            return False
        return True

    def _raise_for_failure(self, args: list[str], output: str) -> None:
        message = output.strip() or "no output"
        lowered = message.lower()

        # Auth first: a locked vault must never read as a missing item
        if any(marker in lowered for marker in self.auth_markers):
            raise AuthError(f"{self.name} is locked or not signed in: {message}")
        if any(marker in lowered for marker in self.not_found_markers):
            raise NotFoundError(message)
        raise BackendError(f"{self.tool} {' '.join(args[:2])} failed: {message}")

    # Session cache shared by the token-based stores

    def _read_cached_session(self) -> str:
        session_file = self.paths.session_file
        if session_file.exists():
            return session_file.read_text(encoding="utf-8").strip()
        return ""

    def _cache_session(self, token: str) -> None:
        atomic_write(self.paths.session_file, token + "\n", mode=0o600)

    def _clear_cached_session(self) -> None:
        session_file: Path = self.paths.session_file
        if session_file.exists():
            session_file.unlink()
            logger.debug(f"Removed cached session {session_file}")

    def _child_env(self, **overrides: str) -> dict[str, str]:
        env = dict(os.environ)
        env.update(overrides)
        return env

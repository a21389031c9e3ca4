"""Secret store backends."""

from enum import Enum

from dotvault.backends.base import Backend, CliBackend
from dotvault.backends.bitwarden import BitwardenBackend
from dotvault.backends.onepassword import OnePasswordBackend
from dotvault.backends.pass_store import PassBackend
from dotvault.config import Settings
from dotvault.errors import UsageError
from dotvault.paths import PathResolver


class BackendKind(Enum):
    """Supported secret stores."""

    BITWARDEN = "bitwarden"
    ONEPASSWORD = "1password"
    PASS = "pass"


BACKENDS: dict[BackendKind, type[Backend]] = {
    BackendKind.BITWARDEN: BitwardenBackend,
    BackendKind.ONEPASSWORD: OnePasswordBackend,
    BackendKind.PASS: PassBackend,
}


def parse_backend_kind(value: str) -> BackendKind:
    """Parse a backend name, raising ``UsageError`` for unknown ones."""
    try:
        return BackendKind(value.lower())
    except ValueError:
        valid = ", ".join(kind.value for kind in BackendKind)
        raise UsageError(f"Unknown backend '{value}' (valid: {valid})")


def create_backend(settings: Settings, paths: PathResolver) -> Backend:
    """Create the backend selected in settings."""
    kind = parse_backend_kind(settings.backend)
    return BACKENDS[kind](settings, paths)


__all__ = [
    "Backend",
    "BackendKind",
    "BitwardenBackend",
    "CliBackend",
    "OnePasswordBackend",
    "PassBackend",
    "create_backend",
    "parse_backend_kind",
]

"""Error types for dotvault.

Callers branch on the concrete class: an ``AuthError`` means the vault is
locked and must never be read as "the item does not exist".
"""


class DotvaultError(Exception):
    """Base class for all dotvault errors."""


class ValidationError(DotvaultError):
    """Manifest is malformed. Carries every violation found, not just the first."""

    def __init__(self, violations: list[str], source: str | None = None):
        self.violations = list(violations)
        self.source = source
        header = f"Invalid manifest {source}" if source else "Invalid manifest"
        super().__init__(f"{header}: " + "; ".join(self.violations))


class UsageError(DotvaultError):
    """Invalid combination of options."""


class BackendError(DotvaultError):
    """A backend call failed for a reason not covered by a narrower type."""


class BackendUnavailableError(BackendError):
    """The backend's command-line tool is missing or unusable."""


class BackendTimeoutError(BackendError):
    """A backend call did not finish within the configured timeout."""


class AuthError(BackendError):
    """Backend is locked or the session is not authenticated."""


class NotFoundError(DotvaultError):
    """Local file or remote item does not exist."""


class ConflictError(DotvaultError):
    """Both sides changed, or the remote moved underneath a write."""


class ItemIOError(DotvaultError):
    """Local disk read, write or backup failed for an item."""


class StateCorruptError(DotvaultError):
    """Checksum state file exists but cannot be parsed."""


class ConfirmationError(DotvaultError):
    """A destructive operation was not confirmed."""


class DriftError(DotvaultError):
    """Local files changed since their last sync."""

    def __init__(self, items: list[str]):
        self.items = list(items)
        super().__init__(
            "Local files changed since last sync: " + ", ".join(self.items)
        )

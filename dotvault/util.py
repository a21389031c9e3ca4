"""Utility functions for dotvault."""

import hashlib
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from rich.logging import RichHandler


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure logging for the application."""
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=verbose)],
        force=True,
    )


def content_digest(content: str | bytes) -> str:
    """Return ``sha256:<hex>`` for text or bytes."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return f"sha256:{hashlib.sha256(content).hexdigest()}"


def short_digest(digest: str | None) -> str:
    """Shorten a digest for display."""
    if not digest:
        return "<missing>"
    _, _, hex_digest = digest.rpartition(":")
    return hex_digest[:16] + "..." if len(hex_digest) > 16 else hex_digest


def utc_now() -> str:
    """Current UTC time as ISO-8601 with a ``Z`` suffix."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def atomic_write(path: Path, content: str | bytes, mode: int | None = None) -> None:
    """Write file atomically using temp file and rename.

    Args:
        path: Target file path
        content: Content to write (bytes are written verbatim)
        mode: Permission bits for the new file, e.g. ``0o600``
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    # Unique per process so two writers never share a temp file
    temp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")

    try:
        if isinstance(content, bytes):
            temp_path.write_bytes(content)
        else:
            temp_path.write_text(content, encoding="utf-8")

        if mode is not None:
            os.chmod(temp_path, mode)

        # Atomic rename
        os.replace(temp_path, path)

    except BaseException:
        # Clean up temp file on error
        if temp_path.exists():
            temp_path.unlink()
        raise

"""dotvault - Sync dotfiles and secrets with a password manager vault."""

__version__ = "0.1.0"

from dotvault.config import Settings
from dotvault.engine import Decision, Outcome, SyncEngine, SyncReport, decide
from dotvault.manifest import Manifest, SyncItem, load_manifest
from dotvault.paths import PathResolver
from dotvault.state import ChecksumStore

__all__ = [
    "ChecksumStore",
    "Decision",
    "Manifest",
    "Outcome",
    "PathResolver",
    "Settings",
    "SyncEngine",
    "SyncItem",
    "SyncReport",
    "decide",
    "load_manifest",
]

"""Path resolution for dotvault.

Every file location the tool touches comes from one ``PathResolver`` so tests
can point the whole program at a temporary root.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

import platformdirs

APP_NAME = "dotvault"

# $VAR/... or ${VAR}/...
_ENV_ANCHOR = re.compile(r"^\$(?:\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}|(?P<bare>[A-Za-z_][A-Za-z0-9_]*))(?P<rest>/.*)?$")


def has_path_anchor(path: str) -> bool:
    """Check that a manifest path starts with a recognized anchor.

    Accepted: ``~/``, ``/``, ``$HOME/``, ``${HOME}/`` and the same forms for
    any other environment variable.
    """
    if not path:
        return False
    if path.startswith("~/") or path.startswith("/"):
        return True
    match = _ENV_ANCHOR.match(path)
    return bool(match and match.group("rest"))


@dataclass
class PathResolver:
    """Resolves config, cache, data and item paths.

    When ``root`` is set, everything (including ``~`` for manifest items)
    lives under it.
    """

    root: Path | None = None
    home: Path = field(default_factory=Path.home)
    env: dict[str, str] = field(default_factory=lambda: dict(os.environ))

    def __post_init__(self) -> None:
        if self.root is not None:
            self.root = Path(self.root)
            self.home = self.root / "home"

    @classmethod
    def from_env(cls) -> "PathResolver":
        """Build a resolver honoring ``DOTVAULT_HOME``."""
        override = os.environ.get("DOTVAULT_HOME")
        if override:
            return cls(root=Path(override).expanduser())
        return cls()

    @property
    def config_dir(self) -> Path:
        if self.root is not None:
            return self.root / "config"
        return Path(platformdirs.user_config_dir(APP_NAME))

    @property
    def cache_dir(self) -> Path:
        if self.root is not None:
            return self.root / "cache"
        return Path(platformdirs.user_cache_dir(APP_NAME))

    @property
    def data_dir(self) -> Path:
        if self.root is not None:
            return self.root / "data"
        return Path(platformdirs.user_data_dir(APP_NAME))

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.yaml"

    @property
    def manifest_file(self) -> Path:
        return self.config_dir / "vault-items.yaml"

    @property
    def state_file(self) -> Path:
        return self.cache_dir / "vault-state.json"

    @property
    def lock_file(self) -> Path:
        return self.cache_dir / "vault-state.json.lock"

    @property
    def session_file(self) -> Path:
        return self.cache_dir / ".vault-session"

    @property
    def backup_dir(self) -> Path:
        return self.data_dir / "backups"

    def expand(self, path: str) -> Path:
        """Expand a manifest path into an absolute path.

        Unknown environment variables are left unexpanded, which yields a
        path that simply does not exist rather than a surprising location.
        """
        if path.startswith("~/"):
            return self.home / path[2:]

        match = _ENV_ANCHOR.match(path)
        if match:
            var = match.group("braced") or match.group("bare")
            rest = (match.group("rest") or "").lstrip("/")
            if var == "HOME":
                base = self.home
            elif var in self.env:
                base = Path(self.env[var])
            else:
                return Path(path)
            return base / rest if rest else base

        return Path(path)

"""Configuration management for dotvault."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from dotvault.errors import UsageError
from dotvault.paths import PathResolver

DEFAULT_TIMEOUT = 60.0
MAX_WORKERS = 8


@dataclass
class Settings:
    """Machine configuration (<config_dir>/config.yaml).

    Environment overrides are captured once in ``load`` and never consulted
    again; the resulting object is passed to whatever needs it.
    """

    backend: str = "bitwarden"
    location_type: str = "none"
    location_value: str = ""
    timeout: float = DEFAULT_TIMEOUT
    workers: int = 1
    offline: bool = False
    manifest_path: Optional[Path] = None

    # Backend specifics
    pass_prefix: str = "dotfiles"
    password_store_dir: Optional[Path] = None
    onepassword_vault: str = "Personal"

    # Credentials handed over by the environment at startup
    bw_session: str = ""
    op_service_account_token: str = ""

    config_path: Optional[Path] = field(default=None, repr=False)

    def save(self) -> None:
        """Save configuration to file."""
        if self.config_path is None:
            raise UsageError("Settings have no config path to save to")

        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        data: dict[str, Any] = {
            "vault": {
                "backend": self.backend,
                "location": {
                    "type": self.location_type,
                    "value": self.location_value,
                },
                "timeout": self.timeout,
                "workers": self.workers,
                "offline": self.offline,
            },
            "backends": {
                "pass": {
                    "prefix": self.pass_prefix,
                },
                "1password": {
                    "vault": self.onepassword_vault,
                },
            },
        }
        if self.manifest_path is not None:
            data["manifest"] = str(self.manifest_path)
        if self.password_store_dir is not None:
            data["backends"]["pass"]["store_dir"] = str(self.password_store_dir)

        with open(self.config_path, "w") as f:
            yaml.safe_dump(data, f, sort_keys=False)

    @classmethod
    def load(
        cls,
        paths: PathResolver,
        config_path: Path | None = None,
        environ: dict[str, str] | None = None,
    ) -> "Settings":
        """Load settings from the config file and the environment.

        Args:
            paths: Path resolver providing the default config location
            config_path: Explicit config file (overrides the default)
            environ: Environment mapping (defaults to ``os.environ``)

        Returns:
            Settings with environment overrides applied
        """
        env = dict(os.environ) if environ is None else environ
        path = config_path or paths.config_file
        settings = cls(config_path=path)

        if path.exists():
            try:
                with open(path) as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise UsageError(f"Config file {path}: {e}") from e
            if not isinstance(data, dict):
                raise UsageError(f"Config file {path} must contain a mapping")
            try:
                settings._apply(data)
            except (AttributeError, TypeError, ValueError) as e:
                raise UsageError(f"Config file {path}: {e}") from e

        if env.get("DOTVAULT_BACKEND"):
            settings.backend = env["DOTVAULT_BACKEND"]
        if env.get("DOTVAULT_LOCATION"):
            settings.location_type, _, settings.location_value = _split_location(
                env["DOTVAULT_LOCATION"]
            )
        if env.get("DOTVAULT_OFFLINE") == "1":
            settings.offline = True
        if env.get("PASSWORD_STORE_DIR"):
            settings.password_store_dir = Path(env["PASSWORD_STORE_DIR"])
        if env.get("PASS_PREFIX"):
            settings.pass_prefix = env["PASS_PREFIX"]
        if env.get("ONEPASSWORD_VAULT"):
            settings.onepassword_vault = env["ONEPASSWORD_VAULT"]
        settings.bw_session = env.get("BW_SESSION", "")
        settings.op_service_account_token = env.get("OP_SERVICE_ACCOUNT_TOKEN", "")

        if settings.password_store_dir is None:
            settings.password_store_dir = paths.home / ".password-store"

        settings.workers = max(1, min(int(settings.workers), MAX_WORKERS))
        return settings

    def _apply(self, data: dict[str, Any]) -> None:
        vault = data.get("vault") or {}
        self.backend = vault.get("backend", self.backend)
        location = vault.get("location") or {}
        if isinstance(location, str):
            self.location_type, _, self.location_value = _split_location(location)
        else:
            self.location_type = location.get("type", self.location_type) or "none"
            self.location_value = location.get("value", self.location_value) or ""
        self.timeout = float(vault.get("timeout", self.timeout))
        self.workers = int(vault.get("workers", self.workers))
        self.offline = bool(vault.get("offline", self.offline))

        if data.get("manifest"):
            self.manifest_path = Path(data["manifest"]).expanduser()

        backends = data.get("backends") or {}
        pass_cfg = backends.get("pass") or {}
        self.pass_prefix = pass_cfg.get("prefix", self.pass_prefix)
        if pass_cfg.get("store_dir"):
            self.password_store_dir = Path(pass_cfg["store_dir"]).expanduser()
        op_cfg = backends.get("1password") or {}
        self.onepassword_vault = op_cfg.get("vault", self.onepassword_vault)

    def resolve_manifest(self, paths: PathResolver) -> Path:
        """Path of the item manifest."""
        return self.manifest_path or paths.manifest_file


def _split_location(value: str) -> tuple[str, str, str]:
    """Split ``"folder:dotfiles"`` into ``("folder", ":", "dotfiles")``.

    A bare value gets kind ``auto``: the backend's native grouping.
    """
    if ":" in value:
        return value.partition(":")
    return ("none", "", "") if not value else ("auto", ":", value)

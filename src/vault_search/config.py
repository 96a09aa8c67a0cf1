"""Configuration module for vaultsearch.

Loads configuration from environment variables with sensible defaults.
"""

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_EXCLUDED_FOLDERS = ("node_modules", "src", ".git", "dist")
DEFAULT_EXTENSIONS = (".md", ".pdf")


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("1", "true", "yes")


def _extension(value: str) -> str:
    value = value.strip().lower()
    return value if value.startswith(".") else f".{value}"


@dataclass
class Config:
    """Application configuration."""

    vault_root: Path
    vault_port: int
    vault_db: Path
    excluded_folders: list[str]
    extensions: list[str]
    sync_interval: int
    debug: bool

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        default_root = str(Path.home() / "vault")
        vault_root = Path(os.getenv("VAULT_ROOT", default_root)).expanduser()

        port_str = os.getenv("VAULT_PORT", "8080")
        try:
            vault_port = int(port_str)
            if not 1 <= vault_port <= 65535:
                raise ValueError(f"Port must be between 1 and 65535, got {vault_port}")
        except ValueError as e:
            raise ValueError(f"Invalid VAULT_PORT value '{port_str}': {e}") from e

        default_db = str(vault_root / ".vaultsearch" / "index.db")
        vault_db = Path(os.getenv("VAULT_DB", default_db)).expanduser()

        excluded_env = os.getenv("VAULT_EXCLUDED_FOLDERS")
        if excluded_env is None:
            excluded_folders = list(DEFAULT_EXCLUDED_FOLDERS)
        else:
            excluded_folders = [f.strip() for f in excluded_env.split(",") if f.strip()]

        extensions_env = os.getenv("VAULT_EXTENSIONS")
        if extensions_env is None:
            extensions = list(DEFAULT_EXTENSIONS)
        else:
            extensions = [_extension(e) for e in extensions_env.split(",") if e.strip()]

        interval_str = os.getenv("VAULT_SYNC_INTERVAL", "30")
        try:
            sync_interval = int(interval_str)
            if sync_interval < 0:
                raise ValueError(f"Interval must be >= 0, got {sync_interval}")
        except ValueError as e:
            raise ValueError(f"Invalid VAULT_SYNC_INTERVAL value '{interval_str}': {e}") from e

        return cls(
            vault_root=vault_root,
            vault_port=vault_port,
            vault_db=vault_db,
            excluded_folders=excluded_folders,
            extensions=extensions,
            sync_interval=sync_interval,
            debug=_env_flag("VAULT_DEBUG"),
        )

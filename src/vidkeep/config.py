"""Configuration loading from TOML."""

import tomllib
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


def default_data_dir() -> Path:
    """Data directory per XDG: $XDG_DATA_HOME/vidkeep (or ~/.local/share/vidkeep)."""
    xdg_data_home = os.environ.get("XDG_DATA_HOME", str(Path.home() / ".local" / "share"))
    return Path(xdg_data_home) / "vidkeep"


def default_config_path() -> Path:
    """Config file per XDG: $XDG_CONFIG_HOME/vidkeep/config.toml."""
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))
    return Path(xdg_config_home) / "vidkeep" / "config.toml"


def expand_env_var(value: str) -> str:
    """Expand "env:NAME" values from the environment, leaving others untouched."""
    if isinstance(value, str) and value.startswith("env:"):
        return os.environ.get(value[4:], value)
    return value


@dataclass
class Config:
    """Configuration dataclass with validation.

    Loads from ~/.config/vidkeep/config.toml. Every field has a default so
    a bare Config() is usable for tests and one-off tooling.
    """

    # Daemon settings
    sync_interval: int = 60  # minutes between scheduled syncs
    workers: int = 4

    # Extraction utility settings
    extractor_binary: str = "yt-dlp"
    extractor_timeout: int = 1800  # seconds per subprocess invocation
    max_height: int = 720
    description_limit: int = 500
    locale: Optional[str] = None

    # Storage settings
    data_dir: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.data_dir is None:
            self.data_dir = default_data_dir()
        else:
            self.data_dir = Path(self.data_dir).expanduser()

    @property
    def db_path(self) -> Path:
        return self.data_dir / "vidkeep.db"

    @property
    def downloads_dir(self) -> Path:
        return self.data_dir / "downloads"

    @property
    def media_dir(self) -> Path:
        return self.data_dir / "media"

    @property
    def observability_dir(self) -> Path:
        return self.data_dir / "observability"

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If any configuration values are invalid.
        """
        if self.sync_interval < 1:
            raise ValueError(
                f"sync_interval must be at least 1 minute, got {self.sync_interval}"
            )

        if not 1 <= self.workers <= 32:
            raise ValueError(f"workers must be between 1 and 32, got {self.workers}")

        if not 1 <= self.extractor_timeout <= 86400:
            raise ValueError(
                f"timeout must be between 1 and 86400 seconds, got {self.extractor_timeout}"
            )

        if self.max_height < 144:
            raise ValueError(f"max_height must be at least 144, got {self.max_height}")

        if self.description_limit < 10:
            raise ValueError(
                f"description_limit must be at least 10, got {self.description_limit}"
            )

        if not self.extractor_binary:
            raise ValueError("extractor binary must not be empty")

    @classmethod
    def from_file(cls, config_path: Optional[Path] = None) -> "Config":
        """Load configuration from TOML file.

        Args:
            config_path: Optional path to config file.
                        Defaults to $XDG_CONFIG_HOME/vidkeep/config.toml
                        (or ~/.config/vidkeep/config.toml)

        Returns:
            Config instance with loaded values.
        """
        if config_path is None:
            config_path = default_config_path()

        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Run 'vidkeep init' to create the default configuration."
            )

        try:
            with open(config_path, "rb") as f:
                config_dict = tomllib.load(f)
        except Exception as e:
            raise ValueError(f"Failed to parse config file {config_path}: {e}")

        daemon = config_dict.get("daemon", {})
        extractor = config_dict.get("extractor", {})
        storage = config_dict.get("storage", {})

        data_dir = expand_env_var(storage.get("data_dir", ""))
        locale = expand_env_var(extractor.get("locale", ""))

        try:
            config = cls(
                sync_interval=int(daemon.get("sync_interval", 60)),
                workers=int(daemon.get("workers", 4)),
                extractor_binary=expand_env_var(extractor.get("binary", "yt-dlp")),
                extractor_timeout=int(extractor.get("timeout", 1800)),
                max_height=int(extractor.get("max_height", 720)),
                description_limit=int(extractor.get("description_limit", 500)),
                locale=locale or None,
                data_dir=Path(data_dir) if data_dir else None,
            )
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid config value in {config_path}: {e}")

        config.validate()

        return config

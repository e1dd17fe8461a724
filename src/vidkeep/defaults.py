"""Default configuration file for vidkeep."""

from pathlib import Path
from typing import Optional

from .config import default_config_path


DEFAULT_CONFIG_TOML = """# vidkeep configuration

[daemon]
sync_interval = 60  # minutes between scheduled syncs of active sources
workers = 4  # background worker threads for sync and download jobs

[extractor]
binary = "yt-dlp"  # name on PATH or absolute path
timeout = 1800  # seconds before a single yt-dlp invocation is abandoned
max_height = 720  # download resolution cap
description_limit = 500  # stored item descriptions are truncated to this length
locale = ""  # e.g. "es-ES" to request localized titles; empty keeps the creator's language

[storage]
data_dir = ""  # empty = $XDG_DATA_HOME/vidkeep (database, downloads, media)
"""


def ensure_config(config_path: Optional[Path] = None) -> Path:
    """Create the default configuration file if it doesn't exist.

    Args:
        config_path: Optional target path, defaults to
                     $XDG_CONFIG_HOME/vidkeep/config.toml

    Returns:
        Path to the configuration file
    """
    if config_path is None:
        config_path = default_config_path()

    config_path.parent.mkdir(parents=True, exist_ok=True)

    if not config_path.exists():
        config_path.write_text(DEFAULT_CONFIG_TOML)
        print(f"Created {config_path}")

    return config_path


if __name__ == "__main__":
    ensure_config()

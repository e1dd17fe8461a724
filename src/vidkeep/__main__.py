"""vidkeep entry point."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from ~/.config/vidkeep/.env
config_home = os.getenv("XDG_CONFIG_HOME", str(Path.home() / ".config"))
dotenv_path = Path(config_home) / "vidkeep" / ".env"
if dotenv_path.exists():
    load_dotenv(dotenv_path)

from vidkeep.cli import app  # noqa: E402


def main() -> None:
    """Entry point for the vidkeep command."""
    app()


if __name__ == "__main__":
    main()

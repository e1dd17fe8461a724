"""vidkeep - YouTube channel and playlist catalog with on-demand downloads."""

__version__ = "0.1.0"

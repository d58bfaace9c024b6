"""Version utilities for Feedforge."""

from pathlib import Path
from functools import lru_cache


@lru_cache(maxsize=1)
def get_version() -> str:
    """Read the current version from the VERSION file, cached after the first read."""
    possible_paths = [
        Path(__file__).parent.parent.parent.parent / "VERSION",  # repo root
        Path("/app/VERSION"),  # Docker container path
        Path.cwd() / "VERSION",
    ]

    for path in possible_paths:
        if path.exists():
            return path.read_text().strip()

    return "0.0.0-dev"

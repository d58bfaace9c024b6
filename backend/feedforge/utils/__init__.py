"""Utility modules for Feedforge."""

from feedforge.utils.clock import utcnow, isoformat_utc
from feedforge.utils.version import get_version

__all__ = ["utcnow", "isoformat_utc", "get_version"]

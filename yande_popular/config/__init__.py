"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    MAX_DIMENSION,
    POLL_INTERVAL,
    RETENTION_WINDOW,
    SCORE_THRESHOLD,
    WEBP_QUALITY,
    ForwarderKind,
    Settings,
)

__all__ = [
    "ConfigLocator",
    "ConfigRepository",
    "ForwarderKind",
    "MAX_DIMENSION",
    "POLL_INTERVAL",
    "RETENTION_WINDOW",
    "SCORE_THRESHOLD",
    "Settings",
    "WEBP_QUALITY",
]

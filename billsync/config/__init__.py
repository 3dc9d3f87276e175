"""Configuration package."""

from billsync.config.settings import (
    Settings,
    SyncSettings,
    get_settings,
)

__all__ = [
    "Settings",
    "SyncSettings",
    "get_settings",
]

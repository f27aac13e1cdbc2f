from .models import (
    EditSettings,
    LoggingSettings,
    LogLevel,
    ModelSettings,
    Settings,
)
from .loader import load_settings

__all__ = [
    "EditSettings",
    "LoggingSettings",
    "LogLevel",
    "ModelSettings",
    "Settings",
    "load_settings",
]

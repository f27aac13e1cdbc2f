from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class LogLevel(str, Enum):
    debug = "debug"
    info = "info"
    warning = "warning"
    error = "error"
    critical = "critical"


class LoggingSettings(BaseModel):
    # Level for the streamedit logger if not overridden
    default_level: LogLevel = LogLevel.info
    # Mapping of logger name -> level override (e.g., {"LiteLLM": "warning"})
    enabled_loggers: Dict[str, LogLevel] = Field(default_factory=dict)
    # Optional log file, appended to
    file: Optional[str] = None


class EditSettings(BaseModel):
    # Attempts per edit session, the first one included
    max_attempts: int = Field(default=3, ge=1)
    # Minimum per-line similarity for fuzzy matches
    fuzzy_threshold: float = Field(default=0.8, gt=0.0, le=1.0)
    # File content quoted in retry feedback is truncated above this size
    retry_content_max_chars: int = Field(default=20 * 1024, ge=256)


class ModelSettings(BaseModel):
    model: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    reasoning_effort: Optional[str] = None
    # Passed through to litellm.acompletion as-is
    extra: Dict[str, Any] = Field(default_factory=dict)
    # Retries of a failed stream start on retriable status codes
    transport_retries: int = Field(default=3, ge=0)
    # Base delay in seconds; doubled per retry
    transport_backoff: float = Field(default=1.0, ge=0.0)


class Settings(BaseModel):
    edit: EditSettings = Field(default_factory=EditSettings)
    model: Optional[ModelSettings] = None
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

"""Environment-driven configuration with Pydantic v2."""

from typing import Any, Literal, Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


def _clamp_numeric(value: Any, default: float, minimum: float, maximum: float) -> Any:
    """Clamp an incoming numeric setting into range, falling back to the default."""
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default
    if parsed != parsed:  # NaN
        return default
    return max(minimum, min(maximum, parsed))


# field name -> (default, min, max)
_NUMERIC_BOUNDS = {
    "scheduler_window_minutes": (10, 0, 120),
    "scheduler_tick_seconds": (60, 5, 3600),
    "mission_max_duration_ms": (300_000, 1_000, 3_600_000),
    "mission_quality_min_score": (46, 0, 100),
    "mission_quality_min_words": (24, 3, 200),
    "workflow_http_timeout_ms": (15_000, 1_000, 120_000),
    "workflow_http_max_redirects": (3, 0, 8),
    "workflow_http_response_max_bytes": (2_000_000, 4_096, 20_000_000),
    "workflow_rss_response_max_bytes": (1_000_000, 4_096, 20_000_000),
    "code_timeout_ms": (500, 50, 10_000),
    "filter_timeout_ms": (100, 10, 5_000),
    "sandbox_memory_limit_mb": (256, 0, 16_384),
    "cache_max_entries": (512, 1, 100_000),
    "cache_ttl_seconds": (300, 1, 86_400),
}


class Settings(BaseSettings):
    """Engine settings driven entirely by NOVA_* environment variables."""

    # Logging
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="console")
    log_file: Optional[str] = Field(default=None)

    # Scheduling
    scheduler_window_minutes: int = Field(default=10, ge=0, le=120)
    scheduler_tick_seconds: int = Field(default=60, ge=5, le=3600)
    default_timezone: str = Field(default="America/New_York")

    # Mission runner
    mission_max_duration_ms: int = Field(default=300_000, ge=1_000, le=3_600_000)

    # Output quality guardrail
    mission_quality_min_score: float = Field(default=46, ge=0, le=100)
    mission_quality_min_words: int = Field(default=24, ge=3, le=200)
    mission_quality_debug: bool = Field(default=False)

    # Data fetches
    workflow_http_timeout_ms: int = Field(default=15_000, ge=1_000, le=120_000)
    workflow_http_max_redirects: int = Field(default=3, ge=0, le=8)
    workflow_http_response_max_bytes: int = Field(default=2_000_000, ge=4_096, le=20_000_000)
    workflow_rss_response_max_bytes: int = Field(default=1_000_000, ge=4_096, le=20_000_000)

    # Sandbox
    code_timeout_ms: int = Field(default=500, ge=50, le=10_000)
    filter_timeout_ms: int = Field(default=100, ge=10, le=5_000)
    sandbox_memory_limit_mb: int = Field(default=256, ge=0, le=16_384)  # 0 disables the ceiling

    # Cache
    cache_max_entries: int = Field(default=512, ge=1, le=100_000)
    cache_ttl_seconds: int = Field(default=300, ge=1, le=86_400)

    @field_validator(*_NUMERIC_BOUNDS.keys(), mode="before")
    @classmethod
    def clamp_into_range(cls, value: Any, info) -> Any:
        default, minimum, maximum = _NUMERIC_BOUNDS[info.field_name]
        clamped = _clamp_numeric(value, default, minimum, maximum)
        annotation = cls.model_fields[info.field_name].annotation
        return int(clamped) if annotation is int else clamped

    @field_validator("log_format", mode="before")
    @classmethod
    def normalize_log_format(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        return text if text in ("json", "console") else "console"

    model_config = {
        "env_prefix": "NOVA_",
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
    }

"""
Tourkit — Application Configuration
=====================================

What:  Centralized configuration management using Pydantic Settings.
Why:   Type-safe environment variable loading with validation on startup.
How:   `Settings` reads from environment variables (or .env file) and hands
       each pipeline component its own small, frozen config object.
Who:   `Settings` is only read by the HTTP layer (main.py, dependencies.py).
       Services receive an OptimizerConfig / UploadConfig / GeocoderConfig /
       PlannerConfig at construction and never touch the environment.
When:  Loaded once at module import time; validated before the app starts.

Design Decision:
    Components take explicit config objects instead of importing `settings`
    so they can be built in tests with any values, without patching the
    process environment.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


# ══════════════════════════════════════════════════════════════════════════
# Per-component configuration
# ══════════════════════════════════════════════════════════════════════════

class OptimizerConfig(BaseModel):
    """Limits applied to images before they are transferred."""

    # Images at or below this size are sent as-is (5 MB)
    max_bytes: int = Field(default=5 * 1024 * 1024, ge=1)
    # Neither side of a re-encoded image exceeds this
    max_dimension: int = Field(default=2048, ge=16)
    # Lossy re-encode quality on a 0-1 scale
    quality: float = Field(default=0.8, gt=0, le=1)

    model_config = {"frozen": True}


class UploadConfig(BaseModel):
    """Object storage endpoint and retry policy for uploads."""

    storage_url: str = Field(default="http://localhost:54321")
    # Retries after the initial attempt (2 → 3 attempts in total)
    max_attempts: int = Field(default=2, ge=0, le=10)
    timeout_ms: int = Field(default=60_000, ge=1)
    base_delay_ms: int = Field(default=1_000, ge=0)
    max_delay_ms: int = Field(default=10_000, ge=0)

    model_config = {"frozen": True}


class GeocoderConfig(BaseModel):
    """Geocoding provider endpoint and its usage-policy throttle."""

    search_url: str = Field(default="https://nominatim.openstreetmap.org/search")
    # Public Nominatim allows one request per second; 1100ms keeps us under it
    request_delay_ms: int = Field(default=1_100, ge=0)
    country_codes: Optional[str] = Field(default="us")
    user_agent: str = Field(default="Tourkit/1.0 (showing route planner)")
    timeout_seconds: float = Field(default=15.0, gt=0)

    model_config = {"frozen": True}


class PlannerConfig(BaseModel):
    """Chat-completions endpoint used to propose a visiting order."""

    completions_url: str = Field(default="https://api.openai.com/v1/chat/completions")
    api_key: str = Field(default="")
    model: str = Field(default="gpt-4o-mini")
    temperature: float = Field(default=0.1, ge=0, le=2)
    timeout_seconds: float = Field(default=60.0, gt=0)
    max_stops: int = Field(default=20, ge=2, le=100)

    model_config = {"frozen": True}


# ══════════════════════════════════════════════════════════════════════════
# Environment-backed settings
# ══════════════════════════════════════════════════════════════════════════

class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have sensible defaults for development.
    Production deployments MUST set STORAGE_URL and PLANNER_API_KEY.

    Attributes are grouped by concern for readability.
    """

    # ── Object Storage ────────────────────────────────────────────────────
    # What: Base URL of the storage service; objects go to
    #       {storage_url}/storage/v1/object/{bucket}/{path}
    storage_url: str = Field(default="http://localhost:54321")
    upload_max_attempts: int = Field(default=2, ge=0, le=10)
    upload_timeout_ms: int = Field(default=60_000, ge=1_000, le=600_000)

    # What: Capped exponential backoff between upload attempts
    # delay(i) = min(base * 2^i, max)
    retry_base_delay_ms: int = Field(default=1_000, ge=0, le=60_000)
    retry_max_delay_ms: int = Field(default=10_000, ge=0, le=300_000)

    # ── Asset Optimization ────────────────────────────────────────────────
    optimize_max_bytes: int = Field(default=5_242_880, ge=1_048_576, le=104_857_600)
    optimize_max_dimension: int = Field(default=2048, ge=256, le=8192)
    optimize_quality: float = Field(default=0.8, gt=0, le=1)

    # ── Geocoding ─────────────────────────────────────────────────────────
    geocoder_url: str = Field(default="https://nominatim.openstreetmap.org/search")
    geocoder_delay_ms: int = Field(default=1_100, ge=0, le=10_000)
    geocoder_country_codes: Optional[str] = Field(default="us")
    geocoder_user_agent: str = Field(default="Tourkit/1.0 (showing route planner)")

    # ── Planning Oracle ───────────────────────────────────────────────────
    # What: Any OpenAI-compatible chat-completions endpoint
    planner_url: str = Field(default="https://api.openai.com/v1/chat/completions")
    planner_api_key: str = Field(default="")
    planner_model: str = Field(default="gpt-4o-mini")
    planner_temperature: float = Field(default=0.1, ge=0, le=2)
    max_route_stops: int = Field(default=20, ge=2, le=100)

    # ── CORS ──────────────────────────────────────────────────────────────
    cors_origins: str = Field(default="http://localhost:3000")

    @property
    def cors_origins_list(self) -> List[str]:
        """Splits comma-separated CORS origins into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8000, ge=1024, le=65535)
    log_level: str = Field(default="INFO")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    # ── Rate Limiting ─────────────────────────────────────────────────────
    # What: Per-IP sliding window limits, one budget per path group
    # rate_limit_*: geocode + route sequencing (spend provider and planner quota)
    rate_limit_requests: int = Field(default=100, ge=10, le=10000)
    rate_limit_window: int = Field(default=3600, ge=60, le=86400)  # seconds
    # upload_rate_limit_*: /api/uploads (a listing can be hundreds of photos)
    upload_rate_limit_requests: int = Field(default=2000, ge=10, le=100000)
    upload_rate_limit_window: int = Field(default=3600, ge=60, le=86400)  # seconds

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }

    # ── Component configs ─────────────────────────────────────────────────

    def optimizer_config(self) -> OptimizerConfig:
        return OptimizerConfig(
            max_bytes=self.optimize_max_bytes,
            max_dimension=self.optimize_max_dimension,
            quality=self.optimize_quality,
        )

    def upload_config(self) -> UploadConfig:
        return UploadConfig(
            storage_url=self.storage_url,
            max_attempts=self.upload_max_attempts,
            timeout_ms=self.upload_timeout_ms,
            base_delay_ms=self.retry_base_delay_ms,
            max_delay_ms=self.retry_max_delay_ms,
        )

    def geocoder_config(self) -> GeocoderConfig:
        return GeocoderConfig(
            search_url=self.geocoder_url,
            request_delay_ms=self.geocoder_delay_ms,
            country_codes=self.geocoder_country_codes or None,
            user_agent=self.geocoder_user_agent,
        )

    def planner_config(self) -> PlannerConfig:
        return PlannerConfig(
            completions_url=self.planner_url,
            api_key=self.planner_api_key,
            model=self.planner_model,
            temperature=self.planner_temperature,
            max_stops=self.max_route_stops,
        )

    def validate_required_for_production(self) -> None:
        """
        What:  Validates that critical settings are configured.
        When:  Called during app startup (lifespan).
        Why:   Fail fast with clear error messages instead of cryptic runtime failures.
        """
        errors = []
        if not self.planner_api_key:
            errors.append(
                "PLANNER_API_KEY is not set. Route sequencing will answer 503 "
                "until a chat-completions API key is configured."
            )
        if self.retry_max_delay_ms < self.retry_base_delay_ms:
            errors.append("RETRY_MAX_DELAY_MS must be >= RETRY_BASE_DELAY_MS.")
        if errors:
            raise ValueError(
                "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            )


# Singleton instance, read by the HTTP layer only
settings = Settings()

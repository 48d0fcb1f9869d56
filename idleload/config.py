"""Application settings: loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Incremental loading ─────────────────────────────────────
    # Seconds of idleness before the first unit is attempted.  Also the
    # minimum idle duration a step must observe before it loads anything.
    IDLELOAD_FIRST_IDLE_SECONDS: float = 2.0

    # Delay between units once the process has been seen idle.
    IDLELOAD_IDLE_INTERVAL_SECONDS: float = 0.75

    # What to do when a step fires but the process is not idle enough:
    #   abort   → discard the remaining queue for this session (default)
    #   requeue → put the unit back and try again after the first-idle delay
    IDLELOAD_BUSY_POLICY: Literal["abort", "requeue"] = "abort"

    # Daemon processes have no user to disturb, so they load everything
    # up-front by default.  IDLELOAD_LOAD_IMMEDIATELY overrides that.
    IDLELOAD_DAEMON: bool = False
    IDLELOAD_LOAD_IMMEDIATELY: bool | None = None

    # Optional YAML file of `name: [unit, ...]` declarations.
    IDLELOAD_DECLARATIONS_FILE: str | None = None

    # Number of scheduler events kept for the diagnostics endpoints.
    IDLELOAD_EVENT_LOG_SIZE: int = 1000

    # ── Logging ─────────────────────────────────────────────────
    LOG_FORMAT: Literal["text", "json"] = "text"
    LOG_LEVEL: str = "INFO"
    DEBUG: bool = False

    # ── Diagnostics server ──────────────────────────────────────
    HOST: str = "127.0.0.1"
    PORT: int = 8765

    # ── OpenTelemetry ───────────────────────────────────────────
    # Base OTLP HTTP endpoint, e.g. http://localhost:4318 (disabled if unset)
    OTLP_ENDPOINT: str | None = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _auto_configure(self) -> "Settings":
        """Validate delays and resolve the immediate-loading default."""
        if self.IDLELOAD_FIRST_IDLE_SECONDS <= 0:
            raise ValueError("IDLELOAD_FIRST_IDLE_SECONDS must be positive")
        if self.IDLELOAD_IDLE_INTERVAL_SECONDS <= 0:
            raise ValueError("IDLELOAD_IDLE_INTERVAL_SECONDS must be positive")
        if self.IDLELOAD_EVENT_LOG_SIZE < 1:
            raise ValueError("IDLELOAD_EVENT_LOG_SIZE must be at least 1")

        if self.IDLELOAD_LOAD_IMMEDIATELY is None:
            object.__setattr__(self, "IDLELOAD_LOAD_IMMEDIATELY", self.IDLELOAD_DAEMON)

        return self

    @property
    def load_immediately(self) -> bool:
        return bool(self.IDLELOAD_LOAD_IMMEDIATELY)

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.DEBUG else self.LOG_LEVEL


settings = Settings()

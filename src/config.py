"""
Runtime configuration for the scan worker.

Uses ``pydantic_settings.BaseSettings`` for automatic environment
variable binding, type coercion, and validation.  Values may also
come from a ``.env`` file in the working directory.
"""

from __future__ import annotations

import functools

import pydantic
import pydantic_settings

from src.utils import logger

log = logger.create_logger("Config")

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36 PrivacyScanner/1.0"
)


class ScannerSettings(pydantic_settings.BaseSettings):
    """Configuration for guards, scans, jobs and monitoring.

    Attributes:
        allow_dev_ports: Also accept ports 8080/8443. Local testing only.
        dns_timeout_seconds: Bound on the pre-flight DNS check.
        navigation_timeout_seconds: Bound on page navigation.
        observation_window_seconds: Fixed wait after DOM content loaded.
        job_timeout_seconds: Wall-clock bound on an entire scan job;
            must exceed the navigation timeout.
    """

    model_config = pydantic_settings.SettingsConfigDict(
        env_file=".env", extra="ignore", populate_by_name=True
    )

    environment: str = pydantic.Field(default="development", validation_alias="ENVIRONMENT")
    host: str = pydantic.Field(default="0.0.0.0", validation_alias="UVICORN_HOST")
    port: int = pydantic.Field(default=3001, validation_alias="UVICORN_PORT")

    # ── Guards ──────────────────────────────────────────────────
    allow_dev_ports: bool = pydantic.Field(default=False, validation_alias="ALLOW_DEV_PORTS")
    dns_timeout_seconds: float = pydantic.Field(default=5.0, validation_alias="DNS_TIMEOUT_SECONDS")

    # ── Browser scan ────────────────────────────────────────────
    navigation_timeout_seconds: float = pydantic.Field(
        default=45.0, validation_alias="NAVIGATION_TIMEOUT_SECONDS"
    )
    action_timeout_seconds: float = pydantic.Field(default=10.0, validation_alias="ACTION_TIMEOUT_SECONDS")
    observation_window_seconds: float = pydantic.Field(
        default=15.0, validation_alias="OBSERVATION_WINDOW_SECONDS"
    )
    user_agent: str = pydantic.Field(default=DEFAULT_USER_AGENT, validation_alias="SCANNER_USER_AGENT")
    browser_locale: str = pydantic.Field(default="de-DE", validation_alias="SCANNER_LOCALE")
    browser_sandbox: bool = pydantic.Field(default=True, validation_alias="BROWSER_SANDBOX")

    # ── Jobs and submission ─────────────────────────────────────
    job_timeout_seconds: float = pydantic.Field(default=70.0, validation_alias="JOB_TIMEOUT_SECONDS")
    trigger_timeout_seconds: float = pydantic.Field(default=5.0, validation_alias="TRIGGER_TIMEOUT_SECONDS")
    idempotency_window_seconds: float = pydantic.Field(
        default=120.0, validation_alias="IDEMPOTENCY_WINDOW_SECONDS"
    )
    rate_limit_window_seconds: float = pydantic.Field(default=600.0, validation_alias="RATE_LIMIT_WINDOW_SECONDS")
    rate_limit_max_requests: int = pydantic.Field(default=10, validation_alias="RATE_LIMIT_MAX_REQUESTS")
    rate_limit_cooldown_seconds: float = pydantic.Field(default=10.0, validation_alias="RATE_LIMIT_COOLDOWN_SECONDS")
    rate_limit_max_entries: int = pydantic.Field(default=10_000, validation_alias="RATE_LIMIT_MAX_ENTRIES")

    # ── Monitoring and alerts ───────────────────────────────────
    monitor_cron_secret: str = pydantic.Field(default="", validation_alias="MONITOR_CRON_SECRET")
    monitor_interval_hours: float = pydantic.Field(default=24.0, validation_alias="MONITOR_INTERVAL_HOURS")
    monitor_max_sites_per_run: int = pydantic.Field(default=5, validation_alias="MONITOR_MAX_SITES_PER_RUN")
    monitor_max_sites_per_email: int = pydantic.Field(default=20, validation_alias="MONITOR_MAX_SITES_PER_EMAIL")
    resend_api_key: str = pydantic.Field(default="", validation_alias="RESEND_API_KEY")
    email_from: str = pydantic.Field(default="onboarding@resend.dev", validation_alias="EMAIL_FROM")
    app_url: str = pydantic.Field(default="http://localhost:3000", validation_alias="APP_URL")

    write_log_files: bool = pydantic.Field(default=False, validation_alias="WRITE_TO_FILE")

    @pydantic.model_validator(mode="after")
    def check_timeouts(self) -> ScannerSettings:
        # A navigation timeout must surface with its own cause,
        # not be masked by the job-level wrapper.
        if self.job_timeout_seconds <= self.navigation_timeout_seconds:
            raise ValueError(
                "JOB_TIMEOUT_SECONDS must be greater than NAVIGATION_TIMEOUT_SECONDS"
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@functools.lru_cache(maxsize=1)
def get_settings() -> ScannerSettings:
    """Load settings once per process."""
    settings = ScannerSettings()
    log.debug("Settings loaded", {
        "environment": settings.environment,
        "allowDevPorts": settings.allow_dev_ports,
        "jobTimeout": settings.job_timeout_seconds,
        "navigationTimeout": settings.navigation_timeout_seconds,
    })
    return settings

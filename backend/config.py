import logging
from enum import Enum
from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings


logger = logging.getLogger(__name__)


class AppMode(str, Enum):
    DEV = "dev"
    PROD = "prod"


class Settings(BaseSettings):
    # Application mode - defaults to DEV for safety
    APP_MODE: AppMode = AppMode.DEV

    # Debug mode - MUST be False in production
    DEBUG: bool = False

    # Server configuration
    HOST: str = "0.0.0.0"
    PORT: int = 8080
    LOG_LEVEL: str = "INFO"

    # Google Gemini API (loaded from the function's secret environment)
    GEMINI_API_KEY: str = ""

    # Datadog direct API (metrics + logs intake)
    DD_API_KEY: str = ""
    DD_SITE: str = "us5.datadoghq.com"
    DD_SERVICE: str = "poseshift-ai"
    DD_ENV: str = "prod"
    DD_VERSION: str = "1.0.0"
    DD_LOGS_HOSTNAME: str = "firebase-functions"
    DD_HTTP_TIMEOUT_SECONDS: float = 10.0

    # Tracing (OTLP/HTTP, usually a Datadog Agent or serverless-compat collector)
    TELEMETRY_ENABLED: bool = True
    OTLP_TRACES_ENDPOINT: str = "http://localhost:4318/v1/traces"
    TRACE_FLUSH_TIMEOUT_MS: int = 2000

    # CORS - comma-separated list of allowed origins
    CORS_ALLOWED_ORIGINS: str = ""

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """Allowed CORS origins; localhost is only added in DEV mode."""
        origins: List[str] = []

        if self.APP_MODE == AppMode.DEV:
            origins = [
                "http://localhost:3000",
                "http://localhost:5173",
                "http://127.0.0.1:3000",
                "http://127.0.0.1:5173",
            ]

        if self.CORS_ALLOWED_ORIGINS:
            origins.extend(
                o.strip() for o in self.CORS_ALLOWED_ORIGINS.split(",") if o.strip()
            )

        return origins

    @property
    def DD_METRICS_URL(self) -> str:
        return f"https://api.{self.DD_SITE}/api/v1/series"

    @property
    def DD_LOGS_URL(self) -> str:
        return f"https://http-intake.logs.{self.DD_SITE}/api/v2/logs"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"  # Ignore extra env variables


def _validate_settings(settings: Settings) -> Settings:
    """
    Validate settings and warn/error on misconfiguration.

    Only DEBUG in production is fatal; missing keys degrade features
    (generation is refused, direct telemetry is skipped) instead of
    preventing startup.
    """
    if settings.APP_MODE == AppMode.PROD:
        if settings.DEBUG:
            error_msg = (
                "CRITICAL SECURITY ERROR: DEBUG=True in production! "
                "Debug mode exposes sensitive information in error responses. "
                "Set DEBUG=False or remove the DEBUG environment variable."
            )
            logger.critical(error_msg)
            raise ValueError(error_msg)

        if not settings.GEMINI_API_KEY:
            logger.warning(
                "GEMINI_API_KEY not configured in production. "
                "Generation requests will be rejected."
            )

        if not settings.DD_API_KEY:
            logger.warning(
                "DD_API_KEY not configured in production. "
                "Direct Datadog metrics and logs will be skipped."
            )

    return settings


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Settings are validated on first access.
    """
    settings = Settings()
    return _validate_settings(settings)

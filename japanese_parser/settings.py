# ==== APPLICATION SETTINGS CONFIGURATION ==== #

"""
Application settings configuration for the Japanese parser.

This module provides centralized configuration management using Pydantic Settings
with environment variable loading and validation for the Ichiran engine bridge
and the resilience layer guarding it.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


# ==== MAIN SETTINGS CLASS ==== #


DEVELOPMENT_ENVIRONMENTS = frozenset({"dev", "development"})


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Durations are expressed in milliseconds to match the values operators
    already pass to the Ichiran container (``ICHIRAN_TIMEOUT=30000``).
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=True,
        extra='ignore'
    )

    # --► CORE APPLICATION SETTINGS
    APP_ENV: str = "production"
    SERVICE_NAME: str = "japanese-parser"
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str | None = None

    # --► ICHIRAN ENGINE CONFIGURATION
    ICHIRAN_CONTAINER_NAME: str = "ichiran-main-1"
    ICHIRAN_CLI_PATH: str = "./ichiran-cli"
    DOCKER_BINARY: str = "docker"
    ICHIRAN_TIMEOUT: int = 30_000
    HEALTH_CHECK_TIMEOUT: int = 5_000
    ICHIRAN_MAX_OUTPUT_BYTES: int = 1_048_576

    # --► INPUT LIMITS
    MAX_TEXT_LENGTH: int = 10_000

    # --► RATE LIMITING
    RATE_LIMIT_MAX: int = 60
    RATE_LIMIT_WINDOW_MS: int = 60_000
    RATE_LIMIT_SWEEP_INTERVAL_MS: int = 300_000

    # --► CIRCUIT BREAKER
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = 5
    CIRCUIT_BREAKER_COOLDOWN_MS: int = 60_000

    @property
    def is_development(self) -> bool:
        """Whether internal error details may be exposed to callers."""
        return self.APP_ENV.lower() in DEVELOPMENT_ENVIRONMENTS


# ==== GLOBAL SETTINGS INSTANCE ==== #


# Global settings instance for application-wide access
settings = Settings()


def get_settings() -> Settings:
    """
    Get global settings instance.

    Returns:
        Settings: Global application settings instance
    """
    return settings

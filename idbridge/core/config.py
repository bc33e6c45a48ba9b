# idbridge/core/config.py
from enum import Enum
from pathlib import Path
from typing import Optional
import logging

from pydantic import Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings

from idbridge.core.exceptions import ConfigurationError, config_error

logger = logging.getLogger(__name__)

# Shortest secret accepted for deriving the cookie keys
MIN_SECRET_LENGTH = 32

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DEFAULT_POLICY_DOCUMENT = Path(__file__).resolve().parent.parent / "static" / "security.txt"


class SecurityMode(str, Enum):
    """Deployment mode, fixed for the lifetime of the process"""
    LOCAL_DEVELOPMENT = "local_development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Process-wide application settings. Immutable once constructed."""
    APP_NAME: str = "IdentityBridge"

    # Transport security
    SECURITY_MODE: SecurityMode = SecurityMode.PRODUCTION
    HSTS_MAX_AGE_SECONDS: int = Field(default=31536000, gt=0)

    # Session cookie
    SESSION_SECRET: Optional[SecretStr] = Field(default=None)
    SESSION_COOKIE_NAME: str = Field(default="bridge_session", pattern=r"^[A-Za-z0-9_\-]+$")
    SESSION_DURATION_SECONDS: int = Field(default=24 * 60 * 60, gt=0)

    # Routing
    API_PREFIX: str = "/api/"
    POLICY_DOCUMENT_PATH: Path = DEFAULT_POLICY_DOCUMENT

    # Proxies in front of us that append to X-Forwarded-For (0 = use the peer address)
    TRUSTED_PROXY_HOPS: int = Field(default=1, ge=0, le=16)

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Path = Path("logs")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "frozen": True
    }

    @field_validator("LOG_LEVEL")
    @classmethod
    def check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"must be one of {', '.join(LOG_LEVELS)}")
        return level

    @property
    def local_development(self) -> bool:
        return self.SECURITY_MODE is SecurityMode.LOCAL_DEVELOPMENT


def load_settings(**overrides) -> Settings:
    """Read settings from the environment, turning bad values into ConfigurationError"""
    try:
        return Settings(**overrides)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise ConfigurationError(
            f"Invalid configuration values: {', '.join(fields)}",
            component="settings"
        ) from None


def validate_required_settings(settings: Settings) -> Settings:
    """Checks that the key material is present. Raises ConfigurationError otherwise."""
    secret = settings.SESSION_SECRET.get_secret_value() if settings.SESSION_SECRET else ""

    if not secret:
        raise config_error("SESSION_SECRET is not set", "session")

    if len(secret) < MIN_SECRET_LENGTH:
        raise config_error(
            f"SESSION_SECRET must be at least {MIN_SECRET_LENGTH} characters",
            "session"
        )

    if not settings.API_PREFIX.startswith("/") or not settings.API_PREFIX.endswith("/"):
        raise config_error("API_PREFIX must start and end with '/'", "routing")

    if not settings.POLICY_DOCUMENT_PATH.is_file():
        logger.warning(f"Policy document not found at {settings.POLICY_DOCUMENT_PATH}")

    return settings

"""
Service Configuration Management

Provides centralized configuration handling with environment-aware settings,
secret handling for collaborator credentials, and validation of tunables.

Design Considerations:
- Environment-specific configuration profiles
- Secrets kept as SecretStr so they never reach log output
- Collaborator tunables passed opaquely into constructors
- Mail account tuples read separately because their names are dynamic
"""

import logging
import os
from enum import Enum
from typing import List, Mapping, Optional, Tuple

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings

from onebox.models import AccountDescriptor

logger = logging.getLogger(__name__)

DEFAULT_IMAP_PORT = 993


class EnvironmentType(str, Enum):
    """Valid environment types for configuration context."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


class OneboxSettings(BaseSettings):
    """
    Service configuration with environment-specific defaults and validation.

    Loads from process environment and an optional ``.env`` file. Every
    collaborator receives only the slice of settings it needs.
    """
    # Environment
    ENVIRONMENT: EnvironmentType = Field(
        default=EnvironmentType.DEVELOPMENT,
        description="Runtime environment context"
    )
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_DIR: Optional[str] = Field(default="logs", description="Directory for log files; empty disables file logging")
    METRICS_FILE: Optional[str] = Field(default=None, description="Optional JSON file for pipeline metrics")

    # Storage
    DATABASE_URL: str = Field(
        default="sqlite:///data/onebox.db",
        description="SQLAlchemy URL for the email index and context store"
    )

    # Categorization
    GROQ_API_KEY: Optional[SecretStr] = Field(default=None, description="Groq API key")
    GROQ_MODEL: str = Field(default="llama-3.3-70b-versatile", description="Model used for categorization and chat")
    AI_CATEGORIZATION_ENABLED: bool = Field(default=True, description="Use the LLM for categorization")
    AI_DAILY_QUOTA: int = Field(default=40, ge=0, description="Maximum LLM categorization calls per day")
    AI_RETRY_ATTEMPTS: int = Field(default=2, ge=1, description="LLM call attempts per email")

    # Notifications
    SLACK_BOT_TOKEN: Optional[SecretStr] = Field(default=None, description="Slack bot token")
    SLACK_CHANNEL: str = Field(default="#general", description="Slack channel for notifications")
    SLACK_ENABLED: bool = Field(default=True, description="Enable Slack notifications")
    WEBHOOK_URL: str = Field(default="", description="Webhook endpoint for notifications")
    WEBHOOK_ENABLED: bool = Field(default=True, description="Enable webhook notifications")
    WEBHOOK_RETRY_ATTEMPTS: int = Field(default=3, ge=1, description="Webhook delivery attempts")
    WEBHOOK_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0, description="Webhook request timeout")

    # Context store
    CONTEXT_STORE_ENABLED: bool = Field(default=True, description="Store processed emails as retrieval context")
    CONTEXT_SEED_DEFAULTS: bool = Field(default=True, description="Seed starter contexts into an empty store on startup")

    # Ingestion
    EXCLUDED_PROVIDERS: str = Field(
        default="yahoo",
        description="Comma-separated host fragments whose accounts are skipped"
    )
    IMAP_POLL_INTERVAL_SECONDS: float = Field(default=30.0, gt=0, description="Mailbox polling interval")
    IMAP_RECONNECT_DELAY_SECONDS: float = Field(default=5.0, gt=0, description="Delay before reconnecting")
    IMAP_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0, description="Socket timeout for IMAP connect and commands")
    IMAP_HISTORY_DAYS: int = Field(default=30, ge=0, description="Days of history synced when an account connects; 0 disables")

    # Pipeline and health
    PIPELINE_CONCURRENCY: int = Field(default=4, ge=1, description="Emails processed concurrently")
    HEALTH_CHECK_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0, description="Upper bound for each health check")

    # Chat
    CHAT_SESSION_MAX_AGE_HOURS: float = Field(default=24.0, gt=0, description="Idle chat sessions older than this are removed")
    CHAT_CLEANUP_INTERVAL_HOURS: float = Field(default=6.0, gt=0, description="Chat session cleanup interval")

    # API
    API_TITLE: str = Field(default="Email Onebox API", description="API title for documentation")
    API_VERSION: str = Field(default="1.0.0", description="API version")
    CORS_ORIGINS: str = Field(default="http://localhost:3001", description="Comma-separated allowed origins")
    HOST: str = Field(default="127.0.0.1", description="Bind address")
    PORT: int = Field(default=3000, description="Bind port")

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Normalise and validate the logging level name."""
        level = value.upper()
        if level not in ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @property
    def excluded_providers(self) -> List[str]:
        return [item.strip().lower() for item in self.EXCLUDED_PROVIDERS.split(",") if item.strip()]

    @property
    def cors_origins(self) -> List[str]:
        if self.CORS_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @staticmethod
    def secret(value: Optional[SecretStr]) -> str:
        return value.get_secret_value() if value else ""

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore"
    }


def get_settings() -> OneboxSettings:
    """
    Retrieve validated settings.

    Returns:
        Validated settings object

    Raises:
        ValidationError: If configuration fails validation
    """
    return OneboxSettings()


def load_account_descriptors(
    environ: Optional[Mapping[str, str]] = None
) -> List[Tuple[AccountDescriptor, str]]:
    """
    Read ``EMAIL<n>_*`` account tuples from the environment.

    Indexing starts at 1 and stops at the first index whose USER, PASS and
    HOST are not all present. PORT and LABEL are optional; a PORT that is not
    a number falls back to the standard secure IMAP port.

    Args:
        environ: Mapping to read from (defaults to ``os.environ``)

    Returns:
        List of (descriptor, password) pairs in configuration order
    """
    environ = os.environ if environ is None else environ
    accounts: List[Tuple[AccountDescriptor, str]] = []
    index = 1

    while True:
        user = environ.get(f"EMAIL{index}_USER")
        password = environ.get(f"EMAIL{index}_PASS")
        host = environ.get(f"EMAIL{index}_HOST")
        if not user or not password or not host:
            break

        raw_port = environ.get(f"EMAIL{index}_PORT")
        port: Optional[int] = None
        if raw_port:
            try:
                port = int(raw_port)
            except ValueError:
                logger.warning(f"Invalid port {raw_port!r} for EMAIL{index}, using {DEFAULT_IMAP_PORT}")
                port = DEFAULT_IMAP_PORT

        accounts.append((
            AccountDescriptor(
                user=user,
                host=host,
                port=port,
                label=environ.get(f"EMAIL{index}_LABEL") or None,
            ),
            password,
        ))
        index += 1

    logger.debug(f"Found {len(accounts)} configured email accounts")
    return accounts

"""
Workflow Manager API Configuration Module.

This module provides configuration management for the Workflow Manager API
using Pydantic Settings. It handles environment variables, configuration
validation, and provides type-safe access to all application settings.

Environment Variables:
    APP_API_TITLE: Title for the FastAPI application (default: Workflow Manager API)
    APP_API_VERSION: Version string for the API (default: 0.1.0)
    APP_LOG_LEVEL: Logging level (default: INFO)
    APP_ALLOW_ORIGINS: CORS allowed origins (default: ["*"])
    APP_GITHUB_API_URL: GitHub REST API base URL (default: https://api.github.com)
    APP_GITHUB_API_VERSION: Value of the X-GitHub-Api-Version header
    APP_GITHUB_USER_AGENT: User-Agent sent to GitHub
    APP_GITHUB_TOKEN: Token registered for the "default" user
    APP_REQUEST_TIMEOUT: Timeout in seconds for a single GitHub call (default: 15)
    APP_PUBLISH_TIMEOUT: End-to-end budget in seconds for one publish (default: 60)
    APP_READ_RETRY_ATTEMPTS: Attempts for read-only GitHub calls (default: 3)
    APP_REUSABLE_WORKFLOWS_REPO: Repository hosting the reusable workflows
    APP_VERIFY_GENERATED_YAML: Parse rendered YAML before returning it (default: true)
    APP_PR_SIGNATURE: Product name quoted in generated pull request bodies
"""

import logging
from enum import Enum
from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LogLevel(str, Enum):
    """Supported log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Settings(BaseSettings):
    """
    Application configuration settings.

    Attributes:
        api_title (str): Title for the FastAPI application
        api_version (str): Version string for the API
        allow_origins (list[str]): CORS allowed origins list
        log_level (LogLevel): Logging level for the application

    GitHub:
        github_api_url (str): Base URL of the GitHub REST API
        github_api_version (str): REST API version header value
        github_user_agent (str): User-Agent header value
        github_token (str | None): Token used for the "default" user

    Publishing:
        request_timeout (int): Per-call timeout in seconds
        publish_timeout (int): Budget in seconds for a whole publish sequence
        read_retry_attempts (int): Attempts for idempotent read calls
        reusable_workflows_repo (str): owner/name of the reusable workflows repo
        verify_generated_yaml (bool): Parse rendered workflows before returning
        pr_signature (str): Name quoted at the bottom of pull request bodies
        history_limit (int): Publish records kept in memory, oldest dropped first

    Note:
        Environment variables are prefixed with "APP_" and may also be
        supplied through a .env file.
    """

    api_title: str = Field(
        default="Workflow Manager API", description="Title for the FastAPI application"
    )
    api_version: str = Field(default="0.1.0", description="Version string for the API")
    allow_origins: List[str] = Field(
        default=["*"], description="CORS allowed origins list"
    )
    log_level: LogLevel = Field(
        default=LogLevel.INFO, description="Logging level for the application"
    )

    github_api_url: str = Field(
        default="https://api.github.com", description="GitHub REST API base URL"
    )
    github_api_version: str = Field(
        default="2022-11-28", description="X-GitHub-Api-Version header value"
    )
    github_user_agent: str = Field(
        default="workflow-manager-api", description="User-Agent sent to GitHub"
    )
    github_token: Optional[str] = Field(
        default=None, description="GitHub token registered for the default user"
    )

    request_timeout: int = Field(
        default=15, ge=1, le=60, description="Timeout for a single GitHub call"
    )
    publish_timeout: int = Field(
        default=60, ge=10, le=300, description="Budget for a full publish sequence"
    )
    read_retry_attempts: int = Field(
        default=3, ge=1, le=5, description="Attempts for read-only GitHub calls"
    )
    reusable_workflows_repo: str = Field(
        default="Calance-US/calance-workflows",
        description="Repository hosting the reusable build/deploy workflows",
    )
    verify_generated_yaml: bool = Field(
        default=True, description="Parse rendered YAML before returning it"
    )
    pr_signature: str = Field(
        default="Calance Workflow Manager",
        description="Product name quoted in generated pull request bodies",
    )
    history_limit: int = Field(
        default=1000, ge=1, description="Publish records kept in memory"
    )

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v) -> str:
        """Validate and normalize log level configuration."""
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("github_api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def default_token_configured(self) -> bool:
        """Check if a token is configured for the default user."""
        return bool(self.github_token)

    def log_configuration(self) -> None:
        """Log current configuration for debugging."""
        config_info = {
            "api_title": self.api_title,
            "api_version": self.api_version,
            "log_level": self.log_level.value,
            "github_api_url": self.github_api_url,
            "default_token_configured": self.default_token_configured,
            "request_timeout": self.request_timeout,
            "publish_timeout": self.publish_timeout,
        }
        logging.info("Configuration loaded successfully", extra={"config": config_info})


@lru_cache()
def get_settings() -> Settings:
    """Create cached settings instance to avoid repeated environment variable reads."""
    return Settings()


settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.value),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger("workflow_api")
settings.log_configuration()

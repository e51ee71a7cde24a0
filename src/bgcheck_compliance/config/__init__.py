"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="bgcheck-compliance", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Storage ==========
    storage_backend: Literal["memory", "database"] = Field(
        default="memory",
        description="Where the ledger, escalation events and SLA alerts are kept"
    )
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/compliance",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Compliance Configuration ==========
    compliance_config_path: Path = Field(
        default=Path("compliance_config.yaml"),
        description="Path to the SLA / escalation rule YAML file"
    )
    sweep_interval_seconds: int = Field(
        default=300,
        description="Seconds between compliance sweeps (0 disables the scheduler)",
        ge=0
    )

    # ========== Notification Webhook ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook that receives escalation and SLA notification requests"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Upper bound for a single notification delivery",
        ge=0.1,
        le=30
    )
    notification_queue_size: int = Field(
        default=500,
        description="Pending notification requests kept before dropping",
        ge=1
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class CheckStatus(str, Enum):
    """Background check workflow statuses."""
    NOT_STARTED = "not-started"
    PENDING_CONSENT = "pending-consent"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    ISSUES_FOUND = "issues-found"
    CANCELLED = "cancelled"


class SLAState(str, Enum):
    """SLA classifications, ordered from least to most urgent."""
    ON_TRACK = "on-track"
    WARNING = "warning"
    CRITICAL = "critical"
    BREACHED = "breached"
    NOT_MONITORED = "not-monitored"


class EscalationPriority(str, Enum):
    """Escalation rule priorities."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EscalationState(str, Enum):
    """Lifecycle position of an escalation event, used for filtering."""
    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class NotificationKind(str, Enum):
    """What a notification request is about."""
    ESCALATION = "escalation"
    SLA_WARNING = "sla-warning"
    SLA_CRITICAL = "sla-critical"
    SLA_BREACHED = "sla-breached"


# ========== Lists for validation ==========

TERMINAL_STATUSES = frozenset({CheckStatus.COMPLETED, CheckStatus.CANCELLED})
VALID_STATUSES = list(CheckStatus)

# Urgency rank used for monotonicity checks and "most urgent first" ordering
SLA_STATE_RANK = {
    SLAState.ON_TRACK: 0,
    SLAState.WARNING: 1,
    SLAState.CRITICAL: 2,
    SLAState.BREACHED: 3,
}

AUTOMATED_ACTOR_ID = "system"
AUTOMATED_ACTOR_NAME = "Automated System"

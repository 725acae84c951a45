"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="campus-helpdesk", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    storage_backend: str = Field(
        default="sql",
        description="Ticket storage: 'sql' (SQLAlchemy) or 'memory' (single process, non-durable)"
    )
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA / Escalation ==========
    sla_config_path: Path = Field(
        default=Path("sla_policy.yaml"),
        description="Path to SLA policy YAML file"
    )
    escalation_scan_interval: int = Field(
        default=60,
        description="Seconds between expired-deadline scans (max staleness of auto-escalation)",
        ge=0
    )

    # ========== Embeddings / Duplicate Detection ==========
    embedding_api_key: Optional[str] = Field(
        default=None,
        description="API key for the OpenAI-compatible embeddings endpoint"
    )
    embedding_base_url: Optional[str] = Field(
        default=None,
        description="Base URL of the embeddings endpoint (None = OpenAI default)"
    )
    embedding_model: str = Field(
        default="text-embedding-004",
        description="Pinned embedding model identity; vectors from other models are never compared"
    )
    embedding_timeout_seconds: float = Field(default=10.0, ge=0.1, le=60)
    mock_embeddings: bool = Field(
        default=False,
        description="Use deterministic mock embeddings (no API calls)"
    )
    embedding_dimension: int = Field(
        default=768,
        description="Dimension of mock embedding vectors",
        ge=8
    )
    duplicate_similarity_threshold: float = Field(
        default=0.85,
        description="Minimum cosine similarity for auto-linking a duplicate",
        ge=0.0,
        le=1.0
    )

    # ========== Event Delivery ==========
    event_webhook_url: Optional[str] = Field(
        default=None,
        description="Notification/analytics webhook receiving domain events"
    )
    event_webhook_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for webhook calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
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
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        if v not in {"sql", "memory"}:
            raise ValueError("storage_backend must be 'sql' or 'memory'")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

TICKET_NUMBER_PREFIX = "TKT"
MAX_ESCALATION_LEVEL = 3


class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    PENDING_INFO = "PENDING_INFO"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"
    REJECTED = "REJECTED"


class Priority(str, Enum):
    """Intake priority chosen by the requester."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class EscalationUrgency(str, Enum):
    """Escalation-urgency scale the SLA table is keyed by."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


class TicketCategory(str, Enum):
    """Complaint categories."""
    TRANSPORT = "TRANSPORT"
    HOSTEL = "HOSTEL"
    ACADEMIC = "ACADEMIC"
    ADMINISTRATIVE = "ADMINISTRATIVE"
    OTHER = "OTHER"


class OrgLevel(str, Enum):
    """Organizational hierarchy levels, outermost first."""
    CAMPUS = "CAMPUS"
    COLLEGE = "COLLEGE"
    DEPARTMENT = "DEPARTMENT"


class EscalationTrigger(str, Enum):
    """What caused an escalation."""
    SLA_BREACH = "SLA_BREACH"
    MANUAL = "MANUAL"


# Authority chain indexed by escalation level
AUTHORITY_LEVELS = ["DEPARTMENT", "COLLEGE", "CAMPUS", "SYSTEM"]


# ========== Lists for validation ==========

ACTIVE_STATUSES = [
    TicketStatus.OPEN, TicketStatus.IN_PROGRESS,
    TicketStatus.PENDING_INFO, TicketStatus.ESCALATED
]
DEADLINE_FREE_STATUSES = [
    TicketStatus.RESOLVED, TicketStatus.CLOSED, TicketStatus.REJECTED
]
TERMINAL_STATUSES = [TicketStatus.CLOSED, TicketStatus.REJECTED]

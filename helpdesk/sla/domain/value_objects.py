"""
SLA Value Objects
==================

Immutable value objects for the SLA domain.

Deadlines are looked up on the escalation-urgency scale, which is distinct
from the intake priority a requester picks; the policy maps one onto the
other.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator

from helpdesk.config import EscalationUrgency, Priority

DEFAULT_SLA_HOURS: Dict[EscalationUrgency, float] = {
    EscalationUrgency.URGENT: 2,
    EscalationUrgency.HIGH: 12,
    EscalationUrgency.MEDIUM: 24,
    EscalationUrgency.LOW: 48,
}

DEFAULT_PRIORITY_URGENCY: Dict[Priority, EscalationUrgency] = {
    Priority.CRITICAL: EscalationUrgency.URGENT,
    Priority.HIGH: EscalationUrgency.HIGH,
    Priority.MEDIUM: EscalationUrgency.MEDIUM,
    Priority.LOW: EscalationUrgency.LOW,
}

DEFAULT_REOPEN_WINDOW_HOURS = 7 * 24


def _upper_keys(v):
    if isinstance(v, dict):
        return {str(k).upper() if isinstance(k, str) else k: val for k, val in v.items()}
    return v


class SLAConfig(BaseModel):
    """
    SLA policy loaded from YAML.

    Missing entries fall back to the published defaults, so a partial file
    only overrides what it names.
    """
    model_config = ConfigDict(frozen=True)

    sla_hours: Dict[EscalationUrgency, float] = Field(
        default_factory=lambda: dict(DEFAULT_SLA_HOURS),
        description="Escalation deadline in hours by urgency"
    )
    priority_urgency: Dict[Priority, EscalationUrgency] = Field(
        default_factory=lambda: dict(DEFAULT_PRIORITY_URGENCY),
        description="Urgency assumed for each intake priority"
    )
    reopen_window_hours: float = Field(
        default=DEFAULT_REOPEN_WINDOW_HOURS,
        gt=0,
        description="How long after resolution a ticket may be reopened"
    )

    @field_validator("sla_hours", mode="before")
    @classmethod
    def normalize_sla_keys(cls, v):
        return _upper_keys(v)

    @field_validator("priority_urgency", mode="before")
    @classmethod
    def normalize_priority_keys(cls, v):
        v = _upper_keys(v)
        if isinstance(v, dict):
            v = {k: val.upper() if isinstance(val, str) else val for k, val in v.items()}
        return v

    @field_validator("sla_hours")
    @classmethod
    def validate_sla_hours(cls, v: Dict[EscalationUrgency, float]) -> Dict[EscalationUrgency, float]:
        """Fill missing tiers and reject non-positive durations."""
        merged = {**DEFAULT_SLA_HOURS, **v}
        for urgency, hours in merged.items():
            if hours <= 0:
                raise ValueError(f"SLA hours for {urgency.value} must be positive")
        return merged

    @field_validator("priority_urgency")
    @classmethod
    def validate_priority_urgency(cls, v: Dict[Priority, EscalationUrgency]) -> Dict[Priority, EscalationUrgency]:
        return {**DEFAULT_PRIORITY_URGENCY, **v}


class SlaPolicy:
    """
    Pure lookup from urgency (or priority) to escalation deadline duration.
    """

    def __init__(self, config: SLAConfig | None = None):
        self._config = config or SLAConfig()

    @property
    def config(self) -> SLAConfig:
        return self._config

    @property
    def reopen_window(self) -> timedelta:
        return timedelta(hours=self._config.reopen_window_hours)

    def urgency_for(self, priority: Priority) -> EscalationUrgency:
        return self._config.priority_urgency[priority]

    def duration_for(self, urgency: EscalationUrgency) -> timedelta:
        return timedelta(hours=self._config.sla_hours[urgency])

    def duration_for_priority(self, priority: Priority) -> timedelta:
        return self.duration_for(self.urgency_for(priority))

    def deadline_from(self, now: datetime, urgency: EscalationUrgency) -> datetime:
        """Deadline for a clock started at `now`."""
        return now + self.duration_for(urgency)


class ISLAPolicyProvider(ABC):
    """Source of the current SLA policy (may change on hot reload)."""

    @abstractmethod
    def get_policy(self) -> SlaPolicy:
        """Get the policy in force right now."""


class StaticSLAPolicyProvider(ISLAPolicyProvider):
    """Provider returning a fixed policy."""

    def __init__(self, policy: SlaPolicy | None = None):
        self._policy = policy or SlaPolicy()

    def get_policy(self) -> SlaPolicy:
        return self._policy

"""Collaborator entities the notification engine reads.

Tasks, equipment and homes are owned by the app's CRUD layer; only the fields
that drive scheduling and content are modelled here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from pydantic import AfterValidator, BaseModel, Field


def _ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons never mix naive and aware."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


Timestamp = Annotated[datetime, AfterValidator(_ensure_aware)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Home(BaseModel):
    id: str
    name: str
    address: str = ""
    home_type: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)


class Task(BaseModel):
    id: str
    home_id: str
    title: str
    category: str
    due_date: Timestamp
    equipment_id: str | None = None
    description: str | None = None
    priority: int | None = None
    estimated_duration_minutes: int | None = None
    difficulty_level: int | None = None
    status: str | None = "pending"
    completed_at: Timestamp | None = None
    weather_dependent: bool | None = None
    money_saved_estimate: float | None = None
    notes: str | None = None
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


class Equipment(BaseModel):
    id: str
    home_id: str
    name: str
    category: str
    type: str
    brand: str | None = None
    model: str | None = None
    location: str | None = None
    maintenance_frequency_months: int | None = None
    last_service_date: Timestamp | None = None
    next_service_due: Timestamp | None = None
    notes: str | None = None
    active: bool | None = True
    needs_attention: bool | None = False
    created_at: Timestamp = Field(default_factory=utcnow)
    updated_at: Timestamp = Field(default_factory=utcnow)

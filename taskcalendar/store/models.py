"""Data models for tasks, per-occurrence overrides and materialized occurrences."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from ..utils.helpers import ensure_utc, normalize_instant

# Fields an occurrence inherits from its series template and that an
# override may replace.
DESCRIPTIVE_FIELDS: tuple[str, ...] = (
    "customer_name",
    "customer_id",
    "phone",
    "email",
    "service_id",
    "service_price_cents",
    "address",
    "description",
    "notes",
    "all_day",
    "team_id",
    "lead_source_id",
    "created_by_id",
)

# Fields a single-occurrence override may carry besides the descriptive ones.
TIMING_FIELDS: tuple[str, ...] = ("start_at", "end_at")


class Scope(str, Enum):
    """Granularity of an edit or delete request."""

    SINGLE = "single"
    FOLLOWING = "following"
    ALL = "all"


class _InstantModel(BaseModel):
    """Base model that keeps every datetime field timezone-aware UTC."""

    @field_validator("*", mode="after")
    @classmethod
    def _utc_datetimes(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return ensure_utc(value)
        return value


class Task(_InstantModel):
    """Series template (or standalone task when ``rrule`` is None)."""

    id: str = Field(..., description="Task ID")
    start_at: datetime = Field(..., description="Anchor start instant")
    end_at: datetime = Field(..., description="End instant; end - start is the occurrence duration")
    rrule: Optional[str] = Field(default=None, description="RRULE value string")

    # Descriptive fields inherited by occurrences
    customer_name: str = Field(..., description="Customer display name")
    customer_id: Optional[str] = Field(default=None, description="Customer reference")
    phone: Optional[str] = Field(default=None, description="Contact phone")
    email: Optional[str] = Field(default=None, description="Contact email")
    service_id: Optional[str] = Field(default=None, description="Service reference")
    service_price_cents: Optional[int] = Field(default=None, ge=0, description="Price in cents")
    address: Optional[str] = Field(default=None, description="Job address")
    description: Optional[str] = Field(default=None, description="Work description")
    notes: Optional[str] = Field(default=None, description="Internal notes")
    all_day: bool = Field(default=False, description="All-day flag")
    team_id: Optional[str] = Field(default=None, description="Assigned team reference")
    lead_source_id: Optional[str] = Field(default=None, description="Lead source reference")
    created_by_id: Optional[str] = Field(default=None, description="Creating user reference")

    # Lineage and lifecycle
    parent_series_id: Optional[str] = Field(
        default=None, description="Series this one was split from by a following-scope edit"
    )
    deleted_at: Optional[datetime] = Field(default=None, description="Soft-delete marker")
    created_at: Optional[datetime] = Field(default=None, description="Creation time")
    updated_at: Optional[datetime] = Field(default=None, description="Last modification time")

    @property
    def is_recurring(self) -> bool:
        """True when the task carries a recurrence rule."""
        return bool(self.rrule)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def duration(self) -> timedelta:
        """Occurrence duration."""
        return self.end_at - self.start_at

    def template_fields(self) -> dict[str, Any]:
        """Descriptive field values occurrences inherit."""
        return {name: getattr(self, name) for name in DESCRIPTIVE_FIELDS}


class TaskOverride(_InstantModel):
    """Per-occurrence exception keyed by (series, original start to the second).

    Null modification fields inherit from the series template at
    materialization time. ``deleted_at`` marks the occurrence deleted and wins
    over any modification; ``superseded_at`` marks the row itself discarded by
    a series split.
    """

    series_id: str = Field(..., description="Owning series (task) ID")
    original_start: datetime = Field(..., description="Generated start this override replaces")

    start_at: Optional[datetime] = Field(default=None, description="Rescheduled start")
    end_at: Optional[datetime] = Field(default=None, description="Rescheduled end")

    customer_name: Optional[str] = None
    customer_id: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    service_id: Optional[str] = None
    service_price_cents: Optional[int] = Field(default=None, ge=0)
    address: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    all_day: Optional[bool] = None
    team_id: Optional[str] = None
    lead_source_id: Optional[str] = None
    created_by_id: Optional[str] = None

    deleted_at: Optional[datetime] = Field(default=None, description="Occurrence deletion marker")
    superseded_at: Optional[datetime] = Field(
        default=None, description="Row discarded by a following-scope split"
    )
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("original_start", mode="after")
    @classmethod
    def _normalize_original_start(cls, value: datetime) -> datetime:
        return normalize_instant(value)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_superseded(self) -> bool:
        return self.superseded_at is not None

    def modifications(self) -> dict[str, Any]:
        """Non-null modification fields (descriptive and timing)."""
        return {
            name: getattr(self, name)
            for name in (*TIMING_FIELDS, *DESCRIPTIVE_FIELDS)
            if getattr(self, name) is not None
        }


class TaskFieldDiff(_InstantModel):
    """Field changes requested by an edit; only explicitly set fields apply.

    Use ``changes()`` rather than reading attributes: a field left unset means
    "keep", while a field explicitly set to None means "clear".
    """

    model_config = ConfigDict(extra="forbid")

    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    rrule: Optional[str] = None

    customer_name: Optional[str] = Field(default=None, min_length=1)
    customer_id: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    service_id: Optional[str] = None
    service_price_cents: Optional[int] = Field(default=None, ge=0)
    address: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    all_day: Optional[bool] = None
    team_id: Optional[str] = None
    lead_source_id: Optional[str] = None
    created_by_id: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        """Explicitly set fields and their values."""
        return self.model_dump(exclude_unset=True)


class Occurrence(BaseModel):
    """One concrete scheduled instance of a task."""

    task_id: str = Field(..., description="Series (or standalone task) ID")
    original_start: datetime = Field(..., description="Generated start identifying this occurrence")
    start: datetime = Field(..., description="Occurrence start")
    end: datetime = Field(..., description="Occurrence end")

    customer_name: str
    customer_id: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    service_id: Optional[str] = None
    service_price_cents: Optional[int] = None
    address: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None
    all_day: bool = False
    team_id: Optional[str] = None
    lead_source_id: Optional[str] = None
    created_by_id: Optional[str] = None

    rrule: Optional[str] = Field(default=None, description="Series rule, None for standalone tasks")
    is_recurring: bool = Field(default=False, description="Generated from a series")
    is_exception: bool = Field(default=False, description="A modification override was applied")

    @field_serializer("original_start", "start", "end")
    def serialize_datetime(self, dt: datetime) -> str:
        """Serialize datetime fields to ISO format."""
        return dt.isoformat()


class MutationResult(BaseModel):
    """Outcome of an update."""

    changed: bool
    series_id: Optional[str] = Field(
        default=None, description="Child series created by a following-scope split"
    )


class RemovalResult(BaseModel):
    """Outcome of a delete; ``changed`` counts rows written or marked."""

    changed: int


class MigrationReport(BaseModel):
    """Outcome of moving legacy EXDATE clauses into deletion overrides."""

    fixed: int = 0
    errors: int = 0
    total: int = 0
    exclusions_created: int = 0

"""Task domain models: one record, two independently owned status tracks."""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sitetrack.core.config import Constants


class Priority(StrEnum):
    """Task priority."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNSPECIFIED = "unspecified"

    @classmethod
    def _missing_(cls, value: object) -> "Priority":
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return cls.UNSPECIFIED

    @property
    def rank(self) -> int:
        """Sort rank, higher first."""
        return Constants.PRIORITY_RANK[self.value]


class ContractorStatus(StrEnum):
    """Conventional contractor execution states (the field itself is free-form)."""

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ReviewStatus(StrEnum):
    """Conventional reviewer verification states (the field itself is free-form)."""

    PENDING_VERIFICATION = "pending verification"
    APPROVED = "approved"
    REJECTED = "rejected"


class ContractorTrack(BaseModel):
    """Fields owned by the assigned contractor."""

    status: str = Field(default=ContractorStatus.IN_PROGRESS, description="Self-reported execution state")
    progress_percentage: int = Field(default=0, description="Contractor-reported progress 0-100")
    is_approved: bool = Field(default=False, description="Set once the contractor formally submits")
    uploaded_photos: list[str] = Field(default_factory=list, description="Evidence references, ordered")
    submitted_on: datetime | None = Field(default=None, description="Last formal submission time")
    evidence_title: str | None = Field(default=None, description="Caption for the uploaded evidence")


class SiteInchargeTrack(BaseModel):
    """Fields owned by the reviewing site incharge."""

    status: str = Field(default=ReviewStatus.PENDING_VERIFICATION, description="Verification state")
    is_approved: bool = Field(default=False, description="Set once a verification decision approves the work")
    uploaded_photos: list[str] = Field(default_factory=list, description="Reviewer evidence, append-only")
    submitted_on: datetime | None = Field(default=None, description="Last formal review time")
    note: str | None = Field(default=None, description="Reviewer note")
    quality_assessment: str | None = Field(default=None, description="Reviewer quality assessment")
    verification_decision: str | None = Field(default=None, description="Last verification decision label")


class Task(BaseModel):
    """A unit of construction work assigned to one contractor."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Unique within the owning project")
    title: str = Field(..., min_length=1, description="Task title")
    description: str = Field(default="", description="Detailed task description")
    construction_phase: str | None = Field(default=None, description="Construction phase label")
    priority: Priority = Field(default=Priority.UNSPECIFIED, description="Task priority")
    deadline: datetime | None = Field(default=None, description="Deadline")
    contractor_id: str | None = Field(default=None, description="Assigned contractor user ID")
    contractor: ContractorTrack = Field(default_factory=ContractorTrack)
    site_incharge: SiteInchargeTrack = Field(default_factory=SiteInchargeTrack)

    @field_validator("priority", mode="before")
    @classmethod
    def normalize_priority(cls, v: Any) -> Any:  # noqa: ANN401
        """Treat missing or unknown priorities as unspecified, matching case-insensitively."""
        if v in (None, ""):
            return Priority.UNSPECIFIED
        return Priority(v) if isinstance(v, str) else v


class _Patch(BaseModel):
    """Base for role-specific patches. Unknown fields are rejected."""

    model_config = ConfigDict(extra="forbid")

    def has_changes(self) -> bool:
        """Return True if any field carries a value to apply."""
        for name in type(self).model_fields:
            value = getattr(self, name)
            if value is None or value is False:
                continue
            if isinstance(value, list | str) and not value:
                continue
            return True
        return False


class ContractorPatch(_Patch):
    """Full update sent by the assigned contractor."""

    remove_photos: list[str] = Field(default_factory=list)
    photos: list[str] = Field(default_factory=list)
    status: str | None = None
    progress_percentage: int | None = None
    construction_phase: str | None = None
    evidence_title: str | None = None
    should_submit: bool = False


class SiteInchargePatch(_Patch):
    """Review update sent by the site incharge."""

    photos: list[str] = Field(default_factory=list)
    status: str | None = None
    note: str | None = None
    quality_assessment: str | None = None
    verification_decision: str | None = None


class MiniPatch(_Patch):
    """Lightweight contractor update: phase, progress and status only."""

    phase: str | None = None
    progress: int | None = None
    status: str | None = None


TaskPatch = ContractorPatch | SiteInchargePatch | MiniPatch

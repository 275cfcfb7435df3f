"""Organizational membership, lead and quality issue domain models."""

from enum import StrEnum

from pydantic import BaseModel, Field


class TeamLeadMembership(BaseModel):
    """Edge: a team lead reports to a sales manager."""

    id: str
    sales_manager_id: str
    team_lead_id: str
    is_deleted: bool = False


class AgentMembership(BaseModel):
    """Edge: an agent reports to a team lead."""

    id: str
    team_lead_id: str
    agent_id: str
    is_deleted: bool = False


class Lead(BaseModel):
    """Sales lead, an ownable entity keyed by added_by."""

    id: str
    name: str = ""
    status: str | None = None
    added_by: str = Field(..., description="User who added the lead")
    is_deleted: bool = False


class QualityIssueStatus(StrEnum):
    """Quality issue lifecycle."""

    OPEN = "open"
    UNDER_REVIEW = "under_review"
    RESOLVED = "resolved"


class QualityIssue(BaseModel):
    """Reported quality problem, linked to a project and optionally a contractor by reference."""

    id: str
    title: str
    project_id: str
    severity: str
    status: QualityIssueStatus = QualityIssueStatus.OPEN
    description: str = ""
    contractor_id: str | None = None
    reported_by: str
    evidence_images: list[str] = Field(default_factory=list)
    updated_by: str | None = None

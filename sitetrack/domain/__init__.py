"""Domain models and DTOs."""

from sitetrack.domain.actor import PLANNER_ROLES, REVIEWER_ROLES, Actor, Role
from sitetrack.domain.organization import (
    AgentMembership,
    Lead,
    QualityIssue,
    QualityIssueStatus,
    TeamLeadMembership,
)
from sitetrack.domain.project import Project
from sitetrack.domain.task import (
    ContractorPatch,
    ContractorStatus,
    ContractorTrack,
    MiniPatch,
    Priority,
    ReviewStatus,
    SiteInchargePatch,
    SiteInchargeTrack,
    Task,
    TaskPatch,
)


__all__ = [
    "PLANNER_ROLES",
    "REVIEWER_ROLES",
    "Actor",
    "AgentMembership",
    "ContractorPatch",
    "ContractorStatus",
    "ContractorTrack",
    "Lead",
    "MiniPatch",
    "Priority",
    "Project",
    "QualityIssue",
    "QualityIssueStatus",
    "ReviewStatus",
    "Role",
    "SiteInchargePatch",
    "SiteInchargeTrack",
    "Task",
    "TaskPatch",
    "TeamLeadMembership",
]

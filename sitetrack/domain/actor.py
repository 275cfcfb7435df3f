"""Actor domain models and role vocabulary."""

from enum import StrEnum

from pydantic import BaseModel, Field, field_validator


class Role(StrEnum):
    """Organizational role of an acting user."""

    OWNER = "owner"
    ADMIN = "admin"
    SALES_MANAGER = "sales_manager"
    TEAM_LEAD = "team_lead"
    AGENT = "agent"
    SITE_INCHARGE = "site_incharge"
    CONTRACTOR = "contractor"
    ACCOUNTANT = "accountant"
    CUSTOMER_PURCHASED = "customer_purchased"
    UNKNOWN = "unknown"

    @classmethod
    def _missing_(cls, value: object) -> "Role":
        return cls.UNKNOWN


# Roles that may review and approve contractor work
REVIEWER_ROLES = frozenset({Role.SITE_INCHARGE, Role.ADMIN, Role.OWNER})

# Roles that plan projects and hand out tasks
PLANNER_ROLES = frozenset({Role.ADMIN, Role.OWNER})


class Actor(BaseModel):
    """The authenticated identity performing an operation."""

    id: str = Field(..., min_length=1, description="User ID of the acting identity")
    role: Role = Field(..., description="Organizational role")
    name: str = Field(default="", description="Display name, used in notification text")

    @field_validator("role", mode="before")
    @classmethod
    def coerce_role(cls, v: object) -> object:
        """Map unlisted role strings to Role.UNKNOWN."""
        return Role(v) if isinstance(v, str) else v

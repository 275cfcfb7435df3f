"""Role-scoped visibility resolver.

Turns an actor and the organizational membership graph into an ownership
predicate that can be evaluated in memory or compiled to a store filter. The
membership graph is only ever read here.
"""

import logging
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from sitetrack.core import db_client
from sitetrack.core.config import Constants, settings
from sitetrack.core.db_client import sanitize_param
from sitetrack.core.errors import AuthorizationDenied, PersistenceUnavailable
from sitetrack.core.logging import span
from sitetrack.domain.actor import Actor, Role
from sitetrack.domain.organization import AgentMembership, Lead, TeamLeadMembership


logger = logging.getLogger(__name__)


class VisibilityPolicy(StrEnum):
    """How far a sales manager's visibility reaches."""

    HIERARCHY = "hierarchy"  # self, team leads under them, agents under those team leads
    BLANKET = "blanket"  # everything


# Roles that see every ownable record regardless of policy
UNRESTRICTED_ROLES = frozenset({Role.ADMIN, Role.OWNER})

# Roles that see every project
PROJECT_WIDE_ROLES = frozenset({Role.OWNER, Role.ADMIN, Role.ACCOUNTANT, Role.CUSTOMER_PURCHASED})

# Roles allowed to change any lead
LEAD_EDITOR_ROLES = frozenset({Role.ADMIN, Role.OWNER, Role.SALES_MANAGER})


class OwnershipFilter(BaseModel):
    """Predicate over records exposing an owner attribute."""

    model_config = ConfigDict(frozen=True)

    unrestricted: bool = Field(default=False, description="Match every record")
    owner_ids: frozenset[str] = Field(default_factory=frozenset, description="Accepted owner identities")
    owner_field: str = Field(default="added_by", description="Record attribute holding the owner")
    multi_valued: bool = Field(default=False, description="The owner attribute is a list of identities")

    def matches(self, record: Mapping[str, Any] | BaseModel) -> bool:
        """Evaluate the predicate against a record dict or model."""
        if self.unrestricted:
            return True
        if isinstance(record, BaseModel):
            value = getattr(record, self.owner_field, None)
        else:
            value = record.get(self.owner_field)
        if value is None:
            return False
        if isinstance(value, list | tuple | set | frozenset):
            return any(str(item) in self.owner_ids for item in value)
        return str(value) in self.owner_ids

    def to_filter_query(self) -> str:
        """Compile the predicate to store filter syntax ("" when unrestricted).

        Multi-valued fields compile to a contains match, which can over-match on
        identities that are substrings of each other; callers re-check with matches().
        """
        if self.unrestricted:
            return ""
        op = "~" if self.multi_valued else "="
        clauses = [f'{self.owner_field} {op} "{sanitize_param(owner)}"' for owner in sorted(self.owner_ids)]
        if not clauses:
            # Nothing can match; an empty id never appears as an owner
            return f'{self.owner_field} = ""'
        if len(clauses) == 1:
            return clauses[0]
        return "(" + " || ".join(clauses) + ")"


async def _list_memberships(*, collection: str, filter_query: str) -> list[dict[str, Any]]:
    try:
        return await db_client.list_records(
            collection=collection,
            filter_query=filter_query,
            per_page=Constants.MAX_PER_PAGE_LIMIT,
        )
    except db_client.DatabaseError as e:
        raise PersistenceUnavailable(str(e)) from e


async def get_team_leads_under(*, sales_manager_id: str) -> list[str]:
    """Team lead IDs with a non-deleted edge to the sales manager."""
    records = await _list_memberships(
        collection="team_lead_memberships",
        filter_query=f'sales_manager_id = "{sanitize_param(sales_manager_id)}"',
    )
    memberships = [TeamLeadMembership.model_validate(record) for record in records]
    return [m.team_lead_id for m in memberships if not m.is_deleted]


async def get_agents_under(*, team_lead_id: str) -> list[str]:
    """Agent IDs with a non-deleted edge to the team lead."""
    records = await _list_memberships(
        collection="agent_memberships",
        filter_query=f'team_lead_id = "{sanitize_param(team_lead_id)}"',
    )
    memberships = [AgentMembership.model_validate(record) for record in records]
    return [m.agent_id for m in memberships if not m.is_deleted]


async def resolve_filter(
    actor: Actor,
    *,
    policy: VisibilityPolicy | None = None,
    owner_field: str = "added_by",
) -> OwnershipFilter:
    """Build the ownership predicate for an actor.

    Precedence: admin and owner are unrestricted. A sales manager is
    unrestricted under BLANKET, otherwise sees self, the team leads under
    them and the agents under those team leads. A team lead sees self and
    current agents. Agents and every other role see only their own records.

    Args:
        actor: Acting identity
        policy: Sales manager policy (defaults to settings.sales_manager_visibility)
        owner_field: Record attribute holding the owner

    Returns:
        OwnershipFilter for the actor
    """
    with span("visibility.resolve_filter"):
        effective_policy = VisibilityPolicy(policy or settings.sales_manager_visibility)

        if actor.role in UNRESTRICTED_ROLES:
            return OwnershipFilter(unrestricted=True, owner_field=owner_field)

        owners = {actor.id}

        if actor.role == Role.SALES_MANAGER:
            if effective_policy == VisibilityPolicy.BLANKET:
                return OwnershipFilter(unrestricted=True, owner_field=owner_field)
            team_leads = await get_team_leads_under(sales_manager_id=actor.id)
            owners.update(team_leads)
            for team_lead_id in team_leads:
                owners.update(await get_agents_under(team_lead_id=team_lead_id))

        elif actor.role == Role.TEAM_LEAD:
            owners.update(await get_agents_under(team_lead_id=actor.id))

        logger.debug(
            "Resolved visibility filter",
            extra={"actor_id": actor.id, "role": str(actor.role), "owner_count": len(owners)},
        )
        return OwnershipFilter(owner_ids=frozenset(owners), owner_field=owner_field)


def resolve_project_scope(actor: Actor) -> OwnershipFilter:
    """Predicate over projects an actor may read.

    Raises:
        AuthorizationDenied: If the role has no access to projects
    """
    if actor.role in PROJECT_WIDE_ROLES:
        return OwnershipFilter(unrestricted=True)
    if actor.role == Role.SITE_INCHARGE:
        return OwnershipFilter(owner_ids=frozenset({actor.id}), owner_field="site_incharge_id")
    if actor.role == Role.CONTRACTOR:
        return OwnershipFilter(owner_ids=frozenset({actor.id}), owner_field="contractor_ids", multi_valued=True)
    raise AuthorizationDenied(f"Role '{actor.role}' cannot view projects")


def can_mutate_lead(actor: Actor, lead: Lead) -> bool:
    """Admins, owners and sales managers may change any lead; others only their own."""
    return actor.role in LEAD_EDITOR_ROLES or lead.added_by == actor.id

"""Lead listing and status updates scoped by the visibility resolver."""

import logging
from typing import Any

from sitetrack.core import db_client
from sitetrack.core.config import Constants
from sitetrack.core.errors import AuthorizationDenied, NotFoundError, PersistenceUnavailable, ValidationError
from sitetrack.core.logging import span
from sitetrack.domain.actor import Actor
from sitetrack.domain.organization import Lead
from sitetrack.modules.tasks.visibility import VisibilityPolicy, can_mutate_lead, resolve_filter
from sitetrack.services import notification_service


logger = logging.getLogger(__name__)

LEADS_COLLECTION = "leads"


async def list_leads(*, actor: Actor, policy: VisibilityPolicy | None = None) -> list[dict[str, Any]]:
    """List non-deleted leads the actor may see, newest first, with added_by populated.

    Args:
        actor: Acting identity
        policy: Sales manager visibility policy (defaults to settings)

    Returns:
        List of lead records
    """
    with span("lead_service.list_leads"):
        ownership = await resolve_filter(actor, policy=policy)

        try:
            records = await db_client.list_records(
                collection=LEADS_COLLECTION,
                filter_query=ownership.to_filter_query(),
                sort="-created",
                per_page=Constants.MAX_PER_PAGE_LIMIT,
                expand={"added_by": "users"},
            )
        except db_client.DatabaseError as e:
            raise PersistenceUnavailable(str(e)) from e

        return [record for record in records if not record.get("is_deleted") and ownership.matches(record)]


async def get_lead(*, lead_id: str) -> Lead:
    """Fetch a non-deleted lead."""
    try:
        record = await db_client.get_record(collection=LEADS_COLLECTION, record_id=lead_id)
    except KeyError as e:
        raise NotFoundError(f"Lead not found: {lead_id}") from e
    except db_client.DatabaseError as e:
        raise PersistenceUnavailable(str(e)) from e

    lead = Lead.model_validate(record)
    if lead.is_deleted:
        raise NotFoundError(f"Lead not found: {lead_id}")
    return lead


async def update_lead_status(*, actor: Actor, lead_id: str, status: str) -> Lead:
    """Change a lead's status, notifying the lead owner when it actually changes.

    Raises:
        ValidationError: If status is empty
        NotFoundError: If the lead does not exist
        AuthorizationDenied: If the actor may not change this lead
    """
    with span("lead_service.update_lead_status"):
        if not status or not status.strip():
            raise ValidationError("Lead status is required")

        lead = await get_lead(lead_id=lead_id)
        if not can_mutate_lead(actor, lead):
            raise AuthorizationDenied(f"User {actor.id} cannot update lead {lead_id}")

        try:
            record = await db_client.update_record(
                collection=LEADS_COLLECTION,
                record_id=lead_id,
                data={"status": status, "updated_by": actor.id},
            )
        except KeyError as e:
            raise NotFoundError(f"Lead not found: {lead_id}") from e
        except db_client.DatabaseError as e:
            raise PersistenceUnavailable(str(e)) from e

        if status != lead.status:
            notification_service.notify(
                recipient_id=lead.added_by,
                title="Lead Status Updated",
                message=f"Lead {lead.name} status changed from {lead.status} to {status}.",
                triggered_by=actor.id,
            )

        logger.info("Updated lead status", extra={"lead_id": lead_id, "status": status, "actor_id": actor.id})
        return Lead.model_validate(record)

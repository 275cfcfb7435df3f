"""Quality issue reporting and status tracking."""

import logging
from typing import Any

from sitetrack.core import db_client
from sitetrack.core.config import Constants
from sitetrack.core.errors import AuthorizationDenied, NotFoundError, PersistenceUnavailable, ValidationError
from sitetrack.core.logging import span
from sitetrack.domain.actor import PLANNER_ROLES, REVIEWER_ROLES, Actor, Role
from sitetrack.domain.organization import QualityIssue, QualityIssueStatus
from sitetrack.modules.tasks import store
from sitetrack.modules.tasks.visibility import OwnershipFilter
from sitetrack.services import notification_service


logger = logging.getLogger(__name__)

QUALITY_ISSUES_COLLECTION = "quality_issues"


def _parse_status(status: str) -> QualityIssueStatus:
    if status not in Constants.QUALITY_ISSUE_STATUSES:
        allowed = ", ".join(Constants.QUALITY_ISSUE_STATUSES)
        raise ValidationError(f"Invalid status '{status}'. Expected one of: {allowed}")
    return QualityIssueStatus(status)


async def create_quality_issue(
    *,
    actor: Actor,
    title: str,
    project_id: str,
    severity: str,
    description: str = "",
    contractor_id: str | None = None,
    status: str | None = None,
    evidence_images: list[str] | None = None,
) -> QualityIssue:
    """Report a quality issue against a project.

    Admins and site incharges are notified.

    Raises:
        ValidationError: If title, project or severity is missing, or status is invalid
        NotFoundError: If the project does not exist
    """
    with span("quality_issue_service.create_quality_issue"):
        if not title or not project_id or not severity:
            raise ValidationError("Title, project and severity are required")
        initial_status = _parse_status(status) if status else QualityIssueStatus.OPEN

        await store.load_project(project_id=project_id)

        data: dict[str, Any] = {
            "title": title,
            "project_id": project_id,
            "severity": severity,
            "status": initial_status,
            "description": description,
            "reported_by": actor.id,
            "evidence_images": evidence_images or [],
        }
        if contractor_id:
            data["contractor_id"] = contractor_id

        try:
            record = await db_client.create_record(collection=QUALITY_ISSUES_COLLECTION, data=data)
        except db_client.DatabaseError as e:
            raise PersistenceUnavailable(str(e)) from e

        await notification_service.notify_roles(
            roles=[Role.ADMIN, Role.SITE_INCHARGE],
            title="Quality Issue Reported",
            message=f"A new quality issue has been reported: {title}.",
            triggered_by=actor.id,
        )

        logger.info("Reported quality issue", extra={"issue_id": record["id"], "project_id": project_id})
        return QualityIssue.model_validate(record)


async def get_quality_issue(*, issue_id: str) -> QualityIssue:
    try:
        record = await db_client.get_record(collection=QUALITY_ISSUES_COLLECTION, record_id=issue_id)
    except KeyError as e:
        raise NotFoundError(f"Quality issue not found: {issue_id}") from e
    except db_client.DatabaseError as e:
        raise PersistenceUnavailable(str(e)) from e
    return QualityIssue.model_validate(record)


def _issue_scope(actor: Actor) -> OwnershipFilter:
    if actor.role in PLANNER_ROLES:
        return OwnershipFilter(unrestricted=True)
    if actor.role == Role.SITE_INCHARGE:
        return OwnershipFilter(owner_ids=frozenset({actor.id}), owner_field="reported_by")
    if actor.role == Role.CONTRACTOR:
        return OwnershipFilter(owner_ids=frozenset({actor.id}), owner_field="contractor_id")
    raise AuthorizationDenied(f"Role '{actor.role}' cannot view quality issues")


async def list_quality_issues(*, actor: Actor) -> list[QualityIssue]:
    """List issues reported by a site incharge, assigned to a contractor, or all for admins."""
    with span("quality_issue_service.list_quality_issues"):
        scope = _issue_scope(actor)
        try:
            records = await db_client.list_records(
                collection=QUALITY_ISSUES_COLLECTION,
                filter_query=scope.to_filter_query(),
                sort="-created",
                per_page=Constants.MAX_PER_PAGE_LIMIT,
            )
        except db_client.DatabaseError as e:
            raise PersistenceUnavailable(str(e)) from e
        return [QualityIssue.model_validate(record) for record in records]


async def _update_issue(*, issue_id: str, data: dict[str, Any]) -> QualityIssue:
    try:
        record = await db_client.update_record(collection=QUALITY_ISSUES_COLLECTION, record_id=issue_id, data=data)
    except KeyError as e:
        raise NotFoundError(f"Quality issue not found: {issue_id}") from e
    except db_client.DatabaseError as e:
        raise PersistenceUnavailable(str(e)) from e
    return QualityIssue.model_validate(record)


async def update_issue_status(*, actor: Actor, issue_id: str, status: str) -> QualityIssue:
    """Move an issue to open, under_review or resolved.

    Raises:
        ValidationError: If status is not a known issue status
        AuthorizationDenied: If the actor is not a reviewer
        NotFoundError: If the issue does not exist
    """
    with span("quality_issue_service.update_issue_status"):
        new_status = _parse_status(status)
        if actor.role not in REVIEWER_ROLES:
            raise AuthorizationDenied(f"Role '{actor.role}' cannot change quality issue status")

        issue = await _update_issue(issue_id=issue_id, data={"status": new_status, "updated_by": actor.id})
        logger.info("Updated quality issue status", extra={"issue_id": issue_id, "status": str(new_status)})
        return issue


async def link_contractor(*, issue_id: str, contractor_id: str, actor_id: str) -> QualityIssue:
    """Point an issue at the contractor responsible for fixing it."""
    with span("quality_issue_service.link_contractor"):
        return await _update_issue(
            issue_id=issue_id,
            data={"contractor_id": contractor_id, "updated_by": actor_id},
        )

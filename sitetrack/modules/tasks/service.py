"""Task workflow coordinator: authorization, state transitions, persistence and notifications."""

import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from sitetrack.core.config import Constants, settings
from sitetrack.core.db_client import sanitize_param
from sitetrack.core.errors import AuthorizationDenied, NotFoundError, ValidationError
from sitetrack.core.logging import log_with_actor_context, span
from sitetrack.domain.actor import PLANNER_ROLES, REVIEWER_ROLES, Actor, Role
from sitetrack.domain.project import Project, ProjectPatch
from sitetrack.domain.task import (
    ContractorPatch,
    ContractorTrack,
    MiniPatch,
    Priority,
    SiteInchargePatch,
    SiteInchargeTrack,
    Task,
)
from sitetrack.modules.tasks import aggregator, state_machine, store
from sitetrack.modules.tasks.aggregator import ContractorSummary, TaskView, UnitProgress
from sitetrack.modules.tasks.visibility import resolve_project_scope
from sitetrack.services import notification_service, quality_issue_service


logger = logging.getLogger(__name__)

WriteCheck = Callable[[Project, Task], None]


def _require(value: object, name: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{name} is required")


def _require_site_incharge_of(actor: Actor, project: Project) -> None:
    """Owners and admins pass; a site incharge must supervise the project."""
    if actor.role in PLANNER_ROLES:
        return
    if actor.role == Role.SITE_INCHARGE and project.site_incharge_id == actor.id:
        return
    raise AuthorizationDenied(f"User {actor.id} does not supervise project {project.id}")


def _new_task(
    *,
    title: str,
    contractor_id: str,
    description: str = "",
    construction_phase: str | None = None,
    priority: str | None = None,
    deadline: datetime | None = None,
) -> Task:
    return Task(
        title=title,
        description=description,
        construction_phase=construction_phase,
        priority=priority or settings.default_task_priority,
        deadline=deadline,
        contractor_id=contractor_id,
        contractor=ContractorTrack(status=Constants.CONTRACTOR_INITIAL_STATUS, progress_percentage=0),
        site_incharge=SiteInchargeTrack(status=Constants.SITE_INCHARGE_INITIAL_STATUS),
    )


async def assign_task(
    *,
    actor: Actor,
    project_id: str,
    contractor_id: str,
    title: str,
    deadline: datetime,
    priority: str | None = None,
    description: str = "",
    construction_phase: str | None = None,
    quality_issue_id: str | None = None,
) -> Task:
    """Assign a new task on the project's unit to a contractor.

    The contractor is added to the project's contractor list and notified.
    When a quality issue is given, the issue is linked to the contractor.

    Args:
        actor: Owner, admin, or the project's site incharge
        project_id: Target project
        contractor_id: Assignee
        title: Task title
        deadline: Completion deadline
        priority: high, medium or low (defaults to settings.default_task_priority)
        description: Task description
        construction_phase: Construction phase label
        quality_issue_id: Quality issue this task addresses

    Returns:
        The stored task

    Raises:
        ValidationError: If required fields are missing or the project has no unit
        NotFoundError: If the project or quality issue does not exist
        AuthorizationDenied: If the actor may not assign work on this project
    """
    with span("task_service.assign_task"):
        _require(project_id, "Project")
        _require(contractor_id, "Contractor")
        _require(title, "Title")
        _require(deadline, "Deadline")

        project = await store.load_project(project_id=project_id)
        _require_site_incharge_of(actor, project)
        if not project.unit_id:
            raise ValidationError(f"Project {project_id} has no unit to assign work on")

        if quality_issue_id:
            await quality_issue_service.get_quality_issue(issue_id=quality_issue_id)

        task = _new_task(
            title=title,
            contractor_id=contractor_id,
            description=description,
            construction_phase=construction_phase,
            priority=priority,
            deadline=deadline,
        )
        stored = await store.append_task(project_id=project_id, unit_id=project.unit_id, task=task, actor_id=actor.id)

        if quality_issue_id:
            await quality_issue_service.link_contractor(
                issue_id=quality_issue_id, contractor_id=contractor_id, actor_id=actor.id
            )

        notification_service.notify(
            recipient_id=contractor_id,
            title="New Construction Task Assigned",
            message=f"You have been assigned a new task: {title}.",
            triggered_by=actor.id,
        )

        logger.info(
            "Assigned task",
            extra={
                "project_id": project_id,
                "task_id": stored.id,
                "contractor_id": contractor_id,
                "actor_id": actor.id,
            },
        )
        return stored


async def create_task_for_unit(
    *,
    actor: Actor,
    project_id: str,
    title: str,
    description: str,
    phase: str,
    deadline: datetime,
    priority: str | None = None,
) -> Task:
    """Let a contractor add a task for itself on the project's unit."""
    with span("task_service.create_task_for_unit"):
        if actor.role != Role.CONTRACTOR:
            raise AuthorizationDenied("Only contractors can create their own unit tasks")
        _require(project_id, "Project")
        _require(title, "Title")
        _require(description, "Description")
        _require(phase, "Phase")
        _require(deadline, "Deadline")

        project = await store.load_project(project_id=project_id)
        if not project.unit_id:
            raise ValidationError(f"Project {project_id} has no unit to add work on")

        task = _new_task(
            title=title,
            contractor_id=actor.id,
            description=description,
            construction_phase=phase,
            priority=priority or Priority.UNSPECIFIED,
            deadline=deadline,
        )
        return await store.append_task(project_id=project_id, unit_id=project.unit_id, task=task, actor_id=actor.id)


def _require_assignee(actor: Actor) -> WriteCheck:
    def _check(project: Project, task: Task) -> None:
        if task.contractor_id != actor.id:
            raise AuthorizationDenied(f"Task {task.id} is not assigned to user {actor.id}")

    return _check


def _require_reviewer(actor: Actor) -> WriteCheck:
    def _check(project: Project, task: Task) -> None:
        _require_site_incharge_of(actor, project)

    return _check


async def update_task_as_contractor(
    *,
    actor: Actor,
    project_id: str,
    task_id: str,
    patch: ContractorPatch,
    now: datetime | None = None,
) -> Task:
    """Apply the assigned contractor's full update to a task.

    On submission the project's site incharge is notified.

    Raises:
        AuthorizationDenied: If the actor is not the task's contractor
        ValidationError: If the patch is empty or progress is invalid
        TaskNotFoundError: If no unit of the project holds the task
        ConcurrencyConflict: If another process saved the project first
    """
    with span("task_service.update_task_as_contractor"):
        if actor.role != Role.CONTRACTOR:
            raise AuthorizationDenied(f"Role '{actor.role}' cannot send contractor updates")
        if not patch.has_changes():
            raise ValidationError("Update contains no changes")

        stamp = now or datetime.now(UTC)
        project, updated = await store.replace_task(
            project_id=project_id,
            task_id=task_id,
            mutator=lambda task: state_machine.apply_update(
                task, actor.role, patch, now=stamp, progress_policy=settings.progress_policy
            ),
            actor_id=actor.id,
            before_write=_require_assignee(actor),
        )

        if patch.should_submit:
            notification_service.notify(
                recipient_id=project.site_incharge_id,
                title="Task Submitted",
                message="A contractor has submitted progress for a construction task.",
                triggered_by=actor.id,
            )

        log_with_actor_context(
            logger,
            "info",
            "Contractor updated task",
            actor_id=actor.id,
            project_id=project_id,
            task_id=task_id,
            submitted=patch.should_submit,
        )
        return updated


async def mini_update_task_as_contractor(
    *,
    actor: Actor,
    project_id: str,
    task_id: str,
    patch: MiniPatch,
) -> Task:
    """Apply a phase/progress/status-only update from the assigned contractor."""
    with span("task_service.mini_update_task_as_contractor"):
        if actor.role != Role.CONTRACTOR:
            raise AuthorizationDenied(f"Role '{actor.role}' cannot send contractor updates")
        if not patch.has_changes():
            raise ValidationError("Update contains no changes")

        _, updated = await store.replace_task(
            project_id=project_id,
            task_id=task_id,
            mutator=lambda task: state_machine.apply_update(
                task, actor.role, patch, progress_policy=settings.progress_policy
            ),
            actor_id=actor.id,
            before_write=_require_assignee(actor),
        )
        log_with_actor_context(
            logger, "debug", "Contractor mini-updated task", actor_id=actor.id, project_id=project_id, task_id=task_id
        )
        return updated


async def update_task_as_site_incharge(
    *,
    actor: Actor,
    project_id: str,
    task_id: str,
    patch: SiteInchargePatch,
    now: datetime | None = None,
) -> Task:
    """Apply a reviewer update, notifying the contractor of a verification decision.

    Raises:
        AuthorizationDenied: If the actor does not supervise the project
        ValidationError: If the patch is empty
        TaskNotFoundError: If no unit of the project holds the task
        ConcurrencyConflict: If another process saved the project first
    """
    with span("task_service.update_task_as_site_incharge"):
        if actor.role not in REVIEWER_ROLES:
            raise AuthorizationDenied(f"Role '{actor.role}' cannot review tasks")
        if not patch.has_changes():
            raise ValidationError("Update contains no changes")

        stamp = now or datetime.now(UTC)
        _, updated = await store.replace_task(
            project_id=project_id,
            task_id=task_id,
            mutator=lambda task: state_machine.apply_update(task, actor.role, patch, now=stamp),
            actor_id=actor.id,
            before_write=_require_reviewer(actor),
        )

        if patch.verification_decision:
            notification_service.notify(
                recipient_id=updated.contractor_id,
                title="Task Verified",
                message=f"Your task '{updated.title}' was marked {patch.verification_decision}.",
                triggered_by=actor.id,
            )

        log_with_actor_context(
            logger,
            "info",
            "Site incharge updated task",
            actor_id=actor.id,
            project_id=project_id,
            task_id=task_id,
            decision=patch.verification_decision,
        )
        return updated


async def _projects_in_scope(actor: Actor, *, extra_filter: str = "") -> list[Project]:
    scope = resolve_project_scope(actor)
    conditions = [clause for clause in (scope.to_filter_query(), extra_filter) if clause]
    projects = await store.query_projects(filter_query=" && ".join(conditions))
    return [project for project in projects if scope.matches(project)]


async def list_tasks_for_actor(*, actor: Actor) -> list[TaskView]:
    """List the tasks an actor should see, highest priority first.

    Raises:
        AuthorizationDenied: If the role has no access to projects
    """
    with span("task_service.list_tasks_for_actor"):
        projects = await _projects_in_scope(actor)
        views = aggregator.flatten_tasks(projects, actor)
        logger.debug("Listed tasks", extra={"actor_id": actor.id, "projects": len(projects), "tasks": len(views)})
        return views


async def get_unit_progress(*, building_id: str, floor_unit_id: str, unit_id: str) -> UnitProgress:
    """Average contractor progress on a unit (0 tasks and 0% when nothing is tracked)."""
    with span("task_service.get_unit_progress"):
        _require(building_id, "Building")
        _require(floor_unit_id, "Floor unit")
        _require(unit_id, "Unit")

        projects = await store.query_projects(
            filter_query=(
                f'building_id = "{sanitize_param(building_id)}" && '
                f'floor_unit_id = "{sanitize_param(floor_unit_id)}" && '
                f'unit_id = "{sanitize_param(unit_id)}"'
            ),
            expand=False,
        )
        if not projects:
            return aggregator.unit_progress([])
        return aggregator.unit_progress(projects[0].units.get(unit_id, []))


async def create_project(
    *,
    actor: Actor,
    building_id: str,
    floor_unit_id: str,
    unit_id: str,
    site_incharge_id: str | None = None,
    client_name: str | None = None,
    description: str | None = None,
    status: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    estimated_budget: float | None = None,
    team_size: int | None = None,
) -> Project:
    """Create a project for a building/floor/unit combination with an empty unit task list.

    Raises:
        AuthorizationDenied: If the actor is not an owner or admin
        ValidationError: If a project already exists for the combination
    """
    with span("task_service.create_project"):
        if actor.role not in PLANNER_ROLES:
            raise AuthorizationDenied(f"Role '{actor.role}' cannot create projects")
        _require(building_id, "Building")
        _require(floor_unit_id, "Floor unit")
        _require(unit_id, "Unit")

        existing = await store.query_projects(
            filter_query=(
                f'building_id = "{sanitize_param(building_id)}" && '
                f'floor_unit_id = "{sanitize_param(floor_unit_id)}" && '
                f'unit_id = "{sanitize_param(unit_id)}"'
            ),
            expand=False,
        )
        if existing:
            raise ValidationError("A project already exists for this building, floor and unit")

        project = Project(
            id=uuid.uuid4().hex,
            building_id=building_id,
            floor_unit_id=floor_unit_id,
            unit_id=unit_id,
            site_incharge_id=site_incharge_id,
            client_name=client_name,
            description=description,
            status=status,
            start_date=start_date,
            end_date=end_date,
            estimated_budget=estimated_budget,
            team_size=team_size,
        )
        project.ensure_unit(unit_id)

        created = await store.insert_project(project=project, actor_id=actor.id)
        logger.info("Created project", extra={"project_id": created.id, "building_id": building_id})
        return created


async def list_projects_for_actor(*, actor: Actor) -> list[Project]:
    """List the projects an actor may see, with building, unit and people references populated.

    Raises:
        AuthorizationDenied: If the role has no access to projects
    """
    with span("task_service.list_projects_for_actor"):
        projects = await _projects_in_scope(actor)
        logger.debug("Listed projects", extra={"actor_id": actor.id, "role": actor.role, "projects": len(projects)})
        return projects


async def update_project(*, actor: Actor, project_id: str, patch: ProjectPatch) -> Project:
    """Change descriptive project fields.

    Moving the project into the completed status notifies every owner and admin.

    Raises:
        AuthorizationDenied: If the actor is not an owner or admin
        ValidationError: If the patch carries no changes
        NotFoundError: If the project does not exist
    """
    with span("task_service.update_project"):
        if actor.role not in PLANNER_ROLES:
            raise AuthorizationDenied(f"Role '{actor.role}' cannot update projects")
        changes = patch.changes()
        if not changes:
            raise ValidationError("No fields to update")

        def _apply(project: Project) -> bool:
            was_completed = (project.status or "").strip().lower() == Constants.PROJECT_COMPLETED_STATUS
            for name, value in changes.items():
                setattr(project, name, value)
            return patch.completes() and not was_completed

        saved, completed = await store.mutate_project(project_id=project_id, mutator=_apply, actor_id=actor.id)
        log_with_actor_context(
            logger, "info", "Updated project", actor_id=actor.id, project_id=project_id, fields=sorted(changes)
        )

        if completed:
            await notification_service.notify_roles(
                roles=[Role.OWNER, Role.ADMIN],
                title="Project Completed",
                message=f"Project {saved.client_name or saved.id} has been marked as Completed.",
                triggered_by=actor.id,
            )
        return saved


async def delete_project(*, actor: Actor, project_id: str) -> None:
    """Soft-delete a project. It disappears from every listing and lookup.

    Raises:
        AuthorizationDenied: If the actor is not an owner or admin
        NotFoundError: If the project does not exist or is already deleted
    """
    with span("task_service.delete_project"):
        if actor.role not in PLANNER_ROLES:
            raise AuthorizationDenied(f"Role '{actor.role}' cannot delete projects")

        def _mark_deleted(project: Project) -> None:
            project.is_deleted = True

        await store.mutate_project(project_id=project_id, mutator=_mark_deleted, actor_id=actor.id)
        log_with_actor_context(logger, "info", "Deleted project", actor_id=actor.id, project_id=project_id)


async def list_contractor_summaries(*, actor: Actor) -> list[ContractorSummary]:
    """Per-contractor task totals across the projects a site incharge supervises."""
    with span("task_service.list_contractor_summaries"):
        if actor.role != Role.SITE_INCHARGE and actor.role not in PLANNER_ROLES:
            raise AuthorizationDenied(f"Role '{actor.role}' cannot view contractor summaries")
        projects = await _projects_in_scope(actor)
        return aggregator.contractor_summaries(projects)


async def list_contractor_tasks(*, actor: Actor, contractor_id: str) -> list[TaskView]:
    """One contractor's tasks across the projects the actor supervises."""
    with span("task_service.list_contractor_tasks"):
        _require(contractor_id, "Contractor")
        if actor.role != Role.SITE_INCHARGE and actor.role not in PLANNER_ROLES:
            raise AuthorizationDenied(f"Role '{actor.role}' cannot view contractor tasks")
        projects = await _projects_in_scope(
            actor, extra_filter=f'contractor_ids ~ "{sanitize_param(contractor_id)}"'
        )
        return aggregator.contractor_tasks(projects, contractor_id)


async def list_completed_tasks_for_unit(*, project_id: str, unit_id: str) -> list[TaskView]:
    """Tasks in a unit that are completed by the contractor and approved by the reviewer."""
    with span("task_service.list_completed_tasks_for_unit"):
        _require(project_id, "Project")
        _require(unit_id, "Unit")
        project = await store.load_project(project_id=project_id)
        if unit_id not in project.units:
            raise NotFoundError(f"Unit {unit_id} not found in project {project_id}")
        return aggregator.completed_tasks_for_unit(project, unit_id)

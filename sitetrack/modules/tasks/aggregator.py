"""Read-side flattening of unit task lists into role-shaped views.

Nothing here performs I/O. Display names come from references the store
already populated under ``Project.expand``.
"""

import math
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from sitetrack.domain.actor import Actor, Role
from sitetrack.domain.project import Project
from sitetrack.domain.task import ContractorStatus, Priority, ReviewStatus, Task
from sitetrack.modules.tasks.state_machine import is_effectively_complete


# Roles that see every task of every project in scope
ALL_TASK_ROLES = frozenset({Role.OWNER, Role.ADMIN, Role.CUSTOMER_PURCHASED})


class TaskView(BaseModel):
    """Denormalized task row shaped for the requesting role."""

    task_id: str
    project_id: str
    unit_id: str
    title: str
    description: str = ""
    construction_phase: str | None = None
    priority: Priority = Priority.UNSPECIFIED
    deadline: datetime | None = None
    status: str = Field(..., description="Contractor status, or reviewer status for site incharge views")
    progress_percentage: int | None = None
    contractor_id: str | None = None
    contractor_name: str | None = None
    project_name: str = "Unnamed Project"
    floor_number: str | None = None
    unit_type: str | None = None
    plot_no: str | None = None
    site_incharge_name: str | None = None
    contractor_photos: list[str] = Field(default_factory=list)
    site_incharge_photos: list[str] = Field(default_factory=list)
    submitted_by_contractor_on: datetime | None = None
    submitted_by_site_incharge_on: datetime | None = None
    note: str | None = None
    quality_assessment: str | None = None
    verification_decision: str | None = None
    is_effectively_complete: bool = False


class UnitProgress(BaseModel):
    """Progress rollup of one unit."""

    total_tasks: int
    overall_progress: int


class ContractorSummary(BaseModel):
    """Per-contractor totals across a set of projects."""

    contractor_id: str
    name: str = "Unknown Contractor"
    total_tasks: int = 0
    completed_tasks: int = 0
    completion_rate: float = 0.0


def _expanded(project: Project, field: str) -> dict[str, Any]:
    value = project.expand.get(field)
    return value if isinstance(value, dict) else {}


def _as_text(value: object) -> str | None:
    return None if value is None else str(value)


def _contractor_names(project: Project) -> dict[str, str]:
    users = project.expand.get("contractor_ids") or []
    return {user["id"]: user.get("name", "") for user in users if isinstance(user, dict) and "id" in user}


def _is_visible(task: Task, actor: Actor) -> bool:
    if actor.role == Role.SITE_INCHARGE:
        submitted = task.contractor.is_approved and task.contractor.status == ContractorStatus.COMPLETED
        return submitted and not task.site_incharge.is_approved
    if actor.role == Role.CONTRACTOR:
        return task.contractor_id == actor.id
    return actor.role in ALL_TASK_ROLES


def build_view(project: Project, unit_id: str, task: Task, *, role: Role) -> TaskView:
    """Shape one task for a role."""
    building = _expanded(project, "building_id")
    floor = _expanded(project, "floor_unit_id")
    unit = _expanded(project, "unit_id")
    site_incharge = _expanded(project, "site_incharge_id")

    is_reviewer_view = role == Role.SITE_INCHARGE
    contractor_name = None
    if role != Role.CONTRACTOR:
        contractor_name = _contractor_names(project).get(task.contractor_id or "") or "Unknown Contractor"

    return TaskView(
        task_id=task.id,
        project_id=project.id,
        unit_id=unit_id,
        title=task.title,
        description=task.description,
        construction_phase=task.construction_phase,
        priority=task.priority,
        deadline=task.deadline,
        status=task.site_incharge.status if is_reviewer_view else task.contractor.status,
        progress_percentage=None if is_reviewer_view else task.contractor.progress_percentage,
        contractor_id=task.contractor_id,
        contractor_name=contractor_name,
        project_name=building.get("project_name") or "Unnamed Project",
        floor_number=_as_text(floor.get("floor_number")),
        unit_type=_as_text(floor.get("unit_type")),
        plot_no=_as_text(unit.get("plot_no")),
        site_incharge_name=site_incharge.get("name"),
        contractor_photos=list(task.contractor.uploaded_photos),
        site_incharge_photos=list(task.site_incharge.uploaded_photos),
        submitted_by_contractor_on=task.contractor.submitted_on,
        submitted_by_site_incharge_on=task.site_incharge.submitted_on,
        note=task.site_incharge.note,
        quality_assessment=task.site_incharge.quality_assessment,
        verification_decision=task.site_incharge.verification_decision,
        is_effectively_complete=is_effectively_complete(task),
    )


def sort_by_priority(views: Iterable[TaskView]) -> list[TaskView]:
    """Order by priority rank descending, keeping encounter order for ties."""
    return sorted(views, key=lambda view: view.priority.rank, reverse=True)


def flatten_tasks(projects: Iterable[Project], actor: Actor) -> list[TaskView]:
    """Flatten every visible task across projects into one priority-ordered list."""
    views = [
        build_view(project, unit_id, task, role=actor.role)
        for project in projects
        for unit_id, task in project.iter_tasks()
        if _is_visible(task, actor)
    ]
    return sort_by_priority(views)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def unit_progress(tasks: list[Task]) -> UnitProgress:
    """Mean contractor progress over a unit's tasks, rounded half up (0 when empty)."""
    if not tasks:
        return UnitProgress(total_tasks=0, overall_progress=0)
    total = sum(task.contractor.progress_percentage for task in tasks)
    return UnitProgress(total_tasks=len(tasks), overall_progress=_round_half_up(total / len(tasks)))


def contractor_summaries(projects: Iterable[Project]) -> list[ContractorSummary]:
    """Task totals per contractor, most tasks first.

    A task counts as completed when the reviewer approved it or progress reached 100.
    """
    summaries: dict[str, ContractorSummary] = {}
    for project in projects:
        names = _contractor_names(project)
        for contractor_id in project.contractor_ids:
            if contractor_id not in summaries:
                summaries[contractor_id] = ContractorSummary(
                    contractor_id=contractor_id, name=names.get(contractor_id) or "Unknown Contractor"
                )

        for _unit_id, task in project.iter_tasks():
            if not task.contractor_id:
                continue
            summary = summaries[task.contractor_id]
            summary.total_tasks += 1
            if task.site_incharge.status == ReviewStatus.APPROVED or task.contractor.progress_percentage >= 100:
                summary.completed_tasks += 1

    for summary in summaries.values():
        if summary.total_tasks:
            summary.completion_rate = round(summary.completed_tasks / summary.total_tasks * 100, 1)

    return sorted(summaries.values(), key=lambda s: s.total_tasks, reverse=True)


def contractor_tasks(projects: Iterable[Project], contractor_id: str) -> list[TaskView]:
    """One contractor's tasks with effectively complete tasks reported as completed."""
    views = []
    for project in projects:
        for unit_id, task in project.iter_tasks():
            if task.contractor_id != contractor_id:
                continue
            view = build_view(project, unit_id, task, role=Role.ADMIN)
            view.status = ContractorStatus.COMPLETED if view.is_effectively_complete else task.site_incharge.status
            views.append(view)
    return sort_by_priority(views)


def completed_tasks_for_unit(project: Project, unit_id: str) -> list[TaskView]:
    """Tasks in a unit that the contractor completed and the reviewer approved."""
    return [
        build_view(project, unit_id, task, role=Role.ADMIN)
        for task in project.units.get(unit_id, [])
        if task.contractor.status == ContractorStatus.COMPLETED and task.site_incharge.is_approved
    ]

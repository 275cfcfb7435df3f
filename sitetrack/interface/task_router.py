"""HTTP routes for projects, unit tasks, leads and quality issues.

Authentication happens upstream; the gateway forwards the acting identity in
the X-Actor-Id and X-Actor-Role headers.
"""

import logging
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, Query, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from sitetrack.core.errors import SiteTrackError, classify_error_with_response
from sitetrack.domain.actor import Actor
from sitetrack.domain.organization import Lead, QualityIssue
from sitetrack.domain.project import Project, ProjectPatch
from sitetrack.domain.task import ContractorPatch, MiniPatch, SiteInchargePatch, Task
from sitetrack.modules.tasks import service as task_service
from sitetrack.modules.tasks.aggregator import ContractorSummary, TaskView, UnitProgress
from sitetrack.services import lead_service, quality_issue_service


logger = logging.getLogger(__name__)

router = APIRouter(tags=["tasks"])


async def get_actor(
    x_actor_id: Annotated[str, Header()],
    x_actor_role: Annotated[str, Header()],
) -> Actor:
    """Build the acting identity from gateway headers."""
    return Actor(id=x_actor_id, role=x_actor_role)


ActorDep = Annotated[Actor, Depends(get_actor)]


async def site_track_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Translate core errors into JSON error responses."""
    error = classify_error_with_response(exc)
    logger.warning(
        "request_failed",
        extra={"path": request.url.path, "code": error.code, "status": error.http_status, "error": str(exc)},
    )
    return JSONResponse(status_code=error.http_status, content={"error": error.model_dump(mode="json")})


class CreateProjectRequest(BaseModel):
    building_id: str
    floor_unit_id: str
    unit_id: str
    site_incharge_id: str | None = None
    client_name: str | None = None
    description: str | None = None
    status: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    estimated_budget: float | None = None
    team_size: int | None = None


class AssignTaskRequest(BaseModel):
    contractor_id: str
    title: str
    deadline: datetime
    priority: str | None = None
    description: str = ""
    construction_phase: str | None = None
    quality_issue_id: str | None = None


class CreateUnitTaskRequest(BaseModel):
    title: str
    description: str
    phase: str
    deadline: datetime
    priority: str | None = None


class StatusRequest(BaseModel):
    status: str = Field(..., min_length=1)


class CreateQualityIssueRequest(BaseModel):
    title: str
    project_id: str
    severity: str
    description: str = ""
    contractor_id: str | None = None
    status: str | None = None
    evidence_images: list[str] = Field(default_factory=list)


@router.post("/projects", status_code=status.HTTP_201_CREATED)
async def create_project(body: CreateProjectRequest, actor: ActorDep) -> Project:
    return await task_service.create_project(actor=actor, **body.model_dump())


@router.get("/projects")
async def list_projects(actor: ActorDep) -> list[Project]:
    return await task_service.list_projects_for_actor(actor=actor)


@router.patch("/projects/{project_id}")
async def update_project(project_id: str, patch: ProjectPatch, actor: ActorDep) -> Project:
    return await task_service.update_project(actor=actor, project_id=project_id, patch=patch)


@router.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(project_id: str, actor: ActorDep) -> None:
    await task_service.delete_project(actor=actor, project_id=project_id)


@router.post("/projects/{project_id}/tasks", status_code=status.HTTP_201_CREATED)
async def assign_task(project_id: str, body: AssignTaskRequest, actor: ActorDep) -> Task:
    return await task_service.assign_task(actor=actor, project_id=project_id, **body.model_dump())


@router.post("/projects/{project_id}/unit-tasks", status_code=status.HTTP_201_CREATED)
async def create_unit_task(project_id: str, body: CreateUnitTaskRequest, actor: ActorDep) -> Task:
    return await task_service.create_task_for_unit(actor=actor, project_id=project_id, **body.model_dump())


@router.patch("/projects/{project_id}/tasks/{task_id}/contractor")
async def update_task_as_contractor(project_id: str, task_id: str, patch: ContractorPatch, actor: ActorDep) -> Task:
    return await task_service.update_task_as_contractor(
        actor=actor, project_id=project_id, task_id=task_id, patch=patch
    )


@router.patch("/projects/{project_id}/tasks/{task_id}/contractor/mini")
async def mini_update_task(project_id: str, task_id: str, patch: MiniPatch, actor: ActorDep) -> Task:
    return await task_service.mini_update_task_as_contractor(
        actor=actor, project_id=project_id, task_id=task_id, patch=patch
    )


@router.patch("/projects/{project_id}/tasks/{task_id}/site-incharge")
async def update_task_as_site_incharge(
    project_id: str, task_id: str, patch: SiteInchargePatch, actor: ActorDep
) -> Task:
    return await task_service.update_task_as_site_incharge(
        actor=actor, project_id=project_id, task_id=task_id, patch=patch
    )


@router.get("/projects/{project_id}/units/{unit_id}/completed-tasks")
async def list_completed_tasks_for_unit(project_id: str, unit_id: str, _actor: ActorDep) -> list[TaskView]:
    return await task_service.list_completed_tasks_for_unit(project_id=project_id, unit_id=unit_id)


@router.get("/tasks")
async def list_tasks(actor: ActorDep) -> list[TaskView]:
    return await task_service.list_tasks_for_actor(actor=actor)


@router.get("/units/progress")
async def get_unit_progress(
    _actor: ActorDep,
    building_id: Annotated[str, Query()],
    floor_unit_id: Annotated[str, Query()],
    unit_id: Annotated[str, Query()],
) -> UnitProgress:
    return await task_service.get_unit_progress(
        building_id=building_id, floor_unit_id=floor_unit_id, unit_id=unit_id
    )


@router.get("/contractors/summary")
async def list_contractor_summaries(actor: ActorDep) -> list[ContractorSummary]:
    return await task_service.list_contractor_summaries(actor=actor)


@router.get("/contractors/{contractor_id}/tasks")
async def list_contractor_tasks(contractor_id: str, actor: ActorDep) -> list[TaskView]:
    return await task_service.list_contractor_tasks(actor=actor, contractor_id=contractor_id)


@router.get("/leads")
async def list_leads(actor: ActorDep) -> list[dict[str, Any]]:
    return await lead_service.list_leads(actor=actor)


@router.patch("/leads/{lead_id}/status")
async def update_lead_status(lead_id: str, body: StatusRequest, actor: ActorDep) -> Lead:
    return await lead_service.update_lead_status(actor=actor, lead_id=lead_id, status=body.status)


@router.post("/quality-issues", status_code=status.HTTP_201_CREATED)
async def create_quality_issue(body: CreateQualityIssueRequest, actor: ActorDep) -> QualityIssue:
    return await quality_issue_service.create_quality_issue(actor=actor, **body.model_dump())


@router.get("/quality-issues")
async def list_quality_issues(actor: ActorDep) -> list[QualityIssue]:
    return await quality_issue_service.list_quality_issues(actor=actor)


@router.patch("/quality-issues/{issue_id}/status")
async def update_issue_status(issue_id: str, body: StatusRequest, actor: ActorDep) -> QualityIssue:
    return await quality_issue_service.update_issue_status(actor=actor, issue_id=issue_id, status=body.status)

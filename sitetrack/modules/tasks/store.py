"""Unit Task Store: per-project storage of unit task sequences.

Every write loads the whole project document, mutates it in memory and saves
it back. Writers for the same project are serialized by an in-process lock,
and the save is a compare-and-swap on the stored document version so a
writer in another process cannot silently overwrite a concurrent change.
"""

import asyncio
import logging
import uuid
import weakref
from collections.abc import Callable
from typing import Any, TypeVar

from sitetrack.core import db_client
from sitetrack.core.config import Constants
from sitetrack.core.errors import ConcurrencyConflict, NotFoundError, PersistenceUnavailable, TaskNotFoundError
from sitetrack.domain.project import Project
from sitetrack.domain.task import Task


logger = logging.getLogger(__name__)

T = TypeVar("T")

PROJECTS_COLLECTION = "projects"

# Reference fields populated on project reads
PROJECT_EXPAND: dict[str, str] = {
    "building_id": "buildings",
    "floor_unit_id": "floor_units",
    "unit_id": "property_units",
    "contractor_ids": "users",
    "site_incharge_id": "users",
}

# A lock only lives while some writer holds or awaits it, and only inside the loop that created it
_project_locks: weakref.WeakKeyDictionary[
    asyncio.AbstractEventLoop, weakref.WeakValueDictionary[str, asyncio.Lock]
] = weakref.WeakKeyDictionary()


def _lock_for(project_id: str) -> asyncio.Lock:
    loop_locks = _project_locks.setdefault(asyncio.get_running_loop(), weakref.WeakValueDictionary())
    lock = loop_locks.get(project_id)
    if lock is None:
        lock = loop_locks[project_id] = asyncio.Lock()
    return lock


async def load_project(*, project_id: str) -> Project:
    """Load a project aggregate by ID.

    Raises:
        NotFoundError: If the project does not exist or is soft-deleted
        PersistenceUnavailable: If the document store fails
    """
    try:
        record = await db_client.get_record(collection=PROJECTS_COLLECTION, record_id=project_id)
    except KeyError as e:
        raise NotFoundError(f"Project not found: {project_id}") from e
    except db_client.DatabaseError as e:
        raise PersistenceUnavailable(str(e)) from e

    project = Project.from_record(record)
    if project.is_deleted:
        raise NotFoundError(f"Project not found: {project_id}")
    return project


async def query_projects(*, filter_query: str = "", expand: bool = True) -> list[Project]:
    """List non-deleted projects matching a filter, with references populated."""
    conditions = ['is_deleted = "false"']
    if filter_query:
        conditions.append(filter_query)

    try:
        records = await db_client.list_records(
            collection=PROJECTS_COLLECTION,
            filter_query=" && ".join(conditions),
            per_page=Constants.MAX_PER_PAGE_LIMIT,
            expand=PROJECT_EXPAND if expand else None,
        )
    except db_client.DatabaseError as e:
        raise PersistenceUnavailable(str(e)) from e

    return [Project.from_record(record) for record in records]


async def insert_project(*, project: Project, actor_id: str) -> Project:
    """Persist a new project aggregate."""
    project.created_by = project.created_by or actor_id
    project.updated_by = actor_id
    try:
        record = await db_client.create_record(collection=PROJECTS_COLLECTION, data=project.to_document())
    except db_client.DatabaseError as e:
        raise PersistenceUnavailable(str(e)) from e
    return Project.from_record(record)


async def _save(project: Project, *, actor_id: str) -> Project:
    project.updated_by = actor_id
    try:
        record = await db_client.update_record(
            collection=PROJECTS_COLLECTION,
            record_id=project.id,
            data=project.to_document(),
            expected_version=project.version,
        )
    except db_client.VersionConflictError as e:
        logger.warning("Project save lost a version race", extra={"project_id": project.id, "error": str(e)})
        raise ConcurrencyConflict(f"Project {project.id} was modified concurrently") from e
    except KeyError as e:
        raise NotFoundError(f"Project not found: {project.id}") from e
    except db_client.DatabaseError as e:
        raise PersistenceUnavailable(str(e)) from e
    return Project.from_record(record)


async def mutate_project(
    *,
    project_id: str,
    mutator: Callable[[Project], T],
    actor_id: str,
) -> tuple[Project, T]:
    """Run load, mutate and save for one project under its write lock.

    The mutator works on the in-memory aggregate. If it raises, nothing is saved.

    Returns:
        Tuple of (saved project, mutator result)
    """
    async with _lock_for(project_id):
        project = await load_project(project_id=project_id)
        result = mutator(project)
        saved = await _save(project, actor_id=actor_id)
    return saved, result


async def ensure_unit(*, project_id: str, unit_id: str, actor_id: str) -> bool:
    """Create an empty task sequence for a unit if it has none.

    Repeat calls are no-ops and do not write.

    Returns:
        True if the unit was created by this call
    """
    async with _lock_for(project_id):
        project = await load_project(project_id=project_id)
        created = project.ensure_unit(unit_id)
        if created:
            await _save(project, actor_id=actor_id)

    if created:
        logger.info("Created unit task list", extra={"project_id": project_id, "unit_id": unit_id})
    return created


async def append_task(*, project_id: str, unit_id: str, task: Task, actor_id: str) -> Task:
    """Append a task to a unit under a freshly generated identifier.

    Raises:
        NotFoundError: If the project does not exist
    """
    stored = task.model_copy(deep=True, update={"id": uuid.uuid4().hex})

    def _append(project: Project) -> Task:
        project.ensure_unit(unit_id)
        project.units[unit_id].append(stored)
        if stored.contractor_id:
            project.add_contractor(stored.contractor_id)
        return stored

    _, appended = await mutate_project(project_id=project_id, mutator=_append, actor_id=actor_id)
    logger.info("Appended task", extra={"project_id": project_id, "unit_id": unit_id, "task_id": appended.id})
    return appended


def _locate(project: Project, task_id: str) -> tuple[str, int]:
    located = project.locate_task(task_id)
    if located is None:
        raise TaskNotFoundError(f"Task {task_id} not found in project {project.id}")
    return located


async def find_task(*, project_id: str, task_id: str) -> tuple[Task, str]:
    """Scan every unit of the project for a task.

    Returns:
        Tuple of (task, owning unit ID)

    Raises:
        TaskNotFoundError: If no unit holds the task
    """
    project = await load_project(project_id=project_id)
    unit_id, index = _locate(project, task_id)
    return project.units[unit_id][index], unit_id


async def replace_task(
    *,
    project_id: str,
    task_id: str,
    mutator: Callable[[Task], Task],
    actor_id: str,
    before_write: Callable[[Project, Task], Any] | None = None,
) -> tuple[Project, Task]:
    """Replace one task with the mutator's result and persist the whole project.

    Args:
        project_id: Owning project
        task_id: Task to replace, located by scanning all units
        mutator: Receives the current task, returns the replacement
        actor_id: Stamped as updated_by on the project
        before_write: Optional check run against the loaded project and current
            task before the mutator (raise to abort)

    Returns:
        Tuple of (saved project, updated task)
    """

    def _replace(project: Project) -> Task:
        unit_id, index = _locate(project, task_id)
        current = project.units[unit_id][index]
        if before_write is not None:
            before_write(project, current)
        updated = mutator(current)
        project.units[unit_id][index] = updated
        if updated.contractor_id:
            project.add_contractor(updated.contractor_id)
        return updated

    return await mutate_project(project_id=project_id, mutator=_replace, actor_id=actor_id)

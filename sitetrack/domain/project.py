"""Project aggregate: a building/floor/unit combination and its unit task sequences."""

from collections.abc import Iterator
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from sitetrack.core.config import Constants
from sitetrack.domain.task import Task


class Project(BaseModel):
    """Whole-document aggregate persisted under an optimistic version."""

    id: str = Field(..., description="Project document ID")
    building_id: str = Field(..., description="Building the project belongs to")
    floor_unit_id: str | None = Field(default=None, description="Floor unit reference")
    unit_id: str | None = Field(default=None, description="Primary property unit reference")
    client_name: str | None = Field(default=None)
    description: str | None = Field(default=None)
    status: str | None = Field(default=None)
    start_date: datetime | None = Field(default=None)
    end_date: datetime | None = Field(default=None)
    estimated_budget: float | None = Field(default=None)
    team_size: int | None = Field(default=None)
    site_incharge_id: str | None = Field(default=None, description="Responsible reviewer")
    contractor_ids: list[str] = Field(default_factory=list, description="Contractors with any task here")
    units: dict[str, list[Task]] = Field(default_factory=dict, description="Unit ID to ordered tasks")
    created_by: str | None = Field(default=None)
    updated_by: str | None = Field(default=None)
    is_deleted: bool = Field(default=False)
    version: int = Field(default=0, description="Stored document version for compare-and-swap")
    expand: dict[str, Any] = Field(default_factory=dict, description="Populated references (read-only)")

    @model_validator(mode="after")
    def include_task_contractors(self) -> "Project":
        """Every contractor referenced by a task must be listed in contractor_ids."""
        for _unit_id, task in self.iter_tasks():
            if task.contractor_id and task.contractor_id not in self.contractor_ids:
                self.contractor_ids.append(task.contractor_id)
        return self

    def iter_tasks(self) -> Iterator[tuple[str, Task]]:
        """Yield (unit_id, task) in unit then task order."""
        for unit_id, tasks in self.units.items():
            for task in tasks:
                yield unit_id, task

    def ensure_unit(self, unit_id: str) -> bool:
        """Create an empty task sequence for the unit. Returns True if one was created."""
        if unit_id in self.units:
            return False
        self.units[unit_id] = []
        return True

    def add_contractor(self, contractor_id: str) -> None:
        if contractor_id not in self.contractor_ids:
            self.contractor_ids.append(contractor_id)

    def locate_task(self, task_id: str) -> tuple[str, int] | None:
        """Scan every unit for the task. Returns (unit_id, index) or None."""
        for unit_id, tasks in self.units.items():
            for index, task in enumerate(tasks):
                if task.id == task_id:
                    return unit_id, index
        return None

    def to_document(self) -> dict[str, Any]:
        """Serialize the aggregate for storage."""
        return self.model_dump(mode="json", exclude={"version", "expand"})

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Project":
        """Build the aggregate from a stored record (store metadata is ignored)."""
        data = {key: value for key, value in record.items() if key not in ("created", "updated")}
        return cls.model_validate(data)


class ProjectPatch(BaseModel):
    """Descriptive project fields an owner or admin may change after creation."""

    model_config = ConfigDict(extra="forbid")

    site_incharge_id: str | None = None
    client_name: str | None = None
    description: str | None = None
    status: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    estimated_budget: float | None = None
    team_size: int | None = None

    def changes(self) -> dict[str, Any]:
        """Fields that carry a value, keyed by name."""
        return self.model_dump(exclude_none=True)

    def completes(self) -> bool:
        return bool(self.status) and self.status.strip().lower() == Constants.PROJECT_COMPLETED_STATUS

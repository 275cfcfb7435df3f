"""Pytest configuration and fixtures for unit tests."""

from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import pytest

from sitetrack.domain.project import Project
from sitetrack.domain.task import Task
from sitetrack.services.notification_service import NotificationEvent, NotificationOutbox
from tests.unit.mocks import InMemoryDBClient


@pytest.fixture
def in_memory_db():
    """Provides a fresh InMemoryDBClient for each test."""
    return InMemoryDBClient()


@pytest.fixture
def patched_db(monkeypatch, in_memory_db):
    """Patches sitetrack.core.db_client functions to use InMemoryDBClient.

    Also swaps in an unstarted notification outbox so queued events never
    leak between tests.
    """
    monkeypatch.setattr("sitetrack.core.db_client.create_record", in_memory_db.create_record)
    monkeypatch.setattr("sitetrack.core.db_client.get_record", in_memory_db.get_record)
    monkeypatch.setattr("sitetrack.core.db_client.update_record", in_memory_db.update_record)
    monkeypatch.setattr("sitetrack.core.db_client.list_records", in_memory_db.list_records)

    monkeypatch.setattr("sitetrack.services.notification_service.outbox", NotificationOutbox(maxsize=100))

    return in_memory_db


@pytest.fixture
def delivered() -> list[NotificationEvent]:
    """Notifications handed to the delivery callable."""
    return []


@pytest.fixture
async def outbox(monkeypatch, patched_db, delivered) -> AsyncIterator[NotificationOutbox]:
    """A running outbox that records deliveries instead of persisting them."""

    async def _record(event: NotificationEvent) -> None:
        delivered.append(event)

    box = NotificationOutbox(deliver=_record, maxsize=100)
    monkeypatch.setattr("sitetrack.services.notification_service.outbox", box)
    box.start()
    yield box
    await box.stop()


@pytest.fixture
def seed_project(patched_db) -> Callable[..., Awaitable[Project]]:
    """Factory that stores a project document and returns the loaded aggregate."""

    async def _seed(
        *,
        project_id: str = "proj-1",
        building_id: str = "bld-1",
        floor_unit_id: str = "floor-1",
        unit_id: str = "unit-1",
        site_incharge_id: str | None = "si-1",
        units: dict[str, list[Task]] | None = None,
        **fields: Any,
    ) -> Project:
        project = Project(
            id=project_id,
            building_id=building_id,
            floor_unit_id=floor_unit_id,
            unit_id=unit_id,
            site_incharge_id=site_incharge_id,
            units=units if units is not None else {unit_id: []},
            **fields,
        )
        record = await patched_db.create_record(collection="projects", data=project.to_document())
        return Project.from_record(record)

    return _seed

"""Pytest configuration and shared fixtures."""

import logging

import pytest

from sitetrack.core.config import settings
from sitetrack.domain.actor import Actor, Role


logger = logging.getLogger(__name__)


@pytest.fixture(autouse=True)
def default_policies(monkeypatch) -> None:
    """Pin workflow settings so a local .env cannot change test outcomes."""
    monkeypatch.setattr(settings, "progress_policy", "unrestricted")
    monkeypatch.setattr(settings, "sales_manager_visibility", "hierarchy")
    monkeypatch.setattr(settings, "default_task_priority", "medium")


@pytest.fixture
def admin() -> Actor:
    return Actor(id="admin-1", role=Role.ADMIN, name="Asha")


@pytest.fixture
def site_incharge() -> Actor:
    return Actor(id="si-1", role=Role.SITE_INCHARGE, name="Sunil")


@pytest.fixture
def contractor() -> Actor:
    return Actor(id="con-1", role=Role.CONTRACTOR, name="Kiran")


@pytest.fixture
def other_contractor() -> Actor:
    return Actor(id="con-2", role=Role.CONTRACTOR, name="Meera")

"""Tests for configuration validation."""

import pytest
from pydantic import ValidationError

from sitetrack.core.config import Constants, Settings


def test_workflow_policies_read_from_environment(monkeypatch) -> None:
    """Test policy switches are picked up from environment variables."""
    monkeypatch.setenv("PROGRESS_POLICY", "monotonic")
    monkeypatch.setenv("SALES_MANAGER_VISIBILITY", "blanket")

    settings = Settings()

    assert settings.progress_policy == "monotonic"
    assert settings.sales_manager_visibility == "blanket"


def test_unknown_policy_rejected() -> None:
    """Test an unknown progress policy fails validation."""
    with pytest.raises(ValidationError, match="progress_policy"):
        Settings(progress_policy="sometimes")


def test_priority_rank_orders_high_first() -> None:
    rank = Constants.PRIORITY_RANK

    assert rank["high"] > rank["medium"] > rank["low"] > rank["unspecified"]


def test_database_path_read_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("SQLITE_DB_PATH", "/var/lib/sitetrack/store.db")

    assert Settings().sqlite_db_path == "/var/lib/sitetrack/store.db"

"""Configuration management for sitetrack."""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage Configuration
    sqlite_db_path: str = Field(default="./data/sitetrack.db", description="SQLite document store path")

    # Pydantic Logfire Configuration (optional)
    logfire_token: str | None = Field(default=None, description="Pydantic Logfire token for observability")
    environment: str = Field(default="development", description="Deployment environment name")

    # Task Workflow Configuration
    progress_policy: Literal["unrestricted", "monotonic"] = Field(
        default="unrestricted",
        description="Whether contractor progress may decrease (unrestricted) or only grow (monotonic)",
    )
    default_task_priority: Literal["high", "medium", "low", "unspecified"] = Field(
        default="medium", description="Priority given to assigned tasks when the caller sends none"
    )

    # Visibility Configuration
    sales_manager_visibility: Literal["hierarchy", "blanket"] = Field(
        default="hierarchy",
        description="hierarchy: sales managers see their team leads and agents; blanket: they see everything",
    )

    # Notification Configuration
    notification_queue_size: int = Field(default=1000, description="Maximum pending outbound notifications")


# Application Constants
class Constants:
    """Application-wide constants."""

    # HTTP Status Codes
    HTTP_OK: int = 200
    HTTP_BAD_REQUEST: int = 400
    HTTP_FORBIDDEN: int = 403
    HTTP_NOT_FOUND: int = 404
    HTTP_CONFLICT: int = 409
    HTTP_SERVER_ERROR: int = 500
    HTTP_SERVICE_UNAVAILABLE: int = 503

    # Task priority ranking (higher sorts first)
    PRIORITY_RANK: dict[str, int] = {"high": 3, "medium": 2, "low": 1, "unspecified": 0}

    # Initial task statuses
    CONTRACTOR_INITIAL_STATUS: str = "in_progress"
    SITE_INCHARGE_INITIAL_STATUS: str = "pending verification"

    # Project status that notifies owners and admins
    PROJECT_COMPLETED_STATUS: str = "completed"

    # Quality issue statuses
    QUALITY_ISSUE_STATUSES: tuple[str, ...] = ("open", "under_review", "resolved")

    # Progress bounds
    MIN_PROGRESS: int = 0
    MAX_PROGRESS: int = 100

    # Database Query Limits
    MAX_PER_PAGE_LIMIT: int = 1000


settings = Settings()
constants = Constants()

from sitetrack.services import (
    lead_service,
    notification_service,
    quality_issue_service,
)


__all__ = [
    "lead_service",
    "notification_service",
    "quality_issue_service",
]

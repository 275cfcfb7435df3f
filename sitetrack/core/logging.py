"""Observability setup for sitetrack.

Modules log through ``logging.getLogger(__name__)`` with structured fields in
``extra``; once ``configure_logfire`` has run, Logfire picks those records up
alongside the spans opened by the service layer.
"""

import logging

import logfire
from fastapi import FastAPI

from sitetrack.core.config import settings


logger = logging.getLogger(__name__)


def configure_logfire() -> None:
    """Configure Logfire for this deployment.

    Without ``LOGFIRE_TOKEN`` spans and logs stay local.
    """
    logfire.configure(
        token=settings.logfire_token,
        service_name="sitetrack",
        service_version="0.1.0",
        environment=settings.environment,
        send_to_logfire="if-token-present",
    )
    logger.info("Logfire configured", extra={"environment": settings.environment})


def instrument_fastapi(app: FastAPI) -> None:
    logfire.instrument_fastapi(app)
    logger.info("FastAPI instrumentation configured")


def span(name: str) -> logfire.LogfireSpan:
    """Open a span named ``<module>.<operation>`` around one coordinator call."""
    return logfire.span(name)


def log_with_actor_context(
    target: logging.Logger,
    level: str,
    message: str,
    actor_id: str | None = None,
    **fields: object,
) -> None:
    """Log a workflow event tagged with the acting user.

    Args:
        target: Logger of the calling module
        level: Level name, e.g. "info" or "debug"
        message: Event description
        actor_id: Acting user, omitted from the record when unknown
        **fields: Project, task or unit identifiers describing the event
    """
    if actor_id:
        fields = {"actor_id": actor_id, **fields}
    target.log(logging.getLevelName(level.upper()), message, extra=fields)

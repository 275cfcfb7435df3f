"""Pure state transition functions for the dual-track task lifecycle.

A task carries two status tracks. The contractor track is written only by
contractor patches and the site incharge track only by reviewer patches.
Each patch variant belongs to exactly one role, so a cross-write is refused
before any field is touched.
"""

import logging
from datetime import UTC, datetime
from typing import Literal

from sitetrack.core.config import Constants
from sitetrack.core.errors import AuthorizationDenied, ValidationError
from sitetrack.domain.actor import REVIEWER_ROLES, Role
from sitetrack.domain.task import (
    ContractorPatch,
    ContractorStatus,
    MiniPatch,
    ReviewStatus,
    SiteInchargePatch,
    Task,
    TaskPatch,
)


logger = logging.getLogger(__name__)

ProgressPolicy = Literal["unrestricted", "monotonic"]

# Which roles may send each patch variant
PATCH_ROLES: dict[type, frozenset[Role]] = {
    ContractorPatch: frozenset({Role.CONTRACTOR}),
    MiniPatch: frozenset({Role.CONTRACTOR}),
    SiteInchargePatch: REVIEWER_ROLES,
}


def is_effectively_complete(task: Task) -> bool:
    """Completion for reporting: full progress, or the reviewer approved it."""
    return (
        task.contractor.progress_percentage >= Constants.MAX_PROGRESS
        or task.site_incharge.status == ReviewStatus.APPROVED
        or task.site_incharge.is_approved
    )


def _validate_progress(*, current: int, new: int, policy: ProgressPolicy) -> int:
    """Check a progress value against bounds and the configured policy."""
    if isinstance(new, bool) or not isinstance(new, int):
        raise ValidationError(f"Progress must be an integer, got {new!r}")
    if not Constants.MIN_PROGRESS <= new <= Constants.MAX_PROGRESS:
        raise ValidationError(
            f"Progress must be between {Constants.MIN_PROGRESS} and {Constants.MAX_PROGRESS}, got {new}"
        )
    if policy == "monotonic" and new < current:
        raise ValidationError(f"Progress cannot decrease from {current} to {new}")
    return new


def _apply_contractor_patch(task: Task, patch: ContractorPatch, *, now: datetime, policy: ProgressPolicy) -> None:
    track = task.contractor

    # Removal runs before addition so a re-added reference survives exactly once
    if patch.remove_photos:
        removed = set(patch.remove_photos)
        track.uploaded_photos = [photo for photo in track.uploaded_photos if photo not in removed]

    if patch.photos:
        track.uploaded_photos.extend(patch.photos)

    if patch.evidence_title:
        track.evidence_title = patch.evidence_title

    if patch.status:
        track.status = patch.status

    if patch.progress_percentage is not None:
        track.progress_percentage = _validate_progress(
            current=track.progress_percentage, new=patch.progress_percentage, policy=policy
        )

    if patch.construction_phase:
        task.construction_phase = patch.construction_phase

    if patch.should_submit:
        track.submitted_on = now
        track.is_approved = True


def _apply_site_incharge_patch(task: Task, patch: SiteInchargePatch, *, now: datetime) -> None:
    track = task.site_incharge

    if patch.photos:
        track.uploaded_photos.extend(patch.photos)

    if patch.status:
        track.status = patch.status

    if patch.note:
        track.note = patch.note

    if patch.quality_assessment:
        track.quality_assessment = patch.quality_assessment

    if patch.verification_decision:
        track.verification_decision = patch.verification_decision
        track.status = patch.verification_decision
        if patch.verification_decision.lower() == ReviewStatus.APPROVED:
            track.is_approved = True
        track.submitted_on = now


def _apply_mini_patch(task: Task, patch: MiniPatch, *, policy: ProgressPolicy) -> None:
    track = task.contractor

    if patch.phase:
        task.construction_phase = patch.phase

    if patch.progress is not None:
        track.progress_percentage = _validate_progress(
            current=track.progress_percentage, new=patch.progress, policy=policy
        )

    if patch.status:
        track.status = patch.status

    # Looser than the full path: no explicit submission needed
    if patch.progress == Constants.MAX_PROGRESS or patch.status == ContractorStatus.COMPLETED:
        track.is_approved = True


def apply_update(
    task: Task,
    role: Role,
    patch: TaskPatch,
    *,
    now: datetime | None = None,
    progress_policy: ProgressPolicy = "unrestricted",
) -> Task:
    """Apply a role-tagged patch to a task and return the updated copy.

    Args:
        task: Current task record (left untouched)
        role: Role of the acting identity
        patch: ContractorPatch, SiteInchargePatch or MiniPatch
        now: Timestamp for submission stamps (defaults to current UTC time)
        progress_policy: "unrestricted" overwrites progress, "monotonic" rejects decreases

    Returns:
        New Task with the patch applied

    Raises:
        AuthorizationDenied: If the patch variant does not belong to the role
        ValidationError: If the patch is empty or carries an invalid progress value
    """
    allowed = PATCH_ROLES.get(type(patch))
    if allowed is None:
        raise ValidationError(f"Unsupported patch type: {type(patch).__name__}")
    if role not in allowed:
        raise AuthorizationDenied(f"Role '{role}' cannot apply a {type(patch).__name__}")
    if not patch.has_changes():
        raise ValidationError("Update contains no changes")

    stamp = now or datetime.now(UTC)
    updated = task.model_copy(deep=True)

    if isinstance(patch, ContractorPatch):
        _apply_contractor_patch(updated, patch, now=stamp, policy=progress_policy)
    elif isinstance(patch, SiteInchargePatch):
        _apply_site_incharge_patch(updated, patch, now=stamp)
    else:
        _apply_mini_patch(updated, patch, policy=progress_policy)

    logger.debug("Applied %s to task %s as %s", type(patch).__name__, task.id, role)
    return updated

"""Unit tests for quality_issue_service module."""

import pytest

from sitetrack.core.errors import AuthorizationDenied, NotFoundError, ValidationError
from sitetrack.domain.actor import Actor, Role
from sitetrack.domain.organization import QualityIssueStatus
from sitetrack.services import quality_issue_service


@pytest.fixture
async def site(patched_db, seed_project):
    """One project with an admin, two site incharges and a contractor on file."""
    await seed_project()
    staff = [("admin-1", "admin"), ("si-1", "site_incharge"), ("si-2", "site_incharge"), ("con-1", "contractor")]
    for user_id, role in staff:
        await patched_db.create_record(collection="users", data={"id": user_id, "role": role})
    return patched_db


async def _report(actor: Actor, **overrides):
    fields = {"title": "Hairline crack", "project_id": "proj-1", "severity": "high"}
    fields.update(overrides)
    return await quality_issue_service.create_quality_issue(actor=actor, **fields)


@pytest.mark.unit
class TestCreateQualityIssue:
    async def test_defaults_to_open(self, site, site_incharge):
        issue = await _report(site_incharge, evidence_images=["crack.jpg"])

        assert issue.status == QualityIssueStatus.OPEN
        assert issue.reported_by == "si-1"
        assert issue.evidence_images == ["crack.jpg"]
        assert issue.contractor_id is None

    async def test_notifies_admins_and_site_incharges_except_reporter(self, site, site_incharge, outbox, delivered):
        await _report(site_incharge)
        await outbox.drain()

        assert sorted(e.recipient_id for e in delivered) == ["admin-1", "si-2"]
        assert delivered[0].title == "Quality Issue Reported"

    async def test_missing_fields_rejected(self, site, site_incharge):
        with pytest.raises(ValidationError):
            await _report(site_incharge, severity="")

    async def test_invalid_status_rejected(self, site, site_incharge):
        with pytest.raises(ValidationError, match="Expected one of"):
            await _report(site_incharge, status="closed")

    async def test_unknown_project(self, site, site_incharge):
        with pytest.raises(NotFoundError):
            await _report(site_incharge, project_id="proj-404")


@pytest.mark.unit
class TestListQualityIssues:
    @pytest.fixture
    async def issues(self, site):
        await _report(Actor(id="si-1", role=Role.SITE_INCHARGE), title="A", contractor_id="con-1")
        await _report(Actor(id="si-2", role=Role.SITE_INCHARGE), title="B")
        await _report(Actor(id="admin-1", role=Role.ADMIN), title="C", contractor_id="con-2")

    async def test_admin_sees_all(self, issues, admin):
        listed = await quality_issue_service.list_quality_issues(actor=admin)

        assert {i.title for i in listed} == {"A", "B", "C"}

    async def test_site_incharge_sees_own_reports(self, issues, site_incharge):
        listed = await quality_issue_service.list_quality_issues(actor=site_incharge)

        assert [i.title for i in listed] == ["A"]

    async def test_contractor_sees_assigned(self, issues, contractor):
        listed = await quality_issue_service.list_quality_issues(actor=contractor)

        assert [i.title for i in listed] == ["A"]

    async def test_other_roles_denied(self, issues):
        with pytest.raises(AuthorizationDenied):
            await quality_issue_service.list_quality_issues(actor=Actor(id="acc", role=Role.ACCOUNTANT))


@pytest.mark.unit
class TestUpdateIssueStatus:
    async def test_reviewer_moves_issue(self, site, site_incharge):
        issue = await _report(site_incharge)

        updated = await quality_issue_service.update_issue_status(
            actor=site_incharge, issue_id=issue.id, status="under_review"
        )

        assert updated.status == QualityIssueStatus.UNDER_REVIEW
        assert updated.updated_by == "si-1"

    async def test_contractor_cannot_resolve(self, site, site_incharge, contractor):
        issue = await _report(site_incharge, contractor_id="con-1")

        with pytest.raises(AuthorizationDenied):
            await quality_issue_service.update_issue_status(actor=contractor, issue_id=issue.id, status="resolved")

    async def test_unknown_status(self, site, admin):
        with pytest.raises(ValidationError):
            await quality_issue_service.update_issue_status(actor=admin, issue_id="x", status="done")

    async def test_unknown_issue(self, site, admin):
        with pytest.raises(NotFoundError):
            await quality_issue_service.update_issue_status(actor=admin, issue_id="missing", status="resolved")

    async def test_link_contractor(self, site, site_incharge):
        issue = await _report(site_incharge)

        linked = await quality_issue_service.link_contractor(issue_id=issue.id, contractor_id="con-5", actor_id="si-1")

        assert linked.contractor_id == "con-5"

"""Unit tests for lead_service module."""

import pytest

from sitetrack.core.errors import AuthorizationDenied, NotFoundError, ValidationError
from sitetrack.domain.actor import Actor, Role
from sitetrack.modules.tasks.visibility import VisibilityPolicy
from sitetrack.services import lead_service


@pytest.fixture
async def sales_org(patched_db):
    """sm-1 -> tl-1 -> ag-1, plus an unrelated agent ag-9 and one lead each."""
    await patched_db.create_record(
        collection="team_lead_memberships",
        data={"sales_manager_id": "sm-1", "team_lead_id": "tl-1", "is_deleted": False},
    )
    await patched_db.create_record(
        collection="agent_memberships", data={"team_lead_id": "tl-1", "agent_id": "ag-1", "is_deleted": False}
    )
    for user_id in ("sm-1", "tl-1", "ag-1", "ag-9"):
        await patched_db.create_record(collection="users", data={"id": user_id, "name": user_id.upper()})
        await patched_db.create_record(
            collection="leads",
            data={"id": f"lead-{user_id}", "name": f"Lead of {user_id}", "status": "new", "added_by": user_id},
        )
    await patched_db.create_record(
        collection="leads",
        data={"id": "lead-gone", "name": "Gone", "status": "new", "added_by": "ag-1", "is_deleted": True},
    )
    return patched_db


@pytest.mark.unit
class TestListLeads:
    async def test_agent_sees_own_leads(self, sales_org):
        leads = await lead_service.list_leads(actor=Actor(id="ag-1", role=Role.AGENT))

        assert [lead["id"] for lead in leads] == ["lead-ag-1"]
        assert leads[0]["expand"]["added_by"]["name"] == "AG-1"

    async def test_team_lead_sees_agents_leads(self, sales_org):
        leads = await lead_service.list_leads(actor=Actor(id="tl-1", role=Role.TEAM_LEAD))

        assert {lead["id"] for lead in leads} == {"lead-tl-1", "lead-ag-1"}

    async def test_sales_manager_hierarchy(self, sales_org):
        leads = await lead_service.list_leads(
            actor=Actor(id="sm-1", role=Role.SALES_MANAGER), policy=VisibilityPolicy.HIERARCHY
        )

        assert {lead["id"] for lead in leads} == {"lead-sm-1", "lead-tl-1", "lead-ag-1"}

    async def test_sales_manager_blanket(self, sales_org):
        leads = await lead_service.list_leads(
            actor=Actor(id="sm-1", role=Role.SALES_MANAGER), policy=VisibilityPolicy.BLANKET
        )

        assert "lead-ag-9" in {lead["id"] for lead in leads}

    async def test_soft_deleted_leads_hidden(self, sales_org):
        leads = await lead_service.list_leads(actor=Actor(id="admin-1", role=Role.ADMIN))

        assert "lead-gone" not in {lead["id"] for lead in leads}
        assert len(leads) == 4


@pytest.mark.unit
class TestUpdateLeadStatus:
    async def test_owner_of_lead_can_update(self, sales_org):
        lead = await lead_service.update_lead_status(
            actor=Actor(id="ag-1", role=Role.AGENT), lead_id="lead-ag-1", status="contacted"
        )

        assert lead.status == "contacted"

    async def test_status_change_notifies_lead_owner(self, sales_org, outbox, delivered):
        await lead_service.update_lead_status(
            actor=Actor(id="sm-1", role=Role.SALES_MANAGER), lead_id="lead-ag-1", status="qualified"
        )
        await outbox.drain()

        assert [e.recipient_id for e in delivered] == ["ag-1"]
        assert delivered[0].title == "Lead Status Updated"
        assert "from new to qualified" in delivered[0].message

    async def test_same_status_does_not_notify(self, sales_org, outbox, delivered):
        await lead_service.update_lead_status(
            actor=Actor(id="admin-1", role=Role.ADMIN), lead_id="lead-ag-1", status="new"
        )
        await outbox.drain()

        assert delivered == []

    async def test_team_lead_cannot_update_agent_lead(self, sales_org):
        with pytest.raises(AuthorizationDenied):
            await lead_service.update_lead_status(
                actor=Actor(id="tl-1", role=Role.TEAM_LEAD), lead_id="lead-ag-1", status="lost"
            )

    async def test_deleted_lead_not_found(self, sales_org):
        with pytest.raises(NotFoundError):
            await lead_service.update_lead_status(
                actor=Actor(id="admin-1", role=Role.ADMIN), lead_id="lead-gone", status="lost"
            )

    async def test_missing_lead_not_found(self, sales_org):
        with pytest.raises(NotFoundError):
            await lead_service.update_lead_status(
                actor=Actor(id="admin-1", role=Role.ADMIN), lead_id="nope", status="lost"
            )

    async def test_blank_status_rejected(self, sales_org):
        with pytest.raises(ValidationError):
            await lead_service.update_lead_status(
                actor=Actor(id="admin-1", role=Role.ADMIN), lead_id="lead-ag-1", status="  "
            )

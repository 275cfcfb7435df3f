"""Unit tests for the role-scoped visibility resolver."""

import copy

import pytest

from sitetrack.core.errors import AuthorizationDenied
from sitetrack.domain.actor import Actor, Role
from sitetrack.domain.organization import Lead
from sitetrack.modules.tasks.visibility import (
    OwnershipFilter,
    VisibilityPolicy,
    can_mutate_lead,
    resolve_filter,
    resolve_project_scope,
)


@pytest.fixture
async def org_graph(patched_db):
    """sm-1 manages tl-1 and tl-2 (deleted edge); tl-1 manages ag-1 and ag-2 (deleted edge)."""
    memberships = [
        ("team_lead_memberships", {"sales_manager_id": "sm-1", "team_lead_id": "tl-1", "is_deleted": False}),
        ("team_lead_memberships", {"sales_manager_id": "sm-1", "team_lead_id": "tl-2", "is_deleted": True}),
        ("agent_memberships", {"team_lead_id": "tl-1", "agent_id": "ag-1", "is_deleted": False}),
        ("agent_memberships", {"team_lead_id": "tl-1", "agent_id": "ag-2", "is_deleted": True}),
        ("agent_memberships", {"team_lead_id": "tl-2", "agent_id": "ag-3", "is_deleted": False}),
    ]
    for collection, data in memberships:
        await patched_db.create_record(collection=collection, data=data)
    return patched_db


def _lead(owner: str) -> dict:
    return {"id": f"lead-{owner}", "added_by": owner}


@pytest.mark.unit
class TestOwnershipFilter:
    def test_unrestricted_matches_everything(self):
        ownership = OwnershipFilter(unrestricted=True)

        assert ownership.matches({"added_by": "anyone"})
        assert ownership.matches({})
        assert ownership.to_filter_query() == ""

    def test_single_owner_query(self):
        ownership = OwnershipFilter(owner_ids=frozenset({"u1"}))

        assert ownership.to_filter_query() == 'added_by = "u1"'
        assert ownership.matches({"added_by": "u1"})
        assert not ownership.matches({"added_by": "u2"})
        assert not ownership.matches({})

    def test_several_owners_compile_to_or_group(self):
        ownership = OwnershipFilter(owner_ids=frozenset({"b", "a"}))

        assert ownership.to_filter_query() == '(added_by = "a" || added_by = "b")'

    def test_multi_valued_field(self):
        ownership = OwnershipFilter(owner_ids=frozenset({"c1"}), owner_field="contractor_ids", multi_valued=True)

        assert ownership.to_filter_query() == 'contractor_ids ~ "c1"'
        assert ownership.matches({"contractor_ids": ["c0", "c1"]})
        assert not ownership.matches({"contractor_ids": ["c10"]})

    def test_query_values_are_escaped(self):
        ownership = OwnershipFilter(owner_ids=frozenset({'x" || added_by = "y'}))

        assert '\\"' in ownership.to_filter_query()


@pytest.mark.unit
class TestResolveFilter:
    @pytest.mark.parametrize("role", [Role.ADMIN, Role.OWNER])
    async def test_admin_and_owner_unrestricted(self, org_graph, role):
        ownership = await resolve_filter(Actor(id="x", role=role))

        assert ownership.unrestricted

    async def test_agent_sees_only_own(self, org_graph):
        ownership = await resolve_filter(Actor(id="ag-1", role=Role.AGENT))

        assert ownership.owner_ids == {"ag-1"}
        assert not ownership.matches(_lead("tl-1"))

    async def test_team_lead_sees_self_and_current_agents(self, org_graph):
        ownership = await resolve_filter(Actor(id="tl-1", role=Role.TEAM_LEAD))

        assert ownership.owner_ids == {"tl-1", "ag-1"}
        assert ownership.matches(_lead("ag-1"))
        assert not ownership.matches(_lead("ag-2"))

    async def test_team_lead_loses_agent_when_edge_deleted(self, org_graph):
        [edge] = await org_graph.list_records(collection="agent_memberships", filter_query='agent_id = "ag-1"')
        actor = Actor(id="tl-1", role=Role.TEAM_LEAD)
        assert (await resolve_filter(actor)).matches(_lead("ag-1"))

        await org_graph.update_record(collection="agent_memberships", record_id=edge["id"], data={"is_deleted": True})

        assert not (await resolve_filter(actor)).matches(_lead("ag-1"))

    async def test_sales_manager_hierarchy_is_two_hops(self, org_graph):
        ownership = await resolve_filter(Actor(id="sm-1", role=Role.SALES_MANAGER), policy=VisibilityPolicy.HIERARCHY)

        assert ownership.owner_ids == {"sm-1", "tl-1", "ag-1"}
        assert not ownership.matches(_lead("ag-3"))

    async def test_sales_manager_blanket(self, org_graph):
        ownership = await resolve_filter(Actor(id="sm-1", role=Role.SALES_MANAGER), policy=VisibilityPolicy.BLANKET)

        assert ownership.unrestricted

    async def test_policy_defaults_to_settings(self, org_graph, monkeypatch):
        monkeypatch.setattr("sitetrack.modules.tasks.visibility.settings.sales_manager_visibility", "blanket")

        ownership = await resolve_filter(Actor(id="sm-1", role=Role.SALES_MANAGER))

        assert ownership.unrestricted

    @pytest.mark.parametrize("role", ["site_incharge", "accountant", "intern"])
    async def test_other_roles_see_only_own(self, org_graph, role):
        ownership = await resolve_filter(Actor(id="u-9", role=role))

        assert ownership.owner_ids == {"u-9"}

    async def test_resolver_does_not_touch_graph(self, org_graph):
        before = copy.deepcopy(org_graph._collections)

        await resolve_filter(Actor(id="sm-1", role=Role.SALES_MANAGER))

        assert org_graph._collections == before


@pytest.mark.unit
class TestProjectScope:
    def test_site_incharge_scoped_to_supervised_projects(self):
        scope = resolve_project_scope(Actor(id="si-1", role=Role.SITE_INCHARGE))

        assert scope.matches({"site_incharge_id": "si-1"})
        assert not scope.matches({"site_incharge_id": "si-2"})

    def test_contractor_scoped_to_listed_projects(self):
        scope = resolve_project_scope(Actor(id="con-1", role=Role.CONTRACTOR))

        assert scope.matches({"contractor_ids": ["con-1"]})
        assert not scope.matches({"contractor_ids": []})

    @pytest.mark.parametrize("role", [Role.OWNER, Role.ADMIN, Role.ACCOUNTANT, Role.CUSTOMER_PURCHASED])
    def test_project_wide_roles(self, role):
        assert resolve_project_scope(Actor(id="x", role=role)).unrestricted

    def test_agent_denied(self):
        with pytest.raises(AuthorizationDenied):
            resolve_project_scope(Actor(id="ag-1", role=Role.AGENT))


@pytest.mark.unit
class TestCanMutateLead:
    @pytest.mark.parametrize("role", [Role.ADMIN, Role.OWNER, Role.SALES_MANAGER])
    def test_editor_roles(self, role):
        assert can_mutate_lead(Actor(id="x", role=role), Lead(id="l1", added_by="someone"))

    def test_owner_of_lead(self):
        assert can_mutate_lead(Actor(id="ag-1", role=Role.AGENT), Lead(id="l1", added_by="ag-1"))

    def test_team_lead_cannot_edit_agent_lead(self):
        assert not can_mutate_lead(Actor(id="tl-1", role=Role.TEAM_LEAD), Lead(id="l1", added_by="ag-1"))

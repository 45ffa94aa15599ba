# Overview: Pytest coverage for graph traversal, visibility and integrity checks.

"""
Authorization Graph Tests

Covers:
1. Depth-1 visibility (granted + received, never two hops)
2. Direct children / parent lookups
3. Cycle and sub-authorization checks
4. Tier company grouping and the actor hierarchy view
"""

import pytest

from authnet.errors import GraphCycleError, GraphIntegrityError, NotFoundError, SubAuthorizationForbiddenError
from authnet.models import AuthorizationNode
from authnet.services import approval_service, authorization_service, graph_service

from conftest import MANUFACTURER


@pytest.fixture
def open_chain(make_grant):
    """A -> B -> C where every level may sub-authorize."""
    a_b = make_grant(MANUFACTURER, "mfr-bravo", grantee_type="manufacturer", allow_sub=True)
    b_c = make_grant("mfr-bravo", "mfr-charlie", grantee_type="manufacturer", parent=a_b, allow_sub=True)
    return a_b, b_c


class TestVisibility:
    """An actor sees the grants it issued and the grants it received."""

    def test_grantor_sees_only_granted(self, db_session, chain):
        a_b, b_c = chain
        granted = graph_service.list_granted(MANUFACTURER)

        assert [n.id for n in granted] == [a_b.id]
        assert graph_service.list_received(MANUFACTURER) == []

    def test_middle_actor_sees_both_sides(self, db_session, chain):
        a_b, b_c = chain
        subset = graph_service.visible_subset_for("mfr-bravo")

        assert [n.id for n in subset.received] == [a_b.id]
        assert [n.id for n in subset.granted] == [b_c.id]
        assert {n.id for n in subset.nodes} == {a_b.id, b_c.id}

    def test_two_hops_is_invisible(self, db_session, chain):
        """C sees its grant from B but never A's grant to B."""
        a_b, b_c = chain

        designer_view = graph_service.visible_subset_for("designer-charlie")
        manufacturer_view = graph_service.visible_subset_for(MANUFACTURER)

        assert designer_view.contains(b_c.id)
        assert not designer_view.contains(a_b.id)
        assert not manufacturer_view.contains(b_c.id)
        assert graph_service.is_visible_to(b_c, "mfr-bravo")
        assert not graph_service.is_visible_to(b_c, MANUFACTURER)

    def test_status_filter(self, db_session, chain):
        a_b, b_c = chain
        authorization_service.suspend_authorization(b_c.id, "mfr-bravo")

        assert graph_service.list_granted("mfr-bravo", status="active") == []
        assert [n.id for n in graph_service.list_granted("mfr-bravo", status="suspended")] == [b_c.id]


class TestAdjacency:

    def test_children_and_parent(self, db_session, chain):
        a_b, b_c = chain

        assert [n.id for n in graph_service.children_of(a_b.id)] == [b_c.id]
        assert graph_service.children_of(b_c.id) == []
        assert graph_service.parent_of(b_c.id).id == a_b.id
        assert graph_service.parent_of(a_b.id) is None

    def test_missing_node(self, db_session):
        with pytest.raises(NotFoundError):
            graph_service.get_node(424242)

    def test_tier_root_of_child(self, db_session, chain):
        a_b, b_c = chain
        assert graph_service.tier_root_of(b_c).id == a_b.id
        assert graph_service.tier_root_of(a_b).id == a_b.id


class TestIntegrity:

    def test_parent_without_sub_authorization(self, db_session, chain):
        a_b, b_c = chain

        with pytest.raises(SubAuthorizationForbiddenError):
            graph_service.detect_cycle(b_c.id, grantee_id="designer-delta")

    def test_sub_authorization_forbidden_is_a_cycle_error(self):
        assert issubclass(SubAuthorizationForbiddenError, GraphCycleError)

    def test_ancestor_as_child(self, db_session, open_chain):
        a_b, b_c = open_chain

        with pytest.raises(GraphCycleError):
            graph_service.detect_cycle(b_c.id, candidate_child_id=a_b.id)

    def test_upstream_grantor_as_grantee(self, db_session, open_chain):
        a_b, b_c = open_chain

        with pytest.raises(GraphCycleError):
            graph_service.detect_cycle(b_c.id, grantee_id=MANUFACTURER)

    def test_grantee_under_own_grant(self, db_session, open_chain):
        a_b, b_c = open_chain

        with pytest.raises(GraphCycleError):
            graph_service.detect_cycle(b_c.id, grantee_id="mfr-charlie")

    def test_fresh_grantee_passes(self, db_session, open_chain):
        a_b, b_c = open_chain
        graph_service.detect_cycle(b_c.id, grantee_id="designer-delta")

    def test_cycle_approval_leaves_request_pending(self, db_session, open_chain):
        """C tries to grant A under B->C: A is already upstream."""
        a_b, b_c = open_chain
        req = approval_service.request_authorization("mfr-charlie", MANUFACTURER, "manufacturer")

        with pytest.raises(GraphCycleError):
            approval_service.approve_request(
                req.id,
                "mfr-charlie",
                discount_rate=60,
                commission_rate=40,
                tier_type="existing_tier",
                parent_authorization_id=b_c.id,
            )

        assert approval_service.get_request(req.id).status == "pending"
        assert db_session.query(AuthorizationNode).count() == 2

    def test_corrupt_root_level_detected(self, db_session, open_chain):
        a_b, b_c = open_chain
        # Bulk update skips the ORM guard, like a hand-edited row would
        db_session.query(AuthorizationNode).filter_by(id=a_b.id).update(
            {"tier_level": 2}, synchronize_session=False
        )
        db_session.expire_all()

        with pytest.raises(GraphCycleError):
            graph_service.detect_cycle(a_b.id, grantee_id="designer-delta")

    def test_frozen_columns_cannot_change(self, db_session, chain):
        a_b, b_c = chain
        node = db_session.get(AuthorizationNode, b_c.id)
        assert node.tier_level == 1
        node.tier_level = 5

        with pytest.raises(GraphIntegrityError):
            db_session.commit()
        db_session.rollback()

        assert db_session.get(AuthorizationNode, b_c.id).tier_level == 1

    def test_levels_descend_to_root(self, db_session, make_grant):
        """Walking parents from any node ends at level 0 with levels dropping by one."""
        top = make_grant(MANUFACTURER, "mfr-l1", grantee_type="manufacturer", allow_sub=True)
        mid = make_grant("mfr-l1", "mfr-l2", grantee_type="manufacturer", parent=top, allow_sub=True)
        low = make_grant("mfr-l2", "mfr-l3", grantee_type="manufacturer", parent=mid, allow_sub=True)
        leaf = make_grant("mfr-l3", "designer-l4", parent=low)

        levels = []
        current = graph_service.get_node(leaf.id)
        while current is not None:
            levels.append(current.tier_level)
            assert current.tier_company_id == top.tier_company_id
            current = graph_service.parent_of(current.id)

        assert levels == [3, 2, 1, 0]


class TestTierCompanies:

    def test_grouping_and_averages(self, db_session, make_grant):
        root = make_grant(MANUFACTURER, "mfr-bravo", grantee_type="manufacturer", allow_sub=True,
                          discount_rate=60, commission_rate=40, tier_company_name="North")
        make_grant("mfr-bravo", "designer-c", parent=root, discount_rate=70, commission_rate=30)
        make_grant(MANUFACTURER, "designer-d", discount_rate=50, commission_rate=20, tier_company_name="South")

        nodes = db_session.query(AuthorizationNode).all()
        companies = graph_service.group_by_tier_company(nodes)

        assert len(companies) == 2
        north = next(c for c in companies if c["tier_company_name"] == "North")
        south = next(c for c in companies if c["tier_company_name"] == "South")

        assert north["member_count"] == 2
        assert north["active_count"] == 2
        assert north["max_tier_level"] == 1
        assert north["avg_min_discount_rate"] == 65.0
        assert north["avg_commission_rate"] == 35.0
        assert north["founded_at"] is not None

        assert south["member_count"] == 1
        assert south["avg_min_discount_rate"] == 50.0

    def test_synthetic_key_from_name(self):
        """Nodes without a tier company id group by normalized name."""
        nodes = [
            AuthorizationNode(id=101, tier_company_name="North ", tier_level=0, status="active",
                              min_discount_rate_bps=6000, commission_rate_bps=4000),
            AuthorizationNode(id=102, tier_company_name="north", tier_level=1, status="suspended",
                              min_discount_rate_bps=7000, commission_rate_bps=3000),
            AuthorizationNode(id=103, tier_level=0, status="active",
                              min_discount_rate_bps=5000, commission_rate_bps=2000),
        ]

        companies = graph_service.group_by_tier_company(nodes)
        keys = {c["tier_company_id"]: c for c in companies}

        assert keys["name:north"]["member_count"] == 2
        assert keys["name:north"]["active_count"] == 1
        assert keys["name:north"]["tier_company_name"] == "North "
        assert keys["node:103"]["member_count"] == 1
        assert keys["node:103"]["founded_at"] is None

    def test_tier_view_is_depth_one(self, db_session, chain):
        a_b, b_c = chain
        view = graph_service.tier_view_for("designer-charlie")

        assert [n["id"] for n in view["received"]] == [b_c.id]
        assert view["received"][0]["relation"] == "received"
        assert view["granted"] == []
        assert view["companies"][0]["member_count"] == 1

# Overview: Pytest coverage for the HTTP surface: identity header, error envelope and end-to-end flows.

"""
API Route Tests

Drives the blueprints through the Flask test client:
1. Actor header and error envelope
2. Request -> approve -> price -> order -> settle -> commission
3. Depth-1 visibility on authorization endpoints
"""

from conftest import MANUFACTURER, actor_headers

DESIGNER = "designer-erin"


def _grant_over_http(client, *, scope="all", price_settings=None):
    created = client.post(
        "/api/authorization-requests",
        json={"grantorId": MANUFACTURER, "granteeType": "designer", "granteeName": "Studio Erin"},
        headers=actor_headers(DESIGNER),
    )
    assert created.status_code == 201
    request_id = created.get_json()["request"]["id"]

    body = {
        "discountRate": 60,
        "commissionRate": 40,
        "tierType": "new_company",
        "tierCompanyName": "Erin Partners",
        "scope": scope,
    }
    if price_settings is not None:
        body["priceSettings"] = price_settings
    approved = client.post(
        f"/api/authorization-requests/{request_id}/approve",
        json=body,
        headers=actor_headers(MANUFACTURER),
    )
    assert approved.status_code == 201
    return approved.get_json()["authorization"]


class TestEnvelope:

    def test_health(self, client, db_session):
        response = client.get("/api/system/health")

        assert response.status_code == 200
        assert response.get_json()["status"] == "healthy"

    def test_missing_actor(self, client, db_session):
        response = client.get("/api/authorizations/granted")

        assert response.status_code == 401
        assert response.get_json()["error"]["kind"] == "AuthenticationRequired"

    def test_validation_error_shape(self, client, db_session):
        response = client.post(
            "/api/authorization-requests",
            json={"grantorId": MANUFACTURER, "granteeType": "retailer"},
            headers=actor_headers(DESIGNER),
        )

        error = response.get_json()["error"]
        assert response.status_code == 400
        assert error["kind"] == "ValidationError"
        assert error["field"] == "granteeType"
        assert error["retryable"] is False

    def test_not_found(self, client, db_session):
        response = client.get("/api/authorizations/999", headers=actor_headers(MANUFACTURER))

        assert response.status_code == 404
        assert response.get_json()["error"]["kind"] == "NotFoundError"


class TestRequestFlow:

    def test_pending_and_mine(self, client, db_session):
        client.post(
            "/api/authorization-requests",
            json={"grantorId": MANUFACTURER, "granteeType": "designer"},
            headers=actor_headers(DESIGNER),
        )

        pending = client.get("/api/authorization-requests/pending", headers=actor_headers(MANUFACTURER))
        mine = client.get("/api/authorization-requests/mine", headers=actor_headers(DESIGNER))

        assert [r["grantee_id"] for r in pending.get_json()["requests"]] == [DESIGNER]
        assert [r["status"] for r in mine.get_json()["requests"]] == ["pending"]

    def test_reject_then_approve_conflicts(self, client, db_session):
        created = client.post(
            "/api/authorization-requests",
            json={"grantorId": MANUFACTURER, "granteeType": "designer"},
            headers=actor_headers(DESIGNER),
        )
        request_id = created.get_json()["request"]["id"]

        rejected = client.post(
            f"/api/authorization-requests/{request_id}/reject",
            json={"reason": "No capacity"},
            headers=actor_headers(MANUFACTURER),
        )
        approved = client.post(
            f"/api/authorization-requests/{request_id}/approve",
            json={"discountRate": 60, "commissionRate": 40, "tierType": "new_company", "tierCompanyName": "X"},
            headers=actor_headers(MANUFACTURER),
        )

        assert rejected.get_json()["request"]["status"] == "rejected"
        assert approved.status_code == 409
        assert approved.get_json()["error"]["kind"] == "AlreadyProcessedError"


class TestOrderFlow:

    def test_commission_flow(self, client, db_session, catalog):
        grant = _grant_over_http(client)
        lamp_id = catalog["lamp"].id

        price = client.get(f"/api/authorizations/{grant['id']}/prices/{lamp_id}", headers=actor_headers(DESIGNER))
        assert price.get_json()["price"]["price_cents"] == 10000

        placed = client.post(
            "/api/orders",
            json={"authorizationId": grant["id"], "lines": [{"productId": lamp_id}]},
            headers=actor_headers(DESIGNER),
        )
        assert placed.status_code == 201
        order_id = placed.get_json()["order"]["id"]
        assert placed.get_json()["settlement"]["settlement_mode"] == "unset"

        settled = client.post(
            f"/api/orders/{order_id}/settlement",
            json={"mode": "commission_mode", "paymentRatioEnabled": True, "paymentRatio": 50},
            headers=actor_headers(DESIGNER),
        )
        snapshot = settled.get_json()["settlement"]
        assert snapshot["first_payment_amount_cents"] == 3000
        assert snapshot["remaining_payment_amount_cents"] == 3000
        assert snapshot["commission_amount_cents"] == 2400

        early = client.post(
            f"/api/orders/{order_id}/commission", json={"status": "applied"}, headers=actor_headers(DESIGNER)
        )
        assert early.status_code == 422
        assert early.get_json()["error"]["kind"] == "PrematureCommissionError"

        client.post(f"/api/orders/{order_id}/remaining-payment", headers=actor_headers(DESIGNER))
        client.post(f"/api/orders/{order_id}/status", json={"status": 2}, headers=actor_headers(DESIGNER))
        done = client.post(f"/api/orders/{order_id}/status", json={"status": "completed"}, headers=actor_headers(MANUFACTURER))
        assert done.get_json()["order"]["status"] == "completed"

        applied = client.post(
            f"/api/orders/{order_id}/commission", json={"status": "applied"}, headers=actor_headers(DESIGNER)
        )
        assert applied.status_code == 200
        assert applied.get_json()["settlement"]["commission_status"] == "applied"

        events = client.get(f"/api/orders/{order_id}/events", headers=actor_headers(MANUFACTURER))
        types = [e["event_type"] for e in events.get_json()["events"]]
        assert types[0] == "ORDER_CREATED"
        assert "COMMISSION_ADVANCED" in types

    def test_settlement_is_write_once(self, client, db_session, catalog):
        grant = _grant_over_http(client)
        placed = client.post(
            "/api/orders",
            json={"authorizationId": grant["id"], "lines": [{"productId": catalog["lamp"].id}]},
            headers=actor_headers(DESIGNER),
        )
        order_id = placed.get_json()["order"]["id"]

        first = client.post(
            f"/api/orders/{order_id}/settlement", json={"mode": "supplier_transfer"}, headers=actor_headers(DESIGNER)
        )
        second = client.post(
            f"/api/orders/{order_id}/settlement", json={"mode": "commission_mode"}, headers=actor_headers(DESIGNER)
        )

        assert first.get_json()["settlement"]["supplier_price_cents"] == 3600
        assert second.status_code == 409
        assert second.get_json()["error"]["kind"] == "SettlementAlreadySetError"

    def test_outsider_cannot_read_order(self, client, db_session, catalog):
        grant = _grant_over_http(client)
        placed = client.post(
            "/api/orders",
            json={"authorizationId": grant["id"], "lines": [{"productId": catalog["lamp"].id}]},
            headers=actor_headers(DESIGNER),
        )
        order_id = placed.get_json()["order"]["id"]

        response = client.get(f"/api/orders/{order_id}", headers=actor_headers("designer-zed"))
        assert response.status_code == 403


class TestVisibilityRoutes:

    def test_two_hop_node_hidden(self, client, db_session, chain):
        a_b, b_c = chain

        hidden = client.get(f"/api/authorizations/{b_c.id}", headers=actor_headers(MANUFACTURER))
        visible = client.get(f"/api/authorizations/{b_c.id}", headers=actor_headers("designer-charlie"))

        assert hidden.status_code == 403
        assert visible.status_code == 200

    def test_children_only_for_grantee(self, client, db_session, chain):
        a_b, b_c = chain

        own = client.get(f"/api/authorizations/{a_b.id}/children", headers=actor_headers("mfr-bravo"))
        foreign = client.get(f"/api/authorizations/{a_b.id}/children", headers=actor_headers(MANUFACTURER))

        assert [n["id"] for n in own.get_json()["authorizations"]] == [b_c.id]
        assert foreign.status_code == 403

    def test_parent_only_for_grantor(self, client, db_session, chain):
        a_b, b_c = chain

        parent = client.get(f"/api/authorizations/{b_c.id}/parent", headers=actor_headers("mfr-bravo"))
        denied = client.get(f"/api/authorizations/{b_c.id}/parent", headers=actor_headers("designer-charlie"))
        root = client.get(f"/api/authorizations/{a_b.id}/parent", headers=actor_headers(MANUFACTURER))

        assert parent.get_json()["authorization"]["id"] == a_b.id
        assert denied.status_code == 403
        assert root.get_json()["authorization"] is None

    def test_hierarchy_and_companies(self, client, db_session, chain):
        a_b, b_c = chain

        hierarchy = client.get("/api/authorizations/hierarchy", headers=actor_headers("mfr-bravo")).get_json()
        companies = client.get("/api/authorizations/tier-companies", headers=actor_headers(MANUFACTURER)).get_json()

        assert [n["id"] for n in hierarchy["received"]] == [a_b.id]
        assert [n["id"] for n in hierarchy["granted"]] == [b_c.id]
        assert companies["tier_companies"][0]["member_count"] == 1

    def test_lifecycle_over_http(self, client, db_session, chain):
        a_b, b_c = chain

        denied = client.post(f"/api/authorizations/{b_c.id}/suspend", headers=actor_headers(MANUFACTURER))
        suspended = client.post(
            f"/api/authorizations/{b_c.id}/suspend", json={"reason": "Review"}, headers=actor_headers("mfr-bravo")
        )

        assert denied.status_code == 403
        assert suspended.get_json()["authorization"]["status"] == "suspended"

    def test_frozen_terms_over_http(self, client, db_session, chain):
        a_b, b_c = chain

        response = client.put(
            f"/api/authorizations/{b_c.id}/terms",
            json={"commissionRate": 10},
            headers=actor_headers("mfr-bravo"),
        )

        assert response.status_code == 400
        assert response.get_json()["error"]["field"] == "commissionRate"

# Overview: HTTP-level tests for the tenant-scoped billing API.

"""
API Route Tests

Exercises the JSON surface end to end through the Flask test client:
tenant resolution, error mapping, and the quote -> invoice -> subscription flow.
"""

from conftest import actor_headers, line


def _url(tenant, path=""):
    return f"/api/tenant/{tenant.slug}{path}"


class TestTenantResolution:
    def test_missing_actor_is_401(self, client, db_session, tenant_a):
        response = client.get(_url(tenant_a, "/quotes"))
        assert response.status_code == 401
        assert response.get_json()["error"] == "Authentication required"

    def test_unknown_tenant_is_404(self, client, db_session):
        response = client.get("/api/tenant/nope/quotes", headers=actor_headers())
        assert response.status_code == 404

    def test_inactive_tenant_is_404(self, client, db_session, tenant_a):
        tenant_a.is_active = False
        db_session.commit()
        response = client.get(_url(tenant_a, "/quotes"), headers=actor_headers())
        assert response.status_code == 404

    def test_other_tenant_document_is_404(self, client, db_session, tenant_a, tenant_b, customer_a):
        created = client.post(
            _url(tenant_a, "/quotes"),
            json={"customer_id": customer_a.id, "line_items": [line()]},
            headers=actor_headers(),
        ).get_json()["quote"]

        response = client.get(_url(tenant_b, f"/quotes/{created['id']}"), headers=actor_headers())
        assert response.status_code == 404


class TestQuoteRoutes:
    def test_create_returns_201_with_server_totals(self, client, db_session, tenant_a, customer_a):
        response = client.post(
            _url(tenant_a, "/quotes"),
            json={
                "customer_id": customer_a.id,
                "line_items": [line("A", 2, 5000, total=10000)],
                "tax_cents": 500,
                "valid_until": "2030-01-01T00:00:00Z",
            },
            headers=actor_headers(),
        )
        assert response.status_code == 201
        quote = response.get_json()["quote"]
        assert quote["total_cents"] == 10500
        assert quote["created_by"] == "user-42"
        assert quote["valid_until"] == "2030-01-01T00:00:00Z"

    def test_total_mismatch_is_400(self, client, db_session, tenant_a, customer_a):
        response = client.post(
            _url(tenant_a, "/quotes"),
            json={"customer_id": customer_a.id, "line_items": [line("A", 2, 5000, total=9000)]},
            headers=actor_headers(),
        )
        assert response.status_code == 400
        assert response.get_json()["details"]["expected"] == 10000

    def test_missing_customer_is_400(self, client, db_session, tenant_a):
        response = client.post(_url(tenant_a, "/quotes"), json={"line_items": [line()]}, headers=actor_headers())
        assert response.status_code == 400

    def test_invalid_transition_is_409_with_status(self, client, db_session, tenant_a, customer_a):
        quote = client.post(
            _url(tenant_a, "/quotes"),
            json={"customer_id": customer_a.id, "line_items": [line()]},
            headers=actor_headers(),
        ).get_json()["quote"]

        response = client.post(_url(tenant_a, f"/quotes/{quote['id']}/accept"), headers=actor_headers())
        assert response.status_code == 409
        assert response.get_json()["current_status"] == "draft"


def test_full_revenue_flow(client, db_session, tenant_a, customer_a, team_plan):
    headers = actor_headers()

    quote = client.post(
        _url(tenant_a, "/quotes"),
        json={
            "customer_id": customer_a.id,
            "line_items": [line("Team seats", 5, 1000, plan_id=team_plan.id)],
        },
        headers=headers,
    ).get_json()["quote"]

    sent = client.post(_url(tenant_a, f"/quotes/{quote['id']}/send"), headers=headers)
    assert sent.get_json()["quote"]["status"] == "sent"

    accepted = client.post(
        _url(tenant_a, f"/quotes/{quote['id']}/accept"),
        json={"issue_date": "2024-03-01T00:00:00Z"},
        headers=headers,
    )
    assert accepted.status_code == 200
    body = accepted.get_json()
    assert body["quote"]["status"] == "converted"
    invoice = body["invoice"]
    assert invoice["total_cents"] == 5000
    assert invoice["due_date"] == "2024-03-31T00:00:00Z"

    paid = client.post(_url(tenant_a, f"/invoices/{invoice['id']}/pay"), headers=headers)
    assert paid.status_code == 200
    outcome = paid.get_json()
    assert outcome["invoice"]["status"] == "paid"
    assert len(outcome["subscriptions"]) == 1
    sub = outcome["subscriptions"][0]
    assert sub["seats"] == 5
    assert sub["mrr_cents"] == 5000

    again = client.post(_url(tenant_a, f"/invoices/{invoice['id']}/pay"), headers=headers)
    assert again.status_code == 409
    assert again.get_json()["current_status"] == "paid"

    patched = client.patch(_url(tenant_a, f"/subscriptions/{sub['id']}"), json={"seats": 8}, headers=headers)
    assert patched.get_json()["subscription"]["mrr_cents"] == 8000

    activity = client.get(_url(tenant_a, f"/activity/subscription/{sub['id']}"), headers=headers)
    assert [e["activity_type"] for e in activity.get_json()["activity"]] == ["created", "activated", "seat_added"]

    quote_activity = client.get(_url(tenant_a, f"/activity/quote/{quote['id']}"), headers=headers).get_json()
    assert [e["activity_type"] for e in quote_activity["activity"]] == ["created", "sent", "accepted", "converted"]
    assert all(e["actor_id"] == "user-42" for e in quote_activity["activity"])


class TestSubscriptionRoutes:
    def test_patch_requires_exactly_one_field(self, client, db_session, tenant_a, customer_a, pro_plan):
        sub = client.post(
            _url(tenant_a, "/subscriptions"),
            json={"customer_id": customer_a.id, "plan_id": pro_plan.id},
            headers=actor_headers(),
        ).get_json()["subscription"]

        both = client.patch(
            _url(tenant_a, f"/subscriptions/{sub['id']}"),
            json={"status": "paused", "seats": 3},
            headers=actor_headers(),
        )
        assert both.status_code == 400

        none = client.patch(_url(tenant_a, f"/subscriptions/{sub['id']}"), json={}, headers=actor_headers())
        assert none.status_code == 400

    def test_patch_status(self, client, db_session, tenant_a, customer_a, pro_plan):
        sub = client.post(
            _url(tenant_a, "/subscriptions"),
            json={"customer_id": customer_a.id, "plan_id": pro_plan.id},
            headers=actor_headers(),
        ).get_json()["subscription"]

        response = client.patch(
            _url(tenant_a, f"/subscriptions/{sub['id']}"), json={"status": "paused"}, headers=actor_headers()
        )
        assert response.status_code == 200
        assert response.get_json()["subscription"]["status"] == "paused"

    def test_patch_notes_keeps_status(self, client, db_session, tenant_a, customer_a, pro_plan):
        sub = client.post(
            _url(tenant_a, "/subscriptions"),
            json={"customer_id": customer_a.id, "plan_id": pro_plan.id},
            headers=actor_headers(),
        ).get_json()["subscription"]

        response = client.patch(
            _url(tenant_a, f"/subscriptions/{sub['id']}"),
            json={"notes": "Renewal call booked"},
            headers=actor_headers(),
        )
        assert response.status_code == 200
        body = response.get_json()["subscription"]
        assert body["notes"] == "Renewal call booked"
        assert body["status"] == "active"

        activity = client.get(_url(tenant_a, f"/activity/subscription/{sub['id']}"), headers=actor_headers())
        assert [e["activity_type"] for e in activity.get_json()["activity"]][-1] == "updated"

    def test_unknown_coupon_is_404(self, client, db_session, tenant_a, customer_a, pro_plan):
        response = client.post(
            _url(tenant_a, "/subscriptions"),
            json={"customer_id": customer_a.id, "plan_id": pro_plan.id, "coupon_id": 999},
            headers=actor_headers(),
        )
        assert response.status_code == 404

    def test_unpriced_plan_is_422(self, client, db_session, tenant_a, customer_a):
        from conftest import make_plan

        plan = make_plan(db_session, tenant_a, "Unpriced")
        response = client.post(
            _url(tenant_a, "/subscriptions"),
            json={"customer_id": customer_a.id, "plan_id": plan.id},
            headers=actor_headers(),
        )
        assert response.status_code == 422


def test_unknown_activity_entity_type(client, db_session, tenant_a):
    response = client.get(_url(tenant_a, "/activity/ticket/1"), headers=actor_headers())
    assert response.status_code == 400


def test_health(client, db_session):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.get_json()
    assert body["checks"]["database"]["status"] == "healthy"
    assert body["checks"]["lifecycle"]["status"] == "healthy"

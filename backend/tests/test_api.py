"""
HTTP layer tests: routing, JSON shapes and error mapping.

Engine rules are covered by the service tests; these check that typed errors
reach clients as {"error", "code"} with the right status.
"""

from backoffice.models import CashSession


class TestHealth:
    def test_health_ok(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["timestamp"].endswith("Z")


class TestCashFlow:
    def test_open_entry_close_approve(self, client, db_session, branch):
        headers = {"X-User-Id": "1"}

        resp = client.post("/api/cash/sessions", json={"branch_id": branch.id, "opening_amount_cents": 10000},
                           headers=headers)
        assert resp.status_code == 201
        session_id = resp.get_json()["session"]["id"]
        assert resp.get_json()["session"]["opener_id"] == 1

        for entry_type, amount in (("in", 5000), ("out", 2000)):
            resp = client.post("/api/cash/entries", json={
                "branch_id": branch.id, "type": entry_type, "amount_cents": amount, "description": "movement",
            }, headers=headers)
            assert resp.status_code == 201
            assert resp.get_json()["entry"]["session_id"] == session_id

        resp = client.post(f"/api/cash/sessions/{session_id}/close", json={"declared_amount_cents": 12500},
                           headers=headers)
        assert resp.status_code == 200
        closed = resp.get_json()["session"]
        assert closed["status"] == "pending_approval"
        assert closed["difference_cents"] == -500

        resp = client.get("/api/finance/pending")
        assert [s["id"] for s in resp.get_json()["items"]] == [session_id]

        resp = client.post(f"/api/finance/sessions/{session_id}/approve", json={}, headers={"X-User-Id": "9"})
        assert resp.status_code == 200
        assert resp.get_json()["session"]["approver_id"] == 9

        assert db_session.get(CashSession, session_id).status == "approved"

    def test_second_open_is_conflict(self, client, db_session, branch):
        payload = {"branch_id": branch.id, "opening_amount_cents": 0}
        assert client.post("/api/cash/sessions", json=payload).status_code == 201

        resp = client.post("/api/cash/sessions", json=payload)

        assert resp.status_code == 409
        assert resp.get_json()["code"] == "CONFLICT"
        assert "session_id" in resp.get_json()["details"]

    def test_reject_without_reason(self, client, db_session, branch):
        session_id = client.post("/api/cash/sessions", json={"branch_id": branch.id}).get_json()["session"]["id"]
        client.post(f"/api/cash/sessions/{session_id}/close", json={})

        resp = client.post(f"/api/finance/sessions/{session_id}/reject", json={})

        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"

    def test_entries_list_is_paginated(self, client, db_session, branch):
        for _ in range(3):
            client.post("/api/cash/entries", json={
                "branch_id": branch.id, "type": "in", "amount_cents": 100, "description": "sale",
            })

        resp = client.get(f"/api/cash/entries?branch_id={branch.id}&per_page=2")

        body = resp.get_json()
        assert body["count"] == 2
        assert body["pagination"]["total"] == 3
        assert body["pagination"]["has_next"] is True


class TestErrorMapping:
    def test_unknown_session_is_404(self, client, db_session):
        resp = client.get("/api/cash/sessions/999")
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "Cash session not found", "code": "NOT_FOUND"}

    def test_malformed_json_is_400(self, client, db_session):
        resp = client.post("/api/cash/sessions", data="{not json", content_type="application/json")
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "VALIDATION_ERROR"

    def test_bad_actor_header_is_400(self, client, db_session, branch):
        resp = client.post("/api/cash/sessions", json={"branch_id": branch.id}, headers={"X-User-Id": "abc"})
        assert resp.status_code == 400

    def test_insufficient_stock_is_409(self, client, db_session, variant):
        resp = client.post("/api/stock/movements", json={"variant_id": variant.id, "type": "out", "quantity": 50})
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["code"] == "INSUFFICIENT_STOCK"
        assert body["details"] == {"variant_id": variant.id, "requested_quantity": 50, "available": 10}

    def test_entry_patch_rejects_call_argument_keys(self, client, db_session, branch):
        entry_id = client.post("/api/cash/entries", json={
            "branch_id": branch.id, "type": "in", "amount_cents": 100, "description": "sale",
        }).get_json()["entry"]["id"]

        for body in ({"actor_id": 3}, {"entry_id": 7, "amount_cents": 200}):
            resp = client.patch(f"/api/cash/entries/{entry_id}", json=body)
            assert resp.status_code == 400
            assert resp.get_json()["code"] == "VALIDATION_ERROR"

        resp = client.patch(f"/api/cash/entries/{entry_id}", json={"amount_cents": 250, "user_id": 4})
        assert resp.status_code == 200
        assert resp.get_json()["entry"]["amount_cents"] == 250

    def test_account_patch_rejects_account_id(self, client, db_session):
        account_id = client.post("/api/finance/payables", json={
            "description": "Rent", "amount_cents": 250000, "due_date": "2026-03-15",
        }).get_json()["account"]["id"]

        resp = client.patch(f"/api/finance/payables/{account_id}", json={"account_id": 1, "notes": "x"})

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Field not allowed: account_id"

    def test_empty_cart_is_422(self, client, db_session, customer, address):
        resp = client.post("/api/orders", json={"customer_id": customer.id, "address_id": address.id})
        assert resp.status_code == 422
        assert resp.get_json()["code"] == "EMPTY_CART"


class TestOrdersAndStock:
    def test_commit_order(self, client, db_session, customer, address, variant, add_to_cart):
        add_to_cart(variant, quantity=2)

        resp = client.post("/api/orders", json={
            "customer_id": customer.id, "address_id": address.id, "shipping_cents": 1000,
        })

        assert resp.status_code == 201
        order = resp.get_json()["order"]
        assert order["total_cents"] == 41000
        assert len(order["items"]) == 1

        movements = client.get("/api/stock/movements", query_string={"variant_id": variant.id}).get_json()
        assert movements["items"][0]["type"] == "out"
        assert movements["items"][0]["resulting_stock"] == 8

    def test_coupon_preview(self, client, db_session, make_coupon):
        make_coupon(code="TEN", percent_bps=1000, quantity_total=5)
        resp = client.post("/api/coupons/validate", json={"code": "TEN", "cart_total_cents": 5000})
        assert resp.get_json()["discount_cents"] == 500


class TestFinanceEndpoints:
    def test_payable_lifecycle(self, client, db_session, branch):
        resp = client.post("/api/finance/payables", json={
            "description": "Rent", "amount_cents": 250000, "due_date": "2026-03-15",
            "branch_id": branch.id, "supplier_name": "Imobiliaria Sol",
        }, headers={"X-User-Id": "2"})
        assert resp.status_code == 201
        account_id = resp.get_json()["account"]["id"]

        resp = client.post(f"/api/finance/payables/{account_id}/settle", json={"settled_on": "2026-03-14"})
        assert resp.status_code == 200
        assert resp.get_json()["account"]["status"] == "paid"

        resp = client.post(f"/api/finance/payables/{account_id}/settle", json={})
        assert resp.status_code == 409

    def test_closing_and_duplicate(self, client, db_session):
        period = {"start_date": "2026-01-01", "end_date": "2026-01-31"}
        resp = client.post("/api/finance/closings", json=period)
        assert resp.status_code == 201
        closing_id = resp.get_json()["closing"]["id"]

        assert client.post("/api/finance/closings", json=period).status_code == 409

        resp = client.post(f"/api/finance/closings/{closing_id}/cancel", json={"reason": "redo"})
        assert resp.get_json()["closing"]["is_cancelled"] is True

    def test_dashboard(self, client, db_session):
        resp = client.get("/api/finance/dashboard?today=2026-03-10")
        body = resp.get_json()
        assert body["today"] == "2026-03-10"
        assert body["payables"]["due_soon"] == {"count": 0, "total_cents": 0}

"""HTTP tests for the storefront and admin endpoints.

Run with: pytest tests/test_api.py -v
"""

import re
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError

import auth
from conftest import ADMIN_PASSWORD
from domain import TOTAL_TICKETS


def buy(client, tickets):
    return client.post("/purchases", json={"tickets": tickets})


class TestStorefront:

    def test_empty_grid(self, client):
        response = client.get("/tickets")

        assert response.status_code == 200
        data = response.get_json()
        assert data["sold"] == []
        assert data["held"] == []
        assert data["available_count"] == TOTAL_TICKETS
        assert data["price"] == "5.00"

    def test_purchase_holds_tickets(self, client):
        response = buy(client, [3, 1, 2])

        assert response.status_code == 201
        data = response.get_json()
        assert re.fullmatch(r"REF-[A-Z0-9]{9}", data["reference_id"])
        assert data["tickets"] == [1, 2, 3]
        assert data["total_cost"] == "15.00"
        assert data["payment_status"] == {"1": False, "2": False, "3": False}

        grid = client.get("/tickets").get_json()
        assert grid["held"] == [1, 2, 3]
        assert grid["available_count"] == TOTAL_TICKETS - 3

    def test_conflict_returns_409_with_tickets(self, client):
        buy(client, [5])

        response = buy(client, [4, 5])

        assert response.status_code == 409
        data = response.get_json()
        assert data["code"] == "TICKETS_UNAVAILABLE"
        assert data["tickets"] == [5]
        assert "no longer available" in data["message"]

    @pytest.mark.parametrize("body", [{"tickets": []}, {"tickets": [10000]}, {"tickets": "abc"}, {}])
    def test_invalid_selection_returns_400(self, client, body):
        response = client.post("/purchases", json=body)

        assert response.status_code == 400
        assert response.get_json()["code"] == "INVALID_INPUT"

    def test_non_json_body_returns_400(self, client):
        response = client.post("/purchases", data="tickets=1", content_type="text/plain")
        assert response.status_code == 400

    def test_hold_countdown(self, client, clock):
        buy(client, [8])
        clock.advance(minutes=5)

        response = client.get("/tickets/8/hold")

        assert response.status_code == 200
        assert response.get_json()["time_remaining_seconds"] == 25 * 60

    def test_hold_info_missing_returns_404(self, client):
        response = client.get("/tickets/8/hold")

        assert response.status_code == 404
        assert response.get_json()["code"] == "NOT_FOUND"

    def test_ticket_status(self, client):
        buy(client, [8])

        held = client.get("/tickets/8").get_json()
        free = client.get("/tickets/9").get_json()

        assert held["status"] == "held"
        assert held["hold"]["ticket_number"] == 8
        assert free == {"ticket_number": 9, "status": "available", "hold": None}

    def test_out_of_range_ticket_returns_400(self, client):
        assert client.get("/tickets/10000").status_code == 400

    def test_purchase_lookup(self, client):
        reference_id = buy(client, [11]).get_json()["reference_id"]

        response = client.get(f"/purchases/{reference_id}")

        assert response.status_code == 200
        assert response.get_json()["tickets"] == [11]
        assert client.get("/purchases/REF-MISSING00").status_code == 404

    def test_purchase_qr_code(self, client):
        reference_id = buy(client, [11]).get_json()["reference_id"]

        response = client.get(f"/purchases/{reference_id}/qr")

        assert response.status_code == 200
        assert response.mimetype == "image/png"
        assert response.data.startswith(b"\x89PNG")

    def test_expired_hold_leaves_grid(self, client, clock):
        buy(client, [8])
        clock.advance(minutes=31)

        assert client.get("/tickets").get_json()["held"] == []
        assert buy(client, [8]).status_code == 201

    def test_storage_failure_returns_503(self, app, client, monkeypatch):
        store = app.extensions["hold_engine"].store

        def broken_put_purchase(purchase):
            raise OperationalError("INSERT INTO purchases", {}, Exception("database is locked"))

        monkeypatch.setattr(store, "put_purchase", broken_put_purchase)

        response = buy(client, [5])

        assert response.status_code == 503
        assert response.get_json()["code"] == "STORAGE_ERROR"
        assert "database" not in response.get_json()["message"]
        monkeypatch.undo()
        assert client.get("/tickets").get_json()["held"] == []

    def test_unknown_route_returns_json(self, client):
        response = client.get("/nowhere")

        assert response.status_code == 404
        assert response.get_json()["status"] == "error"

    def test_api_docs_served(self, client):
        response = client.get("/apispec.json")

        assert response.status_code == 200
        assert "/purchases" in response.get_json()["paths"]


class TestAdminSession:

    @pytest.mark.parametrize("path", [
        "/admin/tickets/5/confirm",
        "/admin/tickets/5/release",
        "/admin/holds/cleanup",
        "/admin/reset",
    ])
    def test_admin_actions_require_login(self, client, path):
        response = client.post(path)

        assert response.status_code == 401
        assert response.get_json()["code"] == "ADMIN_AUTH_REQUIRED"

    def test_wrong_password_rejected(self, client):
        response = client.post("/admin/login", json={"password": "guess"})

        assert response.status_code == 401
        assert client.get("/admin/session").get_json()["authenticated"] is False

    def test_login_and_logout(self, client):
        login = client.post("/admin/login", json={"password": ADMIN_PASSWORD})
        assert login.status_code == 200
        assert login.get_json()["session"]["is_authenticated"] is True
        assert client.get("/admin/session").get_json()["authenticated"] is True

        client.post("/admin/logout")

        assert client.get("/admin/session").get_json()["authenticated"] is False
        assert client.get("/admin/dashboard").status_code == 401

    def test_idle_session_expires(self, client, monkeypatch):
        now = [1_000_000.0]
        monkeypatch.setattr(auth, "time", SimpleNamespace(time=lambda: now[0]))
        client.post("/admin/login", json={"password": ADMIN_PASSWORD})

        now[0] += 29 * 60
        assert client.get("/admin/dashboard").status_code == 200

        # activity above refreshed the session
        now[0] += 29 * 60
        assert client.get("/admin/dashboard").status_code == 200

        now[0] += 31 * 60
        assert client.get("/admin/dashboard").status_code == 401


class TestAdminActions:

    def test_confirm_moves_ticket_to_sold(self, admin_client):
        buy(admin_client, [5, 6])

        response = admin_client.post("/admin/tickets/5/confirm")

        assert response.status_code == 200
        assert response.get_json()["purchase"]["payment_status"]["5"] is True
        grid = admin_client.get("/tickets").get_json()
        assert grid["sold"] == [5]
        assert grid["held"] == [6]

    def test_confirm_unknown_ticket_returns_404(self, admin_client):
        response = admin_client.post("/admin/tickets/5/confirm")

        assert response.status_code == 404

    def test_release_frees_ticket(self, admin_client):
        buy(admin_client, [5])

        response = admin_client.post("/admin/tickets/5/release")

        assert response.get_json() == {"status": "success", "released": True}
        assert admin_client.get("/tickets/5").get_json()["status"] == "available"
        again = admin_client.post("/admin/tickets/5/release")
        assert again.get_json()["released"] is False

    def test_cleanup_endpoint(self, admin_client, clock):
        buy(admin_client, [5, 6])
        clock.advance(hours=1)

        response = admin_client.post("/admin/holds/cleanup")

        assert response.get_json()["removed"] == 2

    def test_reset_keeps_pricing(self, admin_client):
        admin_client.put("/admin/pricing", json={"price": "7.50"})
        buy(admin_client, [1, 2])
        admin_client.post("/admin/tickets/1/confirm")

        assert admin_client.post("/admin/reset").status_code == 200

        grid = admin_client.get("/tickets").get_json()
        assert grid["sold"] == []
        assert grid["held"] == []
        assert grid["price"] == "7.50"

    def test_dashboard(self, admin_client):
        buy(admin_client, [1, 2, 3])
        buy(admin_client, [120])
        admin_client.post("/admin/tickets/1/confirm")

        data = admin_client.get("/admin/dashboard").get_json()

        stats = data["statistics"]
        assert stats["total_purchases"] == 2
        assert stats["total_revenue"] == "20.00"
        assert stats["confirmed_revenue"] == "5.00"
        assert stats["sold_count"] == 1
        assert stats["held_count"] == 3
        assert [p["tickets"] for p in data["purchases"]] == [[120], [1, 2, 3]]
        assert [h["ticket_number"] for h in data["holds"]] == [2, 3, 120]

        filtered = admin_client.get("/admin/dashboard?ticket=12").get_json()
        assert [p["tickets"] for p in filtered["purchases"]] == [[120]]


class TestPricingEndpoints:

    def test_new_price_applies_to_purchases(self, admin_client):
        response = admin_client.put("/admin/pricing", json={"price": "7.50", "updated_by": "Ana"})

        assert response.status_code == 200
        assert response.get_json()["updated_by"] == "Ana"
        assert buy(admin_client, [1, 2]).get_json()["total_cost"] == "15.00"

    @pytest.mark.parametrize("price", ["-1", "0", "0.001", "free", None])
    def test_invalid_price_rejected(self, admin_client, price):
        response = admin_client.put("/admin/pricing", json={"price": price})

        assert response.status_code == 400
        assert admin_client.get("/pricing").get_json()["price"] == "5.00"

    def test_history_and_reset(self, admin_client, clock):
        admin_client.put("/admin/pricing", json={"price": "6.00"})
        clock.advance(minutes=1)
        admin_client.put("/admin/pricing", json={"price": "8.00"})
        clock.advance(minutes=1)
        admin_client.delete("/admin/pricing")

        history = admin_client.get("/admin/pricing/history").get_json()

        assert [h["price"] for h in history] == ["5.00", "8.00", "6.00"]
        assert history[0]["previous_price"] == "8.00"
        assert admin_client.get("/pricing").get_json()["price"] == "5.00"

    def test_pricing_requires_admin(self, client):
        assert client.put("/admin/pricing", json={"price": "1.00"}).status_code == 401

"""
Integration tests for the API endpoints
"""
import copy
import json
import pytest
import httpx
from fastapi.testclient import TestClient
from marketplace.main import app
from marketplace.api import routes
from marketplace.services.payments import MockPaymentProvider
from marketplace.services.view_registry import ViewRegistry
from conftest import BOOKING_DATA, DOCUMENT_DATA, FakeScheduler, make_http


USERS = {
    "tenant-token": {"id": 1, "email": "tenant@example.com", "role": "tenant"},
    "landlord-token": {"id": 2, "email": "landlord@example.com", "role": "landlord"},
    "admin-token": {"id": 3, "email": "admin@example.com", "role": "admin"},
}


class FakeBackend:
    """Marketplace REST API served through httpx.MockTransport"""

    def __init__(self):
        self.booking = copy.deepcopy(BOOKING_DATA)
        self.document = copy.deepcopy(DOCUMENT_DATA)
        self.processed = []
        self.process_status = 200
        self.read_calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if token not in USERS:
            return httpx.Response(401, json={"detail": "Invalid token"})

        path = request.url.path.removeprefix("/api")
        method = request.method
        body = json.loads(request.content) if request.content else {}

        if path == "/users/me":
            return httpx.Response(200, json=USERS[token])
        if path == "/bookings/B1" and method == "GET":
            return httpx.Response(200, json=self.booking)
        if path == "/bookings/B1/payment-intent":
            if self.booking["is_paid"]:
                return httpx.Response(400, json={"detail": "Booking is already paid"})
            return httpx.Response(200, json={"id": "pi_1", "client_secret": "pi_1_secret_x"})
        if path.startswith("/payments/") and path.endswith("/process"):
            if self.process_status != 200:
                return httpx.Response(self.process_status, json={"detail": "database locked"})
            self.processed.append((path.split("/")[2], body["payment_method_id"]))
            self.booking["is_paid"] = True
            return httpx.Response(200, json={"status": "completed"})
        if path == "/documents/31":
            return httpx.Response(200, json={"id": 31, "property_id": 7})
        if path == "/properties/7/documents":
            return httpx.Response(200, json=[self.document])
        if path == "/properties/7/documents/31":
            return httpx.Response(200, json=self.document)
        if path == "/properties/7/documents/31/feedback":
            saved = {
                "id": 200 + len(self.document["feedback_thread"]),
                "message": body["message"],
                "sender_type": body["sender_type"],
                "created_at": "2026-10-05T10:00:00Z",
                "is_read": False,
            }
            self.document["feedback_thread"].append(saved)
            return httpx.Response(201, json=saved)
        if path == "/properties/7/documents/31/feedback/read":
            self.read_calls += 1
            for m in self.document["feedback_thread"]:
                if m["sender_type"] != USERS[token]["role"]:
                    m["is_read"] = True
            return httpx.Response(200, json={"detail": "ok"})
        return httpx.Response(404, json={"detail": "Not found"})


def auth(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def api_scheduler():
    return FakeScheduler()


@pytest.fixture
def client(backend, api_scheduler, incident_log):
    """Test client wired to the fake backend"""
    http = make_http(backend)
    checkouts = ViewRegistry("checkout")
    feedback_views = ViewRegistry("feedback")
    provider = MockPaymentProvider()

    app.dependency_overrides[routes.get_http] = lambda: http
    app.dependency_overrides[routes.get_provider] = lambda: provider
    app.dependency_overrides[routes.get_incidents] = lambda: incident_log
    app.dependency_overrides[routes.get_scheduler_service] = lambda: api_scheduler
    app.dependency_overrides[routes.get_checkouts] = lambda: checkouts
    app.dependency_overrides[routes.get_feedback_views] = lambda: feedback_views

    yield TestClient(app)

    app.dependency_overrides.clear()


class TestHealthEndpoints:
    """Test health check endpoints"""

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "message" in response.json()

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "payment_provider" in data


@pytest.mark.integration
class TestCheckoutEndpoints:
    """Test the checkout page flow"""

    def test_mount_requires_login(self, client):
        response = client.post("/checkout/B1")

        assert response.status_code == 401
        data = response.json()
        assert data["error"] == "auth_required"
        assert data["redirect_to"] == "/login"

    def test_pay_for_booking(self, client, backend, api_scheduler):
        response = client.post("/checkout/B1", headers=auth("tenant-token"))
        assert response.status_code == 200
        view = response.json()
        assert view["state"] == "ready"
        assert view["client_secret"] == "pi_1_secret_x"
        assert view["booking"]["property"]["title"] == "Seaside Loft"

        response = client.post(
            f"/checkout/views/{view['view_id']}/submit",
            json={"payment_method_id": "pm_card_visa"},
            headers=auth("tenant-token"),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "succeeded"
        assert data["can_submit"] is False
        assert backend.processed == [("pi_1", "pm_card_visa")]
        assert len(api_scheduler.jobs) == 1

    def test_declined_card(self, client, backend):
        view = client.post("/checkout/B1", headers=auth("tenant-token")).json()

        response = client.post(
            f"/checkout/views/{view['view_id']}/submit",
            json={"payment_method_id": "pm_card_chargeDeclined"},
            headers=auth("tenant-token"),
        )

        data = response.json()
        assert data["state"] == "failed"
        assert data["error"]["kind"] == "payment_declined"
        assert data["error"]["message"] == "Your card was declined."
        assert data["can_submit"] is True
        assert backend.processed == []

    def test_incomplete_card_details(self, client):
        view = client.post("/checkout/B1", headers=auth("tenant-token")).json()

        response = client.post(
            f"/checkout/views/{view['view_id']}/submit",
            json={"payment_method_id": ""},
            headers=auth("tenant-token"),
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation"

    def test_paid_booking_shows_error(self, client, backend):
        backend.booking["is_paid"] = True

        view = client.post("/checkout/B1", headers=auth("tenant-token")).json()

        assert view["state"] == "error"
        assert view["error"]["kind"] == "intent_creation"
        assert view["client_secret"] is None

    def test_unknown_view(self, client):
        response = client.get("/checkout/views/nope", headers=auth("tenant-token"))
        assert response.status_code == 404

    def test_unmount(self, client):
        view = client.post("/checkout/B1", headers=auth("tenant-token")).json()

        url = f"/checkout/views/{view['view_id']}"
        assert client.delete(url, headers=auth("tenant-token")).json() == {"closed": True}
        assert client.get(url, headers=auth("tenant-token")).status_code == 404

    def test_view_answers_only_to_its_owner(self, client, backend):
        view = client.post("/checkout/B1", headers=auth("tenant-token")).json()
        url = f"/checkout/views/{view['view_id']}"

        response = client.post(
            f"{url}/submit",
            json={"payment_method_id": "pm_card_visa"},
            headers=auth("landlord-token"),
        )

        assert response.status_code == 404
        assert backend.processed == []
        assert client.get(url).status_code == 401
        assert client.get(url, headers=auth("landlord-token")).status_code == 404
        assert client.delete(url, headers=auth("landlord-token")).status_code == 404
        assert client.get(url, headers=auth("tenant-token")).json()["state"] == "ready"

    def test_unrecorded_payment_and_admin_replay(self, client, backend):
        backend.process_status = 500
        view = client.post("/checkout/B1", headers=auth("tenant-token")).json()

        data = client.post(
            f"/checkout/views/{view['view_id']}/submit",
            json={"payment_method_id": "pm_card_visa"},
            headers=auth("tenant-token"),
        ).json()

        assert data["state"] == "failed"
        assert data["error"]["kind"] == "reconciliation"
        assert data["can_submit"] is False
        reference_id = data["error"]["reference_id"]
        assert reference_id in data["error"]["message"]

        # Only admins see incidents
        assert client.get("/admin/payment-incidents", headers=auth("tenant-token")).status_code == 404

        incidents = client.get("/admin/payment-incidents", headers=auth("admin-token")).json()
        assert [i["reference_id"] for i in incidents] == [reference_id]

        backend.process_status = 200
        response = client.post(f"/admin/payment-incidents/{reference_id}/retry", headers=auth("admin-token"))
        assert response.json() == {"status": "resolved", "reference_id": reference_id}
        assert backend.processed == [("pi_1", "pm_card_visa")]
        assert client.get("/admin/payment-incidents", headers=auth("admin-token")).json() == []


@pytest.mark.integration
class TestFeedbackEndpoints:
    """Test the document feedback thread"""

    def test_document_list_counts_unread(self, client):
        response = client.get("/properties/7/documents", headers=auth("landlord-token"))

        assert response.status_code == 200
        [document] = response.json()
        assert document["unread_feedback"] == 1
        assert "feedback_thread" not in document

    def test_open_view_marks_read(self, client, backend):
        response = client.post("/documents/31/feedback-views", headers=auth("landlord-token"))

        assert response.status_code == 200
        view = response.json()
        assert [m["id"] for m in view["messages"]] == [1, 2]
        assert view["unread_count"] == 0
        assert view["error"] is None
        assert backend.read_calls == 1

        # Nothing left unread, so no second call
        client.post(f"/feedback-views/{view['view_id']}/read", headers=auth("landlord-token"))
        assert backend.read_calls == 1

    def test_send_message(self, client, backend):
        view = client.post("/documents/31/feedback-views?property_id=7", headers=auth("landlord-token")).json()

        response = client.post(
            f"/feedback-views/{view['view_id']}/messages",
            json={"message": "Uploaded a new scan"},
            headers=auth("landlord-token"),
        )

        assert response.status_code == 200
        messages = response.json()["messages"]
        assert messages[-1]["message"] == "Uploaded a new scan"
        assert messages[-1]["pending"] is False
        assert isinstance(messages[-1]["id"], int)

        refreshed = client.post(f"/feedback-views/{view['view_id']}/refresh", headers=auth("landlord-token")).json()
        assert [m["message"] for m in refreshed["messages"]].count("Uploaded a new scan") == 1

    def test_blank_message(self, client):
        view = client.post("/documents/31/feedback-views", headers=auth("landlord-token")).json()

        response = client.post(
            f"/feedback-views/{view['view_id']}/messages",
            json={"message": "   "},
            headers=auth("landlord-token"),
        )

        assert response.status_code == 422
        assert response.json()["message"] == "Please enter a message."

    def test_feedback_view_answers_only_to_its_owner(self, client, backend):
        view = client.post("/documents/31/feedback-views?property_id=7", headers=auth("landlord-token")).json()

        response = client.post(
            f"/feedback-views/{view['view_id']}/messages",
            json={"message": "Not mine to send"},
            headers=auth("tenant-token"),
        )

        assert response.status_code == 404
        assert len(backend.document["feedback_thread"]) == 2
        assert client.get(f"/feedback-views/{view['view_id']}", headers=auth("landlord-token")).status_code == 200

    def test_feedback_requires_login(self, client):
        response = client.post("/documents/31/feedback-views")
        assert response.status_code == 401

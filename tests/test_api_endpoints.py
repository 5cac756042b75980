"""
Tests for API endpoints
"""

import pytest
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse


@pytest.fixture
def mock_current_user():
    """Mock current user for authenticated requests"""
    return {
        "uid": "test_user_123",
        "email": "test@example.com",
        "token": {"uid": "test_user_123"},
    }


@pytest.fixture
def client(fake_db, mock_current_user):
    """Test client backed by the in-memory store and a fixed user"""
    from fastapi.testclient import TestClient
    from taskbit.core.middleware import get_current_user, get_db
    from taskbit.main import app

    app.dependency_overrides[get_db] = lambda: fake_db
    app.dependency_overrides[get_current_user] = lambda: mock_current_user
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def anonymous_client(fake_db):
    from fastapi.testclient import TestClient
    from taskbit.core.middleware import get_db
    from taskbit.main import app

    app.dependency_overrides[get_db] = lambda: fake_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def invoice_body(status="draft", client_id=None):
    issued = datetime(2024, 5, 1, tzinfo=timezone.utc)
    return {
        "client_id": client_id,
        "client_name": "Acme Corp",
        "client_email": "billing@acme.io",
        "issue_date": issued.isoformat(),
        "due_date": (issued + timedelta(days=14)).isoformat(),
        "items": [{"description": "Work", "quantity": 2, "unit_price": 100}],
        "status": status,
    }


class TestHealthEndpoint:
    """Test health check endpoint"""

    def test_health_check(self, anonymous_client):
        response = anonymous_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestAuthentication:

    def test_projects_require_auth(self, anonymous_client):
        response = anonymous_client.get("/api/v1/projects")

        assert response.status_code == 401
        assert response.json()["code"] == "NOT_AUTHENTICATED"

    def test_invalid_token_is_rejected(self, anonymous_client, mock_firebase_admin):
        mock_firebase_admin.verify_id_token.side_effect = Exception("Invalid token")

        response = anonymous_client.get("/api/v1/projects", headers={"Authorization": "Bearer bad"})

        assert response.status_code == 401
        assert response.json() == {"detail": "Could not validate credentials", "code": "NOT_AUTHENTICATED"}


class TestProjectEndpoints:

    def test_project_and_task_flow(self, client, fake_db):
        created = client.post("/api/v1/projects", json={"name": "Website"})
        assert created.status_code == 201
        project_id = created.json()["id"]

        task = client.post(f"/api/v1/projects/{project_id}/tasks", json={"name": "Design"})
        assert task.status_code == 201

        done = client.patch(f"/api/v1/projects/{project_id}/tasks/{task.json()['id']}", json={"status": "done"})
        assert done.json()["status"] == "done"

        project = client.get(f"/api/v1/projects/{project_id}").json()
        assert [t["name"] for t in project["tasks"]] == ["Design"]

        deleted = client.delete(f"/api/v1/projects/{project_id}")
        assert deleted.json() == {"status": "deleted", "project_id": project_id}
        assert client.get(f"/api/v1/projects/{project_id}").status_code == 404

    def test_not_found_error_body(self, client):
        response = client.get("/api/v1/projects/missing")

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_validation_error(self, client):
        response = client.post("/api/v1/projects", json={"name": ""})

        assert response.status_code == 422

    def test_null_name_is_rejected_and_project_stays_readable(self, client):
        project_id = client.post("/api/v1/projects", json={"name": "Website"}).json()["id"]

        response = client.patch(f"/api/v1/projects/{project_id}", json={"name": None})

        assert response.status_code == 422
        assert client.get(f"/api/v1/projects/{project_id}").json()["name"] == "Website"
        assert client.get("/api/v1/projects").status_code == 200

    def test_null_description_clears_it(self, client):
        project_id = client.post("/api/v1/projects", json={"name": "Website", "description": "Old"}).json()["id"]

        response = client.patch(f"/api/v1/projects/{project_id}", json={"description": None})

        assert response.status_code == 200
        assert response.json()["description"] is None


class TestTimeEntryEndpoints:

    def test_log_and_list_time(self, client):
        project_id = client.post("/api/v1/projects", json={"name": "Website"}).json()["id"]

        created = client.post("/api/v1/time-entries", json={
            "project_id": project_id,
            "start_time": "2024-05-13T09:00:00Z",
            "end_time": "2024-05-13T10:30:00Z",
        })

        assert created.status_code == 201
        assert created.json()["duration_seconds"] == 5400
        entries = client.get("/api/v1/time-entries", params={"project_id": project_id}).json()["time_entries"]
        assert len(entries) == 1

    def test_entry_for_missing_project(self, client):
        response = client.post("/api/v1/time-entries", json={
            "project_id": "missing",
            "start_time": "2024-05-13T09:00:00Z",
            "end_time": "2024-05-13T10:30:00Z",
        })

        assert response.status_code == 404


class TestInvoiceEndpoints:

    def test_create_and_lock_invoice(self, client):
        created = client.post("/api/v1/invoices", json=invoice_body(status="sent"))
        assert created.status_code == 201
        invoice = created.json()
        assert invoice["invoice_number"].startswith("INV-")
        assert invoice["total_amount"] == 200

        response = client.patch(f"/api/v1/invoices/{invoice['id']}", json={"notes": "late edit"})

        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_STATE"

    def test_list_by_status(self, client):
        client.post("/api/v1/invoices", json=invoice_body())
        client.post("/api/v1/invoices", json=invoice_body(status="sent"))

        response = client.get("/api/v1/invoices", params={"status": "sent"})

        assert [invoice["status"] for invoice in response.json()["invoices"]] == ["sent"]

    def test_delete_sent_invoice_needs_force(self, client):
        invoice_id = client.post("/api/v1/invoices", json=invoice_body(status="sent")).json()["id"]

        assert client.delete(f"/api/v1/invoices/{invoice_id}").status_code == 409
        assert client.delete(f"/api/v1/invoices/{invoice_id}", params={"force": "true"}).status_code == 200


class TestPortalEndpoints:

    def test_portal_view_and_approval(self, client, anonymous_client):
        client_id = client.post("/api/v1/clients", json={"name": "Acme", "email": "hello@acme.io"}).json()["id"]
        project_id = client.post("/api/v1/projects", json={"name": "Website", "client_id": client_id}).json()["id"]
        task_id = client.post(f"/api/v1/projects/{project_id}/tasks", json={"name": "Design"}).json()["id"]
        url = client.post(f"/api/v1/clients/{client_id}/portal-link").json()["url"]
        token = parse_qs(urlparse(url).query)["token"][0]

        view = anonymous_client.get("/api/v1/portal", params={"token": token})
        assert view.status_code == 200
        assert [p["name"] for p in view.json()["projects"]] == ["Website"]

        approved = anonymous_client.post(f"/api/v1/portal/tasks/{task_id}/approve", params={"token": token})
        assert approved.json()["status"] == "done"

    def test_portal_payment_can_be_disabled(self, client, anonymous_client):
        client_id = client.post("/api/v1/clients", json={"name": "Acme", "email": "hello@acme.io"}).json()["id"]
        invoice_id = client.post("/api/v1/invoices", json=invoice_body(status="sent", client_id=client_id)).json()["id"]
        client.patch(f"/api/v1/clients/{client_id}/portal-settings", json={"allow_invoice_payment": False})
        url = client.post(f"/api/v1/clients/{client_id}/portal-link").json()["url"]
        token = parse_qs(urlparse(url).query)["token"][0]

        response = anonymous_client.post(f"/api/v1/portal/invoices/{invoice_id}/pay", params={"token": token})

        assert response.status_code == 403
        assert response.json()["code"] == "PERMISSION_DENIED"

    def test_bad_portal_token(self, anonymous_client):
        response = anonymous_client.get("/api/v1/portal", params={"token": "garbage"})

        assert response.status_code == 401


class TestDashboardEndpoints:

    def test_dashboard_summary(self, client):
        client.post("/api/v1/projects", json={"name": "Website"})

        response = client.get("/api/v1/dashboard")

        assert response.status_code == 200
        assert [p["name"] for p in response.json()["recent_projects"]] == ["Website"]

    def test_activity_feed(self, client):
        client.post("/api/v1/projects", json={"name": "Website"})

        activity = client.get("/api/v1/dashboard/activity").json()["activity"]

        assert activity[0]["description"] == "Created Project: Website"


class TestBillingEndpoints:

    def test_free_plan_without_subscription(self, client):
        response = client.get("/api/v1/billing/subscription")

        assert response.json() == {"plan": "free", "status": "active", "subscription": None}

    def test_portal_session_without_customer(self, client):
        response = client.post("/api/v1/billing/portal-session")

        assert response.status_code == 404


class TestAccountEndpoints:

    def test_profile_defaults_to_free_plan(self, client):
        response = client.get("/api/v1/account/me")

        assert response.status_code == 200
        assert response.json()["uid"] == "test_user_123"
        assert response.json()["plan"] == "free"

    def test_profile_reflects_stored_plan(self, client, fake_db):
        fake_db.docs["users/test_user_123"] = {"plan": "pro", "stripe_customer_id": "cus_1"}

        assert client.get("/api/v1/account/me").json()["plan"] == "pro"

    def test_migrate_time_entries(self, client, fake_db):
        project_id = client.post("/api/v1/projects", json={"name": "Website"}).json()["id"]
        fake_db.docs["users/test_user_123/time_entries/legacy_1"] = {
            "projectId": project_id,
            "startTime": datetime(2024, 3, 4, 9, tzinfo=timezone.utc),
            "endTime": datetime(2024, 3, 4, 10, tzinfo=timezone.utc),
        }

        response = client.post("/api/v1/account/migrate-time-entries")

        assert response.json() == {"migrated": 1, "skipped": 0}

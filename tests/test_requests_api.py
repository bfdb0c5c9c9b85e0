"""
Request API Tests
Tests for submission, sign-off endpoints and their error responses
"""

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from fastapi.testclient import TestClient

from approval_portal.main import app
from approval_portal.config.settings import settings
from approval_portal.services.record_store import record_store
from approval_portal.utils.exceptions import ConflictError
from conftest import user_id, add_user

client = TestClient(app)

PAYMENT = {"payee_name": "Acme Ltd", "amount": 1200, "description": "Office chairs"}


def headers(username: str) -> dict:
    """Identity header for a seeded user"""
    return {"X-User-Id": str(user_id(username))}


def submit_payment(username: str = "employee") -> int:
    response = client.post(
        "/api/requests",
        json={"kind": "payment", "payload": PAYMENT},
        headers=headers(username)
    )
    assert response.status_code == 201
    return response.json()["request"]["id"]


def act(request_id: int, action: str, username: str, body=None):
    return client.post(f"/api/requests/{request_id}/{action}", json=body or {}, headers=headers(username))


class TestIdentity:
    """Test the X-User-Id identity dependency"""

    def test_missing_header(self, seeded_db):
        """Calls without an identity are rejected"""
        response = client.get("/api/requests/mine")
        assert response.status_code == 401

    def test_unknown_user(self, seeded_db):
        """Unknown user ids are rejected"""
        response = client.get("/api/requests/mine", headers={"X-User-Id": "9999"})
        assert response.status_code == 401


class TestSubmit:
    """Test request submission"""

    def test_submit_payment(self, seeded_db):
        """New payment request starts at the unit manager"""
        response = client.post(
            "/api/requests",
            json={"kind": "payment", "payload": PAYMENT},
            headers=headers("employee")
        )
        assert response.status_code == 201
        data = response.json()["request"]
        assert data["status"] == "pending_unit_manager"
        assert data["current_step"] == 1
        assert data["total_steps"] == 5
        assert data["current_stage"]["required_permission"] == "payment.approve.manager"
        assert data["request_number"].startswith("PAY-")

    def test_submit_missing_fields(self, seeded_db):
        """Incomplete payloads return 422 naming the fields"""
        response = client.post(
            "/api/requests",
            json={"kind": "erp_supplier", "payload": {"company_name": "Fresh Farms"}},
            headers=headers("employee")
        )
        assert response.status_code == 422
        body = response.json()
        assert body["code"] == "validation_error"
        assert body["fields"] == ["tax_id"]

    def test_unknown_kind(self, seeded_db):
        """Unknown workflow kinds fail body validation"""
        response = client.post(
            "/api/requests",
            json={"kind": "travel", "payload": PAYMENT},
            headers=headers("employee")
        )
        assert response.status_code == 422

    def test_my_requests(self, seeded_db):
        """Submitter sees their own requests"""
        submit_payment()
        response = client.get("/api/requests/mine", headers=headers("employee"))
        assert response.status_code == 200
        assert response.json()["count"] == 1


class TestSignOff:
    """Test approve and reject endpoints"""

    def test_full_payment_flow(self, seeded_db):
        """Request passes all five stages"""
        request_id = submit_payment()

        for username in ("manager", "accountant", "auditor"):
            assert act(request_id, "approve", username).status_code == 200

        response = act(request_id, "approve", "cashier", {"extras": {"handling_fee": 25}})
        assert response.status_code == 200
        assert response.json()["request"]["payload"]["handling_fee"] == 25.0

        response = act(request_id, "approve", "boss", {"comment": "released"})
        data = response.json()
        assert data["previous_status"] == "pending_boss"
        assert data["request"]["status"] == "completed"
        assert data["request"]["current_step"] == 6
        assert data["request"]["current_stage"] is None
        assert data["request"]["stage_fields"]["sign_boss_url"] == "BUTTON_APPROVED"

    def test_pending_queue(self, seeded_db):
        """Approvers see the requests waiting on them"""
        request_id = submit_payment()
        response = client.get("/api/requests/pending", headers=headers("manager"))
        assert [r["id"] for r in response.json()["requests"]] == [request_id]

        response = client.get("/api/requests/pending", headers=headers("cashier"))
        assert response.json()["count"] == 0

    def test_wrong_approver(self, seeded_db):
        """Approving without the stage permission returns 403"""
        request_id = submit_payment()
        response = act(request_id, "approve", "cashier")

        assert response.status_code == 403
        body = response.json()
        assert body["code"] == "permission_denied"
        assert body["required_permission"] == "payment.approve.manager"

    def test_reject_requires_comment(self, seeded_db):
        """Rejecting without a reason returns 422"""
        request_id = submit_payment()
        response = act(request_id, "reject", "manager", {"comment": "  "})

        assert response.status_code == 422
        assert response.json()["fields"] == ["comment"]

    def test_reject_then_approve(self, seeded_db):
        """Acting on a rejected request is an invalid state"""
        request_id = submit_payment()
        response = act(request_id, "reject", "manager", {"comment": "missing quote"})
        assert response.status_code == 200
        assert response.json()["request"]["current_step"] == 0

        response = act(request_id, "approve", "manager")
        assert response.status_code == 409
        assert response.json()["code"] == "invalid_state"

    def test_unknown_request(self, seeded_db):
        """Unknown request ids return 404"""
        response = act(9999, "approve", "manager")
        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

        response = client.get("/api/requests/9999", headers=headers("manager"))
        assert response.status_code == 404

    def test_lost_commit_is_retryable_conflict(self, seeded_db, monkeypatch):
        """A commit conflict maps to 409 with a retryable flag"""
        request_id = submit_payment()

        def always_conflict(db, *args, **kwargs):
            raise ConflictError("Request was modified by someone else", request_id=request_id)

        monkeypatch.setattr(settings, "WORKFLOW_MAX_CONFLICT_RETRIES", 0)
        monkeypatch.setattr(record_store, "commit", always_conflict)
        response = act(request_id, "approve", "manager")

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "conflict"
        assert body["retryable"] is True

    def test_skip_reported(self, seeded_db):
        """Skipped accountant stage is reported to the approver"""
        request_id = submit_payment("accountant")
        response = act(request_id, "approve", "manager")

        data = response.json()
        assert data["skipped_stage"] == "pending_accountant"
        assert data["request"]["status"] == "pending_audit_manager"
        assert data["request"]["stage_fields"]["sign_accountant_url"] == "AUTO_SKIPPED"


class TestVisibility:
    """Test who may read request detail and history"""

    def test_unrelated_user_forbidden(self, seeded_db):
        """Users outside the workflow cannot read the request"""
        request_id = submit_payment()
        outsider = {"X-User-Id": str(add_user("outsider", ["finance"]))}

        assert client.get(f"/api/requests/{request_id}", headers=outsider).status_code == 403
        assert client.get(f"/api/requests/{request_id}/history", headers=outsider).status_code == 403

    def test_workflow_approver_allowed(self, seeded_db):
        """Any payment approver can read a payment request"""
        request_id = submit_payment()
        response = client.get(f"/api/requests/{request_id}", headers=headers("boss"))
        assert response.status_code == 200
        assert response.json()["id"] == request_id


class TestRevokeAndResubmit:
    """Test submitter actions"""

    def test_revoke_after_approval(self, seeded_db):
        """Signed requests cannot be revoked"""
        request_id = submit_payment()
        act(request_id, "approve", "manager")

        response = act(request_id, "revoke", "employee")
        assert response.status_code == 409

    def test_revoke_by_other_user(self, seeded_db):
        """Only the submitter may revoke"""
        request_id = submit_payment()
        response = act(request_id, "revoke", "manager")
        assert response.status_code == 403

    def test_resubmit_after_reject(self, seeded_db):
        """Resubmission restarts the workflow and keeps the history"""
        request_id = submit_payment()
        act(request_id, "approve", "manager")
        act(request_id, "reject", "accountant", {"comment": "wrong amount"})

        response = act(request_id, "resubmit", "employee", {"payload": dict(PAYMENT, amount=1100)})
        assert response.status_code == 200
        data = response.json()["request"]
        assert data["status"] == "pending_unit_manager"
        assert data["cycle"] == 2
        assert data["rejection_reason"] is None
        assert data["stage_fields"] == {}

        history = client.get(f"/api/requests/{request_id}/history", headers=headers("employee")).json()
        assert [(e["stage"], e["action"], e["cycle"]) for e in history["entries"]] == [
            ("pending_unit_manager", "approve", 1),
            ("pending_accountant", "reject", 1),
        ]

    def test_resubmit_empty_payload(self, seeded_db):
        """An empty edit is refused"""
        request_id = submit_payment()
        act(request_id, "revoke", "employee")
        response = act(request_id, "resubmit", "employee", {"payload": {}})
        assert response.status_code == 400


class TestNotifications:
    """Test the notification endpoints"""

    def test_approver_inbox(self, seeded_db):
        """Unit manager is told about a new request and can mark it read"""
        request_id = submit_payment()
        response = client.get("/api/notifications/my-notifications", headers=headers("manager"))
        data = response.json()

        assert data["unread_count"] == 1
        assert data["notifications"][0]["request_id"] == request_id
        assert data["notifications"][0]["type"] == "approval_required"

        notification_id = data["notifications"][0]["id"]
        response = client.put(f"/api/notifications/{notification_id}/read", headers=headers("manager"))
        assert response.status_code == 200

        data = client.get("/api/notifications/my-notifications", headers=headers("manager")).json()
        assert data["unread_count"] == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

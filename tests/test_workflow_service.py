"""
Workflow Service Tests
Tests for submission, approval runs, conflict retries and side effects
"""

import sys
import os

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from sqlalchemy.exc import IntegrityError

from approval_portal.config.settings import settings
from approval_portal.database.registry import Notification, Supplier, AuditLog
from approval_portal.models.notification import NotificationType
from approval_portal.schemas.workflow import WorkflowKind
from approval_portal.services.record_store import record_store
from approval_portal.services.supplier_service import supplier_service
from approval_portal.services.workflow_service import workflow_service
from approval_portal.utils.exceptions import ConflictError, InvalidStateError, PermissionDeniedError
from conftest import TestingSessionLocal, user_id, add_user

PAYMENT = {"payee_name": "Acme Ltd", "amount": 1200}
SUPPLIER = {"company_name": "Fresh Farms", "tax_id": "12345678", "contact_name": "Lin"}


def submit(kind, username: str, payload) -> int:
    db = TestingSessionLocal()
    try:
        return workflow_service.submit(db, kind, user_id(username), payload).id
    finally:
        db.close()


def approve(request_id: int, username: str, **kwargs):
    db = TestingSessionLocal()
    try:
        return workflow_service.approve(db, request_id, user_id(username), **kwargs)
    finally:
        db.close()


def notifications_for(username: str):
    db = TestingSessionLocal()
    try:
        return db.query(Notification).filter(Notification.user_id == user_id(username)).all()
    finally:
        db.close()


class TestSubmitAndApprove:
    """Test the load-compute-commit cycle"""

    def test_submit_starts_workflow(self, seeded_db):
        """Submission lands at the first stage and is audited"""
        request_id = submit(WorkflowKind.PAYMENT, "employee", PAYMENT)

        db = TestingSessionLocal()
        state = workflow_service.get_request(db, request_id)
        assert state.status == "pending_unit_manager"
        assert state.request_number.startswith("PAY-")
        assert db.query(AuditLog).filter(AuditLog.request_id == request_id).count() == 1
        db.close()

    def test_full_payment_path(self, seeded_db):
        """Every approver signs in order and the request completes"""
        request_id = submit(WorkflowKind.PAYMENT, "employee", PAYMENT)

        approve(request_id, "manager")
        approve(request_id, "accountant")
        approve(request_id, "auditor")
        approve(request_id, "cashier", extras={"handling_fee": 15})
        result = approve(request_id, "boss", comment="released")

        assert result.completed
        assert result.state.current_step == 6
        assert result.state.payload["handling_fee"] == 15.0

        db = TestingSessionLocal()
        state = workflow_service.get_request(db, request_id)
        assert state.status == "completed"
        assert len(state.approvals) == 5
        assert state.version == 5
        db.close()

    def test_wrong_approver_is_denied(self, seeded_db):
        """Cashier cannot sign the unit manager stage"""
        request_id = submit(WorkflowKind.PAYMENT, "employee", PAYMENT)
        with pytest.raises(PermissionDeniedError):
            approve(request_id, "cashier")

        db = TestingSessionLocal()
        assert workflow_service.get_request(db, request_id).status == "pending_unit_manager"
        db.close()

    def test_accountant_submitter_skips_accountant_stage(self, seeded_db):
        """Skip rule resolves the submitter's permissions from the database"""
        request_id = submit(WorkflowKind.PAYMENT, "accountant", PAYMENT)
        result = approve(request_id, "manager")

        assert result.skipped_stage == "pending_accountant"
        assert result.state.status == "pending_audit_manager"

        db = TestingSessionLocal()
        state = workflow_service.get_request(db, request_id)
        assert [(e.stage, e.is_system) for e in state.approvals] == [
            ("pending_unit_manager", False),
            ("pending_accountant", True),
        ]
        db.close()

    def test_pending_list_follows_permissions(self, seeded_db):
        """Approvers see requests waiting at stages they can sign"""
        submit(WorkflowKind.PAYMENT, "employee", PAYMENT)

        db = TestingSessionLocal()
        assert len(workflow_service.list_pending_for(db, user_id("manager"))) == 1
        assert workflow_service.list_pending_for(db, user_id("accountant")) == []
        assert workflow_service.list_pending_for(db, user_id("employee")) == []
        db.close()


class TestRejectRevokeResubmit:
    """Test the paths out of and back into the workflow"""

    def test_reject_then_resubmit(self, seeded_db):
        """Rejected request restarts with a new cycle and keeps its history"""
        request_id = submit(WorkflowKind.PAYMENT, "employee", PAYMENT)
        approve(request_id, "manager")

        db = TestingSessionLocal()
        rejected = workflow_service.reject(db, request_id, user_id("accountant"), "missing invoice")
        assert rejected.state.status == "rejected"

        result = workflow_service.resubmit(
            db, request_id, user_id("employee"), dict(PAYMENT, invoice="INV-77")
        )
        assert result.state.status == "pending_unit_manager"
        assert result.state.cycle == 2

        state = workflow_service.get_request(db, request_id)
        assert state.rejection_reason is None
        assert state.stage_fields == {}
        assert len(state.approvals) == 2
        assert state.current_cycle_approvals() == []
        db.close()

    def test_revoke_only_before_sign_off(self, seeded_db):
        """Submitter can revoke an untouched request but not a signed one"""
        untouched = submit(WorkflowKind.PAYMENT, "employee", PAYMENT)
        signed = submit(WorkflowKind.PAYMENT, "employee", PAYMENT)
        approve(signed, "manager")

        db = TestingSessionLocal()
        assert workflow_service.revoke(db, untouched, user_id("employee")).state.status == "revoked"
        with pytest.raises(InvalidStateError):
            workflow_service.revoke(db, signed, user_id("employee"))
        db.close()


class TestConflictRetry:
    """Test recomputation after a lost compare-and-swap"""

    def test_single_conflict_is_retried(self, seeded_db, monkeypatch):
        """A transient conflict is recomputed on a fresh snapshot"""
        request_id = submit(WorkflowKind.PAYMENT, "employee", PAYMENT)
        original = record_store.commit
        calls = []

        def flaky_commit(db, *args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise ConflictError("simulated", request_id=request_id, expected_status="pending_unit_manager")
            return original(db, *args, **kwargs)

        monkeypatch.setattr(record_store, "commit", flaky_commit)
        result = approve(request_id, "manager")

        assert len(calls) == 2
        assert result.state.status == "pending_accountant"

        db = TestingSessionLocal()
        assert len(workflow_service.get_request(db, request_id).approvals) == 1
        db.close()

    def test_conflict_surfaces_without_retries(self, seeded_db, monkeypatch):
        """With retries disabled the caller sees the ConflictError"""
        request_id = submit(WorkflowKind.PAYMENT, "employee", PAYMENT)

        def always_conflict(db, *args, **kwargs):
            raise ConflictError("simulated", request_id=request_id, expected_status="pending_unit_manager")

        monkeypatch.setattr(settings, "WORKFLOW_MAX_CONFLICT_RETRIES", 0)
        monkeypatch.setattr(record_store, "commit", always_conflict)
        with pytest.raises(ConflictError):
            approve(request_id, "manager")

    def test_racing_reject_wins(self, seeded_db, monkeypatch):
        """Approval loses to a concurrent reject and fails on the retry"""
        request_id = submit(WorkflowKind.PAYMENT, "employee", PAYMENT)
        other_manager = add_user("manager2", ["unit_manager"])
        original = record_store.commit
        raced = []

        def racing_commit(db, *args, **kwargs):
            if not raced:
                raced.append(1)
                other = TestingSessionLocal()
                try:
                    workflow_service.reject(other, request_id, other_manager, "duplicate of PAY-001")
                finally:
                    other.close()
            return original(db, *args, **kwargs)

        monkeypatch.setattr(record_store, "commit", racing_commit)
        with pytest.raises(InvalidStateError):
            approve(request_id, "manager")

        db = TestingSessionLocal()
        state = workflow_service.get_request(db, request_id)
        assert state.status == "rejected"
        assert [e.action.value for e in state.approvals] == ["reject"]
        db.close()


class TestSideEffects:
    """Test notifications and supplier master updates"""

    def test_next_approvers_notified(self, seeded_db):
        """Holders of the next stage permission get a notification"""
        request_id = submit(WorkflowKind.PAYMENT, "employee", PAYMENT)
        assert [n.type for n in notifications_for("manager")] == [NotificationType.APPROVAL_REQUIRED]

        approve(request_id, "manager")
        assert [n.request_id for n in notifications_for("accountant")] == [request_id]

    def test_submitter_notified_on_rejection(self, seeded_db):
        """Rejection notifies the submitter"""
        request_id = submit(WorkflowKind.PAYMENT, "employee", PAYMENT)
        db = TestingSessionLocal()
        workflow_service.reject(db, request_id, user_id("manager"), "over budget")
        db.close()

        notes = notifications_for("employee")
        assert [n.type for n in notes] == [NotificationType.REQUEST_REJECTED]
        assert "over budget" in notes[0].message

    def test_notifications_can_be_disabled(self, seeded_db, monkeypatch):
        """No notifications are written when disabled"""
        monkeypatch.setattr(settings, "NOTIFICATIONS_ENABLED", False)
        submit(WorkflowKind.PAYMENT, "employee", PAYMENT)
        assert notifications_for("manager") == []

    def test_completed_supplier_request_upserts_supplier(self, seeded_db):
        """Supplier master is created, then updated by a later request"""
        add_user("finance_user", ["finance"])
        add_user("accounting_user", ["erp_accounting"])
        add_user("creator_user", ["erp_creator"])

        for company in ("Fresh Farms", "Fresh Farms Co."):
            request_id = submit(WorkflowKind.ERP_SUPPLIER, "employee", dict(SUPPLIER, company_name=company))
            approve(request_id, "finance_user")
            approve(request_id, "accounting_user")
            result = approve(request_id, "creator_user")
            assert result.completed

        db = TestingSessionLocal()
        suppliers = db.query(Supplier).all()
        assert len(suppliers) == 1
        assert suppliers[0].company_name == "Fresh Farms Co."
        assert suppliers[0].details == {"contact_name": "Lin"}
        db.close()
        assert NotificationType.REQUEST_COMPLETED in [n.type for n in notifications_for("employee")]

    def test_taken_supplier_code_does_not_block_completion(self, seeded_db):
        """A supplier code already held by another tax id is left unassigned"""
        add_user("finance_user", ["finance"])
        add_user("accounting_user", ["erp_accounting"])
        add_user("creator_user", ["erp_creator"])

        for tax_id in ("11111111", "22222222"):
            request_id = submit(
                WorkflowKind.ERP_SUPPLIER, "employee", dict(SUPPLIER, tax_id=tax_id, supplier_code="S001")
            )
            approve(request_id, "finance_user")
            approve(request_id, "accounting_user")
            assert approve(request_id, "creator_user").completed

        db = TestingSessionLocal()
        codes = {s.tax_id: s.supplier_code for s in db.query(Supplier).all()}
        assert codes == {"11111111": "S001", "22222222": None}
        db.close()

    def test_supplier_master_failure_keeps_approval(self, seeded_db, monkeypatch):
        """A database error in the supplier upsert does not undo the final approval"""
        add_user("finance_user", ["finance"])
        add_user("accounting_user", ["erp_accounting"])
        add_user("creator_user", ["erp_creator"])
        request_id = submit(WorkflowKind.ERP_SUPPLIER, "employee", SUPPLIER)
        approve(request_id, "finance_user")
        approve(request_id, "accounting_user")

        def failing_upsert(db, request):
            raise IntegrityError("INSERT INTO suppliers", {}, Exception("UNIQUE constraint failed"))

        monkeypatch.setattr(supplier_service, "upsert_from_request", failing_upsert)
        assert approve(request_id, "creator_user").completed

        db = TestingSessionLocal()
        state = workflow_service.get_request(db, request_id)
        assert state.status == "completed"
        assert len(state.approvals) == 3
        assert db.query(Supplier).count() == 0
        db.close()
        assert NotificationType.REQUEST_COMPLETED in [n.type for n in notifications_for("employee")]


class TestRequestNumbers:
    """Test request number allocation on submit"""

    def test_taken_number_is_redrawn(self, seeded_db, monkeypatch):
        """A number collision on insert draws a fresh number"""
        first_id = submit(WorkflowKind.PAYMENT, "employee", PAYMENT)
        db = TestingSessionLocal()
        taken = workflow_service.get_request(db, first_id).request_number
        db.close()

        original = record_store.generate_request_number
        calls = []

        def stale_number(db, kind, now=None):
            calls.append(1)
            if len(calls) == 1:
                return taken
            return original(db, kind, now)

        monkeypatch.setattr(record_store, "generate_request_number", stale_number)
        second_id = submit(WorkflowKind.PAYMENT, "employee", PAYMENT)

        db = TestingSessionLocal()
        second = workflow_service.get_request(db, second_id)
        assert len(calls) == 2
        assert second.request_number != taken
        db.close()

    def test_collision_without_retries_is_a_conflict(self, seeded_db, monkeypatch):
        """Out of attempts, the collision surfaces as a retryable conflict"""
        first_id = submit(WorkflowKind.PAYMENT, "employee", PAYMENT)
        db = TestingSessionLocal()
        taken = workflow_service.get_request(db, first_id).request_number
        db.close()

        monkeypatch.setattr(settings, "WORKFLOW_MAX_CONFLICT_RETRIES", 0)
        monkeypatch.setattr(record_store, "generate_request_number", lambda db, kind, now=None: taken)
        with pytest.raises(ConflictError):
            submit(WorkflowKind.PAYMENT, "employee", PAYMENT)


class TestVisibility:
    """Test who may read a request"""

    def test_viewers(self, seeded_db):
        """Submitter, workflow approvers and admins can view; others cannot"""
        request_id = submit(WorkflowKind.PAYMENT, "employee", PAYMENT)
        outsider = add_user("outsider", ["purchasing"])

        db = TestingSessionLocal()
        for username in ("employee", "cashier", "admin"):
            assert workflow_service.get_request(db, request_id, viewer_id=user_id(username)).id == request_id
        with pytest.raises(PermissionDeniedError):
            workflow_service.get_request(db, request_id, viewer_id=outsider)
        db.close()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""
Workflow Service
Wires the pure workflow engine to the record store.

Every mutating operation follows load -> compute -> conditional commit.
A ConflictError from the commit means another actor got there first; the
operation is recomputed on a fresh snapshot up to
WORKFLOW_MAX_CONFLICT_RETRIES times. Nothing else is retried.
"""

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from typing import Optional, Dict, Any, List, Callable

from approval_portal.config.settings import settings
from approval_portal.config.workflows import WORKFLOWS, RBAC_MANAGE_PERMISSION, get_workflow
from approval_portal.database.registry import AuditLog
from approval_portal.schemas.workflow import (
    Actor,
    RequestState,
    TerminalStatus,
    TransitionResult,
    WorkflowAction,
    WorkflowKind,
)
from approval_portal.services.workflow_engine import workflow_engine
from approval_portal.services.record_store import record_store
from approval_portal.services.permission_service import permission_service
from approval_portal.services.notification_service import notification_service
from approval_portal.services.supplier_service import supplier_service
from approval_portal.utils.exceptions import ConflictError, PermissionDeniedError
from approval_portal.utils.logger import setup_logger, log_audit

logger = setup_logger()

Compute = Callable[[RequestState, Actor, Actor], TransitionResult]


class WorkflowService:
    """Service for approval request business logic"""

    def __init__(self):
        """Initialize with dependent services"""
        self.engine = workflow_engine
        self.store = record_store
        self.permission_service = permission_service
        self.notification_service = notification_service
        self.supplier_service = supplier_service

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------

    def get_request(self, db: Session, request_id: int, viewer_id: Optional[int] = None) -> RequestState:
        """
        Load a request, optionally checking that a user may see it

        Args:
            db: Database session
            request_id: Request ID
            viewer_id: If given, must be the submitter, an approver of the
                request's workflow, or an RBAC administrator

        Raises:
            RequestNotFoundError: If no such request exists
            PermissionDeniedError: If the viewer may not see the request
        """
        state = self.store.load(db, request_id)
        if viewer_id is not None and not self.can_view(db, viewer_id, state):
            raise PermissionDeniedError(f"Not allowed to view request {state.request_number}")
        return state

    def can_view(self, db: Session, user_id: int, state: RequestState) -> bool:
        if user_id == state.submitter_id:
            return True
        permissions = self.permission_service.get_user_permissions(db, user_id)
        if RBAC_MANAGE_PERMISSION in permissions:
            return True
        return any(stage.required_permission in permissions for stage in get_workflow(state.kind).stages)

    def list_mine(self, db: Session, user_id: int, skip: int = 0, limit: int = 50) -> List[RequestState]:
        return self.store.list_requests(db, submitter_id=user_id, skip=skip, limit=limit)

    def list_pending_for(self, db: Session, user_id: int, skip: int = 0, limit: int = 50) -> List[RequestState]:
        """
        Requests sitting at a stage the user is allowed to sign

        Args:
            db: Database session
            user_id: Approver user ID

        Returns:
            List of request snapshots, newest first
        """
        permissions = self.permission_service.get_user_permissions(db, user_id)
        stage_names = [
            stage.name
            for workflow in WORKFLOWS.values()
            for stage in workflow.stages
            if stage.required_permission in permissions
        ]
        if not stage_names:
            return []
        return self.store.list_requests(db, statuses=stage_names, skip=skip, limit=limit)

    # ------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------

    def submit(self, db: Session, kind: WorkflowKind, submitter_id: int, payload: Dict[str, Any]) -> RequestState:
        """
        Create a request at the first stage of its workflow

        Raises:
            ValidationError: If the payload is incomplete
            ConflictError: If no free request number could be drawn
        """
        state = self.engine.start(kind, submitter_id, payload)
        attempts = max(settings.WORKFLOW_MAX_CONFLICT_RETRIES, 0) + 1

        for attempt in range(1, attempts + 1):
            try:
                created = self.store.create(db, state)
            except IntegrityError:
                # Another submit drew the same request number
                db.rollback()
                if attempt >= attempts:
                    raise ConflictError("Could not allocate a request number, try again")
                logger.info(f"Request number taken, drawing a new one (attempt {attempt + 1})")
                continue
            except Exception:
                db.rollback()
                raise
            break

        try:
            self._write_audit_log(db, submitter_id, "submit", created, None)
            self.notification_service.notify_approval_required(db, created)
            db.commit()
        except Exception:
            db.rollback()
            raise

        log_audit(submitter_id, "submit", f"{created.kind.value} at {created.status}", created.request_number)
        return created

    def approve(
        self,
        db: Session,
        request_id: int,
        actor_id: int,
        comment: Optional[str] = None,
        extras: Optional[Dict[str, Any]] = None
    ) -> TransitionResult:
        """Sign the current stage of a request"""
        def compute(state, actor, submitter):
            return self.engine.apply_action(
                state, WorkflowAction.APPROVE, actor, comment, submitter=submitter, extras=extras
            )
        return self._run(db, request_id, actor_id, "approve", compute)

    def reject(self, db: Session, request_id: int, actor_id: int, comment: Optional[str]) -> TransitionResult:
        """Reject a request at its current stage"""
        def compute(state, actor, submitter):
            return self.engine.apply_action(state, WorkflowAction.REJECT, actor, comment)
        return self._run(db, request_id, actor_id, "reject", compute)

    def revoke(self, db: Session, request_id: int, actor_id: int) -> TransitionResult:
        """Withdraw an unsigned request"""
        def compute(state, actor, submitter):
            return self.engine.revoke(state, actor)
        return self._run(db, request_id, actor_id, "revoke", compute)

    def resubmit(self, db: Session, request_id: int, actor_id: int, payload: Dict[str, Any]) -> TransitionResult:
        """Edit a rejected or revoked request and restart its workflow"""
        def compute(state, actor, submitter):
            return self.engine.resubmit(state, actor, payload)
        return self._run(db, request_id, actor_id, "resubmit", compute)

    # ------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------

    def _run(self, db: Session, request_id: int, actor_id: int, action: str, compute: Compute) -> TransitionResult:
        attempts = max(settings.WORKFLOW_MAX_CONFLICT_RETRIES, 0) + 1

        for attempt in range(1, attempts + 1):
            state = self.store.load(db, request_id)
            actor = self.permission_service.resolve_actor(db, actor_id)
            if state.submitter_id == actor_id:
                submitter = actor
            else:
                submitter = self.permission_service.resolve_actor(db, state.submitter_id)

            result = compute(state, actor, submitter)

            try:
                self.store.commit(db, request_id, result.expected_status, result.state, result.expected_version)
                for entry in result.new_entries:
                    self.store.append_approval(db, request_id, entry)
                self._after_commit(db, actor_id, action, state, result)
                db.commit()
            except ConflictError:
                db.rollback()
                if attempt >= attempts:
                    logger.warning(f"Giving up {action} on request {request_id} after {attempt} conflicting attempts")
                    raise
                logger.info(f"Conflict on {action} of request {request_id}, recomputing (attempt {attempt + 1})")
                continue
            except Exception:
                db.rollback()
                raise

            details = f"{result.expected_status} -> {result.state.status}"
            if result.skipped_stage:
                details += f" (skipped {result.skipped_stage})"
            log_audit(actor_id, action, details, state.request_number)
            logger.info(f"Request {state.request_number} {action} by user {actor_id}: {details}")
            return result

    def _after_commit(self, db: Session, actor_id: int, action: str, before: RequestState, result: TransitionResult):
        after = result.state
        self._write_audit_log(db, actor_id, action, after, before.status)

        if after.status == TerminalStatus.COMPLETED.value:
            self.notification_service.notify_request_completed(db, after)
            if after.kind == WorkflowKind.ERP_SUPPLIER:
                self._record_supplier(db, after)
        elif after.status == TerminalStatus.REJECTED.value:
            self.notification_service.notify_request_rejected(db, after)
        elif not after.is_terminal:
            self.notification_service.notify_approval_required(db, after)

    def _record_supplier(self, db: Session, request: RequestState):
        # The completed approval stands even if the supplier master rejects the row
        try:
            with db.begin_nested():
                self.supplier_service.upsert_from_request(db, request)
        except SQLAlchemyError:
            logger.exception(f"Supplier master update failed for {request.request_number}")

    def _write_audit_log(self, db: Session, user_id: int, action: str, state: RequestState, before_status: Optional[str]):
        db.add(AuditLog(
            user_id=user_id,
            action=action,
            entity_type="approval_request",
            entity_id=state.id,
            description=f"{action} {state.request_number}: {before_status or '-'} -> {state.status}",
            changes={"status": [before_status, state.status], "cycle": state.cycle},
            request_id=state.id
        ))


# Create singleton instance
workflow_service = WorkflowService()

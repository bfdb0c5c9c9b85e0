"""
Workflow Engine
Pure state machine for the sequential multi-role approval workflows.

The engine performs no I/O: every method takes a request snapshot and
returns a new one (wrapped in a TransitionResult) or raises a typed
WorkflowError. Persisting the result is the caller's job, and the commit
must be conditioned on the request still being in `expected_status`.
"""

import math
from datetime import datetime
from typing import Optional, Dict, Any

from approval_portal.config.workflows import (
    StageDefinition,
    get_workflow,
    REQUIRED_PAYLOAD_FIELDS,
    APPROVED_BY_BUTTON,
    AUTO_SKIPPED,
)
from approval_portal.schemas.workflow import (
    Actor,
    ApprovalEntry,
    RequestState,
    TerminalStatus,
    TransitionResult,
    WorkflowAction,
    WorkflowKind,
)
from approval_portal.utils.exceptions import (
    InvalidStateError,
    PermissionDeniedError,
    ValidationError,
)
from approval_portal.utils.logger import setup_logger

logger = setup_logger()


class WorkflowEngine:
    """Computes workflow transitions without touching storage"""

    # ------------------------------------------------------------
    # Transition table helpers
    # ------------------------------------------------------------

    def successor(self, kind, status: str) -> str:
        """
        Get the approve successor of a stage

        Args:
            kind: Workflow kind
            status: Non-terminal stage name

        Returns:
            Next stage name, or "completed" after the last stage

        Raises:
            InvalidStateError: If status is not a stage of this workflow
        """
        table = get_workflow(kind).transition_table()
        if status not in table:
            raise InvalidStateError(
                f"'{status}' is not a pending stage of the {WorkflowKind(kind).value} workflow",
                status=status
            )
        return table[status]

    def step_for(self, kind, status: str) -> int:
        """Progress ordinal for a status: 1-based stage index, 0 for rejected/revoked"""
        workflow = get_workflow(kind)
        if status == TerminalStatus.COMPLETED.value:
            return workflow.completed_step
        if status in (TerminalStatus.REJECTED.value, TerminalStatus.REVOKED.value):
            return 0
        if workflow.get_stage(status) is None:
            raise InvalidStateError(
                f"Unknown status '{status}' for the {workflow.kind.value} workflow",
                status=status
            )
        return workflow.index_of(status) + 1

    # ------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------

    def validate_payload(self, kind, payload: Dict[str, Any]):
        """
        Check the domain fields a request of this kind must carry

        Raises:
            ValidationError: Listing every missing or invalid field
        """
        kind = WorkflowKind(kind)
        payload = payload or {}
        missing = [
            field for field in REQUIRED_PAYLOAD_FIELDS[kind]
            if payload.get(field) in (None, "", [])
        ]
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                fields=missing
            )

        if kind == WorkflowKind.PAYMENT:
            try:
                amount = float(payload["amount"])
            except (TypeError, ValueError):
                raise ValidationError("Amount must be a number", fields=["amount"])
            if not math.isfinite(amount):
                raise ValidationError("Amount must be a finite number", fields=["amount"])
            if amount <= 0:
                raise ValidationError("Amount must be greater than zero", fields=["amount"])

        elif kind == WorkflowKind.ERP_PRODUCT:
            items = payload["items"]
            if not isinstance(items, list):
                raise ValidationError("Items must be a list", fields=["items"])
            for idx, item in enumerate(items):
                if not isinstance(item, dict) or not item.get("product_name"):
                    raise ValidationError(
                        f"Item {idx + 1} is missing a product name",
                        fields=[f"items.{idx}.product_name"]
                    )

    def _validate_extras(self, stage: StageDefinition, extras: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        if not extras:
            return {}

        unknown = sorted(key for key in extras if key not in stage.extra_fields)
        if unknown:
            raise ValidationError(
                f"Fields {', '.join(unknown)} cannot be set at stage {stage.name}",
                fields=unknown
            )

        cleaned = dict(extras)
        if "handling_fee" in cleaned:
            fee = cleaned["handling_fee"]
            try:
                if isinstance(fee, bool):
                    raise TypeError(fee)
                fee = float(fee)
            except (TypeError, ValueError):
                raise ValidationError("Handling fee must be a number", fields=["handling_fee"])
            if not math.isfinite(fee):
                raise ValidationError("Handling fee must be a finite number", fields=["handling_fee"])
            if fee < 0:
                raise ValidationError("Handling fee cannot be negative", fields=["handling_fee"])
            cleaned["handling_fee"] = fee
        return cleaned

    # ------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------

    def start(self, kind, submitter_id: int, payload: Dict[str, Any], now: Optional[datetime] = None) -> RequestState:
        """
        Build the initial state of a new request at the workflow's first stage

        Raises:
            ValidationError: If the payload is incomplete
        """
        workflow = get_workflow(kind)
        self.validate_payload(workflow.kind, payload)
        now = now or datetime.utcnow()
        return RequestState(
            kind=workflow.kind,
            status=workflow.first_stage.name,
            current_step=1,
            submitter_id=submitter_id,
            payload=dict(payload),
            cycle=1,
            version=0,
            created_at=now,
            updated_at=now
        )

    def apply_action(
        self,
        request: RequestState,
        action,
        actor: Actor,
        comment: Optional[str] = None,
        *,
        submitter: Optional[Actor] = None,
        extras: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> TransitionResult:
        """
        Approve or reject the current stage of a request

        Args:
            request: Current snapshot
            action: "approve" or "reject"
            actor: Acting user with resolved permissions
            comment: Required for reject, optional for approve
            submitter: Original submitter with resolved permissions; the
                skip rule can only fire when this is supplied
            extras: Stage-specific payload fields (cashier handling fee)
            now: Timestamp to record, defaults to utcnow

        Returns:
            TransitionResult with the new state and the entries to append

        Raises:
            InvalidStateError: Status is not a pending stage of the workflow
            PermissionDeniedError: Actor lacks the stage permission
            ValidationError: Missing reject comment or invalid extras
        """
        workflow = get_workflow(request.kind)
        try:
            action = WorkflowAction(action)
        except ValueError:
            raise ValidationError(f"Unknown action '{action}'", fields=["action"])

        stage = workflow.get_stage(request.status)
        if stage is None:
            raise InvalidStateError(
                f"Cannot {action.value} a request in status '{request.status}'",
                status=request.status
            )

        if not actor.has(stage.required_permission):
            raise PermissionDeniedError(
                f"Permission '{stage.required_permission}' is required to act on {stage.name}",
                required_permission=stage.required_permission
            )

        comment = comment.strip() if comment else None
        if action == WorkflowAction.REJECT and not comment:
            raise ValidationError("A comment is required to reject a request", fields=["comment"])

        extras = self._validate_extras(stage, extras)
        now = now or datetime.utcnow()

        entry = ApprovalEntry(
            stage=stage.name,
            actor_id=actor.id,
            action=action,
            comment=comment,
            created_at=now,
            cycle=request.cycle
        )

        if action == WorkflowAction.REJECT:
            state = request.model_copy(update={
                "status": TerminalStatus.REJECTED.value,
                "current_step": 0,
                "rejection_reason": comment,
                "rejected_by": actor.id,
                "rejected_at": now,
                "approvals": list(request.approvals) + [entry],
                "version": request.version + 1,
                "updated_at": now,
            })
            return TransitionResult(
                state=state,
                expected_status=request.status,
                expected_version=request.version,
                new_entries=[entry]
            )

        new_entries = [entry]
        stage_fields = dict(request.stage_fields)
        self._sign(stage_fields, stage, actor.id, now, APPROVED_BY_BUTTON)

        payload = dict(request.payload)
        payload.update(extras)

        next_status = workflow.transition_table()[stage.name]
        skipped_stage = None

        # Single skip only; the stage after a skipped one is never examined
        next_stage = workflow.get_stage(next_status)
        if (
            next_stage is not None
            and next_stage.skippable_when_submitter_holds
            and submitter is not None
            and submitter.id == request.submitter_id
            and submitter.has(next_stage.required_permission)
        ):
            new_entries.append(ApprovalEntry(
                stage=next_stage.name,
                actor_id=submitter.id,
                action=WorkflowAction.APPROVE,
                comment="Skipped: submitter holds this stage's permission",
                created_at=now,
                is_system=True,
                cycle=request.cycle
            ))
            self._sign(stage_fields, next_stage, submitter.id, now, AUTO_SKIPPED)
            skipped_stage = next_stage.name
            next_status = workflow.transition_table()[next_stage.name]
            logger.debug(f"Auto-skipped {skipped_stage} for submitter {submitter.id}")

        state = request.model_copy(update={
            "status": next_status,
            "current_step": self.step_for(workflow.kind, next_status),
            "payload": payload,
            "stage_fields": stage_fields,
            "approvals": list(request.approvals) + new_entries,
            "version": request.version + 1,
            "updated_at": now,
        })
        return TransitionResult(
            state=state,
            expected_status=request.status,
            expected_version=request.version,
            new_entries=new_entries,
            skipped_stage=skipped_stage
        )

    def resubmit(
        self,
        request: RequestState,
        actor: Actor,
        new_payload: Dict[str, Any],
        *,
        now: Optional[datetime] = None
    ) -> TransitionResult:
        """
        Edit a rejected or revoked request and restart it at the first stage

        The approvals log is kept; only the current-cycle projection
        (stage fields, rejection details) is reset and the cycle advances.

        Raises:
            PermissionDeniedError: Actor is not the submitter
            InvalidStateError: Request is not rejected or revoked
            ValidationError: New payload is incomplete
        """
        if actor.id != request.submitter_id:
            raise PermissionDeniedError("Only the submitter can resubmit a request")

        if request.status not in (TerminalStatus.REJECTED.value, TerminalStatus.REVOKED.value):
            raise InvalidStateError(
                f"Only rejected or revoked requests can be resubmitted (status is '{request.status}')",
                status=request.status
            )

        workflow = get_workflow(request.kind)
        self.validate_payload(workflow.kind, new_payload)
        now = now or datetime.utcnow()

        state = request.model_copy(update={
            "payload": dict(new_payload),
            "status": workflow.first_stage.name,
            "current_step": 1,
            "rejection_reason": None,
            "rejected_by": None,
            "rejected_at": None,
            "stage_fields": {},
            "cycle": request.cycle + 1,
            "version": request.version + 1,
            "updated_at": now,
        })
        return TransitionResult(
            state=state,
            expected_status=request.status,
            expected_version=request.version
        )

    def revoke(self, request: RequestState, actor: Actor, *, now: Optional[datetime] = None) -> TransitionResult:
        """
        Withdraw a request before anyone has signed it

        Raises:
            PermissionDeniedError: Actor is not the submitter
            InvalidStateError: Request has left the first stage or already
                carries an approval in this cycle
        """
        if actor.id != request.submitter_id:
            raise PermissionDeniedError("Only the submitter can revoke a request")

        workflow = get_workflow(request.kind)
        if request.status != workflow.first_stage.name:
            raise InvalidStateError(
                f"Requests can only be revoked at {workflow.first_stage.name} (status is '{request.status}')",
                status=request.status
            )

        if request.current_cycle_approvals():
            raise InvalidStateError(
                "Request already carries a sign-off and can no longer be revoked",
                status=request.status
            )

        now = now or datetime.utcnow()
        state = request.model_copy(update={
            "status": TerminalStatus.REVOKED.value,
            "current_step": 0,
            "version": request.version + 1,
            "updated_at": now,
        })
        return TransitionResult(
            state=state,
            expected_status=request.status,
            expected_version=request.version
        )

    @staticmethod
    def _sign(stage_fields: Dict[str, Any], stage: StageDefinition, user_id: int, now: datetime, marker: str):
        stage_fields[f"{stage.field_prefix}_at"] = now.isoformat()
        stage_fields[f"{stage.field_prefix}_by"] = user_id
        stage_fields[f"{stage.field_prefix}_url"] = marker


# Create singleton instance
workflow_engine = WorkflowEngine()

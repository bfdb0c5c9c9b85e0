"""
Record Store
Persistence boundary for approval requests.

`commit` is a compare-and-swap: the UPDATE only matches while the row still
holds the status and version the engine computed from. Writes happen inside
the caller's session transaction; the caller commits or rolls back.
"""

from datetime import datetime
from typing import Optional, List, Iterable

from sqlalchemy import update, func
from sqlalchemy.orm import Session, selectinload

from approval_portal.config.settings import settings
from approval_portal.database.registry import ApprovalRequest, ApprovalEntryRecord
from approval_portal.schemas.workflow import ApprovalEntry, RequestState, WorkflowKind
from approval_portal.utils.exceptions import ConflictError, RequestNotFoundError
from approval_portal.utils.helpers import format_request_number, next_request_sequence
from approval_portal.utils.logger import setup_logger

logger = setup_logger()


class RecordStore:
    """SQLAlchemy-backed store for approval requests and their approval log"""

    def to_state(self, record: ApprovalRequest) -> RequestState:
        """Convert an ORM row (with its approvals) into an engine snapshot"""
        return RequestState(
            id=record.id,
            request_number=record.request_number,
            kind=record.kind,
            status=record.status,
            current_step=record.current_step,
            submitter_id=record.submitter_id,
            payload=dict(record.payload or {}),
            approvals=[ApprovalEntry.model_validate(entry) for entry in record.approvals],
            rejection_reason=record.rejection_reason,
            rejected_by=record.rejected_by,
            rejected_at=record.rejected_at,
            stage_fields=dict(record.stage_fields or {}),
            cycle=record.cycle,
            version=record.version,
            created_at=record.created_at,
            updated_at=record.updated_at
        )

    def load(self, db: Session, request_id: int) -> RequestState:
        """
        Load a request snapshot

        Args:
            db: Database session
            request_id: Request ID

        Returns:
            RequestState: Fresh snapshot, bypassing any stale identity-map copy

        Raises:
            RequestNotFoundError: If no such request exists
        """
        record = (
            db.query(ApprovalRequest)
            .options(selectinload(ApprovalRequest.approvals))
            .populate_existing()
            .filter(ApprovalRequest.id == request_id)
            .first()
        )
        if not record:
            raise RequestNotFoundError(request_id)
        return self.to_state(record)

    def generate_request_number(self, db: Session, kind: WorkflowKind, now: Optional[datetime] = None) -> str:
        """Next {PREFIX}-{YYYYMMDD}-{NNN} number for the day"""
        now = now or datetime.utcnow()
        prefix = settings.REQUEST_NUMBER_PREFIXES[WorkflowKind(kind).value]
        day_prefix = format_request_number(prefix, now, 0).rsplit("-", 1)[0]

        last = (
            db.query(ApprovalRequest.request_number)
            .filter(ApprovalRequest.request_number.like(f"{day_prefix}-%"))
            .order_by(func.length(ApprovalRequest.request_number).desc(), ApprovalRequest.request_number.desc())
            .first()
        )
        sequence = next_request_sequence(last[0] if last else None)
        return format_request_number(prefix, now, sequence)

    def create(self, db: Session, state: RequestState) -> RequestState:
        """
        Insert a new request built by the engine

        Args:
            db: Database session
            state: Initial snapshot (id is ignored)

        Returns:
            RequestState: Snapshot with id and request number assigned
        """
        now = state.created_at or datetime.utcnow()
        record = ApprovalRequest(
            request_number=self.generate_request_number(db, state.kind, now),
            kind=state.kind,
            status=state.status,
            current_step=state.current_step,
            cycle=state.cycle,
            version=state.version,
            submitter_id=state.submitter_id,
            payload=dict(state.payload),
            stage_fields=dict(state.stage_fields),
            created_at=now,
            updated_at=state.updated_at or now
        )
        db.add(record)
        db.flush()

        logger.info(f"Created {state.kind.value} request {record.request_number} at {record.status}")
        return self.to_state(record)

    def commit(
        self,
        db: Session,
        request_id: int,
        expected_status: str,
        new_state: RequestState,
        expected_version: Optional[int] = None
    ):
        """
        Conditionally write the engine's output

        Args:
            db: Database session
            request_id: Request ID
            expected_status: Status the engine computed from
            new_state: Engine output
            expected_version: Version the engine computed from; also guards
                against a request leaving and re-entering the same status

        Raises:
            ConflictError: The stored row no longer matches the pre-image
            RequestNotFoundError: The row does not exist
        """
        conditions = [
            ApprovalRequest.id == request_id,
            ApprovalRequest.status == expected_status,
        ]
        if expected_version is not None:
            conditions.append(ApprovalRequest.version == expected_version)

        stmt = (
            update(ApprovalRequest)
            .where(*conditions)
            .values(
                status=new_state.status,
                current_step=new_state.current_step,
                cycle=new_state.cycle,
                version=new_state.version,
                payload=dict(new_state.payload),
                stage_fields=dict(new_state.stage_fields),
                rejection_reason=new_state.rejection_reason,
                rejected_by=new_state.rejected_by,
                rejected_at=new_state.rejected_at,
                updated_at=new_state.updated_at or datetime.utcnow()
            )
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)

        if result.rowcount == 0:
            exists = db.query(ApprovalRequest.id).filter(ApprovalRequest.id == request_id).first()
            if not exists:
                raise RequestNotFoundError(request_id)
            logger.warning(
                f"Commit conflict on request {request_id}: expected status {expected_status}"
                f" (version {expected_version})"
            )
            raise ConflictError(
                "Request was modified by someone else, reload and try again",
                request_id=request_id,
                expected_status=expected_status
            )

    def append_approval(self, db: Session, request_id: int, entry: ApprovalEntry):
        """Insert one approval log entry"""
        db.add(ApprovalEntryRecord(
            request_id=request_id,
            actor_id=entry.actor_id,
            cycle=entry.cycle,
            stage=entry.stage,
            action=entry.action,
            comment=entry.comment,
            is_system=entry.is_system,
            created_at=entry.created_at
        ))
        db.flush()

    def list_requests(
        self,
        db: Session,
        submitter_id: Optional[int] = None,
        statuses: Optional[Iterable[str]] = None,
        kinds: Optional[Iterable[WorkflowKind]] = None,
        skip: int = 0,
        limit: int = 50
    ) -> List[RequestState]:
        """List requests, newest first"""
        query = db.query(ApprovalRequest).options(selectinload(ApprovalRequest.approvals))

        if submitter_id is not None:
            query = query.filter(ApprovalRequest.submitter_id == submitter_id)
        if statuses is not None:
            query = query.filter(ApprovalRequest.status.in_(list(statuses)))
        if kinds is not None:
            query = query.filter(ApprovalRequest.kind.in_(list(kinds)))

        records = query.order_by(ApprovalRequest.created_at.desc(), ApprovalRequest.id.desc()).offset(skip).limit(limit).all()
        return [self.to_state(record) for record in records]


# Create singleton instance
record_store = RecordStore()

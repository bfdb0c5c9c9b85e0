"""
Approval Request Routes
Submission and sign-off endpoints for payment and ERP requests

Workflow errors are raised as-is and mapped to HTTP responses by the
exception handlers registered in main.py.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from approval_portal.config.database import get_db
from approval_portal.database.registry import User
from approval_portal.schemas.request import (
    RequestCreate,
    ApproveAction,
    RejectAction,
    ResubmitAction,
    RequestResponse,
    ApprovalEntryResponse,
)
from approval_portal.services.auth_service import auth_service
from approval_portal.services.workflow_service import workflow_service
from approval_portal.utils.logger import setup_logger

logger = setup_logger()
router = APIRouter()


def _transition_response(result) -> dict:
    return {
        "success": True,
        "previous_status": result.expected_status,
        "skipped_stage": result.skipped_stage,
        "request": RequestResponse.from_state(result.state)
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_request(
    request_data: RequestCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """
    Submit a new request; it starts at the first stage of its workflow
    """
    state = workflow_service.submit(db, request_data.kind, current_user.id, request_data.payload)
    logger.info(f"{current_user.username} submitted {state.request_number}")
    return {
        "success": True,
        "request": RequestResponse.from_state(state)
    }


@router.get("/mine")
async def get_my_requests(
    skip: int = 0,
    limit: int = 50,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Requests submitted by the current user"""
    requests = workflow_service.list_mine(db, current_user.id, skip=skip, limit=limit)
    return {
        "requests": [RequestResponse.from_state(r) for r in requests],
        "count": len(requests)
    }


@router.get("/pending")
async def get_pending_requests(
    skip: int = 0,
    limit: int = 50,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """
    Requests waiting at a stage the current user can sign
    """
    requests = workflow_service.list_pending_for(db, current_user.id, skip=skip, limit=limit)
    logger.info(f"{current_user.username} viewing {len(requests)} pending requests")
    return {
        "requests": [RequestResponse.from_state(r) for r in requests],
        "count": len(requests)
    }


@router.get("/{request_id}")
async def get_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Get request detail; visible to the submitter, approvers of its workflow and admins"""
    state = workflow_service.get_request(db, request_id, viewer_id=current_user.id)
    return RequestResponse.from_state(state)


@router.get("/{request_id}/history")
async def get_request_history(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Full approval log across every cycle, oldest first"""
    state = workflow_service.get_request(db, request_id, viewer_id=current_user.id)
    return {
        "request_number": state.request_number,
        "cycle": state.cycle,
        "entries": [ApprovalEntryResponse(**entry.model_dump()) for entry in state.approvals]
    }


@router.post("/{request_id}/approve")
async def approve_request(
    request_id: int,
    action: ApproveAction,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """
    Sign the current stage

    The cashier stage of payment requests may pass `handling_fee` in extras.
    """
    logger.info(f"User {current_user.username} attempting to approve request ID {request_id}")
    result = workflow_service.approve(db, request_id, current_user.id, action.comment, action.extras)
    return _transition_response(result)


@router.post("/{request_id}/reject")
async def reject_request(
    request_id: int,
    action: RejectAction,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Reject at the current stage; a comment is required"""
    logger.info(f"User {current_user.username} attempting to reject request ID {request_id}")
    result = workflow_service.reject(db, request_id, current_user.id, action.comment)
    return _transition_response(result)


@router.post("/{request_id}/revoke")
async def revoke_request(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Withdraw your own request before its first sign-off"""
    result = workflow_service.revoke(db, request_id, current_user.id)
    return _transition_response(result)


@router.post("/{request_id}/resubmit")
async def resubmit_request(
    request_id: int,
    action: ResubmitAction,
    db: Session = Depends(get_db),
    current_user: User = Depends(auth_service.get_current_user)
):
    """Edit and resend a rejected or revoked request from the first stage"""
    if not action.payload:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Resubmission needs the edited request fields"
        )
    result = workflow_service.resubmit(db, request_id, current_user.id, action.payload)
    return _transition_response(result)

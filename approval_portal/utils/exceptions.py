"""
Workflow Exceptions
Typed failures raised by the workflow engine and the record store
"""

from typing import Optional, List


class WorkflowError(Exception):
    """Base class for all workflow failures"""

    code = "workflow_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidStateError(WorkflowError):
    """Action attempted from a status that does not support it"""

    code = "invalid_state"

    def __init__(self, message: str, status: Optional[str] = None):
        super().__init__(message)
        self.status = status


class PermissionDeniedError(WorkflowError):
    """Actor lacks the permission the action requires"""

    code = "permission_denied"

    def __init__(self, message: str, required_permission: Optional[str] = None):
        super().__init__(message)
        self.required_permission = required_permission


class ValidationError(WorkflowError):
    """Missing comment on reject, or missing/invalid request fields"""

    code = "validation_error"

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        super().__init__(message)
        self.fields = fields or []


class ConflictError(WorkflowError):
    """Compare-and-swap commit failed because the request changed underneath"""

    code = "conflict"

    def __init__(self, message: str, request_id: Optional[int] = None, expected_status: Optional[str] = None):
        super().__init__(message)
        self.request_id = request_id
        self.expected_status = expected_status


class RequestNotFoundError(WorkflowError):
    """No request with the given id"""

    code = "not_found"

    def __init__(self, request_id: int):
        super().__init__(f"Request {request_id} not found")
        self.request_id = request_id

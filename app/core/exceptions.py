# app/core/exceptions.py
"""Custom exceptions for the messaging service."""
from fastapi import HTTPException
from typing import Any, Dict, Optional


class MessagingException(HTTPException):
    """Base exception for the messaging service."""
    def __init__(
        self,
        status_code: int,
        detail: Any,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)

    @property
    def message(self) -> str:
        if isinstance(self.detail, dict):
            return self.detail.get("message", "")
        return str(self.detail)


class ValidationError(MessagingException):
    """Malformed request, e.g. a message with neither text nor attachment."""
    def __init__(self, message: str, field: Optional[str] = None):
        detail = {"error": "Validation Error", "message": message}
        if field:
            detail["field"] = field
        super().__init__(status_code=422, detail=detail)


class DuplicateRequestError(MessagingException):
    """A chat request is already pending for this pair."""
    def __init__(self, message: str = "Chat request already sent"):
        super().__init__(
            status_code=409,
            detail={
                "error": "Duplicate Request",
                "message": message,
                "status": "pending"
            }
        )


class InvalidStateError(MessagingException):
    """Transition attempted on a chat request that is no longer pending."""
    def __init__(self, message: str):
        super().__init__(
            status_code=409,
            detail={"error": "Invalid State", "message": message}
        )


class PermissionDeniedError(MessagingException):
    def __init__(self, message: str = "Permission denied"):
        super().__init__(
            status_code=403,
            detail={"error": "Permission Denied", "message": message}
        )


class NotFoundError(MessagingException):
    def __init__(self, resource: str, id: Any = None):
        message = f"{resource} not found"
        if id:
            message += f" with id: {id}"
        super().__init__(
            status_code=404,
            detail={"error": "Not Found", "message": message}
        )


class TransportError(MessagingException):
    """The backing store or a collaborator could not be reached."""
    def __init__(self, message: str):
        super().__init__(
            status_code=503,
            detail={
                "error": "Transport Error",
                "message": message
            }
        )

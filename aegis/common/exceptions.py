from fastapi import HTTPException, status

from aegis.common.enums import RejectionReason


class AegisException(HTTPException):
    def __init__(self, detail: str | dict, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR):
        super().__init__(status_code=status_code, detail=detail)


class NotFoundError(AegisException):
    def __init__(self, resource: str, resource_id: str | None = None):
        detail = f"{resource} not found"
        if resource_id:
            detail = f"{resource} '{resource_id}' not found"
        super().__init__(detail=detail, status_code=status.HTTP_404_NOT_FOUND)


class PermissionDeniedError(AegisException):
    def __init__(self, detail: str = "You do not have permission to perform this action"):
        super().__init__(detail=detail, status_code=status.HTTP_403_FORBIDDEN)


class BadRequestError(AegisException):
    def __init__(self, detail: str):
        super().__init__(detail=detail, status_code=status.HTTP_400_BAD_REQUEST)


class ConflictError(AegisException):
    def __init__(self, detail: str):
        super().__init__(detail=detail, status_code=status.HTTP_409_CONFLICT)


class ExternalServiceError(AegisException):
    def __init__(self, service: str, detail: str | None = None):
        msg = f"External service error: {service}"
        if detail:
            msg += f" - {detail}"
        super().__init__(detail=msg, status_code=status.HTTP_502_BAD_GATEWAY)


_REJECTION_STATUS_CODES = {
    RejectionReason.WRONG_ACTOR: status.HTTP_403_FORBIDDEN,
    RejectionReason.WRONG_STATUS: status.HTTP_409_CONFLICT,
    RejectionReason.ALREADY_DONE: status.HTTP_409_CONFLICT,
    RejectionReason.RECORD_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RejectionReason.BROADCAST_FAILED: status.HTTP_502_BAD_GATEWAY,
    RejectionReason.PERSISTENCE_FAILED: status.HTTP_503_SERVICE_UNAVAILABLE,
    RejectionReason.INVALID_INPUT: status.HTTP_400_BAD_REQUEST,
}


class ActionRejectedError(AegisException):
    """Raised at the HTTP boundary when the escrow state machine rejects an action."""

    def __init__(self, reason: RejectionReason, message: str):
        self.reason = reason
        super().__init__(
            detail={"reason": reason.value, "message": message},
            status_code=_REJECTION_STATUS_CODES[reason],
        )

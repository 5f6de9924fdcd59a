# shared/errors.py
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class AttendanceError(Exception):
    """
    Expected, user-facing failure of a core operation.
    `kind` is machine-checkable, `message` is for humans, `details` are
    extra fields merged into the response body.
    """
    kind = "ATTENDANCE_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"success": False, "kind": self.kind, "message": self.message, **self.details}


class NoActiveSession(AttendanceError):
    kind = "NO_ACTIVE_SESSION"
    status_code = status.HTTP_404_NOT_FOUND


class NotEnrolled(AttendanceError):
    kind = "NOT_ENROLLED"
    status_code = status.HTTP_403_FORBIDDEN


class AlreadyCheckedIn(AttendanceError):
    kind = "ALREADY_CHECKED_IN"
    status_code = status.HTTP_409_CONFLICT


class OutOfRange(AttendanceError):
    kind = "OUT_OF_RANGE"
    status_code = status.HTTP_403_FORBIDDEN


class CheckInWindowClosed(AttendanceError):
    kind = "CHECK_IN_WINDOW_CLOSED"
    status_code = status.HTTP_403_FORBIDDEN


class AlreadyRegistered(AttendanceError):
    kind = "ALREADY_REGISTERED"
    status_code = status.HTTP_409_CONFLICT


class NotRegistered(AttendanceError):
    kind = "NOT_REGISTERED"
    status_code = status.HTTP_404_NOT_FOUND


class LengthMismatch(AttendanceError):
    kind = "LENGTH_MISMATCH"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class InvalidDescriptor(AttendanceError):
    kind = "INVALID_DESCRIPTOR"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class RecordNotFound(AttendanceError):
    kind = "RECORD_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class NoSession(AttendanceError):
    kind = "NO_SESSION"
    status_code = status.HTTP_404_NOT_FOUND


class StudentNotFound(AttendanceError):
    kind = "STUDENT_NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class ImageRejected(AttendanceError):
    kind = "IMAGE_REJECTED"
    status_code = status.HTTP_413_REQUEST_ENTITY_TOO_LARGE


class SystemFailure(AttendanceError):
    kind = "SYSTEM_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AttendanceError)
    async def attendance_error_handler(request: Request, exc: AttendanceError):
        if isinstance(exc, SystemFailure):
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.kind}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"{request.method} {request.url.path} database error", exc_info=exc)
        body = SystemFailure("Database error, please try again later").to_dict()
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body)

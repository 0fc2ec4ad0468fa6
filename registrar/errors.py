"""
Error taxonomy shared by the services and the HTTP layer.

Services raise these exceptions; ``install_error_handlers`` renders them as
``{"message": ..., **details}`` so callers see which entities were rejected.
"""

from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

from registrar.app_logger import get_logger

logger = get_logger("errors")


class RegistrarError(Exception):
    status_code = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {"message": self.message, **self.details}


class ValidationError(RegistrarError):
    status_code = 400


class AuthenticationError(RegistrarError):
    status_code = 401


class AuthorizationError(RegistrarError):
    status_code = 403


class NotFoundError(RegistrarError):
    status_code = 404


class ConflictError(RegistrarError):
    status_code = 409


class CapacityError(RegistrarError):
    status_code = 400


class ScheduleConflictError(RegistrarError):
    status_code = 400


class InsufficientRoomCapacity(RegistrarError):
    status_code = 400

    def __init__(self, not_assigned: int, required_rooms: int):
        super().__init__(
            f"Not enough room capacity. {not_assigned} students could not be assigned.",
            notAssigned=not_assigned,
            requiredRooms=required_rooms,
        )
        self.not_assigned = not_assigned
        self.required_rooms = required_rooms


class StaleDocumentError(ConflictError):
    """A versioned write found the document changed by a concurrent operation."""

    def __init__(self, collection: str, key: Any):
        super().__init__(
            "The record was modified by another request, please retry",
            collection=collection,
            key=key,
        )
        self.collection = collection
        self.key = key


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(RegistrarError)
    async def registrar_error_handler(request: Request, exc: RegistrarError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content=jsonable_encoder({"message": "Invalid request body", "errors": exc.errors()}),
        )

    @app.exception_handler(PyMongoError)
    async def database_error_handler(request: Request, exc: PyMongoError):
        logger.exception("%s %s failed due to MongoDB error", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"message": "Server error", "error": str(exc)})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("%s %s failed unexpectedly", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"message": "Server error"})

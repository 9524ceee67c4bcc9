import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from taskpipe.services.task_service import TaskValidationError

logger = logging.getLogger("taskpipe.api")


def _get_request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _error_response(request: Request, status_code: int, payload: dict) -> JSONResponse:
    request_id = _get_request_id(request)
    payload["request_id"] = request_id

    response = JSONResponse(status_code=status_code, content=payload)
    if request_id:
        response.headers["X-Request-ID"] = request_id
    return response


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error_response(request, exc.status_code, {"detail": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error_response(request, 422, {"detail": jsonable_encoder(exc.errors())})

    @app.exception_handler(TaskValidationError)
    async def task_validation_exception_handler(request: Request, exc: TaskValidationError):
        logger.warning(
            "request rejected request_id=%s field=%s detail=%s",
            _get_request_id(request),
            exc.field,
            exc.message,
        )
        return _error_response(request, 400, {"detail": exc.message, "field": exc.field})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("unhandled_error request_id=%s", _get_request_id(request), exc_info=exc)
        return _error_response(request, 500, {"detail": "Internal Server Error"})

# api/handlers.py
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from schemas.common import UnifiedAPIResponse
from utils.errors import ErrorCode
from utils.exceptions import APIError, ModelServiceError

logger = logging.getLogger(f"pocketinfer.{__name__}")


def _error_response(status_code: int, error_code: str, message: str, details=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=UnifiedAPIResponse(
            success=False,
            error_code=error_code,
            message=message,
            error_details=details,
            data=None
        ).model_dump(exclude_none=True)
    )


async def api_error_handler(request: Request, exc: APIError):
    return _error_response(exc.status_code, exc.error_code, exc.detail, exc.details or None)


async def model_service_error_handler(request: Request, exc: ModelServiceError):
    logger.warning(f"Request {request.url.path} failed:\n{exc.describe()}")
    api_error = APIError.from_service_error(exc)
    return _error_response(api_error.status_code, api_error.error_code, exc.describe(), api_error.details)


async def value_error_handler(request: Request, exc: ValueError):
    detail = ErrorCode.INFERENCE_INPUT_ERROR
    return _error_response(detail.status_code, detail.code, str(exc) or detail.message)


async def http_exception_handler(request: Request, exc: HTTPException):
    return _error_response(exc.status_code, f"HTTP_{exc.status_code}", exc.detail)


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = []
    for error in exc.errors():
        loc = error["loc"]
        field_name = ".".join(str(item) for item in loc if item != "body")
        errors.append({
            "field": field_name,
            "message": error["msg"],
            "error_type": error["type"]
        })
    return _error_response(422, ErrorCode.COMMON_VALIDATION_ERROR.code, ErrorCode.COMMON_VALIDATION_ERROR.message,
                           {"errors": errors})


async def generic_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception for request {request.url}: {exc}", exc_info=True)
    return _error_response(500, ErrorCode.COMMON_INTERNAL_ERROR.code, ErrorCode.COMMON_INTERNAL_ERROR.message)


def register_exception_handlers(app: FastAPI) -> None:
    """Renders every failure as a UnifiedAPIResponse with success=False."""
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(ModelServiceError, model_service_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

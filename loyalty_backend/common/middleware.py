"""Request middleware and exception handlers for FastAPI."""

import logging
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from loguru import logger as loguru_logger

from loyalty_backend.core.conf import settings
from loyalty_backend.src.billing.shared.exceptions import BillingError

logger = logging.getLogger(__name__)


def get_request_id(request: Request) -> str:
    """Trace id from the request header, or a fresh one."""
    request_id = request.headers.get(settings.TRACE_ID_REQUEST_HEADER_KEY)
    if not request_id:
        request_id = uuid.uuid4().hex
    return request_id[: settings.TRACE_ID_LOG_LENGTH]


async def request_id_middleware(request: Request, call_next: Callable) -> Response:
    """Bind the trace id to every log line written while handling the request."""
    request_id = get_request_id(request)
    with loguru_logger.contextualize(request_id=request_id):
        response = await call_next(request)
    response.headers[settings.TRACE_ID_REQUEST_HEADER_KEY] = request_id
    return response


async def billing_exception_handler(request: Request, exc: BillingError) -> JSONResponse:
    """Render a BillingError with its own status code and error body."""
    if exc.status_code >= 500:
        logger.error(f"[BILLING] {exc.code}: {exc.message}")
    else:
        logger.warning(f"[BILLING] {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

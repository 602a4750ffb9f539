"""Maps the settlement error taxonomy onto HTTP responses.

Every failure body has the same envelope::

    {"success": false, "error": <code>, "detail": <message>, ...}
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from settlement.errors import (
    GatewayRejectedError,
    GatewayTimeoutError,
    InsufficientInventoryError,
    InvalidSignatureError,
    PaymentGatewayError,
    PersistenceError,
    SettlementError,
)
from utils import log

logger = log.get_logger(__name__)


def _envelope(status_code: int, error: str, detail, **extra) -> JSONResponse:
    body = {"success": False, "error": error, "detail": detail}
    body.update({k: v for k, v in extra.items() if v is not None})
    return JSONResponse(status_code=status_code, content=body)


async def _settlement_error(request: Request, exc: SettlementError) -> JSONResponse:
    extra = {"transactionId": exc.transaction_id}
    if isinstance(exc, InsufficientInventoryError):
        extra["reconciliationRequired"] = exc.reconciliation_required
        extra["available"] = exc.available
    if isinstance(exc, PersistenceError):
        logger.critical(
            f"{request.method} {request.url.path} failed after payment: {exc} "
            f"(order {exc.external_order_id}, payment {exc.external_payment_id})"
        )
    return _envelope(exc.status_code, exc.code, str(exc), **extra)


async def _gateway_error(request: Request, exc: PaymentGatewayError) -> JSONResponse:
    if isinstance(exc, InvalidSignatureError):
        return _envelope(400, "invalid_signature", str(exc))
    if isinstance(exc, GatewayTimeoutError):
        logger.error(f"{request.method} {request.url.path}: payment gateway timed out: {exc}")
        return _envelope(504, "gateway_timeout", str(exc))
    code = exc.code if isinstance(exc, GatewayRejectedError) else None
    logger.error(f"{request.method} {request.url.path}: payment gateway refused: {exc}")
    return _envelope(502, "gateway_rejected", str(exc), gatewayCode=code)


async def _request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = [
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
        for err in exc.errors()
    ]
    return _envelope(400, "validation_error", "; ".join(problems))


async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _envelope(exc.status_code, "http_error", exc.detail)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SettlementError, _settlement_error)
    app.add_exception_handler(PaymentGatewayError, _gateway_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(StarletteHTTPException, _http_error)

"""
Error Handling for the Safe Yield Rebalancer

Every failure a cycle can hit maps to one exception type with a stable
code, an HTTP status and structured details (protocol, step, wallet,
tx hash). "No action needed" is never an error.
"""

import logging
from collections import Counter, deque
from datetime import datetime
from typing import Deque, Dict, Optional
from enum import Enum

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("ErrorHandler")


# ============================================
# ERROR CODES
# ============================================

class ErrorCode(str, Enum):
    # Client errors (4xx)
    BAD_REQUEST = "BAD_REQUEST"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MODULE_NOT_ENABLED = "MODULE_NOT_ENABLED"

    # Server errors (5xx)
    INTERNAL_ERROR = "INTERNAL_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    PROTOCOL_READ_FAILED = "PROTOCOL_READ_FAILED"
    EXECUTION_REVERTED = "EXECUTION_REVERTED"
    EXECUTION_SEND_FAILED = "EXECUTION_SEND_FAILED"
    EXECUTION_PENDING = "EXECUTION_PENDING"


# ============================================
# CUSTOM EXCEPTIONS
# ============================================

class RebalancerError(Exception):
    """Base exception for the rebalancer"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: Dict = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict:
        return {
            "success": False,
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp.isoformat()
            }
        }


class ValidationError(RebalancerError):
    """Input validation error"""
    def __init__(self, message: str, details: Dict = None):
        super().__init__(message, ErrorCode.VALIDATION_ERROR, 400, details)


class ConfigurationError(RebalancerError):
    """Required configuration value is missing or malformed"""
    def __init__(self, key: str, message: str = None):
        super().__init__(
            message or f"{key} not configured",
            ErrorCode.CONFIGURATION_ERROR,
            500,
            {"key": key}
        )


class ProtocolReadError(RebalancerError):
    """
    A read against a lending protocol failed for a reason other than an
    unlisted reserve. The decision cycle is abandoned; the caller retries
    the whole cycle on its next invocation.
    """
    def __init__(self, protocol: str, step: str, original_error: Exception = None):
        details = {"protocol": protocol, "step": step}
        if original_error:
            details["original_error"] = str(original_error)
        super().__init__(
            f"{protocol} read failed during {step}",
            ErrorCode.PROTOCOL_READ_FAILED,
            502,
            details
        )
        self.protocol = protocol
        self.step = step


class ModuleNotEnabledError(RebalancerError):
    """The execution module is not enabled on the Safe. Needs owner action."""
    def __init__(self, wallet: str, module: str):
        super().__init__(
            f"Module {module} is not enabled on Safe {wallet}",
            ErrorCode.MODULE_NOT_ENABLED,
            403,
            {"wallet": wallet, "module": module}
        )


class ExecutionRevertedError(RebalancerError):
    """The batch failed on-chain. Nothing was committed."""
    def __init__(self, wallet: str, step: str, message: str = None, tx_hash: str = None):
        details = {"wallet": wallet, "step": step}
        if tx_hash:
            details["tx_hash"] = tx_hash
        super().__init__(
            message or f"Rebalance batch reverted ({step})",
            ErrorCode.EXECUTION_REVERTED,
            500,
            details
        )
        self.step = step
        self.tx_hash = tx_hash


class TransactionSendError(RebalancerError):
    """The module transaction could not be built, signed or broadcast. Nothing is on-chain."""
    def __init__(self, wallet: str, step: str, original_error: Exception = None):
        details = {"wallet": wallet, "step": step}
        if original_error:
            details["original_error"] = str(original_error)
        super().__init__(
            f"Module transaction not sent ({step})",
            ErrorCode.EXECUTION_SEND_FAILED,
            502,
            details
        )
        self.step = step
        self.tx_hash = None


class ReceiptTimeoutError(RebalancerError):
    """
    The transaction was broadcast but no receipt arrived in time. The outcome
    is unknown; check tx_hash before submitting the plan again.
    """
    def __init__(self, wallet: str, tx_hash: str, timeout: float = None):
        details = {"wallet": wallet, "step": "receipt_timeout", "tx_hash": tx_hash}
        if timeout is not None:
            details["timeout"] = timeout
        super().__init__(
            f"No receipt for {tx_hash} yet, outcome unknown",
            ErrorCode.EXECUTION_PENDING,
            504,
            details
        )
        self.step = "receipt_timeout"
        self.tx_hash = tx_hash


# ============================================
# ERROR TRACKING
# ============================================

class ErrorTracker:
    """
    In-process error history for the API.

    Keeps a bounded list of recent failures plus counters per error code and,
    for protocol reads, per protocol/step so a flaky RPC method stands out.
    """

    def __init__(self, max_errors: int = 500):
        self.recent: Deque[Dict] = deque(maxlen=max_errors)
        self.by_code: Counter = Counter()
        self.by_read_step: Counter = Counter()

    def track(self, error: Exception, request_path: Optional[str] = None):
        code = error.code.value if isinstance(error, RebalancerError) else ErrorCode.INTERNAL_ERROR.value
        self.by_code[code] += 1

        if isinstance(error, ProtocolReadError):
            self.by_read_step[f"{error.protocol}.{error.step}"] += 1

        self.recent.append({
            "code": code,
            "type": type(error).__name__,
            "message": str(error)[:300],
            "path": request_path,
            "details": getattr(error, "details", None),
            "at": datetime.now().isoformat(),
        })

        if not isinstance(error, RebalancerError) or error.status_code >= 500:
            logger.error(f"{code} on {request_path or '-'}: {str(error)[:200]}")

    def get_stats(self) -> Dict:
        return {
            "total": sum(self.by_code.values()),
            "by_code": dict(self.by_code),
            "by_read_step": dict(self.by_read_step),
            "recent": list(self.recent)[-10:],
        }

    def clear(self):
        self.recent.clear()
        self.by_code.clear()
        self.by_read_step.clear()


error_tracker = ErrorTracker()


# ============================================
# FASTAPI EXCEPTION HANDLERS
# ============================================

def _error_body(code: ErrorCode, message: str, details: Dict = None) -> Dict:
    return {
        "success": False,
        "error": {
            "code": code.value,
            "message": message,
            "details": details or {},
            "timestamp": datetime.now().isoformat(),
        }
    }


async def rebalancer_exception_handler(request: Request, exc: RebalancerError) -> JSONResponse:
    error_tracker.track(exc, request.url.path)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    error_tracker.track(exc, request.url.path)
    code = ErrorCode.BAD_REQUEST if exc.status_code < 500 else ErrorCode.INTERNAL_ERROR
    return JSONResponse(status_code=exc.status_code, content=_error_body(code, str(exc.detail)))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error_tracker.track(exc, request.url.path)
    return JSONResponse(
        status_code=422,
        content=_error_body(ErrorCode.VALIDATION_ERROR, "Invalid request", {"errors": jsonable_encoder(exc.errors())})
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    error_tracker.track(exc, request.url.path)
    logger.exception(f"Unhandled exception on {request.url.path}")
    return JSONResponse(
        status_code=500,
        content=_error_body(ErrorCode.INTERNAL_ERROR, "An unexpected error occurred")
    )


def register_exception_handlers(app):
    app.add_exception_handler(RebalancerError, rebalancer_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, general_exception_handler)


# ============================================
# ERROR MIDDLEWARE
# ============================================

class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Last line: anything that escaped the handlers becomes a JSON 500/4xx."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except RebalancerError as e:
            return await rebalancer_exception_handler(request, e)
        except Exception as e:
            return await general_exception_handler(request, e)

"""
Tourkit — Custom Exception Hierarchy
======================================

What:  Defines the pipeline's failure taxonomy.
Why:   Every endpoint (storage, geocoder, planner) reports errors in its own
       ad hoc shape. Those shapes are folded into these classes once, at the
       transport boundary, so nothing downstream inspects raw payloads.
How:   Each exception carries a human-readable message and a context dict.
       Global exception handlers (main.py) turn them into JSON responses.

Exception Hierarchy:
    TourkitError (base)
    ├── ValidationError            → 400 Bad Request
    ├── TransientTransportError    → retried; 502 once the budget is spent
    ├── TerminalAuthError          → 401, never retried
    ├── OptimizationFailed         → recovered locally (original asset is sent)
    ├── MalformedOracleResponse    → recovered locally (order is repaired)
    └── SequenceError              → route planning produced nothing to repair
        ├── QuotaExceededError     → 429 Too Many Requests (retry later)
        └── PlannerUnavailableError→ 503 Service Unavailable

Per-stop geocoding failures are not exceptions at all: the resolver logs
them and returns a shorter list.
"""

from typing import Any, Dict, Optional


class TourkitError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned for server errors)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(TourkitError):
    """
    Raised when caller input fails validation.

    When:    Duplicate stop ids, too many stops, empty upload body.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


# ══════════════════════════════════════════════════════════════════════════
# Upload errors
# ══════════════════════════════════════════════════════════════════════════

class TransientTransportError(TourkitError):
    """
    A transfer attempt failed in a way that may succeed if tried again.

    When:    Network failure, per-attempt timeout, 5xx, or any non-2xx status
             other than 401.
    Policy:  Retried by UploadCoordinator until the attempt budget is spent;
             the last one's message becomes the failed result's error.
    """

    def __init__(
        self,
        message: str = "Upload failed",
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if status_code is not None:
            ctx["status_code"] = status_code
        super().__init__(message=message, context=ctx)
        self.status_code = status_code


class TerminalAuthError(TourkitError):
    """
    No valid credential: the caller is not signed in, or the storage
    endpoint answered 401.

    Policy:  Never retried and consumes no retry budget.
    HTTP:    401 Unauthorized
    """

    def __init__(
        self,
        message: str = "Please sign in to upload files",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class OptimizationFailed(TourkitError):
    """
    An oversized image could not be decoded or re-encoded.

    Policy:  Non-fatal. The upload proceeds with the original asset.
    """

    def __init__(
        self,
        message: str = "Image optimization failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


# ══════════════════════════════════════════════════════════════════════════
# Route planning errors
# ══════════════════════════════════════════════════════════════════════════

class MalformedOracleResponse(TourkitError):
    """
    The planner's text contained no usable JSON array of ids.

    Policy:  Never surfaced. RouteSequencer treats the parsed list as empty
             and the repair step returns the input order.
    """

    def __init__(
        self,
        message: str = "Planner response did not contain a JSON array",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class SequenceError(TourkitError):
    """
    The planning call itself failed, so there is no output to repair.

    Attributes:
        code: Machine-readable reason the caller can branch on
              ("quota_exhausted", "rate_limited", "planner_unavailable").
    """

    code = "sequence_error"

    def __init__(
        self,
        message: str = "Route planning failed",
        code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if code:
            self.code = code
        ctx = context or {}
        ctx["code"] = self.code
        super().__init__(message=message, context=ctx)


class QuotaExceededError(SequenceError):
    """
    The planner refused the call for quota or rate reasons (402 / 429).

    User guidance: "try again later / check quota".
    HTTP:    429 Too Many Requests (with Retry-After when known)
    """

    code = "quota_exhausted"

    def __init__(
        self,
        message: str = "Route planning quota exhausted. Please check your plan or try again later.",
        code: Optional[str] = None,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, code=code, context=ctx)
        self.retry_after = retry_after


class PlannerUnavailableError(SequenceError):
    """
    The planner could not be reached or answered with an unexpected error.

    User guidance: "planning unavailable".
    HTTP:    503 Service Unavailable
    """

    code = "planner_unavailable"

    def __init__(
        self,
        message: str = "Route planning is temporarily unavailable.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)

"""
Tourkit — Rate Limiting Middleware
====================================

What:  Per-IP sliding window limiter with a separate budget per path group.
Why:   Every sequence request spends planner quota and every geocode request
       spends the provider's one-request-per-second budget, so those paths
       get a tight limit. Uploads spend neither and a single listing can be
       hundreds of photos, so they get their own, much larger budget.
How:   Keeps the timestamps of each (budget, IP) pair's requests inside the
       window. When the count reaches the limit the request is rejected with
       429 and a Retry-After header. Paths outside every budget pass through.

Budgets (defaults from settings):
    planning  /api/geocode, /api/routes   rate_limit_requests per rate_limit_window
    uploads   /api/uploads                upload_rate_limit_requests per upload_rate_limit_window

Single-process only: state lives in this worker's memory.
"""

import logging
import time
from collections import defaultdict
from typing import Dict, List, NamedTuple, Optional, Sequence, Tuple

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from tourkit.config import settings

logger = logging.getLogger(__name__)


class RateBudget(NamedTuple):
    name: str
    path_prefixes: Tuple[str, ...]
    requests: int
    window: int  # seconds


def default_budgets() -> List[RateBudget]:
    return [
        RateBudget(
            name="planning",
            path_prefixes=("/api/geocode", "/api/routes"),
            requests=settings.rate_limit_requests,
            window=settings.rate_limit_window,
        ),
        RateBudget(
            name="uploads",
            path_prefixes=("/api/uploads",),
            requests=settings.upload_rate_limit_requests,
            window=settings.upload_rate_limit_window,
        ),
    ]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory sliding window rate limiter.

    `budgets` defaults to default_budgets(); the first budget whose prefix
    matches the request path applies.
    """

    def __init__(self, app, budgets: Optional[Sequence[RateBudget]] = None, **kwargs):
        super().__init__(app, **kwargs)
        self.budgets = list(budgets) if budgets is not None else default_budgets()
        self._requests: Dict[Tuple[str, str], List[float]] = defaultdict(list)
        self._seen = 0

    def budget_for(self, path: str) -> Optional[RateBudget]:
        for budget in self.budgets:
            if any(path == p or path.startswith(p + "/") for p in budget.path_prefixes):
                return budget
        return None

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        budget = self.budget_for(request.url.path)
        if budget is None:
            return await call_next(request)

        client_ip = getattr(request.client, "host", "unknown") if request.client else "unknown"
        key = (budget.name, client_ip)
        now = time.time()

        recent = [ts for ts in self._requests[key] if ts > now - budget.window]
        self._requests[key] = recent

        if len(recent) >= budget.requests:
            retry_after = int(recent[0] + budget.window - now) + 1
            logger.warning(
                "Rate limit exceeded for IP %s on %s: %d requests in %ds window",
                client_ip,
                budget.name,
                len(recent),
                budget.window,
            )
            return JSONResponse(
                status_code=429,
                content={
                    "error": "rate_limit_exceeded",
                    "message": f"Too many requests. Please wait {retry_after} seconds before retrying.",
                    "details": {"retry_after": retry_after, "budget": budget.name},
                },
                headers={"Retry-After": str(retry_after)},
            )

        recent.append(now)
        self._seen += 1
        if self._seen % 1000 == 0:
            self._cleanup_inactive(now)

        return await call_next(request)

    def _cleanup_inactive(self, now: float) -> None:
        """Drop (budget, IP) pairs with no requests inside their window."""
        windows = {budget.name: budget.window for budget in self.budgets}
        inactive = [
            key for key, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] <= now - windows.get(key[0], 0)
        ]
        for key in inactive:
            del self._requests[key]
        if inactive:
            logger.debug("Cleaned up %d inactive rate-limit entries", len(inactive))

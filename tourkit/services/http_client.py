"""
Tourkit — Outbound HTTP Helpers
=================================

What:  One builder for httpx.AsyncClient and one function that turns an
       error response into a message string.
Why:   Storage, geocoder and planner each answer errors in their own shape
       ({"error": ...}, {"message": ...}, plain text). They are folded here,
       once, so services only ever see a string and a status code.
"""

from typing import Dict, Optional

import httpx


def build_async_client(
    *,
    timeout_seconds: float = 30.0,
    headers: Optional[Dict[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create an httpx.AsyncClient with explicit timeout and headers.

    `transport` lets tests plug in httpx.MockTransport without touching
    the service code.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout_seconds),
        headers=headers or {},
        follow_redirects=True,
        transport=transport,
    )


def describe_error_response(response: httpx.Response, default: str) -> str:
    """
    Build "<reason> (<status>)" from a failed response.

    Reason precedence: JSON "error", then JSON "message", then `default`.
    A nested {"error": {"message": ...}} (chat-completions style) is unwrapped.
    """
    reason = default
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        candidate = payload.get("error") or payload.get("message")
        if isinstance(candidate, dict):
            candidate = candidate.get("message")
        if isinstance(candidate, str) and candidate.strip():
            reason = candidate.strip()
    elif isinstance(payload, str) and payload.strip():
        reason = payload.strip()

    return f"{reason} ({response.status_code})"


def parse_retry_after(response: httpx.Response) -> Optional[int]:
    """Retry-After in whole seconds, if the server sent a numeric value."""
    value = response.headers.get("Retry-After")
    if not value:
        return None
    try:
        return max(0, int(float(value)))
    except ValueError:
        return None

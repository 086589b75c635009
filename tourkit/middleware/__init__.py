# Middleware package init
"""
Tourkit — Middleware Package
==============================

Request → [Rate Limit] → [Request ID] → [Logging] → [CORS] → Route Handler

Rate limiting runs first so abusive clients never reach the planner or
storage; planning and upload paths are counted against separate budgets.
The request ID is assigned before logging so every access line
and every service log line for one request share it.
"""

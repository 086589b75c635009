"""
Tourkit — Planning Oracle Interface
=====================================

What:  Abstract base class for the service that proposes a visiting order.
Why:   RouteSequencer never trusts the planner's answer; it only needs "send
       these two prompts, give me the text back". Keeping that behind an
       interface lets tests script any response and lets the provider change
       without touching the repair logic.
"""

from abc import ABC, abstractmethod


class PlanningOracle(ABC):
    """
    Contract:
        - complete() returns the model's raw text, which may be anything
          (commentary, code fences, a partial or wrong array).
        - Transport failures are raised as SequenceError subclasses:
          QuotaExceededError for quota/rate refusals, PlannerUnavailableError
          for everything else.
        - No retries: one call per planning request.
    """

    @abstractmethod
    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """
        Send one system + user message pair and return the reply text.

        Raises:
            QuotaExceededError: Credits exhausted (402) or rate limited (429).
            PlannerUnavailableError: Unreachable, misconfigured, or other errors.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """True when the planner is configured to accept calls."""
        ...

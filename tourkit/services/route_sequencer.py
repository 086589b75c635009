"""
Tourkit — Route Sequencer
===========================

What:  Asks the planning oracle for a visiting order and repairs whatever
       comes back into an exact permutation of the input stop ids.
Why:   The planner is a language model. It may wrap the answer in prose,
       drop a stop, repeat one, or invent an id. None of that may reach the
       caller: the returned order always contains every input id once.
How:
    1. < 2 stops → input order, no call.
    2. One oracle call. Transport failure → SequenceError, no fallback
       (there is nothing to repair).
    3. Take the first syntactically valid JSON array in the reply.
    4. Keep ids that belong to the input (first occurrence only), then
       append the missing ones in input order. An unparsable reply
       therefore yields the input order.

State machine (per call):
    IDLE → REQUESTING → VALIDATING → DONE      (oracle answered)
    IDLE → REQUESTING → FAILED                 (transport failure)
"""

import enum
import json
import logging
import uuid
from typing import Iterable, List, Optional, Sequence, Tuple

from tourkit.config import PlannerConfig
from tourkit.exceptions import (
    MalformedOracleResponse,
    PlannerUnavailableError,
    SequenceError,
    ValidationError,
)
from tourkit.schemas.routing import RoutePlan, Stop
from tourkit.services.planner_base import PlanningOracle

logger = logging.getLogger(__name__)

_decoder = json.JSONDecoder()


class PlanningState(str, enum.Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    VALIDATING = "validating"
    DONE = "done"
    FAILED = "failed"


SYSTEM_PROMPT = """You are a route planner for in-person property showings. Given a list of \
stops, choose the visiting order that minimizes total driving time, beginning at the \
starting point when one is given.

Respond with ONLY a JSON array of the stop IDs in visiting order, for example \
["id1", "id2", "id3"]. Include every ID exactly once. Do not add explanations, \
markdown, or any other text."""


def _as_id(value: object) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, int):
        return str(value)
    return None


def parse_id_array(text: Optional[str]) -> List[str]:
    """
    Extract the first valid JSON array from `text` as a list of ids.

    Surrounding commentary and ``` fences are ignored. Non-id elements
    (objects, nulls, booleans) are dropped; integers are read as strings.

    Raises:
        MalformedOracleResponse: no '[' starts a parseable JSON array.
    """
    if not text:
        raise MalformedOracleResponse(message="Planner returned an empty response")

    index = text.find("[")
    while index != -1:
        try:
            value, _end = _decoder.raw_decode(text, index)
        except ValueError:
            value = None
        if isinstance(value, list):
            ids = [_as_id(item) for item in value]
            return [i for i in ids if i]
        index = text.find("[", index + 1)

    raise MalformedOracleResponse(context={"response_preview": text[:200]})


def repair_order(proposed: Iterable[str], input_ids: Sequence[str]) -> Tuple[List[str], bool]:
    """
    Force `proposed` into a permutation of `input_ids`.

    Proposed ids match an input id exactly or, failing that, by its
    whitespace-trimmed form; the caller's id is what ends up in the result.

    Returns (ordered_ids, repaired) where `repaired` says whether anything
    was dropped or appended.
    """
    proposed = list(proposed)
    by_key = {stop_id: stop_id for stop_id in input_ids}
    for stop_id in input_ids:
        by_key.setdefault(stop_id.strip(), stop_id)

    seen = set()
    ordered: List[str] = []
    for candidate in proposed:
        stop_id = by_key.get(candidate)
        if stop_id is None:
            stop_id = by_key.get(candidate.strip())
        if stop_id is not None and stop_id not in seen:
            seen.add(stop_id)
            ordered.append(stop_id)

    kept = len(ordered)
    ordered.extend(stop_id for stop_id in input_ids if stop_id not in seen)
    repaired = kept != len(proposed) or kept != len(ordered)
    return ordered, repaired


def build_user_prompt(stops: Sequence[Stop], origin: Optional[str] = None) -> str:
    """Enumerate every stop by id and address (plus coordinates when known)."""
    lines = []
    if origin:
        lines.append(f"Starting point: {origin}")
        lines.append("")
    lines.append("Stops:")
    for position, stop in enumerate(stops, start=1):
        line = f"{position}. ID: {json.dumps(stop.id)} - {stop.raw_address}"
        if stop.coordinate is not None:
            line += f" (lat {stop.coordinate.lat:.6f}, lng {stop.coordinate.lng:.6f})"
        lines.append(line)
    lines.append("")
    lines.append("Return the JSON array of stop IDs in visiting order.")
    return "\n".join(lines)


class RouteSequencer:
    """
    Validated front end for a PlanningOracle.

    Holds no per-call state, so one instance serves concurrent requests.
    """

    def __init__(self, oracle: PlanningOracle, config: Optional[PlannerConfig] = None):
        self.oracle = oracle
        self.config = config or PlannerConfig()

    async def sequence(self, stops: Iterable[Stop], origin: Optional[str] = None) -> RoutePlan:
        """
        Return a RoutePlan whose ids are exactly the input ids.

        Raises:
            ValidationError: duplicate ids or more than max_stops stops.
            QuotaExceededError: planner refused for quota/rate reasons.
            PlannerUnavailableError: planner unreachable or failing.
        """
        stops = list(stops)
        self.validate(stops)
        input_ids = [stop.id for stop in stops]
        origin = origin.strip() if origin and origin.strip() else None

        if len(stops) < 2:
            return RoutePlan(ordered_stop_ids=input_ids, origin=origin)

        run_id = uuid.uuid4().hex[:8]
        self._transition(run_id, PlanningState.REQUESTING)
        try:
            reply = await self.oracle.complete(SYSTEM_PROMPT, build_user_prompt(stops, origin))
        except SequenceError as e:
            self._transition(run_id, PlanningState.FAILED)
            logger.warning("[%s] Planning failed (%s): %s", run_id, e.code, e.message)
            raise
        except Exception as e:
            self._transition(run_id, PlanningState.FAILED)
            logger.error("[%s] Unexpected planner error: %s", run_id, e, exc_info=True)
            raise PlannerUnavailableError(
                context={"run_id": run_id, "error_type": type(e).__name__},
            ) from e

        self._transition(run_id, PlanningState.VALIDATING)
        try:
            proposed = parse_id_array(reply)
        except MalformedOracleResponse as e:
            logger.warning("[%s] %s; using input order", run_id, e.message)
            proposed = []

        ordered, repaired = repair_order(proposed, input_ids)
        if repaired:
            logger.info(
                "[%s] Repaired planner order: proposed=%d kept+appended=%d",
                run_id,
                len(proposed),
                len(ordered),
            )
        self._transition(run_id, PlanningState.DONE)
        return RoutePlan(ordered_stop_ids=ordered, origin=origin, repaired=repaired)

    def validate(self, stops: Sequence[Stop]) -> None:
        """
        Reject a stop list that can never be planned.

        Callers that do expensive work first (geocoding) run this up front.

        Raises:
            ValidationError: duplicate ids or more than max_stops stops.
        """
        if len(stops) > self.config.max_stops:
            raise ValidationError(
                message=f"Too many stops to plan at once (max {self.config.max_stops}).",
                field="stops",
                context={"count": len(stops), "max": self.config.max_stops},
            )
        seen = set()
        duplicates = []
        for stop in stops:
            if stop.id in seen:
                duplicates.append(stop.id)
            seen.add(stop.id)
        if duplicates:
            raise ValidationError(
                message="Stop ids must be unique within a request.",
                field="stops",
                context={"duplicates": sorted(set(duplicates))},
            )

    @staticmethod
    def _transition(run_id: str, state: PlanningState) -> None:
        logger.debug("[%s] Route planning → %s", run_id, state.value)

"""
Tourkit — Routing Route Handlers
==================================

What:  POST /api/geocode           resolve stop addresses to coordinates
       POST /api/routes/sequence   order stops for a showing tour
Why:   Routes stay thin: convert the request body into Stop values and let
       AddressResolver / RouteSequencer do the work.

Error responses (global handlers in main.py):
    400 ValidationError          duplicate ids, too many stops
    429 QuotaExceededError       try again later / check quota
    503 PlannerUnavailableError  planning unavailable
"""

import logging

from fastapi import APIRouter, Depends

from tourkit.dependencies import get_address_resolver, get_route_sequencer
from tourkit.schemas.common import ErrorResponse
from tourkit.schemas.routing import (
    GeocodeRequest,
    GeocodeResponse,
    RoutePlan,
    SequenceRequest,
)
from tourkit.services.address_resolver import AddressResolver, attach_coordinates
from tourkit.services.route_sequencer import RouteSequencer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Routing"])


@router.post(
    "/geocode",
    response_model=GeocodeResponse,
    summary="Geocode stop addresses",
    description=(
        "Looks addresses up one at a time (about one per second). Stops that cannot be "
        "resolved are left out of the results rather than failing the request."
    ),
)
async def geocode_stops(
    body: GeocodeRequest,
    resolver: AddressResolver = Depends(get_address_resolver),
) -> GeocodeResponse:
    stops = [item.to_stop() for item in body.stops]
    results = await resolver.resolve(stops)
    return GeocodeResponse(results=results, requested=len(stops), resolved=len(results))


@router.post(
    "/routes/sequence",
    response_model=RoutePlan,
    responses={
        400: {"description": "Invalid stop list", "model": ErrorResponse},
        429: {"description": "Planner quota or rate limit", "model": ErrorResponse},
        503: {"description": "Planner unavailable", "model": ErrorResponse},
    },
    summary="Order stops into a visiting sequence",
    description=(
        "Returns every submitted stop id exactly once. The planner's suggestion is "
        "validated and repaired; if it cannot be read at all the input order is returned."
    ),
)
async def sequence_route(
    body: SequenceRequest,
    resolver: AddressResolver = Depends(get_address_resolver),
    sequencer: RouteSequencer = Depends(get_route_sequencer),
) -> RoutePlan:
    stops = [item.to_stop() for item in body.stops]
    # Before geocoding: a rejected list must not spend the geocoder's budget
    sequencer.validate(stops)

    if body.resolve_coordinates and len(stops) >= 2:
        pending = [stop for stop in stops if stop.coordinate is None]
        resolved = await resolver.resolve(pending)
        stops = attach_coordinates(stops, resolved)
        logger.info("Resolved %d/%d stops before planning", len(resolved), len(pending))

    return await sequencer.sequence(stops, origin=body.origin)

"""
Tourkit — Routing Schemas
===========================

What:  Stops, coordinates and route plans, plus the request/response bodies
       of the geocoding and sequencing endpoints.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class Coordinate(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)

    model_config = {"frozen": True}


class Stop(BaseModel):
    """
    What:  One address to be visited.

    `id` is supplied by the caller and must be unique within a planning
    request. `coordinate` is None when geocoding failed or was skipped;
    downstream code then falls back to `raw_address`.
    """
    id: str = Field(min_length=1)
    raw_address: str
    coordinate: Optional[Coordinate] = None

    model_config = {"frozen": True}


class ResolvedStop(BaseModel):
    """A stop the geocoder found."""
    id: str
    coordinate: Coordinate


class RoutePlan(BaseModel):
    """
    What:  Validated visiting order.

    Invariant:
        ordered_stop_ids is a permutation of exactly the input stop ids,
        whatever the planner answered.
    """
    ordered_stop_ids: List[str]
    origin: Optional[str] = None
    repaired: bool = Field(
        default=False,
        description="True when planner output had to be filtered or extended",
    )


def build_full_address(
    address: str,
    city: Optional[str] = None,
    state: Optional[str] = None,
    zip_code: Optional[str] = None,
) -> str:
    """Join the non-empty address parts with ', '."""
    parts = [address, city, state, zip_code]
    return ", ".join(p.strip() for p in parts if p and p.strip())


# ══════════════════════════════════════════════════════════════════════════
# API bodies
# ══════════════════════════════════════════════════════════════════════════


class StopInput(BaseModel):
    """
    What:  A stop as sent by the dashboard: the street line plus optional
           city/state/zip, which are joined into one query string.
    """
    id: str = Field(min_length=1, max_length=128)
    address: str = Field(min_length=1, max_length=500)
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    coordinate: Optional[Coordinate] = None

    def to_stop(self) -> Stop:
        return Stop(
            id=self.id,
            raw_address=build_full_address(self.address, self.city, self.state, self.zip_code),
            coordinate=self.coordinate,
        )


class GeocodeRequest(BaseModel):
    stops: List[StopInput] = Field(min_length=1, max_length=100)


class GeocodeResponse(BaseModel):
    results: List[ResolvedStop]
    requested: int = Field(description="Number of stops submitted")
    resolved: int = Field(description="Number of stops with a coordinate")


class SequenceRequest(BaseModel):
    stops: List[StopInput] = Field(max_length=100)
    origin: Optional[str] = Field(default=None, max_length=500, description="Starting address")
    resolve_coordinates: bool = Field(
        default=False,
        description="Geocode stops before planning so the planner sees coordinates",
    )

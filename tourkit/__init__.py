"""
Tourkit — Showing Tour Toolkit
================================

Two independent pipelines behind one FastAPI service:

    Uploads:  AssetOptimizer → UploadCoordinator → object storage
              (downscale large photos, stream with progress, retry with
              capped backoff, stop immediately on auth failures)

    Routing:  AddressResolver → RouteSequencer → PlanningOracle
              (throttled geocoding, planner-proposed order that is always
              validated and repaired into a permutation of the input)

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │         Services (Pipelines)        │  ← retries, validation, repair
    ├─────────────────────────────────────┤
    │          Schemas (Data)             │  ← Pydantic value types
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"

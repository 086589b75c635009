"""
Tourkit — FastAPI Dependencies
================================

What:  Builds the pipeline components from `settings` and hands them to
       route handlers via Depends().
Why:   Services take explicit config objects; this module is the only place
       that turns environment settings into those objects. Tests replace
       any component with app.dependency_overrides.
When:  Components are created lazily on first use and shared for the life of
       the process; close_components() runs at shutdown.
"""

import logging
from functools import lru_cache

from tourkit.config import settings
from tourkit.services.address_resolver import AddressResolver
from tourkit.services.asset_optimizer import AssetOptimizer
from tourkit.services.chat_planner import ChatCompletionPlanner
from tourkit.services.route_sequencer import RouteSequencer
from tourkit.services.upload_coordinator import UploadCoordinator

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_asset_optimizer() -> AssetOptimizer:
    return AssetOptimizer(settings.optimizer_config())


@lru_cache(maxsize=1)
def get_upload_coordinator() -> UploadCoordinator:
    # Credentials are per request (the caller's bearer token), not per process
    return UploadCoordinator(
        config=settings.upload_config(),
        optimizer=get_asset_optimizer(),
    )


@lru_cache(maxsize=1)
def get_address_resolver() -> AddressResolver:
    return AddressResolver(settings.geocoder_config())


@lru_cache(maxsize=1)
def get_planner() -> ChatCompletionPlanner:
    return ChatCompletionPlanner(settings.planner_config())


@lru_cache(maxsize=1)
def get_route_sequencer() -> RouteSequencer:
    return RouteSequencer(get_planner(), settings.planner_config())


async def close_components() -> None:
    """Close any HTTP clients that were created, then forget the instances."""
    for factory in (get_upload_coordinator, get_address_resolver, get_planner):
        if factory.cache_info().currsize:
            await factory().aclose()
            factory.cache_clear()
    get_route_sequencer.cache_clear()
    get_asset_optimizer.cache_clear()
    logger.info("Pipeline components closed")

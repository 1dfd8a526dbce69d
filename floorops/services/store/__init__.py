"""
Document Store Factory

Provides a single entry point for obtaining a store adapter instance.
The rest of the application only ever sees BaseStoreAdapter.

Usage:
    from floorops.services.store import get_store_adapter

    # Returns InMemoryStoreAdapter or SqlStoreAdapter based on ENV_MODE
    store = get_store_adapter()

Environment Switching:
    - ENV_MODE=development → InMemoryStoreAdapter (no database)
    - ENV_MODE=staging → SqlStoreAdapter (test database)
    - ENV_MODE=production → SqlStoreAdapter (live database)

Version: 1.0.0
"""

import logging
from functools import lru_cache

from floorops.core.config import get_settings
from floorops.services.store.base import (
    BaseStoreAdapter,
    Document,
    Increment,
    Predicate,
    Subscription,
)
from floorops.services.store.memory import InMemoryStoreAdapter

logger = logging.getLogger(__name__)


@lru_cache()
def get_store_adapter() -> BaseStoreAdapter:
    """
    Get the configured store adapter instance.

    The instance is cached so every component in the process shares one
    store (and, for the in-memory store, one set of documents).

    Returns:
        BaseStoreAdapter: Configured store adapter
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Store: Using InMemoryStoreAdapter (development mode)")
        return InMemoryStoreAdapter(failure_rate=settings.store_failure_rate)

    from floorops.services.store.sql import SqlStoreAdapter

    logger.info(f"Store: Using SqlStoreAdapter ({settings.env_mode.value} mode)")
    return SqlStoreAdapter(settings.database_url)


def reset_store_adapter() -> None:
    """
    Clear the cached store instance.

    Useful for testing or when configuration changes at runtime.
    """
    get_store_adapter.cache_clear()
    logger.debug("Store adapter cache cleared")


__all__ = [
    "get_store_adapter",
    "reset_store_adapter",
    "BaseStoreAdapter",
    "Document",
    "Increment",
    "Predicate",
    "Subscription",
    "InMemoryStoreAdapter",
]

"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from floorops.core.config import get_settings, setup_logging, Settings, EnvironmentMode
from floorops.core.exceptions import (
    FloorOpsError,
    StoreError,
    StoreUnavailable,
    DocumentNotFound,
    OrderNotFound,
    InvalidDocument,
    InvalidTransition,
    InvalidOrderEdit,
    NotOrderOwner,
    AuditWriteFailed,
)

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "FloorOpsError",
    "StoreError",
    "StoreUnavailable",
    "DocumentNotFound",
    "OrderNotFound",
    "InvalidDocument",
    "InvalidTransition",
    "InvalidOrderEdit",
    "NotOrderOwner",
    "AuditWriteFailed",
]

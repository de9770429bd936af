"""Database layer - engine, base classes, immutability listeners."""

from lims_kernel.db.base import UUID, Base, TrackedBase, TZDateTime, UUIDString
from lims_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from lims_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "TZDateTime",
    "UUIDString",
    "UUID",
    "register_immutability_listeners",
    "unregister_immutability_listeners",
]

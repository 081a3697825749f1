"""
SQLAlchemy async database module.

Re-exports engine, session factory, and models for the search cache store.
"""

from services.lens.db.engine import (
    create_engine,
    create_session_factory,
)
from services.lens.db.models import Base, SearchCacheRow

__all__ = [
    "create_engine",
    "create_session_factory",
    "Base",
    "SearchCacheRow",
]

"""
SQLAlchemy DeclarativeBase models for the tables this service writes.

Column names use camelCase to match the PostgreSQL column names owned by the
web app's migrations. These models are NOT used for migrations.
"""

import uuid as _uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class SearchCacheRow(Base):
    """
    One cached pipeline result per (city, timeframe, query, category).

    ``category`` is stored as '' for "no category" so the unique constraint
    (and therefore ON CONFLICT) also covers the uncategorised key; NULLs never
    conflict in Postgres.
    """

    __tablename__ = "search_cache"
    __table_args__ = (
        UniqueConstraint("city", "timeframe", "query", "category", name="unique_search_cache_key"),
        Index("ix_search_cache_expires", "expiresAt"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(_uuid.uuid4()))
    city: Mapped[str] = mapped_column(String)
    query: Mapped[str] = mapped_column(String, default="")
    category: Mapped[str] = mapped_column(String, default="")
    timeframe: Mapped[str] = mapped_column(String)
    results: Mapped[list] = mapped_column(JSON)
    eventIds: Mapped[list[str]] = mapped_column(ARRAY(String), default=list)
    slateIds: Mapped[dict] = mapped_column(JSON, default=dict)
    generatedAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expiresAt: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    source: Mapped[str] = mapped_column(String, default="LIVE")

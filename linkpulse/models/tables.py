"""
Database models: the "truth layer."

Design principles:
  - url_mappings rows are never hard-deleted; deleted_at is a tombstone so a
    short code can never be handed out again
  - click_events is append-only; its primary key is the event id minted at
    redirect time, which makes re-delivery of the same event a no-op
  - click_rollups is derived and rebuildable from click_events
  - click_count and click_rollups are written only by the click aggregator
"""

from uuid import uuid4

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Index,
    Integer,
    PrimaryKeyConstraint,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Entity tables
# ---------------------------------------------------------------------------

class UrlMapping(Base):
    __tablename__ = "url_mappings"

    id = Column(Uuid, primary_key=True, default=uuid4)
    short_code = Column(String(32), nullable=False, unique=True, index=True)
    original_url = Column(Text, nullable=False)
    owner_id = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    click_count = Column(Integer, nullable=False, default=0, server_default="0")
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_url_mappings_owner_created", "owner_id", "created_at"),
    )


# ---------------------------------------------------------------------------
# Event tables (append-only)
# ---------------------------------------------------------------------------

class ClickEvent(Base):
    """
    One row per redirect. Written by the aggregator, never updated.
    short_code is a weak reference; the mapping may be tombstoned later.
    """
    __tablename__ = "click_events"

    id = Column(Uuid, primary_key=True)                      # event id, idempotence key
    short_code = Column(String(32), nullable=False)
    clicked_at = Column(DateTime(timezone=True), nullable=False)

    # --- Raw request metadata ---
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    referer = Column(Text, nullable=True)

    # --- Derived (NULL = Unknown) ---
    country = Column(String(100), nullable=True)
    city = Column(String(100), nullable=True)
    device = Column(String(20), nullable=True)
    browser = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_click_events_code_clicked", "short_code", "clicked_at"),
        Index("ix_click_events_clicked", "clicked_at"),
    )


# ---------------------------------------------------------------------------
# Rollups (derived)
# ---------------------------------------------------------------------------

class ClickRollup(Base):
    """
    Per code, per UTC day, per dimension bucket click counter.
    dimension: total (bucket ""), country, device, browser.
    """
    __tablename__ = "click_rollups"

    short_code = Column(String(32), nullable=False)
    day = Column(Date, nullable=False)
    dimension = Column(String(16), nullable=False)
    bucket = Column(String(100), nullable=False)
    clicks = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        PrimaryKeyConstraint("short_code", "day", "dimension", "bucket"),
        Index("ix_click_rollups_dimension_day", "dimension", "day"),
    )

"""
SQLAlchemy ORM models for events and their mail OAuth credentials.

Only portable column types are used so the same models run on
PostgreSQL and SQLite.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


class WeddingEvent(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    oauth_credentials = relationship(
        "EventOAuthCredential", back_populates="event", cascade="all, delete-orphan"
    )


class EventOAuthCredential(Base):
    __tablename__ = "event_oauth_credentials"
    __table_args__ = (UniqueConstraint("event_id", "provider", name="uq_event_provider"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False)
    provider = Column(String(16), nullable=False)
    client_id = Column(Text)
    client_secret = Column(Text)      # encrypted
    redirect_uri = Column(Text)
    access_token = Column(Text)       # encrypted
    refresh_token = Column(Text)      # encrypted
    token_expiry = Column(DateTime(timezone=True))
    account_email = Column(String(320))
    enabled = Column(Boolean, nullable=False, default=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    event = relationship("WeddingEvent", back_populates="oauth_credentials")

"""
Declarative base and shared column mixins.

Timestamps are naive UTC, matching the expiry comparisons made with
datetime.utcnow() throughout the DAOs.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, DateTime
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Metadata root for every MemoDams table."""

    pass


class TimestampMixin:
    """created_at on insert, updated_at on every write."""

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class PrimaryKeyMixin:
    """Surrogate integer key. Public identifiers (uid, challenge id) are separate columns."""

    id = Column(Integer, primary_key=True, index=True)

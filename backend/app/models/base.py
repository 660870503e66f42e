"""
Base model class for all SQLAlchemy models.

WHY: Centralizing common model functionality (timestamps, ID, enum storage)
in one place keeps the four tables of this service consistent.
"""

import enum
from datetime import datetime
from typing import Type

from sqlalchemy import Column, Integer, DateTime, Enum
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    WHY: DeclarativeBase provides the foundation for SQLAlchemy 2.0 models
    with improved type hints and async support.
    """

    pass


class TimestampMixin:
    """
    Mixin to add created_at and updated_at timestamps to models.

    WHY: updated_at on subscriptions drives the churn window in the metrics
    rollup, so every write path must bump it.
    """

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class PrimaryKeyMixin:
    """Mixin to add an auto-incrementing integer primary key."""

    id = Column(Integer, primary_key=True, index=True)


def value_enum(enum_cls: Type[enum.Enum], name: str) -> Enum:
    """
    Build a SQLAlchemy Enum column type that persists member values.

    WHY: Stripe, the mobile client and the migrations all speak the lowercase
    values ("past_due", "pending_payment"), so the database stores those
    rather than the Python member names.

    Args:
        enum_cls: A closed str-backed enum
        name: Database type name

    Returns:
        Enum type bound to the member values
    """
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )

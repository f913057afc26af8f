from __future__ import annotations

from typing import TYPE_CHECKING

import datetime as dt

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from friendfinder.db.base import Base, utcnow

if TYPE_CHECKING:
    from .user import User


class UserLocation(Base):
    """Current position of one user; one row per user, never deleted."""

    __tablename__ = "user_locations"

    user_id: Mapped[str] = mapped_column(
        sa.String(64),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )

    # WGS84.
    latitude: Mapped[float] = mapped_column(sa.Float, nullable=False)
    longitude: Mapped[float] = mapped_column(sa.Float, nullable=False)
    accuracy: Mapped[float | None] = mapped_column(sa.Float, nullable=True)

    # Always the encoding of (latitude, longitude) at the storage precision.
    geohash: Mapped[str] = mapped_column(sa.String(12), nullable=False)

    # Client timestamp of the report last applied; orders updates per user.
    reported_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    last_updated: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow
    )

    user: Mapped["User"] = relationship(back_populates="location")

    __table_args__ = (sa.Index("ix_user_locations_geohash", "geohash"),)

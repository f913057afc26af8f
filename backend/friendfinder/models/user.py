from __future__ import annotations

from typing import TYPE_CHECKING

import datetime as dt

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from friendfinder.db.base import Base, new_user_id, utcnow

if TYPE_CHECKING:
    from .user_location import UserLocation


class User(Base):
    __tablename__ = "users"

    # Opaque string id; chat ids are derived from it by sort-and-join.
    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True, default=new_user_id)

    email: Mapped[str] = mapped_column(sa.Text, nullable=False, unique=True)
    display_name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    hashed_password: Mapped[str] = mapped_column(sa.Text, nullable=False)
    profile_picture_url: Mapped[str] = mapped_column(
        sa.Text, nullable=False, default="", server_default=""
    )

    # Ghost mode is sharing_enabled=False: hidden from others, own queries unaffected.
    sharing_enabled: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        default=True,
        server_default=sa.true(),
    )

    created_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    location: Mapped["UserLocation | None"] = relationship(back_populates="user")

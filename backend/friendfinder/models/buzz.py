from __future__ import annotations

import datetime as dt
import enum
import uuid

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from friendfinder.db.base import Base, GUID, utcnow


class BuzzStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class Buzz(Base):
    """One-shot contact request; once resolved it is kept as history."""

    __tablename__ = "buzzes"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    sender_id: Mapped[str] = mapped_column(
        sa.String(64),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    receiver_id: Mapped[str] = mapped_column(
        sa.String(64),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        sa.String(16), nullable=False, default=BuzzStatus.PENDING.value
    )

    # Display snapshots copied at creation; not live-linked to the profiles.
    sender_name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    sender_picture_url: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")
    receiver_name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    receiver_picture_url: Mapped[str] = mapped_column(
        sa.Text, nullable=False, default=""
    )

    created_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow
    )
    responded_at: Mapped[dt.datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'declined')", name="status_valid"
        ),
        # At most one open buzz per ordered (sender, receiver) pair.
        sa.Index(
            "uq_buzzes_pending_pair",
            "sender_id",
            "receiver_id",
            unique=True,
            sqlite_where=sa.text("status = 'pending'"),
            postgresql_where=sa.text("status = 'pending'"),
        ),
        sa.Index("ix_buzzes_receiver_status", "receiver_id", "status", "created_at"),
    )

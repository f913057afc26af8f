from __future__ import annotations

import datetime as dt
import uuid

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from friendfinder.db.base import Base, GUID, utcnow


class ChatThread(Base):
    __tablename__ = "chats"

    # "<smaller user id>_<larger user id>", so creation is idempotent per pair.
    id: Mapped[str] = mapped_column(sa.String(160), primary_key=True)

    # participant_a < participant_b (same order as in the id).
    participant_a: Mapped[str] = mapped_column(
        sa.String(64),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    participant_b: Mapped[str] = mapped_column(
        sa.String(64),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    participant_info: Mapped[dict[str, object]] = mapped_column(
        sa.JSON, nullable=False, default=dict
    )

    last_message_text: Mapped[str] = mapped_column(sa.Text, nullable=False, default="")
    last_message_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow
    )
    unread_a: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)
    unread_b: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=0)

    created_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow
    )

    messages: Mapped[list["ChatMessage"]] = relationship(back_populates="chat")


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id: Mapped[uuid.UUID] = mapped_column(GUID(), primary_key=True, default=uuid.uuid4)
    chat_id: Mapped[str] = mapped_column(
        sa.String(160),
        sa.ForeignKey("chats.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    text: Mapped[str] = mapped_column(sa.Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False, server_default=sa.false()
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow
    )

    chat: Mapped["ChatThread"] = relationship(back_populates="messages")

    __table_args__ = (
        sa.Index("ix_chat_messages_chat_created_at", "chat_id", "created_at"),
    )

from __future__ import annotations

import datetime as dt
import logging
import uuid
from dataclasses import dataclass

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from friendfinder.core.errors import (
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from friendfinder.db.base import as_utc, utcnow
from friendfinder.models.chat import ChatMessage, ChatThread
from friendfinder.models.user import User
from friendfinder.services.live import (
    LiveHub,
    Subscription,
    chat_messages_topic,
    user_chats_topic,
)
from friendfinder.services.spatial_index import storage_errors


logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000


def chat_id_for(user_a: str, user_b: str) -> str:
    """Order-independent thread id for a pair of users."""

    return "_".join(sorted([user_a, user_b]))


@dataclass(frozen=True, slots=True)
class ChatSummary:
    id: str
    participants: tuple[str, str]
    participant_info: dict[str, dict[str, str]]
    last_message_text: str
    last_message_at: dt.datetime
    created_at: dt.datetime
    unread_count: dict[str, int]


@dataclass(frozen=True, slots=True)
class ChatMessageView:
    id: str
    chat_id: str
    sender_id: str
    text: str
    created_at: dt.datetime
    is_read: bool


def _to_summary(chat: ChatThread) -> ChatSummary:
    return ChatSummary(
        id=chat.id,
        participants=(chat.participant_a, chat.participant_b),
        participant_info=dict(chat.participant_info or {}),
        last_message_text=chat.last_message_text,
        last_message_at=as_utc(chat.last_message_at),
        created_at=as_utc(chat.created_at),
        unread_count={
            chat.participant_a: int(chat.unread_a),
            chat.participant_b: int(chat.unread_b),
        },
    )


def _to_message(msg: ChatMessage) -> ChatMessageView:
    return ChatMessageView(
        id=str(msg.id),
        chat_id=msg.chat_id,
        sender_id=msg.sender_id,
        text=msg.text,
        created_at=as_utc(msg.created_at),
        is_read=bool(msg.is_read),
    )


def _dialect_name(session: AsyncSession) -> str:
    bind = session.bind or session.get_bind()
    return str(getattr(getattr(bind, "dialect", None), "name", "") or "")


def _insert_ignore_stmt(*, dialect: str, values: dict[str, object]) -> sa.sql.Insert:
    if dialect == "postgresql":
        return (
            pg_insert(ChatThread)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["id"])
        )
    if dialect == "sqlite":
        return (
            sqlite_insert(ChatThread)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["id"])
        )
    raise RuntimeError(f"Unsupported database dialect: {dialect!r}")


class ChatService:
    def __init__(
        self, sessionmaker: async_sessionmaker[AsyncSession], *, hub: LiveHub
    ) -> None:
        self._sessionmaker = sessionmaker
        self._hub = hub

    async def create_chat(self, user_a: str, user_b: str) -> str:
        """Return the pair's chat id, creating the thread if it does not exist yet."""

        with storage_errors("create_chat"):
            async with self._sessionmaker() as session:
                chat_id, created = await self.open_chat_in(session, user_a, user_b)
                await session.commit()

        if created:
            await self.announce_chat(user_a, user_b)
        return chat_id

    async def open_chat_in(
        self, session: AsyncSession, user_a: str, user_b: str
    ) -> tuple[str, bool]:
        """Insert-or-ignore the pair's thread in the caller's transaction.

        Returns `(chat_id, created)`. Nothing is committed here, so the insert
        lands or rolls back together with the caller's other writes.
        """

        if user_a == user_b:
            raise ValidationError("Cannot chat with yourself", code="CHAT_SELF")
        chat_id = chat_id_for(user_a, user_b)
        first, second = sorted([user_a, user_b])

        users = {
            u.id: u
            for u in (
                await session.execute(sa.select(User).where(User.id.in_([first, second])))
            ).scalars()
        }
        if first not in users or second not in users:
            raise NotFoundError("One or both users not found", code="USER_NOT_FOUND")

        now = utcnow()
        values: dict[str, object] = {
            "id": chat_id,
            "participant_a": first,
            "participant_b": second,
            "participant_info": {
                uid: {
                    "display_name": users[uid].display_name,
                    "profile_picture_url": users[uid].profile_picture_url or "",
                }
                for uid in (first, second)
            },
            "last_message_text": "",
            "last_message_at": now,
            "unread_a": 0,
            "unread_b": 0,
            "created_at": now,
        }
        # Insert-or-ignore: concurrent creators converge on one row.
        result = await session.execute(
            _insert_ignore_stmt(dialect=_dialect_name(session), values=values)
        )
        return chat_id, bool(result.rowcount)

    async def announce_chat(self, user_a: str, user_b: str) -> None:
        """Push fresh chat lists to both participants after a thread was created."""

        logger.info("Created chat %s", chat_id_for(user_a, user_b))
        await self._publish_user_chats(user_a)
        await self._publish_user_chats(user_b)

    async def get_chat(self, chat_id: str) -> ChatSummary | None:
        with storage_errors("get_chat"):
            async with self._sessionmaker() as session:
                chat = await session.get(ChatThread, chat_id)
        return _to_summary(chat) if chat is not None else None

    async def _require_participant(self, chat_id: str, user_id: str) -> ChatThread:
        async with self._sessionmaker() as session:
            chat = await session.get(ChatThread, chat_id)
        if chat is None:
            raise NotFoundError(f"Chat {chat_id} not found", code="CHAT_NOT_FOUND")
        if user_id not in (chat.participant_a, chat.participant_b):
            raise PermissionDeniedError(
                "Not a participant of this chat", code="CHAT_FORBIDDEN"
            )
        return chat

    async def list_chats(self, user_id: str) -> list[ChatSummary]:
        stmt = (
            sa.select(ChatThread)
            .where(
                sa.or_(
                    ChatThread.participant_a == user_id,
                    ChatThread.participant_b == user_id,
                )
            )
            .order_by(ChatThread.last_message_at.desc(), ChatThread.id.asc())
        )
        with storage_errors("list_chats"):
            async with self._sessionmaker() as session:
                chats = (await session.execute(stmt)).scalars().all()
        return [_to_summary(c) for c in chats]

    async def list_messages(self, chat_id: str, user_id: str) -> list[ChatMessageView]:
        with storage_errors("list_messages"):
            await self._require_participant(chat_id, user_id)
            return await self._load_messages(chat_id)

    async def _load_messages(self, chat_id: str) -> list[ChatMessageView]:
        stmt = (
            sa.select(ChatMessage)
            .where(ChatMessage.chat_id == chat_id)
            .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
        )
        async with self._sessionmaker() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_to_message(m) for m in rows]

    async def send_message(
        self, chat_id: str, sender_id: str, text: str
    ) -> ChatMessageView:
        body = text.strip()
        if not body:
            raise ValidationError("Message text must not be empty", code="MESSAGE_INVALID")
        if len(body) > MAX_MESSAGE_LENGTH:
            raise ValidationError(
                f"Message exceeds {MAX_MESSAGE_LENGTH} characters",
                code="MESSAGE_INVALID",
            )

        with storage_errors("send_message"):
            chat = await self._require_participant(chat_id, sender_id)
            recipient_is_a = chat.participant_a != sender_id
            now = utcnow()
            msg = ChatMessage(
                id=uuid.uuid4(),
                chat_id=chat_id,
                sender_id=sender_id,
                text=body,
                is_read=False,
                created_at=now,
            )
            # Counter bump is a single UPDATE so concurrent senders don't lose counts.
            counter = ChatThread.unread_a if recipient_is_a else ChatThread.unread_b
            async with self._sessionmaker() as session:
                session.add(msg)
                await session.execute(
                    sa.update(ChatThread)
                    .where(ChatThread.id == chat_id)
                    .values(
                        {
                            ChatThread.last_message_text: body,
                            ChatThread.last_message_at: now,
                            counter: counter + 1,
                        }
                    )
                )
                await session.commit()

        view = _to_message(msg)
        await self._publish_messages(chat_id)
        await self._publish_user_chats(chat.participant_a)
        await self._publish_user_chats(chat.participant_b)
        return view

    async def mark_read(self, chat_id: str, user_id: str) -> int:
        """Zero the user's unread counter and mark the other side's messages read."""

        with storage_errors("mark_read"):
            chat = await self._require_participant(chat_id, user_id)
            counter = "unread_a" if chat.participant_a == user_id else "unread_b"
            async with self._sessionmaker() as session:
                await session.execute(
                    sa.update(ChatThread)
                    .where(ChatThread.id == chat_id)
                    .values({counter: 0})
                )
                result = await session.execute(
                    sa.update(ChatMessage)
                    .where(
                        ChatMessage.chat_id == chat_id,
                        ChatMessage.sender_id != user_id,
                        ChatMessage.is_read.is_(False),
                    )
                    .values(is_read=True)
                )
                marked = int(result.rowcount or 0)
                await session.commit()

        if marked:
            await self._publish_messages(chat_id)
        await self._publish_user_chats(user_id)
        return marked

    async def subscribe_messages(self, chat_id: str, user_id: str) -> Subscription:
        with storage_errors("subscribe_messages"):
            await self._require_participant(chat_id, user_id)
            sub = self._hub.subscribe(chat_messages_topic(chat_id), owner=user_id)
            version = self._hub.reserve_version()
            try:
                sub.offer(version, await self._load_messages(chat_id))
            except BaseException:
                sub.close()
                raise
        return sub

    async def subscribe_chats(self, user_id: str) -> Subscription:
        sub = self._hub.subscribe(user_chats_topic(user_id), owner=user_id)
        version = self._hub.reserve_version()
        try:
            sub.offer(version, await self.list_chats(user_id))
        except BaseException:
            sub.close()
            raise
        return sub

    async def _publish_messages(self, chat_id: str) -> None:
        topic = chat_messages_topic(chat_id)
        if not self._hub.subscriber_count(topic):
            return
        version = self._hub.reserve_version()
        self._hub.publish(topic, await self._load_messages(chat_id), version=version)

    async def _publish_user_chats(self, user_id: str) -> None:
        topic = user_chats_topic(user_id)
        if not self._hub.subscriber_count(topic):
            return
        version = self._hub.reserve_version()
        self._hub.publish(topic, await self.list_chats(user_id), version=version)

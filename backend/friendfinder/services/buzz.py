from __future__ import annotations

import datetime as dt
import logging
import uuid
from dataclasses import dataclass

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from friendfinder.core.errors import (
    NotFoundError,
    PermissionDeniedError,
    StateConflictError,
    ValidationError,
)
from friendfinder.db.base import as_utc, utcnow
from friendfinder.models.buzz import Buzz, BuzzStatus
from friendfinder.models.user import User
from friendfinder.services.chat import ChatService
from friendfinder.services.live import LiveHub, Subscription, pending_buzzes_topic
from friendfinder.services.spatial_index import storage_errors


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BuzzInvite:
    id: str
    sender_id: str
    receiver_id: str
    status: BuzzStatus
    created_at: dt.datetime
    responded_at: dt.datetime | None
    sender_name: str
    sender_picture_url: str
    receiver_name: str
    receiver_picture_url: str


@dataclass(frozen=True, slots=True)
class BuzzResponse:
    invite_id: str
    status: BuzzStatus
    chat_id: str | None = None


def _to_invite(row: Buzz) -> BuzzInvite:
    return BuzzInvite(
        id=str(row.id),
        sender_id=row.sender_id,
        receiver_id=row.receiver_id,
        status=BuzzStatus(row.status),
        created_at=as_utc(row.created_at),
        responded_at=as_utc(row.responded_at) if row.responded_at is not None else None,
        sender_name=row.sender_name,
        sender_picture_url=row.sender_picture_url or "",
        receiver_name=row.receiver_name,
        receiver_picture_url=row.receiver_picture_url or "",
    )


def _parse_invite_id(invite_id: uuid.UUID | str) -> uuid.UUID:
    if isinstance(invite_id, uuid.UUID):
        return invite_id
    try:
        return uuid.UUID(str(invite_id))
    except ValueError as e:
        raise NotFoundError(
            f"Buzz {invite_id} not found", code="BUZZ_NOT_FOUND"
        ) from e


class BuzzService:
    """Buzz invites: pending -> accepted | declined, exactly once.

    The transition is a conditional UPDATE on `status = 'pending'`, so of two
    concurrent responders exactly one changes the row and the other gets
    StateConflictError. Accepting opens the pair's chat thread.
    """

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        *,
        hub: LiveHub,
        chats: ChatService,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._hub = hub
        self._chats = chats

    async def send_invite(self, sender_id: str, receiver_id: str) -> str:
        if sender_id == receiver_id:
            raise ValidationError("You cannot buzz yourself", code="BUZZ_SELF")

        with storage_errors("send_invite"):
            async with self._sessionmaker() as session:
                users = {
                    u.id: u
                    for u in (
                        await session.execute(
                            sa.select(User).where(User.id.in_([sender_id, receiver_id]))
                        )
                    ).scalars()
                }
                if sender_id not in users:
                    raise NotFoundError(
                        f"User {sender_id} not found", code="USER_NOT_FOUND"
                    )
                if receiver_id not in users:
                    raise NotFoundError(
                        f"User {receiver_id} not found", code="USER_NOT_FOUND"
                    )

                sender = users[sender_id]
                receiver = users[receiver_id]
                buzz = Buzz(
                    id=uuid.uuid4(),
                    sender_id=sender_id,
                    receiver_id=receiver_id,
                    status=BuzzStatus.PENDING.value,
                    sender_name=sender.display_name,
                    sender_picture_url=sender.profile_picture_url or "",
                    receiver_name=receiver.display_name,
                    receiver_picture_url=receiver.profile_picture_url or "",
                    created_at=utcnow(),
                )
                session.add(buzz)
                try:
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    # SQLite does not name the violated index, so ask the table.
                    if await self._pending_exists(session, sender_id, receiver_id):
                        raise StateConflictError(
                            "A buzz to this user is already pending",
                            code="BUZZ_ALREADY_PENDING",
                        ) from e
                    raise

        invite_id = str(buzz.id)
        logger.info("Buzz sent id=%s sender=%s receiver=%s", invite_id, sender_id, receiver_id)
        await self._publish_pending(receiver_id)
        return invite_id

    @staticmethod
    async def _pending_exists(
        session: AsyncSession, sender_id: str, receiver_id: str
    ) -> bool:
        row = await session.execute(
            sa.select(Buzz.id)
            .where(
                Buzz.sender_id == sender_id,
                Buzz.receiver_id == receiver_id,
                Buzz.status == BuzzStatus.PENDING.value,
            )
            .limit(1)
        )
        return row.first() is not None

    async def get_invite(self, invite_id: uuid.UUID | str) -> BuzzInvite | None:
        try:
            key = _parse_invite_id(invite_id)
        except NotFoundError:
            return None
        with storage_errors("get_invite"):
            async with self._sessionmaker() as session:
                row = await session.get(Buzz, key)
        return _to_invite(row) if row is not None else None

    async def respond_to_invite(
        self, invite_id: uuid.UUID | str, accept: bool, responder_id: str
    ) -> BuzzResponse:
        key = _parse_invite_id(invite_id)
        new_status = BuzzStatus.ACCEPTED if accept else BuzzStatus.DECLINED

        with storage_errors("respond_to_invite"):
            async with self._sessionmaker() as session:
                row = await session.get(Buzz, key)
                if row is None:
                    raise NotFoundError(
                        f"Buzz {invite_id} not found", code="BUZZ_NOT_FOUND"
                    )
                if row.receiver_id != responder_id:
                    raise PermissionDeniedError(
                        "Only the receiver can respond to a buzz", code="BUZZ_FORBIDDEN"
                    )
                sender_id, receiver_id = row.sender_id, row.receiver_id

                result = await session.execute(
                    sa.update(Buzz)
                    .where(Buzz.id == key, Buzz.status == BuzzStatus.PENDING.value)
                    .values(status=new_status.value, responded_at=utcnow())
                )
                if not result.rowcount:
                    raise StateConflictError(
                        "This buzz was already answered", code="BUZZ_ALREADY_RESPONDED"
                    )

                # The chat row commits with the status change or not at all.
                chat_id: str | None = None
                chat_created = False
                if new_status is BuzzStatus.ACCEPTED:
                    chat_id, chat_created = await self._chats.open_chat_in(
                        session, sender_id, receiver_id
                    )
                await session.commit()

        logger.info("Buzz %s %s by %s", key, new_status.value, responder_id)
        if chat_created:
            await self._chats.announce_chat(sender_id, receiver_id)
        await self._publish_pending(receiver_id)
        return BuzzResponse(invite_id=str(key), status=new_status, chat_id=chat_id)

    async def list_pending_for_receiver(self, user_id: str) -> list[BuzzInvite]:
        stmt = (
            sa.select(Buzz)
            .where(
                Buzz.receiver_id == user_id,
                Buzz.status == BuzzStatus.PENDING.value,
            )
            .order_by(Buzz.created_at.desc(), Buzz.id.asc())
        )
        with storage_errors("list_pending_for_receiver"):
            async with self._sessionmaker() as session:
                rows = (await session.execute(stmt)).scalars().all()
        return [_to_invite(r) for r in rows]

    async def list_for_user(self, user_id: str) -> list[BuzzInvite]:
        stmt = (
            sa.select(Buzz)
            .where(sa.or_(Buzz.sender_id == user_id, Buzz.receiver_id == user_id))
            .order_by(Buzz.created_at.desc(), Buzz.id.asc())
        )
        with storage_errors("list_for_user"):
            async with self._sessionmaker() as session:
                rows = (await session.execute(stmt)).scalars().all()
        return [_to_invite(r) for r in rows]

    async def subscribe_pending(self, user_id: str) -> Subscription:
        sub = self._hub.subscribe(pending_buzzes_topic(user_id), owner=user_id)
        version = self._hub.reserve_version()
        try:
            sub.offer(version, await self.list_pending_for_receiver(user_id))
        except BaseException:
            sub.close()
            raise
        return sub

    async def _publish_pending(self, receiver_id: str) -> None:
        topic = pending_buzzes_topic(receiver_id)
        if not self._hub.subscriber_count(topic):
            return
        version = self._hub.reserve_version()
        self._hub.publish(
            topic, await self.list_pending_for_receiver(receiver_id), version=version
        )

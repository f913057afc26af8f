from __future__ import annotations

import datetime as dt
import uuid
from typing import Any

from fastapi import APIRouter, Depends, WebSocket
from pydantic import BaseModel, Field

from friendfinder.api import live
from friendfinder.api.deps import get_buzz_service, get_current_user
from friendfinder.models.user import User
from friendfinder.services.buzz import BuzzInvite, BuzzService


router = APIRouter(prefix="/v1/buzzes", tags=["buzzes"])


class SendBuzzRequest(BaseModel):
    receiver_id: str = Field(min_length=1, max_length=64)


class SendBuzzResponse(BaseModel):
    invite_id: str


class RespondRequest(BaseModel):
    accept: bool


class RespondResponse(BaseModel):
    invite_id: str
    status: str
    chat_id: str | None


class BuzzItem(BaseModel):
    id: str
    sender_id: str
    receiver_id: str
    status: str
    sender_name: str
    sender_picture_url: str
    receiver_name: str
    receiver_picture_url: str
    created_at: dt.datetime
    responded_at: dt.datetime | None


class BuzzListResponse(BaseModel):
    items: list[BuzzItem]


def _item(invite: BuzzInvite) -> BuzzItem:
    return BuzzItem(
        id=invite.id,
        sender_id=invite.sender_id,
        receiver_id=invite.receiver_id,
        status=invite.status.value,
        sender_name=invite.sender_name,
        sender_picture_url=invite.sender_picture_url,
        receiver_name=invite.receiver_name,
        receiver_picture_url=invite.receiver_picture_url,
        created_at=invite.created_at,
        responded_at=invite.responded_at,
    )


def _render(invites: list[BuzzInvite]) -> dict[str, Any]:
    return BuzzListResponse(items=[_item(i) for i in invites]).model_dump(mode="json")


@router.post("", status_code=201, response_model=SendBuzzResponse)
async def send_buzz(
    payload: SendBuzzRequest,
    user: User = Depends(get_current_user),
    buzzes: BuzzService = Depends(get_buzz_service),
) -> SendBuzzResponse:
    invite_id = await buzzes.send_invite(user.id, payload.receiver_id)
    return SendBuzzResponse(invite_id=invite_id)


@router.post("/{invite_id}/respond", response_model=RespondResponse)
async def respond(
    invite_id: uuid.UUID,
    payload: RespondRequest,
    user: User = Depends(get_current_user),
    buzzes: BuzzService = Depends(get_buzz_service),
) -> RespondResponse:
    result = await buzzes.respond_to_invite(invite_id, payload.accept, user.id)
    return RespondResponse(
        invite_id=result.invite_id, status=result.status.value, chat_id=result.chat_id
    )


@router.get("/pending", response_model=BuzzListResponse)
async def list_pending(
    user: User = Depends(get_current_user),
    buzzes: BuzzService = Depends(get_buzz_service),
) -> BuzzListResponse:
    invites = await buzzes.list_pending_for_receiver(user.id)
    return BuzzListResponse(items=[_item(i) for i in invites])


@router.get("", response_model=BuzzListResponse)
async def list_buzzes(
    user: User = Depends(get_current_user),
    buzzes: BuzzService = Depends(get_buzz_service),
) -> BuzzListResponse:
    invites = await buzzes.list_for_user(user.id)
    return BuzzListResponse(items=[_item(i) for i in invites])


@router.websocket("/pending/ws")
async def pending_ws(websocket: WebSocket) -> None:
    user = await live.authenticate(websocket)
    if user is None:
        return
    buzzes: BuzzService = websocket.app.state.buzzes
    sub = await live.open_subscription(
        websocket, lambda: buzzes.subscribe_pending(user.id)
    )
    if sub is None:
        return
    await live.stream(websocket, sub, _render)

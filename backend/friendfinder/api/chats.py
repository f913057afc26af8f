from __future__ import annotations

import datetime as dt
from typing import Any

from fastapi import APIRouter, Depends, WebSocket
from pydantic import BaseModel, Field

from friendfinder.api import live
from friendfinder.api.deps import get_chat_service, get_current_user
from friendfinder.models.user import User
from friendfinder.services.chat import ChatMessageView, ChatService, ChatSummary


router = APIRouter(prefix="/v1/chats", tags=["chats"])


class ParticipantInfo(BaseModel):
    display_name: str = ""
    profile_picture_url: str = ""


class ChatItem(BaseModel):
    id: str
    participants: list[str]
    participant_info: dict[str, ParticipantInfo]
    last_message_text: str
    last_message_at: dt.datetime
    unread_count: int


class ChatListResponse(BaseModel):
    items: list[ChatItem]


class CreateChatRequest(BaseModel):
    other_user_id: str = Field(min_length=1, max_length=64)


class CreateChatResponse(BaseModel):
    chat_id: str


class MessageItem(BaseModel):
    id: str
    chat_id: str
    sender_id: str
    text: str
    created_at: dt.datetime
    is_read: bool


class MessageListResponse(BaseModel):
    items: list[MessageItem]


class SendMessageRequest(BaseModel):
    text: str


class MarkReadResponse(BaseModel):
    marked: int


def _chat_item(chat: ChatSummary, viewer_id: str) -> ChatItem:
    return ChatItem(
        id=chat.id,
        participants=list(chat.participants),
        participant_info={
            uid: ParticipantInfo(**info) for uid, info in chat.participant_info.items()
        },
        last_message_text=chat.last_message_text,
        last_message_at=chat.last_message_at,
        unread_count=chat.unread_count.get(viewer_id, 0),
    )


def _message_item(msg: ChatMessageView) -> MessageItem:
    return MessageItem(
        id=msg.id,
        chat_id=msg.chat_id,
        sender_id=msg.sender_id,
        text=msg.text,
        created_at=msg.created_at,
        is_read=msg.is_read,
    )


def _render_messages(messages: list[ChatMessageView]) -> dict[str, Any]:
    return MessageListResponse(items=[_message_item(m) for m in messages]).model_dump(
        mode="json"
    )


@router.get("", response_model=ChatListResponse)
async def list_chats(
    user: User = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> ChatListResponse:
    items = await chats.list_chats(user.id)
    return ChatListResponse(items=[_chat_item(c, user.id) for c in items])


@router.post("", response_model=CreateChatResponse)
async def create_chat(
    payload: CreateChatRequest,
    user: User = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> CreateChatResponse:
    chat_id = await chats.create_chat(user.id, payload.other_user_id)
    return CreateChatResponse(chat_id=chat_id)


@router.get("/{chat_id}/messages", response_model=MessageListResponse)
async def list_messages(
    chat_id: str,
    user: User = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> MessageListResponse:
    messages = await chats.list_messages(chat_id, user.id)
    return MessageListResponse(items=[_message_item(m) for m in messages])


@router.post("/{chat_id}/messages", status_code=201, response_model=MessageItem)
async def send_message(
    chat_id: str,
    payload: SendMessageRequest,
    user: User = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> MessageItem:
    return _message_item(await chats.send_message(chat_id, user.id, payload.text))


@router.post("/{chat_id}/read", response_model=MarkReadResponse)
async def mark_read(
    chat_id: str,
    user: User = Depends(get_current_user),
    chats: ChatService = Depends(get_chat_service),
) -> MarkReadResponse:
    return MarkReadResponse(marked=await chats.mark_read(chat_id, user.id))


@router.websocket("/{chat_id}/ws")
async def chat_ws(websocket: WebSocket, chat_id: str) -> None:
    user = await live.authenticate(websocket)
    if user is None:
        return
    chats: ChatService = websocket.app.state.chats
    sub = await live.open_subscription(
        websocket, lambda: chats.subscribe_messages(chat_id, user.id)
    )
    if sub is None:
        return
    await live.stream(websocket, sub, _render_messages)


@router.websocket("/ws")
async def chats_ws(websocket: WebSocket) -> None:
    user = await live.authenticate(websocket)
    if user is None:
        return
    chats: ChatService = websocket.app.state.chats
    sub = await live.open_subscription(websocket, lambda: chats.subscribe_chats(user.id))
    if sub is None:
        return

    def _render(items: list[ChatSummary]) -> dict[str, Any]:
        return ChatListResponse(
            items=[_chat_item(c, user.id) for c in items]
        ).model_dump(mode="json")

    await live.stream(websocket, sub, _render)

"""Chat history routes. Writes go through the message buffer."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from core.container import container
from core.database import Database
from core.exceptions import NotFoundError
from core.logging import get_logger
from models.chat import ChatTurn
from services.message_buffer import MessageBufferService

logger = get_logger(__name__)
router = APIRouter(prefix="/api/chats", tags=["chats"])


class CreateChatRequest(BaseModel):
    user_id: str


class PersistMessagesRequest(BaseModel):
    user_id: str
    messages: List[ChatTurn] = Field(min_length=1)
    sync: bool = False  # wait for the write before responding


def get_database() -> Database:
    return container.database()


def get_message_buffer() -> MessageBufferService:
    return container.message_buffer()


async def _owned_chat(database: Database, chat_id: int, user_id: str):
    chat = await database.get_chat_for_user(chat_id, user_id)
    if chat is None:
        raise NotFoundError("Chat not found or access denied")
    return chat


@router.post("")
async def create_chat(
    request: CreateChatRequest,
    database: Database = Depends(get_database)
):
    """Create a new chat for a user."""
    chat = await database.create_chat_for_user(request.user_id)
    if chat is None:
        raise NotFoundError("User not found")
    return {
        "success": True,
        "chat_id": chat.id,
        "chat_uuid": chat.chat_uuid,
        "created_at": chat.created_at.isoformat(),
        "updated_at": chat.updated_at.isoformat(),
    }


@router.get("")
async def list_chats(
    user_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    cursor_updated_at: Optional[datetime] = None,
    cursor_id: Optional[int] = None,
    database: Database = Depends(get_database)
):
    """List chat summaries newest first, cursor paginated."""
    after = None
    if cursor_updated_at is not None and cursor_id is not None:
        after = (cursor_updated_at, cursor_id)
    page = await database.list_chat_summaries_paginated(user_id, limit=limit, after=after)
    return {"success": True, **page}


@router.get("/{chat_id}/messages")
async def get_chat_messages(
    chat_id: int,
    user_id: str,
    limit: int = Query(default=20, ge=1, le=100),
    skip: int = Query(default=0, ge=0),
    after_created_at: Optional[datetime] = None,
    after_id: Optional[int] = None,
    database: Database = Depends(get_database)
):
    """Load a chat's history oldest first."""
    await _owned_chat(database, chat_id, user_id)
    after = None
    if after_created_at is not None and after_id is not None:
        after = (after_created_at, after_id)
    messages = await database.load_chat_history(chat_id, limit=limit, skip=skip, after=after)
    return {"success": True, "chat_id": chat_id, "messages": messages}


@router.post("/{chat_id}/messages")
async def persist_messages(
    chat_id: int,
    request: PersistMessagesRequest,
    database: Database = Depends(get_database),
    message_buffer: MessageBufferService = Depends(get_message_buffer)
):
    """Queue messages for a chat; with ``sync`` the write finishes before returning."""
    chat = await _owned_chat(database, chat_id, request.user_id)
    message_buffer.append(chat.id, chat.user_id, request.messages)

    if not request.sync:
        return {"success": True, "queued": len(request.messages)}

    await message_buffer.flush_now(chat.id)
    summaries = await database.list_chat_summaries(request.user_id)
    return {"success": True, "summaries": summaries}


@router.delete("/{chat_id}")
async def delete_chat(
    chat_id: int,
    user_id: str,
    database: Database = Depends(get_database),
    message_buffer: MessageBufferService = Depends(get_message_buffer)
):
    """Delete a chat and its messages."""
    await _owned_chat(database, chat_id, user_id)
    # Write out anything still buffered so it is removed with the chat.
    await message_buffer.flush_now(chat_id)
    deleted = await database.delete_chat(chat_id)
    return {"success": deleted}

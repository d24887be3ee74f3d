"""SQLModel database models and tables."""

import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlmodel import SQLModel, Field, Column, DateTime
from sqlalchemy import Index, func


MESSAGE_ROLES = ("user", "assistant", "system")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """Student identity mirrored from the university user-info API.

    Only the fields the chat assistant needs are kept.
    """

    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, unique=True, max_length=64)  # University student ID
    full_name: str = Field(max_length=255)
    class_name: Optional[str] = Field(default=None, max_length=100)
    department_name: Optional[str] = Field(default=None, max_length=255)
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), onupdate=func.now())
    )


class Chat(SQLModel, table=True):
    """A conversation owned by one user. Messages live in their own table."""

    __tablename__ = "chats"
    __table_args__ = (Index("ix_chats_user_updated", "user_id", "updated_at"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    chat_uuid: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        unique=True,
        max_length=36
    )
    user_id: int = Field(foreign_key="users.id", index=True)
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), server_default=func.now())
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )


class Message(SQLModel, table=True):
    """Single chat message - persisted in bulk by the message buffer."""

    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_chat_created", "chat_id", "created_at"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    chat_id: int = Field(foreign_key="chats.id")
    role: str = Field(max_length=20)  # 'user', 'assistant' or 'system'
    content: str = Field(max_length=50000)
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )

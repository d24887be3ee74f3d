"""Modern async database service with SQLModel and SQLAlchemy 2.0."""

import logging
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Sequence, Tuple
from sqlmodel import SQLModel, select
from sqlalchemy import delete, update, func, or_, and_
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from contextlib import asynccontextmanager

from core.config import Settings
from core.logging import get_logger
from models.chat import ChatTurn
from models.database import User, Chat, Message
from models.user import UserProfile

logger = get_logger(__name__)

SUMMARY_PAGE_MAX = 100


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class Database:
    """Async database service with SQLModel."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = None
        self.async_session = None

    async def startup(self):
        """Initialize database connection and create tables."""
        try:
            logging.getLogger("aiosqlite").setLevel(logging.WARNING)
            logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

            engine_kwargs: Dict[str, Any] = {"echo": self.settings.database_echo}
            if not self.settings.is_sqlite:
                engine_kwargs["pool_size"] = self.settings.database_pool_size
                engine_kwargs["max_overflow"] = self.settings.database_max_overflow

            self.engine = create_async_engine(self.settings.database_url, **engine_kwargs)

            self.async_session = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)

            logger.info("Database initialized successfully")

        except Exception as e:
            logger.error("Database startup failed", error=str(e))
            raise

    async def shutdown(self):
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()
            logger.info("Database connections closed")

    @asynccontextmanager
    async def get_session(self):
        """Get async database session."""
        if not self.async_session:
            raise RuntimeError("Database not initialized")

        async with self.async_session() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    # ============================================================================
    # Users
    # ============================================================================

    async def get_user_profile(self, user_id: str) -> Optional[UserProfile]:
        """Load a stored profile by university user ID.

        Raises on database failure; the user cache decides how to recover.
        """
        async with self.get_session() as session:
            result = await session.execute(select(User).where(User.user_id == user_id))
            user = result.scalar_one_or_none()
            if user is None:
                return None
            return UserProfile(
                user_id=user.user_id,
                full_name=user.full_name,
                class_name=user.class_name,
                department_name=user.department_name
            )

    async def upsert_user_profile(self, profile: UserProfile) -> None:
        """Insert or update the stored subset of a profile. Raises on failure."""
        async with self.get_session() as session:
            result = await session.execute(select(User).where(User.user_id == profile.user_id))
            user = result.scalar_one_or_none()

            if user:
                user.full_name = profile.full_name
                user.class_name = profile.class_name
                user.department_name = profile.department_name
                user.updated_at = _utcnow()
            else:
                session.add(User(
                    user_id=profile.user_id,
                    full_name=profile.full_name,
                    class_name=profile.class_name,
                    department_name=profile.department_name
                ))

            await session.commit()

    async def _get_user_row(self, session: AsyncSession, user_id: str) -> Optional[User]:
        result = await session.execute(select(User).where(User.user_id == user_id))
        return result.scalar_one_or_none()

    # ============================================================================
    # Chats
    # ============================================================================

    async def create_chat(self, owner_id: int) -> Chat:
        """Create an empty chat for an internal user row id."""
        async with self.get_session() as session:
            chat = Chat(user_id=owner_id)
            session.add(chat)
            await session.commit()
            await session.refresh(chat)
            return chat

    async def create_chat_for_user(self, user_id: str) -> Optional[Chat]:
        """Create a chat for a university user ID. None if the user is unknown."""
        try:
            async with self.get_session() as session:
                user = await self._get_user_row(session, user_id)
                if not user:
                    return None
                chat = Chat(user_id=user.id)
                session.add(chat)
                await session.commit()
                await session.refresh(chat)
                return chat

        except Exception as e:
            logger.error("Failed to create chat", user_id=user_id, error=str(e))
            return None

    async def get_or_create_chat_for_user(self, user_id: str) -> Optional[Chat]:
        """Return the user's most recently updated chat, creating one if needed."""
        try:
            async with self.get_session() as session:
                user = await self._get_user_row(session, user_id)
                if not user:
                    return None

                stmt = (
                    select(Chat)
                    .where(Chat.user_id == user.id)
                    .order_by(Chat.updated_at.desc(), Chat.id.desc())
                    .limit(1)
                )
                result = await session.execute(stmt)
                existing = result.scalar_one_or_none()
                if existing:
                    return existing

                chat = Chat(user_id=user.id)
                session.add(chat)
                await session.commit()
                await session.refresh(chat)
                return chat

        except Exception as e:
            logger.error("Failed to get or create chat", user_id=user_id, error=str(e))
            return None

    async def get_chat_for_user(self, chat_id: int, user_id: str) -> Optional[Chat]:
        """Get a chat only if it belongs to the given university user ID."""
        try:
            async with self.get_session() as session:
                stmt = (
                    select(Chat)
                    .join(User, Chat.user_id == User.id)
                    .where(Chat.id == chat_id, User.user_id == user_id)
                )
                result = await session.execute(stmt)
                return result.scalar_one_or_none()

        except Exception as e:
            logger.error("Failed to get chat", chat_id=chat_id, user_id=user_id, error=str(e))
            return None

    async def get_chat_for_user_by_uuid(self, chat_uuid: str, user_id: str) -> Optional[Chat]:
        """Same ownership check as get_chat_for_user, by public chat UUID."""
        try:
            async with self.get_session() as session:
                stmt = (
                    select(Chat)
                    .join(User, Chat.user_id == User.id)
                    .where(Chat.chat_uuid == chat_uuid, User.user_id == user_id)
                )
                result = await session.execute(stmt)
                return result.scalar_one_or_none()

        except Exception as e:
            logger.error("Failed to get chat by uuid", chat_uuid=chat_uuid, user_id=user_id, error=str(e))
            return None

    async def delete_chat(self, chat_id: int) -> bool:
        """Delete a chat and all of its messages."""
        try:
            async with self.get_session() as session:
                await session.execute(delete(Message).where(Message.chat_id == chat_id))
                result = await session.execute(delete(Chat).where(Chat.id == chat_id))
                await session.commit()
                return result.rowcount > 0

        except Exception as e:
            logger.error("Failed to delete chat", chat_id=chat_id, error=str(e))
            return False

    # ============================================================================
    # Messages
    # ============================================================================

    async def add_message(self, chat_id: int, role: str, content: str) -> Optional[Message]:
        """Add a single message. Does not touch the chat row."""
        try:
            async with self.get_session() as session:
                message = Message(chat_id=chat_id, role=role, content=content)
                session.add(message)
                await session.commit()
                await session.refresh(message)
                return message

        except Exception as e:
            logger.error("Failed to add message", chat_id=chat_id, error=str(e))
            return None

    async def bulk_insert_messages(self, chat_id: int, messages: Sequence[ChatTurn]) -> int:
        """Insert a batch of messages in one transaction. Raises on failure."""
        if not messages:
            return 0

        now = _utcnow()
        async with self.get_session() as session:
            session.add_all([
                Message(chat_id=chat_id, role=m.role, content=m.content, created_at=now)
                for m in messages
            ])
            await session.commit()
        return len(messages)

    async def update_chat_updated_at(self, chat_id: int, when: Optional[datetime] = None) -> None:
        """Bump only Chat.updated_at. Raises on failure."""
        async with self.get_session() as session:
            await session.execute(
                update(Chat).where(Chat.id == chat_id).values(updated_at=when or _utcnow())
            )
            await session.commit()

    async def prune_chats_for_user(self, owner_id: int, keep: int) -> int:
        """Keep the newest ``keep`` chats by updated_at, delete the rest with their messages.

        Returns the number of chats removed. Raises on failure.
        """
        async with self.get_session() as session:
            stmt = (
                select(Chat.id)
                .where(Chat.user_id == owner_id)
                .order_by(Chat.updated_at.desc(), Chat.id.desc())
            )
            result = await session.execute(stmt)
            chat_ids = list(result.scalars().all())
            if len(chat_ids) <= keep:
                return 0

            stale = chat_ids[keep:]
            await session.execute(delete(Message).where(Message.chat_id.in_(stale)))
            await session.execute(delete(Chat).where(Chat.id.in_(stale)))
            await session.commit()

        logger.info("Pruned old chats", owner_id=owner_id, deleted=len(stale), kept=keep)
        return len(stale)

    async def load_chat_history(
        self,
        chat_id: int,
        limit: int = 20,
        skip: int = 0,
        after: Optional[Tuple[datetime, int]] = None
    ) -> List[Dict[str, Any]]:
        """Load messages oldest-first.

        Args:
            chat_id: Chat to read.
            limit: Page size.
            skip: Offset, ignored when ``after`` is given.
            after: ``(created_at, id)`` cursor; only later messages are returned.
        """
        try:
            async with self.get_session() as session:
                stmt = select(Message).where(Message.chat_id == chat_id)
                if after:
                    created_at, message_id = after
                    stmt = stmt.where(or_(
                        Message.created_at > created_at,
                        and_(Message.created_at == created_at, Message.id > message_id)
                    ))
                else:
                    stmt = stmt.offset(skip)

                stmt = stmt.order_by(Message.created_at.asc(), Message.id.asc()).limit(limit)
                result = await session.execute(stmt)

                return [
                    {
                        "id": m.id,
                        "role": m.role,
                        "content": m.content,
                        "created_at": _iso(m.created_at)
                    }
                    for m in result.scalars().all()
                ]

        except Exception as e:
            logger.error("Failed to load chat history", chat_id=chat_id, error=str(e))
            return []

    async def load_chat_history_by_page(self, chat_id: int, page: int, page_size: int) -> List[Dict[str, Any]]:
        """Offset pagination with 1-based pages."""
        skip = (max(1, page) - 1) * page_size
        return await self.load_chat_history(chat_id, limit=page_size, skip=skip)

    # ============================================================================
    # Chat summaries
    # ============================================================================

    async def list_chat_summaries(self, user_id: str) -> List[Dict[str, Any]]:
        """All chats for a user, newest first, with message counts."""
        page = await self.list_chat_summaries_paginated(user_id, limit=None)
        return page["chats"]

    async def list_chat_summaries_paginated(
        self,
        user_id: str,
        limit: Optional[int] = 20,
        after: Optional[Tuple[datetime, int]] = None
    ) -> Dict[str, Any]:
        """Cursor-paginated summaries sorted by (updated_at desc, id desc).

        ``limit`` is clamped to 1..100; ``None`` returns everything.
        The result's ``next`` is the cursor for the following page or None.
        """
        try:
            async with self.get_session() as session:
                user = await self._get_user_row(session, user_id)
                if not user:
                    return {"chats": [], "next": None}

                counts = (
                    select(Message.chat_id, func.count(Message.id).label("message_count"))
                    .group_by(Message.chat_id)
                    .subquery()
                )
                stmt = (
                    select(Chat, func.coalesce(counts.c.message_count, 0))
                    .outerjoin(counts, counts.c.chat_id == Chat.id)
                    .where(Chat.user_id == user.id)
                )
                if after:
                    updated_at, last_id = after
                    stmt = stmt.where(or_(
                        Chat.updated_at < updated_at,
                        and_(Chat.updated_at == updated_at, Chat.id < last_id)
                    ))
                stmt = stmt.order_by(Chat.updated_at.desc(), Chat.id.desc())

                page_size = None
                if limit is not None:
                    page_size = max(1, min(SUMMARY_PAGE_MAX, limit))
                    stmt = stmt.limit(page_size + 1)

                result = await session.execute(stmt)
                rows = result.all()

                has_more = page_size is not None and len(rows) > page_size
                if has_more:
                    rows = rows[:page_size]

                chats = [
                    {
                        "chat_id": chat.id,
                        "chat_uuid": chat.chat_uuid,
                        "created_at": _iso(chat.created_at),
                        "updated_at": _iso(chat.updated_at),
                        "message_count": count
                    }
                    for chat, count in rows
                ]
                next_cursor = None
                if has_more:
                    last_chat = rows[-1][0]
                    next_cursor = {"updated_at": _iso(last_chat.updated_at), "id": last_chat.id}

                return {"chats": chats, "next": next_cursor}

        except Exception as e:
            logger.error("Failed to list chat summaries", user_id=user_id, error=str(e))
            return {"chats": [], "next": None}

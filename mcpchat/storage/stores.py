import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Generator, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import DuplicateRegistration, PersistenceError
from ..tools.codec import tool_table_from_json
from .database import Database
from .models import MESSAGE_ROLES, Chat, Message, Provider, utc_now

logger = logging.getLogger(__name__)


class _Store:
    def __init__(self, db: Database) -> None:
        self.db = db

    @contextmanager
    def _session(self, action: str) -> Generator[Session, None, None]:
        try:
            with self.db.session() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.error("Failed to %s: %s", action, exc)
            raise PersistenceError(f"Failed to {action}", details={"reason": str(exc)}) from exc


class ChatStore(_Store):
    def get_chat(self, chat_id: str) -> Optional[Chat]:
        with self._session("get chat by id") as session:
            return session.get(Chat, chat_id)

    def save_chat(self, chat_id: str, user_id: str, title: str) -> Chat:
        """Insert a chat unless one with this id exists.

        Returns the stored row, which may belong to another user; callers check ownership.
        """
        with self._session("save chat") as session:
            existing = session.get(Chat, chat_id)
            if existing is not None:
                return existing
            chat = Chat(id=chat_id, user_id=user_id, title=title, created_at=utc_now())
            session.add(chat)
            try:
                session.flush()
            except IntegrityError:
                # Lost a race with a concurrent insert of the same id.
                session.rollback()
                existing = session.get(Chat, chat_id)
                if existing is None:
                    raise
                return existing
            return chat

    def list_chats(self, user_id: str) -> List[Chat]:
        with self._session("get chats by user id") as session:
            rows = session.scalars(
                select(Chat).where(Chat.user_id == user_id).order_by(Chat.created_at.desc())
            )
            return list(rows)

    def delete_chat(self, chat_id: str) -> None:
        with self._session("delete chat by id") as session:
            session.execute(delete(Message).where(Message.chat_id == chat_id))
            session.execute(delete(Chat).where(Chat.id == chat_id))

    def save_message(
        self,
        *,
        message_id: str,
        chat_id: str,
        role: str,
        parts: List[Dict[str, Any]],
        attachments: Optional[List[Dict[str, Any]]] = None,
        created_at: Optional[datetime] = None,
    ) -> bool:
        """Insert a message keyed by id.

        Returns False without writing anything when the id already exists.
        """
        if role not in MESSAGE_ROLES:
            raise ValueError(f"Unsupported message role: {role}")

        with self._session("save message") as session:
            if session.get(Message, message_id) is not None:
                logger.debug("Message %s already stored, skipping", message_id)
                return False
            session.add(
                Message(
                    id=message_id,
                    chat_id=chat_id,
                    role=role,
                    parts=list(parts),
                    attachments=list(attachments or []),
                    created_at=created_at or utc_now(),
                )
            )
            try:
                session.flush()
            except IntegrityError:
                # Lost a race with a concurrent insert of the same id.
                session.rollback()
                if session.get(Message, message_id) is None:
                    raise
                return False
            return True

    def get_messages(self, chat_id: str) -> List[Message]:
        with self._session("get messages by chat id") as session:
            rows = session.scalars(
                select(Message).where(Message.chat_id == chat_id).order_by(Message.created_at.asc())
            )
            return list(rows)


class ProviderStore(_Store):
    def create(
        self,
        *,
        user_id: str,
        name: str,
        url: str,
        type: str = "sse",
        is_active: bool = True,
        description: Optional[str] = None,
        capabilities: Optional[Dict[str, bool]] = None,
        tools: Optional[Dict[str, Any]] = None,
        is_synthesized: bool = False,
    ) -> Provider:
        with self._session("create provider") as session:
            now = utc_now()
            provider = Provider(
                user_id=user_id,
                name=name,
                type=type,
                url=url,
                is_active=is_active,
                description=description,
                capabilities=dict(capabilities or {}),
                tools=dict(tools or {}),
                is_synthesized=is_synthesized,
                created_at=now,
                updated_at=now,
            )
            session.add(provider)
            try:
                session.flush()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicateRegistration(
                    "A provider with this URL is already registered",
                    details={"url": url},
                ) from exc
            return provider

    def get(self, provider_id: str) -> Optional[Provider]:
        with self._session("get provider by id") as session:
            return session.get(Provider, provider_id)

    def list_for_user(self, user_id: str) -> List[Provider]:
        with self._session("get providers by user id") as session:
            rows = session.scalars(
                select(Provider).where(Provider.user_id == user_id).order_by(Provider.name.asc(), Provider.id.asc())
            )
            return list(rows)

    def list_active_for_user(self, user_id: str) -> List[Provider]:
        with self._session("get active providers by user id") as session:
            rows = session.scalars(
                select(Provider)
                .where(Provider.user_id == user_id, Provider.is_active.is_(True))
                .order_by(Provider.name.asc(), Provider.id.asc())
            )
            return list(rows)

    def find_by_url(self, user_id: str, url: str) -> Optional[Provider]:
        # Exact comparison: casing and trailing slashes make a different URL.
        with self._session("find provider by url") as session:
            return session.scalars(
                select(Provider).where(Provider.user_id == user_id, Provider.url == url)
            ).first()

    def toggle_active(self, provider_id: str) -> Optional[Provider]:
        with self._session("toggle provider active state") as session:
            provider = session.get(Provider, provider_id)
            if provider is None:
                return None
            provider.is_active = not provider.is_active
            provider.updated_at = utc_now()
            return provider

    def delete(self, provider_id: str) -> Optional[Provider]:
        with self._session("delete provider") as session:
            provider = session.get(Provider, provider_id)
            if provider is None:
                return None
            session.delete(provider)
            return provider

    def tool_summary(self, user_id: str) -> Dict[str, Any]:
        tools: List[Dict[str, str]] = []
        for provider in self.list_active_for_user(user_id):
            for descriptor in tool_table_from_json(provider.tools or {}).values():
                tools.append({"name": descriptor.name, "providerName": provider.name})
        return {"totalTools": len(tools), "tools": tools}

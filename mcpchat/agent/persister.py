import logging
from typing import Any, Dict, List

from ..errors import PersistenceError
from ..schemas import ChatMessage
from ..storage import ChatStore

logger = logging.getLogger(__name__)


class MessagePersister:
    def __init__(self, store: ChatStore) -> None:
        self.store = store

    def save_user_message(self, chat_id: str, message: ChatMessage) -> bool:
        # Runs before the model is called; failures propagate and reject the turn.
        return self.store.save_message(
            message_id=message.id,
            chat_id=chat_id,
            role="user",
            parts=message.normalized_parts(),
            attachments=message.attachments,
        )

    def save_assistant_message(self, chat_id: str, message_id: str, parts: List[Dict[str, Any]]) -> bool:
        # The caller has already seen the completed stream, so a failed write is only logged.
        try:
            return self.store.save_message(
                message_id=message_id,
                chat_id=chat_id,
                role="assistant",
                parts=parts,
            )
        except PersistenceError:
            logger.exception("Failed to save assistant message %s for chat %s", message_id, chat_id)
            return False

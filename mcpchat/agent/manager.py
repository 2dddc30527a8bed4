import json
import logging
from typing import Any, Dict, List, Optional

from ..config import AppConfig
from ..errors import AuthorizationError, ModelInferenceError, NotFoundError, ValidationError
from ..schemas import ChatMessage, ChatRequest
from ..storage import ChatStore, Database, ProviderStore
from ..tools import ProviderConnector, ToolAggregator, local_tools
from .models import ModelProvider
from .persister import MessagePersister
from .session import ChatTurn

logger = logging.getLogger(__name__)

TITLE_INSTRUCTIONS = """
- you will generate a short title based on the first message a user begins a conversation with
- ensure it is not more than 80 characters long
- the title should be a summary of the user's message
- do not use quotes or colons"""


def most_recent_user_message(messages: List[ChatMessage]) -> Optional[ChatMessage]:
    for message in reversed(messages):
        if message.role == "user":
            return message
    return None


def fallback_title(message: ChatMessage) -> str:
    content = message.text().strip()
    if len(content) > 30:
        return content[:30] + "..."
    return content or "New chat"


class ChatManager:
    def __init__(
        self,
        config: AppConfig,
        db: Database,
        model_provider: ModelProvider,
        connector: ProviderConnector,
    ) -> None:
        self.config = config
        self.chats = ChatStore(db)
        self.providers = ProviderStore(db)
        self.model_provider = model_provider
        self.aggregator = ToolAggregator(
            connector,
            concurrency=config.provider_concurrency,
            transports=config.allowed_transports,
        )
        self.persister = MessagePersister(self.chats)

    async def start_turn(self, user_id: Optional[str], request: ChatRequest) -> ChatTurn:
        if not user_id:
            raise AuthorizationError("Unauthorized")
        if not request.messages:
            raise ValidationError("Message history is empty", details={"chatId": request.id})

        user_message = most_recent_user_message(request.messages)
        if user_message is None:
            raise ValidationError("No user message found", details={"chatId": request.id})
        if not user_message.text().strip() and not user_message.attachments:
            raise ValidationError("User message is empty", details={"messageId": user_message.id})

        model_id = request.selected_chat_model or self.config.default_model
        spec = self.config.models.get(model_id)
        if spec is None or spec.hidden:
            raise ValidationError(f"Model '{model_id}' is not supported", details={"model": model_id})

        chat = self.chats.get_chat(request.id)
        if chat is None:
            title = await self.generate_title(user_message)
            # Another turn may have created the chat while the title was generated.
            chat = self.chats.save_chat(request.id, user_id, title)
            logger.info("Chat %s ready for user %s", request.id, chat.user_id)
        if chat.user_id != user_id:
            raise AuthorizationError("Unauthorized", details={"chatId": request.id})

        self.persister.save_user_message(request.id, user_message)

        aggregation = await self.aggregator.aggregate_for_user(user_id, self.providers, local_tools())
        for status in aggregation.failed:
            logger.warning("Provider %s skipped for chat %s: %s", status.name, request.id, status.reason)

        return ChatTurn(
            chat_id=request.id,
            history=list(request.messages),
            registry=aggregation.tools,
            model_provider=self.model_provider,
            model_id=model_id,
            persister=self.persister,
            instructions=self.config.system_prompt,
            max_steps=self.config.max_steps,
            statuses=aggregation.statuses,
        )

    async def generate_title(self, message: ChatMessage) -> str:
        try:
            title = await self.model_provider.generate_text(
                self.config.title_model,
                json.dumps({"role": message.role, "parts": message.normalized_parts()}),
                instructions=TITLE_INSTRUCTIONS,
            )
        except ModelInferenceError as exc:
            logger.warning("Title generation failed, using message text: %s", exc)
            return fallback_title(message)
        title = title.strip().strip('"')[:80]
        return title or fallback_title(message)

    def _owned_chat(self, user_id: Optional[str], chat_id: str) -> Any:
        if not user_id:
            raise AuthorizationError("Unauthorized")
        chat = self.chats.get_chat(chat_id)
        if chat is None:
            raise NotFoundError("Chat not found", details={"chatId": chat_id})
        if chat.user_id != user_id:
            raise AuthorizationError("Unauthorized", details={"chatId": chat_id})
        return chat

    def delete_chat(self, user_id: Optional[str], chat_id: str) -> None:
        self._owned_chat(user_id, chat_id)
        self.chats.delete_chat(chat_id)
        logger.info("Deleted chat %s", chat_id)

    def list_chats(self, user_id: Optional[str]) -> List[Dict[str, Any]]:
        if not user_id:
            raise AuthorizationError("Unauthorized")
        return [chat.to_dict() for chat in self.chats.list_chats(user_id)]

    def history(self, user_id: Optional[str], chat_id: str) -> List[Dict[str, Any]]:
        self._owned_chat(user_id, chat_id)
        return [message.to_dict() for message in self.chats.get_messages(chat_id)]

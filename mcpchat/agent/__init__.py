"""Chat turn orchestration package."""

from .manager import ChatManager
from .models import ModelProvider, OpenAIModelProvider, chat_models
from .persister import MessagePersister
from .session import CancellationToken, ChatTurn, TurnState

__all__ = [
    "CancellationToken",
    "ChatManager",
    "ChatTurn",
    "MessagePersister",
    "ModelProvider",
    "OpenAIModelProvider",
    "TurnState",
    "chat_models",
]

"""Persistence for chats, messages and registered tool providers."""

from .database import Database
from .models import Base, Chat, Message, Provider
from .stores import ChatStore, ProviderStore

__all__ = [
    "Base",
    "Chat",
    "ChatStore",
    "Database",
    "Message",
    "Provider",
    "ProviderStore",
]

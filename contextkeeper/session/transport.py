"""Conversation transport capability."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class ChatMessage:
    """One stored conversation message."""

    text: str
    sender: str
    timestamp: float


class ConversationTransport(ABC):
    """Source of conversation history."""

    @abstractmethod
    async def retrieve_all_messages(self, conversation_id: str) -> list[ChatMessage]:
        """Return every message of a conversation, oldest first.

        Raises TransportError when the conversation cannot be read.
        """

"""
Abstract stores — interfaces for the guideline catalog and chat persistence.

Implementations:
  - InMemoryGuidelineStore / InMemoryChatStore (dict-based, no persistence)
  - FileGuidelineStore / FileChatStore         (JSON files on disk)

The matcher only depends on BaseGuidelineStore; the orchestrator on both.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from models.schemas import Chat, ChatMessage, Facts, Guideline


class UnknownChatError(KeyError):
    """Raised when a chat id does not exist in the store."""


class BaseGuidelineStore(ABC):
    """Interface that all guideline catalog backends must implement."""

    @abstractmethod
    async def list_guidelines(self) -> list[Guideline]:
        ...

    @abstractmethod
    async def get_guideline(self, guideline_id: str) -> Optional[Guideline]:
        ...

    @abstractmethod
    async def upsert_guideline(self, guideline: Guideline) -> Guideline:
        ...

    @abstractmethod
    async def update_embedding(self, guideline_id: str, embedding: list[float]) -> None:
        ...

    @abstractmethod
    async def fetch_deterministic(self) -> list[Guideline]:
        """All guidelines with fuzzy = false and a condition present, in catalog order."""
        ...

    @abstractmethod
    async def match_guidelines(
        self,
        query_embedding: list[float],
        match_count: int = 3,
        similarity_threshold: float = 0.8,
    ) -> list[Guideline]:
        """
        Top-K fuzzy guidelines by cosine similarity at or above the threshold.

        Only guidelines with fuzzy = true and an embedding compete for the K
        slots; deterministic guidelines are never returned, even when embedded.
        """
        ...


class BaseChatStore(ABC):
    """Interface that all chat persistence backends must implement."""

    @abstractmethod
    async def create_chat(self, facts: Optional[Facts] = None) -> Chat:
        ...

    @abstractmethod
    async def get_chat(self, chat_id: str, message_limit: int = 6) -> Chat:
        """Load a chat with its latest ``message_limit`` messages (oldest first)."""
        ...

    @abstractmethod
    async def save_message(self, chat_id: str, message: ChatMessage) -> None:
        ...

    @abstractmethod
    async def get_messages(self, chat_id: str) -> list[ChatMessage]:
        ...

    @abstractmethod
    async def update_facts(self, chat_id: str, facts: Facts) -> None:
        ...

    @abstractmethod
    async def update_summary(self, chat_id: str, summary: str) -> None:
        ...

    @abstractmethod
    async def list_chats(self, limit: int = 50) -> list[Chat]:
        """Most recently updated chats first, each with its last message."""
        ...

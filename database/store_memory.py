"""
In-memory stores — dict-backed catalog and chat store for development and testing.

Features:
  - Zero infrastructure (no database, no vector index)
  - Full interface compatibility with the file backends
  - Safe under a single asyncio event loop
  - All data lost on process restart

Best for: local development, unit tests, quick prototyping.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import numpy as np
import structlog

from database.store_base import BaseChatStore, BaseGuidelineStore, UnknownChatError
from models.schemas import Chat, ChatMessage, Facts, Guideline

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        return 0.0
    na = float(np.linalg.norm(va))
    nb = float(np.linalg.norm(vb))
    if na == 0.0 or nb == 0.0:
        return 0.0
    return float(np.dot(va, vb) / (na * nb))


class InMemoryGuidelineStore(BaseGuidelineStore):
    """Guideline catalog kept in insertion order."""

    def __init__(self, guidelines: list[Guideline] = None):
        self._guidelines: dict[str, Guideline] = {}
        for g in guidelines or []:
            self._guidelines[g.id] = g
        logger.info("inmemory_guideline_store_initialized", count=len(self._guidelines))

    async def list_guidelines(self) -> list[Guideline]:
        return list(self._guidelines.values())

    async def get_guideline(self, guideline_id: str) -> Optional[Guideline]:
        return self._guidelines.get(guideline_id)

    async def upsert_guideline(self, guideline: Guideline) -> Guideline:
        self._guidelines[guideline.id] = guideline
        return guideline

    async def update_embedding(self, guideline_id: str, embedding: list[float]) -> None:
        g = self._guidelines.get(guideline_id)
        if g is None:
            logger.warning("embedding_for_unknown_guideline", guideline_id=guideline_id)
            return
        g.embedding = list(embedding)

    async def fetch_deterministic(self) -> list[Guideline]:
        return [g for g in self._guidelines.values() if g.is_deterministic]

    async def match_guidelines(
        self,
        query_embedding: list[float],
        match_count: int = 3,
        similarity_threshold: float = 0.8,
    ) -> list[Guideline]:
        scored: list[tuple[float, int, Guideline]] = []
        for position, g in enumerate(self._guidelines.values()):
            if not g.fuzzy or not g.embedding:
                continue
            score = cosine_similarity(query_embedding, g.embedding)
            if score >= similarity_threshold:
                scored.append((score, position, g))
        # Highest similarity first; catalog order breaks ties.
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [g for _, _, g in scored[:match_count]]


class InMemoryChatStore(BaseChatStore):
    """Chats and their messages kept in dicts."""

    def __init__(self):
        self._chats: dict[str, dict] = {}                 # id → chat dict (no messages)
        self._messages: dict[str, list[dict]] = {}        # chat_id → [message dicts]
        logger.info("inmemory_chat_store_initialized")

    def _require(self, chat_id: str) -> dict:
        data = self._chats.get(chat_id)
        if data is None:
            raise UnknownChatError(chat_id)
        return data

    def _touch(self, chat_id: str) -> None:
        self._chats[chat_id]["updated_at"] = _utcnow().isoformat()

    async def create_chat(self, facts: Optional[Facts] = None) -> Chat:
        chat = Chat(facts=facts or Facts())
        self._chats[chat.id] = chat.model_dump(mode="json", exclude={"messages"})
        self._messages[chat.id] = []
        logger.info("chat_created", chat_id=chat.id)
        return chat

    async def get_chat(self, chat_id: str, message_limit: int = 6) -> Chat:
        data = self._require(chat_id)
        messages = self._messages.get(chat_id, [])
        window = messages[-message_limit:] if message_limit > 0 else []
        return Chat(**data, messages=[ChatMessage(**m) for m in window])

    async def save_message(self, chat_id: str, message: ChatMessage) -> None:
        self._require(chat_id)
        self._messages.setdefault(chat_id, []).append(message.model_dump(mode="json"))
        self._touch(chat_id)

    async def get_messages(self, chat_id: str) -> list[ChatMessage]:
        self._require(chat_id)
        return [ChatMessage(**m) for m in self._messages.get(chat_id, [])]

    async def update_facts(self, chat_id: str, facts: Facts) -> None:
        data = self._require(chat_id)
        data["facts"] = facts.model_dump(mode="json")
        self._touch(chat_id)

    async def update_summary(self, chat_id: str, summary: str) -> None:
        data = self._require(chat_id)
        data["summary"] = summary
        self._touch(chat_id)

    async def list_chats(self, limit: int = 50) -> list[Chat]:
        ordered = sorted(self._chats.values(), key=lambda c: c["updated_at"], reverse=True)
        chats = []
        for data in ordered[:limit]:
            last = self._messages.get(data["id"], [])[-1:]
            chats.append(Chat(**data, messages=[ChatMessage(**m) for m in last]))
        return chats

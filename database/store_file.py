"""
File stores — JSON file-backed catalog and chats with persistence across restarts.

Data layout:
  {data_dir}/
    guidelines.json
    chats.json
    messages.json

Features:
  - Survives process restarts (unlike the in-memory stores)
  - No external services
  - Every mutation flushes the changed collection atomically (tmp + rename)
  - Single-process only (no concurrent write safety)

Best for: small deployments, demos, air-gapped environments.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import structlog

from database.store_memory import InMemoryChatStore, InMemoryGuidelineStore
from models.schemas import ChatMessage, Facts, Chat, Guideline

logger = structlog.get_logger()


def _write_json(path: Path, data: Any) -> None:
    tmp_path = path.with_suffix(".tmp")
    with open(tmp_path, "w") as f:
        json.dump(data, f, indent=2, default=str)
    tmp_path.rename(path)  # atomic on POSIX


def _read_json(path: Path, fallback: Any) -> Any:
    if not path.exists():
        return fallback
    try:
        with open(path, "r") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        logger.warning("file_store_load_error", path=str(path), error=str(e))
        return fallback


class FileGuidelineStore(InMemoryGuidelineStore):
    """Guideline catalog persisted as a JSON list."""

    def __init__(self, data_dir: str = "./data"):
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        raw = _read_json(self._path, [])
        super().__init__([Guideline(**g) for g in raw])
        logger.info("file_guideline_store_initialized", data_dir=str(self._data_dir))

    @property
    def _path(self) -> Path:
        return self._data_dir / "guidelines.json"

    def _flush(self) -> None:
        _write_json(self._path, [
            g.model_dump(mode="json", by_alias=True) for g in self._guidelines.values()
        ])

    async def upsert_guideline(self, guideline: Guideline) -> Guideline:
        result = await super().upsert_guideline(guideline)
        self._flush()
        return result

    async def update_embedding(self, guideline_id: str, embedding: list[float]) -> None:
        await super().update_embedding(guideline_id, embedding)
        self._flush()


class FileChatStore(InMemoryChatStore):
    """
    Extends InMemoryChatStore with JSON file persistence.

    On init: loads chats and messages from disk.
    On every write: flushes the changed collection.
    """

    def __init__(self, data_dir: str = "./data"):
        super().__init__()
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._chats = _read_json(self._file_path("chats"), {})
        self._messages = _read_json(self._file_path("messages"), {})
        logger.info("file_chat_store_initialized", data_dir=str(self._data_dir), chats=len(self._chats))

    def _file_path(self, collection: str) -> Path:
        return self._data_dir / f"{collection}.json"

    def _mark_dirty(self, *collections: str) -> None:
        mapping = {"chats": self._chats, "messages": self._messages}
        for c in collections:
            _write_json(self._file_path(c), mapping[c])

    # ── Override write methods to trigger persistence ──────

    async def create_chat(self, facts: Optional[Facts] = None) -> Chat:
        chat = await super().create_chat(facts)
        self._mark_dirty("chats", "messages")
        return chat

    async def save_message(self, chat_id: str, message: ChatMessage) -> None:
        await super().save_message(chat_id, message)
        self._mark_dirty("messages", "chats")

    async def update_facts(self, chat_id: str, facts: Facts) -> None:
        await super().update_facts(chat_id, facts)
        self._mark_dirty("chats")

    async def update_summary(self, chat_id: str, summary: str) -> None:
        await super().update_summary(chat_id, summary)
        self._mark_dirty("chats")

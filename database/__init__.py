"""
Database layer — guideline catalog and chat persistence.

Backends:
  - In-memory (dict-based, for development/testing)
  - File (JSON files on disk, for small deployments)

Quick start:
  from database import create_stores
  guideline_store, chat_store = create_stores({"store_backend": "memory"})
  chat = await chat_store.create_chat()
"""
from database.store_base import BaseChatStore, BaseGuidelineStore, UnknownChatError
from database.store_memory import InMemoryChatStore, InMemoryGuidelineStore, cosine_similarity
from database.store_file import FileChatStore, FileGuidelineStore
from database.store_factory import create_stores
from database.catalog import import_catalog, load_catalog_file, parse_catalog

__all__ = [
    # Store interfaces
    "BaseGuidelineStore", "BaseChatStore", "UnknownChatError",
    # Store backends
    "InMemoryGuidelineStore", "InMemoryChatStore",
    "FileGuidelineStore", "FileChatStore",
    "cosine_similarity",
    # Factory
    "create_stores",
    # Catalog
    "load_catalog_file", "parse_catalog", "import_catalog",
]

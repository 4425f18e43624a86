"""
Store Factory — Create the right store backends from configuration.

Configuration in settings.yaml:
    database:
      # Store backend — where runtime state lives
      #   "memory"   — In-memory dicts (development, testing)
      #   "file"     — JSON files on disk (small deployments, demos)
      store_backend: "memory"

      # For file backend: directory path
      store_file_dir: "./data"

Usage:
    from database.store_factory import create_stores
    guideline_store, chat_store = create_stores({"store_backend": "file"})
"""
from __future__ import annotations

import structlog

from database.store_base import BaseChatStore, BaseGuidelineStore

logger = structlog.get_logger()


def create_stores(config: dict = None) -> tuple[BaseGuidelineStore, BaseChatStore]:
    """
    Factory: create the guideline catalog and chat store for one backend.

    Args:
        config: dict with keys:
            store_backend: "memory" | "file"  (default: "memory")
            store_file_dir: str (for file backend, default: "./data")
    """
    config = config or {}
    backend = config.get("store_backend", "memory")

    if backend == "file":
        from database.store_file import FileChatStore, FileGuidelineStore
        data_dir = config.get("store_file_dir", "./data")
        stores = FileGuidelineStore(data_dir=data_dir), FileChatStore(data_dir=data_dir)
        logger.info("stores_created", backend="file", data_dir=data_dir)
        return stores

    if backend != "memory":
        logger.warning("unknown_store_backend", backend=backend, fallback="memory")

    from database.store_memory import InMemoryChatStore, InMemoryGuidelineStore
    logger.info("stores_created", backend="memory")
    return InMemoryGuidelineStore(), InMemoryChatStore()

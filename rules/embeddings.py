"""
Guideline embedding job — computes title embeddings for the fuzzy path.

Runs out of band (CLI or admin task), never per turn. Embeddings are
computed concurrently, bounded by a semaphore.
"""
from __future__ import annotations

import asyncio
from typing import Protocol

import structlog

from database.store_base import BaseGuidelineStore

logger = structlog.get_logger()


class Embedder(Protocol):
    async def embed(self, text: str) -> list[float]: ...


async def calculate_embeddings(
    store: BaseGuidelineStore,
    embedder: Embedder,
    only_missing: bool = False,
    concurrency: int = 4,
) -> int:
    """Embed every guideline title and store the vectors. Returns how many were updated."""
    guidelines = await store.list_guidelines()
    if only_missing:
        guidelines = [g for g in guidelines if not g.embedding]

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def embed_one(guideline_id: str, title: str) -> None:
        async with semaphore:
            vector = await embedder.embed(title)
        await store.update_embedding(guideline_id, vector)

    await asyncio.gather(*[embed_one(g.id, g.title) for g in guidelines])
    logger.info("guideline_embeddings_calculated", count=len(guidelines), only_missing=only_missing)
    return len(guidelines)

#!/usr/bin/env python3
"""
Guideline Embeddings — Compute title embeddings for fuzzy matching.

Usage:
    # Embed every guideline in the configured store:
    python scripts/calculate_embeddings.py

    # Only guidelines without an embedding:
    python scripts/calculate_embeddings.py --missing
"""
import asyncio
import os
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()


async def run_embeddings(only_missing: bool = False, concurrency: int = 4):
    from config.settings import load_settings
    settings = load_settings()

    from core.engine import LanguageModelClient
    from database.catalog import import_catalog, load_catalog_file
    from database.store_factory import create_stores
    from rules.embeddings import calculate_embeddings

    guideline_store, _ = create_stores({
        "store_backend": settings.database.store_backend,
        "store_file_dir": settings.database.store_file_dir,
    })
    if settings.database.store_backend == "memory" and settings.guidelines.catalog_path:
        await import_catalog(guideline_store, load_catalog_file(settings.guidelines.catalog_path))

    llm = LanguageModelClient(settings.llm)
    try:
        count = await calculate_embeddings(
            guideline_store, llm, only_missing=only_missing, concurrency=concurrency,
        )
    finally:
        await llm.close()

    print(f"Embedding model: {settings.llm.embed_model}")
    print(f"Guidelines embedded: {count} ✓")


def main():
    parser = argparse.ArgumentParser(description="Calculate guideline embeddings")
    parser.add_argument("--missing", action="store_true", help="Only guidelines without an embedding")
    parser.add_argument("--concurrency", type=int, default=4, help="Parallel embedding requests")
    args = parser.parse_args()

    asyncio.run(run_embeddings(only_missing=args.missing, concurrency=args.concurrency))


if __name__ == "__main__":
    main()

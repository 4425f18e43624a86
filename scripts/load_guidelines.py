#!/usr/bin/env python3
"""
Guideline Import — Validate a catalog file and load it into the configured store.

Usage:
    # Import the catalog named in settings.yaml:
    python scripts/load_guidelines.py

    # Import a specific file:
    python scripts/load_guidelines.py --file config/guidelines.yaml

    # Validate only (no changes):
    python scripts/load_guidelines.py --check
"""
import asyncio
import os
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()


async def run_import(path: str = None, check_only: bool = False):
    from config.settings import load_settings
    settings = load_settings()

    from database.catalog import import_catalog, load_catalog_file
    from database.store_factory import create_stores

    path = path or settings.guidelines.catalog_path
    if not path:
        print("No catalog file given and guidelines.catalog_path is empty.")
        sys.exit(1)

    try:
        guidelines = load_catalog_file(path)
    except (OSError, ValueError) as e:
        print(f"Catalog invalid: {e}")
        sys.exit(1)

    deterministic = sum(1 for g in guidelines if g.is_deterministic)
    print(f"Catalog: {path}")
    print(f"Guidelines: {len(guidelines)} ({deterministic} deterministic, "
          f"{len(guidelines) - deterministic} fuzzy)")

    if check_only:
        print("Catalog is valid. ✓")
        return

    if settings.database.store_backend == "memory":
        print("Store backend is 'memory'; nothing would persist. Use the file backend.")
        sys.exit(1)

    guideline_store, _ = create_stores({
        "store_backend": settings.database.store_backend,
        "store_file_dir": settings.database.store_file_dir,
    })
    count = await import_catalog(guideline_store, guidelines)
    print(f"Imported {count} guidelines. ✓")


def main():
    parser = argparse.ArgumentParser(description="Guideline catalog import")
    parser.add_argument("--file", help="Catalog file (YAML or JSON)")
    parser.add_argument("--check", action="store_true", help="Validate only")
    args = parser.parse_args()

    asyncio.run(run_import(path=args.file, check_only=args.check))


if __name__ == "__main__":
    main()

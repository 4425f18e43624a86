"""
Guideline catalog loading — reads authored guidelines from YAML or JSON.

Each entry is validated once on the way in: the action payload is parsed
into its typed form and the condition tree is parsed by the evaluator, so a
malformed guideline is rejected at load time instead of during a turn.

Catalog file format (YAML):

    guidelines:
      - id: ask-professional-type
        title: Ask which kind of professional the user needs
        condition: {"!": {"var": "facts.informationRetrieved.professionalType"}}
        action:
          kind: ask
          prompt: What kind of professional are you looking for?
          choices: [psychology, coaching, nutrition]
          storeAs: professionalType
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import structlog
import yaml

from database.store_base import BaseGuidelineStore
from models.schemas import Guideline
from utils.conditions import ExpressionError, parse_expression

logger = structlog.get_logger()


def validate_guideline(guideline: Guideline) -> list[str]:
    """Return a list of problems; empty means the guideline is usable."""
    errors = []
    if guideline.condition is not None:
        try:
            parse_expression(guideline.condition)
        except ExpressionError as e:
            errors.append(f"condition: {e}")
    if guideline.action is None:
        errors.append("action is missing")
    if not guideline.fuzzy and guideline.condition is None:
        errors.append("deterministic guideline has no condition")
    return errors


def parse_catalog(raw: Any) -> list[Guideline]:
    """Build guidelines from a decoded catalog document."""
    entries = raw.get("guidelines", []) if isinstance(raw, dict) else (raw or [])
    guidelines = []
    for entry in entries:
        guideline = Guideline(**entry)
        errors = validate_guideline(guideline)
        if errors:
            logger.error("invalid_guideline", guideline_id=guideline.id, errors=errors)
            raise ValueError(f"Invalid guideline '{guideline.id}': {'; '.join(errors)}")
        guidelines.append(guideline)
    return guidelines


def load_catalog_file(path: str) -> list[Guideline]:
    """Load a YAML (or JSON) catalog file."""
    file_path = Path(path)
    with open(file_path) as f:
        if file_path.suffix == ".json":
            raw = json.load(f)
        else:
            raw = yaml.safe_load(f)
    guidelines = parse_catalog(raw)
    logger.info("guideline_catalog_loaded", path=str(file_path), count=len(guidelines))
    return guidelines


async def import_catalog(store: BaseGuidelineStore, guidelines: list[Guideline]) -> int:
    """Upsert guidelines into a store, keeping any embedding already stored."""
    for g in guidelines:
        existing = await store.get_guideline(g.id)
        if existing is not None and existing.embedding and not g.embedding and existing.title == g.title:
            g.embedding = existing.embedding
        await store.upsert_guideline(g)
    logger.info("guideline_catalog_imported", count=len(guidelines))
    return len(guidelines)

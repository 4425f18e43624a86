"""
Guideline Matcher — Selects the guidelines that apply to the current turn.

Two retrieval paths feed one ordered list:
  1. Deterministic: every non-fuzzy guideline with a condition, kept when
     its condition evaluates true against the facts.
  2. Fuzzy: the nearest guidelines to the (context-enriched) user message by
     embedding similarity, each confirmed by a yes/no classifier call.

Deterministic matches always come first; order within each group is the
retrieval order. Single-use guidelines that were already consumed are dropped.
"""
from __future__ import annotations

import asyncio
from typing import Optional, Protocol

import structlog

from config.settings import GuidelinesConfig, get_settings
from database.store_base import BaseGuidelineStore
from models.schemas import Facts, Guideline
from utils.conditions import evaluate

logger = structlog.get_logger()

RULE_CHECKER_PROMPT = (
    "You are a rule checker. You have to decide whether a rule applies based on the "
    'user\'s message. Answer ONLY "true" or "false" and nothing else. DO NOT EXPLAIN YOUR ANSWER.\n'
    "If the user's message is not in English, evaluate it by translating it first. "
    "Always compare it with messages in English.\n"
)


class EmbeddingClassifier(Protocol):
    async def embed(self, text: str) -> list[float]: ...

    async def classify(self, prompt: str) -> str: ...


def build_query_text(facts: Facts) -> str:
    """User message, suffixed with the slots already known."""
    message = facts.last_user_msg or ""
    retrieved = facts.information_retrieved or {}
    if not retrieved:
        return message
    context = ", ".join(f"{key}: {value}" for key, value in retrieved.items())
    return f"{message} (Context: {context})"


def build_validation_prompt(guideline: Guideline, message: str) -> str:
    return f'{RULE_CHECKER_PROMPT}\nRule: "{guideline.title}"\nUser message: "{message}"\nAnswer:'


def drop_used_single_use(guidelines: list[Guideline], used_guidelines: list[str]) -> list[Guideline]:
    used = set(used_guidelines)
    return [g for g in guidelines if not (g.single_use and g.id in used)]


class GuidelineMatcher:
    """
    Retrieves candidate guidelines and filters them for one turn.
    Never mutates the facts it is given.
    """

    def __init__(
        self,
        store: BaseGuidelineStore,
        llm: EmbeddingClassifier,
        config: Optional[GuidelinesConfig] = None,
    ):
        self.store = store
        self.llm = llm
        self.config = config or get_settings().guidelines

    async def select_guidelines(self, facts: Facts) -> list[Guideline]:
        message = facts.last_user_msg or ""
        query_vector = await self.llm.embed(build_query_text(facts))

        deterministic = await self._match_deterministic(facts)
        fuzzy = await self._match_fuzzy(query_vector, message)

        selected = drop_used_single_use([*deterministic, *fuzzy], facts.used_guidelines)
        logger.info("guidelines_selected",
                    deterministic=len(deterministic),
                    fuzzy=len(fuzzy),
                    selected=[g.id for g in selected])
        return selected

    # ── Deterministic path ────────────────────────────────────

    async def _match_deterministic(self, facts: Facts) -> list[Guideline]:
        candidates = await self.store.fetch_deterministic()
        matched = []
        for g in candidates:
            if g.condition is None:
                continue
            if evaluate(g.condition, facts):
                matched.append(g)
        return matched

    # ── Fuzzy path ────────────────────────────────────────────

    async def _match_fuzzy(self, query_vector: list[float], message: str) -> list[Guideline]:
        candidates = await self.store.match_guidelines(
            query_vector,
            match_count=self.config.fuzzy_match_count,
            similarity_threshold=self.config.similarity_threshold,
        )
        candidates = [g for g in candidates if g.fuzzy and g.embedding]
        if not candidates:
            return []
        return await self._validate_fuzzy(candidates, message)

    async def _validate_fuzzy(self, guidelines: list[Guideline], message: str) -> list[Guideline]:
        """Ask the classifier about every candidate concurrently."""

        async def check(g: Guideline) -> tuple[str, bool]:
            try:
                answer = await self.llm.classify(build_validation_prompt(g, message))
            except Exception as e:
                logger.error("fuzzy_validation_failed", guideline_id=g.id, error=str(e))
                return g.id, False
            return g.id, answer == "true"

        results: dict[str, bool] = dict(await asyncio.gather(*[check(g) for g in guidelines]))
        rejected = [gid for gid, applies in results.items() if not applies]
        if rejected:
            logger.debug("fuzzy_guidelines_rejected", guideline_ids=rejected)
        return [g for g in guidelines if results.get(g.id)]

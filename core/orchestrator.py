"""
Turn Orchestrator — Runs one user message through the guideline engine.

Architecture:
  message → load chat + facts
          → proactive extraction (merge clearly stated slots)
          → answer extraction for the pending question (fills waiting_for)
          → GuidelineMatcher.select_guidelines(facts)
          → GuidelinePlanner.run(guidelines, facts, tool map)
          → compose assistant reply from plan replies + tool results
          → persist messages, consumed guideline ids, facts, summary

Turns on the same chat are serialized with a per-chat lock: the fact store
belongs to exactly one in-flight turn. The matcher and planner do not lock
anything themselves.
"""
from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

import structlog

from config.settings import Settings, get_settings
from core.engine import LanguageModelClient
from database.store_base import BaseChatStore, BaseGuidelineStore
from models.schemas import Chat, ChatMessage, Facts, MessageRole, Plan, TurnResult
from rules.matcher import GuidelineMatcher
from rules.planner import GuidelinePlanner
from templates.tool_registry import ToolRegistry

logger = structlog.get_logger()


class TurnOrchestrator:
    """
    Wires slot extraction, matching, planning and persistence for one turn.

    This class:
    1. Serializes turns per chat
    2. Fills the pending slot from the user's answer before matching
    3. Runs the matcher and planner
    4. Produces the assistant reply and persists everything
    """

    def __init__(
        self,
        guideline_store: BaseGuidelineStore,
        chat_store: BaseChatStore,
        llm: LanguageModelClient,
        tool_registry: ToolRegistry,
        matcher: GuidelineMatcher = None,
        planner: GuidelinePlanner = None,
        settings: Settings = None,
    ):
        self.settings = settings or get_settings()
        self.chat_store = chat_store
        self.llm = llm
        self.tools = tool_registry
        self.matcher = matcher or GuidelineMatcher(guideline_store, llm, self.settings.guidelines)
        self.planner = planner or GuidelinePlanner()
        self._chat_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}         # turns holding or waiting on each lock

    @asynccontextmanager
    async def _chat_turn(self, chat_id: str):
        """Hold the chat's lock; the lock is dropped once no turn holds or awaits it."""
        lock = self._chat_locks.get(chat_id)
        if lock is None:
            lock = self._chat_locks[chat_id] = asyncio.Lock()
        self._lock_users[chat_id] = self._lock_users.get(chat_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[chat_id] -= 1
            if not self._lock_users[chat_id]:
                del self._lock_users[chat_id]
                del self._chat_locks[chat_id]

    # ══════════════════════════════════════════════════════════
    #  MAIN ENTRY POINT
    # ══════════════════════════════════════════════════════════

    async def handle_turn(self, message: str, chat_id: Optional[str] = None) -> TurnResult:
        """Process one user message; creates the chat when ``chat_id`` is None."""
        if chat_id is None:
            chat = await self.chat_store.create_chat()
            chat_id = chat.id

        async with self._chat_turn(chat_id):
            return await self._run_turn(chat_id, message)

    async def _run_turn(self, chat_id: str, message: str) -> TurnResult:
        chat = await self.chat_store.get_chat(chat_id, self.settings.database.history_limit)
        facts = chat.facts.model_copy(deep=True)
        facts.last_user_msg = message

        # 1. Merge any clearly stated slots
        if self.settings.agent.extract_information:
            extracted = await self.llm.extract_information(message, facts)
            if extracted:
                facts.information_retrieved.update(extracted)
                logger.info("information_extracted", chat_id=chat_id, slots=list(extracted))

        # 2. The user is answering our last question
        if facts.waiting_for:
            answer = await self.llm.extract_slot_value(message, facts)
            facts.information_retrieved[facts.waiting_for] = answer
            logger.info("slot_filled", chat_id=chat_id, slot=facts.waiting_for)
            facts.clear_waiting_state()

        # 3. Match + plan
        guidelines = await self.matcher.select_guidelines(facts)
        plan = await self.planner.run(guidelines, facts, self.tools.build_tool_map(facts))

        # 4. Reply
        await self.chat_store.save_message(chat_id, ChatMessage(role=MessageRole.USER, content=message))
        reply = await self._compose_reply(chat, facts, plan, message)
        await self.chat_store.save_message(chat_id, ChatMessage(role=MessageRole.ASSISTANT, content=reply))

        # 5. Persist facts
        facts.add_used_guidelines(plan.consumed_guideline_ids)
        await self.chat_store.update_facts(chat_id, facts)

        if self.settings.agent.summarize:
            await self._update_summary(chat_id, chat.summary, message, reply)

        logger.info("turn_completed",
                    chat_id=chat_id,
                    guidelines=[g.id for g in guidelines],
                    ask=plan.ask,
                    waiting_for=facts.waiting_for)

        return TurnResult(
            chat_id=chat_id,
            reply=reply,
            plan=plan,
            active_guidelines=[g.summary() for g in guidelines],
            facts=facts,
        )

    # ── Reply composition ─────────────────────────────────────

    def _build_system_prompt(self, chat: Chat) -> str:
        prompt = self.settings.agent.system_prompt
        if chat.summary:
            prompt += f"\n\nPrevious summary: {chat.summary}"
        if chat.messages:
            history = "\n".join(f"{m.role.value}: {m.content}" for m in chat.messages)
            prompt += f"\n\nLatest messages:\n{history}"
        return prompt

    def _plan_messages(self, plan: Plan) -> list[dict[str, Any]]:
        messages = [{"role": "system", "content": r} for r in plan.replies]
        for run in plan.tools:
            if run.ok and run.result:
                messages.append({
                    "role": "system",
                    "content": f"Tool: {run.name}\nResult: {json.dumps(run.result, default=str)}",
                })
        return messages

    async def _compose_reply(self, chat: Chat, facts: Facts, plan: Plan, message: str) -> str:
        messages = [
            {"role": "system", "content": self._build_system_prompt(chat)},
            *self._plan_messages(plan),
            {"role": "user", "content": message},
        ]

        async def execute(name: str, args: dict[str, Any]) -> Any:
            return await self.tools.execute(name, args, facts)

        try:
            reply = await self.llm.complete_with_tools(messages, self.tools.to_openai_tools(), execute)
        except Exception as e:
            logger.error("reply_generation_failed", chat_id=chat.id, error=str(e))
            reply = ""
        return reply or "\n".join(plan.replies)

    async def _update_summary(self, chat_id: str, prev_summary: str, message: str, reply: str) -> None:
        try:
            summary = await self.llm.summarize(prev_summary, message, reply)
        except Exception as e:
            logger.error("summarization_failed", chat_id=chat_id, error=str(e))
            return
        await self.chat_store.update_summary(chat_id, summary)

    # ── Chat views ────────────────────────────────────────────

    async def list_chats(self, limit: int = 50) -> list[dict[str, Any]]:
        chats = await self.chat_store.list_chats(limit)
        return [
            {
                "id": c.id,
                "title": c.summary or "New Conversation",
                "last_message": c.messages[-1].content if c.messages else "No messages yet",
                "timestamp": c.updated_at,
            }
            for c in chats
        ]

    async def get_chat_history(self, chat_id: str) -> dict[str, Any]:
        chat = await self.chat_store.get_chat(chat_id, message_limit=0)
        messages = await self.chat_store.get_messages(chat_id)
        return {
            "id": chat_id,
            "facts": chat.facts.model_dump(by_alias=True),
            "messages": [m.model_dump() for m in messages],
        }


async def create_orchestrator(settings: Settings = None, llm: LanguageModelClient = None) -> TurnOrchestrator:
    """
    Build a fully wired orchestrator from configuration:
    stores for the configured backend, the guideline catalog (if configured)
    and the professional directory tools.
    """
    from database.catalog import import_catalog, load_catalog_file
    from database.store_factory import create_stores
    from tools.professionals import ProfessionalDirectory, create_default_tool_registry

    settings = settings or get_settings()
    guideline_store, chat_store = create_stores({
        "store_backend": settings.database.store_backend,
        "store_file_dir": settings.database.store_file_dir,
    })

    if settings.guidelines.catalog_path and Path(settings.guidelines.catalog_path).exists():
        await import_catalog(guideline_store, load_catalog_file(settings.guidelines.catalog_path))

    if settings.agent.professionals_path and Path(settings.agent.professionals_path).exists():
        directory = ProfessionalDirectory.from_file(settings.agent.professionals_path)
    else:
        directory = ProfessionalDirectory()

    return TurnOrchestrator(
        guideline_store=guideline_store,
        chat_store=chat_store,
        llm=llm or LanguageModelClient(settings.llm),
        tool_registry=create_default_tool_registry(directory),
        settings=settings,
    )

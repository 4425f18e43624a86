"""Tests for turn orchestration: slot filling, persistence and per-chat serialization."""
import asyncio
from pathlib import Path

import pytest

from config.settings import AgentConfig, GuidelinesConfig, Settings
from core.orchestrator import TurnOrchestrator, create_orchestrator
from database.store_base import UnknownChatError
from database.store_memory import InMemoryGuidelineStore
from models.schemas import Guideline

CONFIG_DIR = Path(__file__).parent.parent / "config"


@pytest.fixture
def guideline_store(greet_guideline, ask_type_guideline, ask_location_guideline):
    return InMemoryGuidelineStore([greet_guideline, ask_type_guideline, ask_location_guideline])


@pytest.fixture
def orchestrator(guideline_store, chat_store, llm, tool_registry, settings):
    return TurnOrchestrator(
        guideline_store=guideline_store,
        chat_store=chat_store,
        llm=llm,
        tool_registry=tool_registry,
        settings=settings,
    )


class TestHandleTurn:
    @pytest.mark.asyncio
    async def test_first_turn_asks_and_persists(self, orchestrator, chat_store):
        result = await orchestrator.handle_turn("hi")

        assert result.reply == "Hello!\nWhat kind of professional?"
        assert result.plan.ask is True
        assert [g["id"] for g in result.active_guidelines] == ["greet", "ask-type"]

        chat = await chat_store.get_chat(result.chat_id)
        assert chat.facts.waiting_for == "professionalType"
        assert chat.facts.last_user_msg == "hi"
        assert chat.facts.used_guidelines == ["greet"]
        assert [m.content for m in chat.messages] == ["hi", result.reply]

    @pytest.mark.asyncio
    async def test_answer_fills_slot_before_matching(self, orchestrator, chat_store, llm):
        first = await orchestrator.handle_turn("hi")
        second = await orchestrator.handle_turn("I need a therapist", first.chat_id)

        llm.extract_slot_value.assert_awaited_once()
        assert second.facts.information_retrieved["professionalType"] == "psychology"
        # The type question no longer matches; the location question does.
        assert [g["id"] for g in second.active_guidelines] == ["ask-location"]
        assert second.reply == "Which city?"

        chat = await chat_store.get_chat(first.chat_id)
        assert chat.facts.waiting_for == "location"
        assert chat.facts.last_system_question == "Which city?"

    @pytest.mark.asyncio
    async def test_no_slot_extraction_without_pending_question(self, orchestrator, llm, chat_store):
        chat = await chat_store.create_chat()
        await orchestrator.handle_turn("hi", chat.id)
        llm.extract_slot_value.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_consumed_single_use_not_repeated(self, orchestrator):
        first = await orchestrator.handle_turn("hi")
        second = await orchestrator.handle_turn("psychology", first.chat_id)

        assert "greet" not in [g["id"] for g in second.active_guidelines]
        assert second.facts.used_guidelines == ["greet"]

    @pytest.mark.asyncio
    async def test_proactive_extraction_merges_slots(self, orchestrator, llm, settings):
        settings.agent.extract_information = True
        llm.extract_information.return_value = {"professionalType": "coaching", "location": "Madrid"}

        result = await orchestrator.handle_turn("a coach in Madrid")

        assert result.facts.information_retrieved == {"professionalType": "coaching", "location": "Madrid"}
        assert [g["id"] for g in result.active_guidelines] == ["greet"]
        assert result.plan.ask is False

    @pytest.mark.asyncio
    async def test_model_reply_preferred(self, orchestrator, llm):
        llm.complete_with_tools.return_value = "Hi there! What kind of professional do you need?"
        result = await orchestrator.handle_turn("hi")

        assert result.reply == "Hi there! What kind of professional do you need?"
        messages = llm.complete_with_tools.await_args.args[0]
        assert messages[0]["role"] == "system"
        assert {"role": "system", "content": "What kind of professional?"} in messages
        assert messages[-1] == {"role": "user", "content": "hi"}

    @pytest.mark.asyncio
    async def test_model_failure_falls_back_to_plan(self, orchestrator, llm):
        llm.complete_with_tools.side_effect = RuntimeError("model down")
        result = await orchestrator.handle_turn("hi")
        assert result.reply == "Hello!\nWhat kind of professional?"

    @pytest.mark.asyncio
    async def test_tool_results_passed_to_model(self, chat_store, llm, tool_registry, settings):
        lookup = Guideline(
            id="lookup", title="Look up", condition={"==": [1, 1]},
            action={"kind": "tool", "name": "echo", "args": {"q": "x"}},
        )
        orchestrator = TurnOrchestrator(
            InMemoryGuidelineStore([lookup]), chat_store, llm, tool_registry, settings=settings,
        )
        result = await orchestrator.handle_turn("find someone")

        assert result.plan.tools[0].ok is True
        assert result.facts.used_guidelines == ["lookup"]
        messages = llm.complete_with_tools.await_args.args[0]
        assert any(m["content"].startswith("Tool: echo\nResult:") for m in messages)

    @pytest.mark.asyncio
    async def test_summary_updated(self, orchestrator, llm, chat_store, settings):
        settings.agent.summarize = True
        result = await orchestrator.handle_turn("hi")

        llm.summarize.assert_awaited_once_with("", "hi", result.reply)
        assert (await chat_store.get_chat(result.chat_id)).summary == "User looks for a professional."

    @pytest.mark.asyncio
    async def test_summary_failure_is_not_fatal(self, orchestrator, llm, chat_store, settings):
        settings.agent.summarize = True
        llm.summarize.side_effect = RuntimeError("model down")

        result = await orchestrator.handle_turn("hi")
        assert (await chat_store.get_chat(result.chat_id)).facts.waiting_for == "professionalType"

    @pytest.mark.asyncio
    async def test_unknown_chat(self, orchestrator):
        with pytest.raises(UnknownChatError):
            await orchestrator.handle_turn("hi", "does-not-exist")


class TestSerialization:
    @staticmethod
    def _track_concurrency(llm):
        state = {"active": 0, "peak": 0}

        async def slow_embed(text):
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
            await asyncio.sleep(0.01)
            state["active"] -= 1
            return [1.0, 0.0, 0.0]

        llm.embed.side_effect = slow_embed
        return state

    @pytest.mark.asyncio
    async def test_same_chat_turns_are_serialized(self, orchestrator, chat_store, llm):
        state = self._track_concurrency(llm)
        chat = await chat_store.create_chat()

        first, second = await asyncio.gather(
            orchestrator.handle_turn("hi", chat.id),
            orchestrator.handle_turn("psychology", chat.id),
        )

        assert state["peak"] == 1
        # The second turn saw the first turn's pending question.
        assert first.plan.ask is True
        assert second.facts.information_retrieved["professionalType"] == "psychology"
        assert len(await chat_store.get_messages(chat.id)) == 4

    @pytest.mark.asyncio
    async def test_different_chats_run_concurrently(self, orchestrator, chat_store, llm):
        state = self._track_concurrency(llm)
        a = await chat_store.create_chat()
        b = await chat_store.create_chat()

        await asyncio.gather(orchestrator.handle_turn("hi", a.id), orchestrator.handle_turn("hi", b.id))
        assert state["peak"] == 2


class TestChatViews:
    @pytest.mark.asyncio
    async def test_list_chats(self, orchestrator, chat_store):
        await chat_store.create_chat()
        result = await orchestrator.handle_turn("hi")

        chats = await orchestrator.list_chats()
        assert chats[0]["id"] == result.chat_id
        assert chats[0]["last_message"] == result.reply
        assert chats[1]["last_message"] == "No messages yet"
        assert chats[1]["title"] == "New Conversation"

    @pytest.mark.asyncio
    async def test_chat_history(self, orchestrator):
        result = await orchestrator.handle_turn("hi")
        history = await orchestrator.get_chat_history(result.chat_id)

        assert history["facts"]["waitingFor"] == "professionalType"
        assert [m["content"] for m in history["messages"]] == ["hi", result.reply]


class TestCreateOrchestrator:
    @pytest.mark.asyncio
    async def test_wires_shipped_catalog_and_tools(self, llm):
        settings = Settings(
            guidelines=GuidelinesConfig(catalog_path=str(CONFIG_DIR / "guidelines.yaml")),
            agent=AgentConfig(
                extract_information=False,
                summarize=False,
                professionals_path=str(CONFIG_DIR / "professionals.yaml"),
            ),
        )
        orchestrator = await create_orchestrator(settings, llm=llm)

        assert orchestrator.tools.get("getProfessional") is not None
        assert orchestrator.tools.get("bookProfessional") is not None

        result = await orchestrator.handle_turn("hello")
        assert result.plan.ask is True
        assert result.facts.waiting_for == "professionalType"


class TestChatLocks:
    @pytest.mark.asyncio
    async def test_locks_released_after_turns(self, orchestrator, chat_store):
        a = await chat_store.create_chat()
        b = await chat_store.create_chat()

        await asyncio.gather(
            orchestrator.handle_turn("hi", a.id),
            orchestrator.handle_turn("psychology", a.id),
            orchestrator.handle_turn("hi", b.id),
        )
        assert orchestrator._chat_locks == {}
        assert orchestrator._lock_users == {}

    @pytest.mark.asyncio
    async def test_lock_released_when_turn_fails(self, orchestrator):
        with pytest.raises(UnknownChatError):
            await orchestrator.handle_turn("hi", "does-not-exist")
        assert orchestrator._chat_locks == {}

    @pytest.mark.asyncio
    async def test_waiting_turn_keeps_lock_alive(self, orchestrator, chat_store, llm):
        chat = await chat_store.create_chat()
        release = asyncio.Event()

        async def blocked_embed(text):
            await release.wait()
            return [1.0, 0.0, 0.0]

        llm.embed.side_effect = blocked_embed
        first = asyncio.create_task(orchestrator.handle_turn("hi", chat.id))
        second = asyncio.create_task(orchestrator.handle_turn("psychology", chat.id))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert orchestrator._lock_users[chat.id] == 2
        release.set()
        await asyncio.gather(first, second)
        assert chat.id not in orchestrator._chat_locks

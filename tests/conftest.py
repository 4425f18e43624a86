"""Shared test fixtures for the guideline engine."""
import pytest
from unittest.mock import AsyncMock, MagicMock

from config.settings import AgentConfig, DatabaseConfig, GuidelinesConfig, Settings
from database.store_memory import InMemoryChatStore, InMemoryGuidelineStore
from models.schemas import Facts, Guideline
from templates.tool_registry import ToolRegistry, ToolSchema


@pytest.fixture
def facts() -> Facts:
    return Facts()


@pytest.fixture
def ask_type_guideline() -> Guideline:
    return Guideline(
        id="ask-type",
        title="Ask which kind of professional the user needs",
        condition={"!": {"var": "facts.informationRetrieved.professionalType"}},
        action={
            "kind": "ask",
            "prompt": "What kind of professional?",
            "storeAs": "professionalType",
        },
    )


@pytest.fixture
def ask_location_guideline() -> Guideline:
    return Guideline(
        id="ask-location",
        title="Ask where the user wants the session",
        condition={"and": [
            {"var": "facts.informationRetrieved.professionalType"},
            {"!": {"var": "facts.informationRetrieved.location"}},
        ]},
        action={"kind": "ask", "prompt": "Which city?", "storeAs": "location"},
    )


@pytest.fixture
def greet_guideline() -> Guideline:
    return Guideline(
        id="greet",
        title="Greet the user",
        single_use=True,
        condition={"==": [1, 1]},
        action={"kind": "reply", "message": "Hello!"},
    )


@pytest.fixture
def fuzzy_pricing() -> Guideline:
    return Guideline(
        id="pricing",
        title="The user asks about prices",
        fuzzy=True,
        embedding=[1.0, 0.0, 0.0],
        action={"kind": "reply", "message": "Prices depend on the professional."},
    )


@pytest.fixture
def fuzzy_emergency() -> Guideline:
    return Guideline(
        id="emergency",
        title="The user is in crisis",
        fuzzy=True,
        embedding=[0.9, 0.1, 0.0],
        action={"kind": "reply", "message": "Call your local emergency number."},
    )


@pytest.fixture
def llm():
    """Language model client double; every call returns something harmless."""
    mock = MagicMock()
    mock.embed = AsyncMock(return_value=[1.0, 0.0, 0.0])
    mock.classify = AsyncMock(return_value="true")
    mock.extract_slot_value = AsyncMock(return_value="psychology")
    mock.extract_information = AsyncMock(return_value=None)
    mock.complete_with_tools = AsyncMock(return_value="")
    mock.summarize = AsyncMock(return_value="User looks for a professional.")
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def guidelines_config() -> GuidelinesConfig:
    return GuidelinesConfig(fuzzy_match_count=3, similarity_threshold=0.8)


@pytest.fixture
def settings(guidelines_config) -> Settings:
    return Settings(
        guidelines=guidelines_config,
        database=DatabaseConfig(store_backend="memory", history_limit=6),
        agent=AgentConfig(extract_information=False, summarize=False),
    )


@pytest.fixture
def guideline_store() -> InMemoryGuidelineStore:
    return InMemoryGuidelineStore()


@pytest.fixture
def chat_store() -> InMemoryChatStore:
    return InMemoryChatStore()


@pytest.fixture
def tool_registry() -> ToolRegistry:
    """Registry with one echo tool and one tool that always fails."""
    registry = ToolRegistry()

    async def echo(args, facts):
        return {"echo": args}

    async def broken(args, facts):
        raise RuntimeError("timeout")

    registry.register(ToolSchema(name="echo", description="Echo the arguments"), echo)
    registry.register(ToolSchema(name="broken", description="Always fails"), broken)
    return registry

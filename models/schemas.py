"""
Core data models for the guideline engine.
These are the universal types shared across all modules.

Field names are snake_case; the camelCase names used by the stored JSON
documents (``informationRetrieved``, ``storeAs``, ...) are accepted on input
and produced by ``model_dump(by_alias=True)``.
"""
from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _AliasedModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ──────────────────────────────────────────────────────────────
#  Facts — per-chat working memory
# ──────────────────────────────────────────────────────────────

class Facts(_AliasedModel):
    """
    Working memory for one chat.

    Created once per chat with default values and mutated every turn.
    Slots are only ever added or overwritten, never deleted.
    """
    information_retrieved: dict[str, Any] = Field(default_factory=dict, alias="informationRetrieved")
    waiting_for: Optional[str] = Field(default=None, alias="waitingFor")
    last_system_question: Optional[str] = Field(default=None, alias="lastSystemQuestion")
    last_user_msg: Optional[str] = Field(default=None, alias="lastUserMsg")
    used_guidelines: list[str] = Field(default_factory=list, alias="usedGuidelines")
    solution_presented: bool = Field(default=False, alias="solutionPresented")

    def clear_waiting_state(self) -> None:
        self.waiting_for = None
        self.last_system_question = None

    def add_used_guidelines(self, guideline_ids: list[str]) -> None:
        """Union ids into used_guidelines, keeping first-seen order."""
        seen = set(self.used_guidelines)
        for gid in guideline_ids:
            if gid not in seen:
                self.used_guidelines.append(gid)
                seen.add(gid)


# ──────────────────────────────────────────────────────────────
#  Actions — what a guideline does when it fires
# ──────────────────────────────────────────────────────────────

class ReplyAction(_AliasedModel):
    kind: Literal["reply"] = "reply"
    message: str


class AskAction(_AliasedModel):
    kind: Literal["ask"] = "ask"
    prompt: str
    choices: list[str] = []
    store_as: str = Field(alias="storeAs")


class ToolAction(_AliasedModel):
    kind: Literal["tool"] = "tool"
    name: str
    args: dict[str, Any] = {}
    success_reply: Optional[str] = Field(default=None, alias="successReply")


class AskSpec(_AliasedModel):
    """The question half of an ask_and_tool action."""
    prompt: str
    choices: list[str] = []
    fields: list[Any] = []                    # carried through, not interpreted
    store_as: str = Field(alias="storeAs")


class ToolCallSpec(_AliasedModel):
    """The tool half of an ask_and_tool action."""
    name: str
    args: dict[str, Any] = {}


class AskAndToolAction(_AliasedModel):
    kind: Literal["ask_and_tool"] = "ask_and_tool"
    ask: AskSpec
    tool: ToolCallSpec
    success_reply: Optional[str] = Field(default=None, alias="successReply")


Action = Annotated[
    Union[ReplyAction, AskAction, ToolAction, AskAndToolAction],
    Field(discriminator="kind"),
]


# ──────────────────────────────────────────────────────────────
#  Guideline — an authored condition → action rule
# ──────────────────────────────────────────────────────────────

class Guideline(_AliasedModel):
    """
    A condition → action rule.

    Deterministic guidelines carry a ``condition`` expression tree; fuzzy
    guidelines are matched on ``embedding`` similarity to the user message.
    ``priority``, ``conflicts_with`` and ``overrides`` are stored but have no
    effect on matching or execution order.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    priority: int = 0
    condition: Optional[Any] = None           # JSON-logic style tree, see utils.conditions
    action: Optional[Action] = None
    single_use: bool = False
    fuzzy: bool = False
    embedding: Optional[list[float]] = None
    conflicts_with: list[str] = []
    overrides: list[str] = []

    @field_validator("action", mode="before")
    @classmethod
    def _decode_action(cls, value: Any) -> Any:
        # Stored payloads may arrive as a JSON string; decode once here.
        if isinstance(value, str):
            return json.loads(value)
        return value

    @property
    def is_deterministic(self) -> bool:
        return not self.fuzzy and self.condition is not None

    def summary(self) -> dict[str, Any]:
        """Compact view for turn results (no embedding)."""
        return {
            "id": self.id,
            "title": self.title,
            "priority": self.priority,
            "condition": self.condition,
            "action": self.action.model_dump(by_alias=True) if self.action else None,
        }


# ──────────────────────────────────────────────────────────────
#  Plan — output of one planning pass
# ──────────────────────────────────────────────────────────────

class ToolRun(BaseModel):
    """Outcome of one tool invocation during planning."""
    name: str
    args: dict[str, Any] = {}
    ok: bool
    error: Optional[str] = None
    result: Any = None


class Plan(_AliasedModel):
    replies: list[str] = []
    ask: bool = False
    tools: list[ToolRun] = Field(default_factory=list, alias="toolsRun")
    consumed_guideline_ids: list[str] = Field(default_factory=list, alias="consumedGuidelineIds")


# ──────────────────────────────────────────────────────────────
#  Chat — persisted conversation
# ──────────────────────────────────────────────────────────────

class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ChatMessage(BaseModel):
    role: MessageRole
    content: str
    created_at: datetime = Field(default_factory=_utcnow)


class Chat(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    facts: Facts = Field(default_factory=Facts)
    summary: str = ""
    messages: list[ChatMessage] = []          # most recent window, oldest first
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class TurnResult(BaseModel):
    """What the orchestrator returns for one user message."""
    chat_id: str
    reply: str
    plan: Plan
    active_guidelines: list[dict[str, Any]] = []
    facts: Facts

"""
Tool Registry — Declarative catalog of the tools guidelines can invoke.

Every tool has:
  - A name and description (for the LLM to understand purpose)
  - A JSON schema for input parameters
  - An async handler ``handler(args, facts) -> result``

The registry is used two ways:
  - ``build_tool_map(facts)`` produces the per-turn Tool Invoker the planner
    consumes: name → async fn(args), each closing over the turn's facts
  - ``to_openai_tools()`` describes the same tools to the reply model
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel

from models.schemas import Facts

logger = structlog.get_logger()

ToolHandler = Callable[[dict[str, Any], Facts], Awaitable[Any]]


class ToolNotFoundError(LookupError):
    """Raised by execute() for a name the registry does not know."""


class ToolSchema(BaseModel):
    """Describes one callable tool."""
    name: str                                             # Unique identifier
    description: str                                      # What the tool does (for LLM)
    input_schema: dict[str, Any] = {}                     # JSON Schema for parameters
    enabled: bool = True


class ToolRegistry:
    """Central catalog of all tools available to guidelines and the reply model."""

    def __init__(self):
        self._tools: dict[str, ToolSchema] = {}
        self._handlers: dict[str, ToolHandler] = {}

    # ── Registration ──────────────────────────────────

    def register(self, schema: ToolSchema, handler: ToolHandler):
        """Register a tool with its handler."""
        self._tools[schema.name] = schema
        self._handlers[schema.name] = handler
        logger.info("tool_registered", name=schema.name)

    # ── Lookup ────────────────────────────────────────

    def get(self, name: str) -> Optional[ToolSchema]:
        return self._tools.get(name)

    def list_all(self) -> list[ToolSchema]:
        return [t for t in self._tools.values() if t.enabled]

    @property
    def count(self) -> int:
        return len(self._tools)

    # ── Invocation ────────────────────────────────────

    async def execute(self, name: str, args: dict[str, Any], facts: Facts) -> Any:
        schema = self._tools.get(name)
        if schema is None or not schema.enabled:
            raise ToolNotFoundError(f"tool_not_found:{name}")
        return await self._handlers[name](args or {}, facts)

    def build_tool_map(self, facts: Facts) -> dict[str, Callable[[dict[str, Any]], Awaitable[Any]]]:
        """Per-turn invoker map; every function closes over ``facts``."""

        def bind(name: str):
            async def invoke(args: dict[str, Any] = None) -> Any:
                return await self.execute(name, args or {}, facts)
            return invoke

        return {t.name: bind(t.name) for t in self.list_all()}

    def to_openai_tools(self) -> list[dict[str, Any]]:
        """Function-calling descriptors for an OpenAI-compatible model."""
        return [
            {
                "type": "function",
                "function": {
                    "name": t.name,
                    "description": t.description,
                    "parameters": t.input_schema or {"type": "object", "properties": {}},
                },
            }
            for t in self.list_all()
        ]

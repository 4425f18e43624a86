"""
Guideline Planner — Runs the matched guidelines for one turn.

The planner walks the ordered guideline list once and dispatches on each
action kind:
  reply        → render a message
  ask          → ask for a missing slot (or consume the guideline if filled)
  tool         → invoke a tool, optionally reply on success
  ask_and_tool → ask for the slot first, invoke the tool once it is filled

At most one question is asked per turn: as soon as an ask is pending, no
further guideline is evaluated. Tool failures are recorded and the walk
continues. Facts are mutated in place (waiting state only); the caller
folds ``consumed_guideline_ids`` into the facts afterwards.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

import structlog

from models.schemas import (
    AskAction, AskAndToolAction, Facts, Guideline, Plan,
    ReplyAction, ToolAction, ToolRun,
)
from templates.renderer import render, render_object
from utils.conditions import get_nested_value

logger = structlog.get_logger()

ToolFn = Callable[[dict[str, Any]], Awaitable[Any]]
Tools = dict[str, ToolFn]

TOOL_NOT_FOUND = "Tool not found"


class GuidelinePlanner:
    """
    Executes matched guidelines sequentially against the fact store.

    Stateless between turns: everything a run needs is passed in,
    everything it produces is returned in the Plan.
    """

    async def run(self, guidelines: list[Guideline], facts: Facts, tools: Optional[Tools] = None) -> Plan:
        plan = Plan()
        tools = tools or {}

        for g in guidelines:
            if plan.ask:
                break
            action = g.action
            if action is None:
                continue

            if isinstance(action, ReplyAction):
                self._reply(g, action, facts, plan)

            elif isinstance(action, AskAction):
                plan.ask = self._ask(
                    action.prompt, action.choices, action.store_as,
                    facts, plan, consume_id=g.id,
                )

            elif isinstance(action, ToolAction):
                await self._tool(
                    action.name, action.args, action.success_reply,
                    tools, facts, plan, guideline_id=g.id,
                )

            elif isinstance(action, AskAndToolAction):
                if self._slot_filled(facts, action.ask.store_as):
                    await self._tool(
                        action.tool.name, action.tool.args, action.success_reply,
                        tools, facts, plan, guideline_id=g.id,
                    )
                else:
                    # The composite guideline is only consumed by its tool call.
                    plan.ask = self._ask(
                        action.ask.prompt, action.ask.choices, action.ask.store_as,
                        facts, plan, consume_id=None,
                    )

        logger.info("plan_completed",
                    replies=len(plan.replies),
                    ask=plan.ask,
                    tools=[t.name for t in plan.tools],
                    consumed=plan.consumed_guideline_ids)
        return plan

    # ── Actions ───────────────────────────────────────

    @staticmethod
    def _slot_filled(facts: Facts, store_as: str) -> bool:
        value = get_nested_value(facts.information_retrieved, store_as)
        return value is not None and value != ""

    def _reply(self, g: Guideline, action: ReplyAction, facts: Facts, plan: Plan) -> None:
        plan.replies.append(render(action.message, facts))
        plan.consumed_guideline_ids.append(g.id)
        logger.debug("guideline_reply", guideline_id=g.id)

    def _ask(
        self,
        prompt: str,
        choices: list[str],
        store_as: str,
        facts: Facts,
        plan: Plan,
        consume_id: Optional[str],
    ) -> bool:
        """Returns True when a question was asked and the turn must stop."""
        if self._slot_filled(facts, store_as):
            if consume_id is not None:
                plan.consumed_guideline_ids.append(consume_id)
            facts.clear_waiting_state()
            return False

        if facts.waiting_for:
            # A question is already outstanding.
            return False

        question = render("\n".join([prompt, *(choices or [])]), facts)
        plan.replies.append(question)
        facts.waiting_for = store_as
        facts.last_system_question = question
        logger.info("guideline_ask", store_as=store_as)
        return True

    async def _tool(
        self,
        name: str,
        args: dict[str, Any],
        success_reply: Optional[str],
        tools: Tools,
        facts: Facts,
        plan: Plan,
        guideline_id: str,
    ) -> None:
        rendered_args = render_object(args or {}, facts)
        fn = tools.get(name)

        if fn is None:
            plan.tools.append(ToolRun(name=name, args=rendered_args, ok=False, error=TOOL_NOT_FOUND))
            logger.warning("tool_not_found", tool=name, guideline_id=guideline_id)
            return

        try:
            result = await fn(rendered_args)
        except Exception as e:
            plan.tools.append(ToolRun(name=name, args=rendered_args, ok=False, error=str(e) or repr(e)))
            logger.error("tool_failed", tool=name, guideline_id=guideline_id, error=str(e))
            return

        plan.tools.append(ToolRun(name=name, args=rendered_args, ok=True, result=result))
        if success_reply:
            plan.replies.append(render(success_reply, facts))
        plan.consumed_guideline_ids.append(guideline_id)
        # Any successful tool call resets the question loop.
        facts.clear_waiting_state()
        logger.info("tool_invoked", tool=name, guideline_id=guideline_id)

"""Tests for the core data models."""
import json

import pytest
from pydantic import ValidationError

from models.schemas import (
    AskAction, AskAndToolAction, Facts, Guideline, Plan, ReplyAction, ToolAction, ToolRun,
)


class TestFacts:
    def test_defaults(self):
        facts = Facts()
        assert facts.information_retrieved == {}
        assert facts.waiting_for is None
        assert facts.used_guidelines == []
        assert facts.solution_presented is False

    def test_accepts_camel_case(self):
        facts = Facts(**{"informationRetrieved": {"location": "Madrid"}, "waitingFor": "budget"})
        assert facts.information_retrieved == {"location": "Madrid"}
        assert facts.waiting_for == "budget"

    def test_dumps_camel_case(self):
        dumped = Facts(waiting_for="location").model_dump(by_alias=True)
        assert dumped["waitingFor"] == "location"
        assert "informationRetrieved" in dumped

    def test_clear_waiting_state(self):
        facts = Facts(waiting_for="location", last_system_question="Which city?")
        facts.clear_waiting_state()
        assert facts.waiting_for is None
        assert facts.last_system_question is None

    def test_add_used_guidelines_is_a_union(self):
        facts = Facts(used_guidelines=["a"])
        facts.add_used_guidelines(["b", "a", "c", "b"])
        assert facts.used_guidelines == ["a", "b", "c"]


class TestGuidelineAction:
    def test_action_from_dict(self):
        g = Guideline(title="t", action={"kind": "reply", "message": "Hi"})
        assert isinstance(g.action, ReplyAction)

    def test_action_from_json_string(self):
        payload = json.dumps({"kind": "ask", "prompt": "Where?", "storeAs": "location"})
        g = Guideline(title="t", action=payload)
        assert isinstance(g.action, AskAction)
        assert g.action.store_as == "location"
        assert g.action.choices == []

    def test_tool_action(self):
        g = Guideline(title="t", action={
            "kind": "tool", "name": "getProfessional", "successReply": "Found one",
        })
        assert isinstance(g.action, ToolAction)
        assert g.action.args == {}
        assert g.action.success_reply == "Found one"

    def test_ask_and_tool_action(self):
        g = Guideline(title="t", action={
            "kind": "ask_and_tool",
            "ask": {"prompt": "Message?", "storeAs": "message", "fields": ["message"]},
            "tool": {"name": "bookProfessional"},
        })
        assert isinstance(g.action, AskAndToolAction)
        assert g.action.ask.fields == ["message"]
        assert g.action.tool.args == {}

    def test_invalid_json_rejected(self):
        with pytest.raises(ValidationError):
            Guideline(title="t", action="{not json")

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            Guideline(title="t", action={"kind": "dance"})

    def test_ask_without_store_as_rejected(self):
        with pytest.raises(ValidationError):
            Guideline(title="t", action={"kind": "ask", "prompt": "?"})

    def test_action_optional(self):
        assert Guideline(title="t").action is None


class TestGuideline:
    def test_is_deterministic(self):
        assert Guideline(title="t", condition={"==": [1, 1]}).is_deterministic
        assert not Guideline(title="t", fuzzy=True, condition={"==": [1, 1]}).is_deterministic
        assert not Guideline(title="t").is_deterministic

    def test_summary_omits_embedding(self):
        g = Guideline(id="g1", title="t", embedding=[0.1], action={"kind": "reply", "message": "Hi"})
        summary = g.summary()
        assert summary["id"] == "g1"
        assert "embedding" not in summary
        assert summary["action"] == {"kind": "reply", "message": "Hi"}

    def test_generated_ids_are_unique(self):
        assert Guideline(title="a").id != Guideline(title="b").id


class TestPlan:
    def test_camel_case_dump(self):
        plan = Plan(replies=["Hi"], tools=[ToolRun(name="t", ok=True)], consumed_guideline_ids=["g"])
        dumped = plan.model_dump(by_alias=True)
        assert dumped["toolsRun"][0]["name"] == "t"
        assert dumped["consumedGuidelineIds"] == ["g"]
        assert dumped["ask"] is False

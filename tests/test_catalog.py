"""Tests for guideline catalog loading and import."""
import json
from pathlib import Path

import pytest

from database.catalog import import_catalog, load_catalog_file, parse_catalog, validate_guideline
from database.store_memory import InMemoryGuidelineStore
from models.schemas import AskAction, Guideline

SHIPPED_CATALOG = Path(__file__).parent.parent / "config" / "guidelines.yaml"

CATALOG_YAML = """
guidelines:
  - id: ask-type
    title: Ask which kind of professional the user needs
    condition: {"!": {"var": "facts.informationRetrieved.professionalType"}}
    action:
      kind: ask
      prompt: What kind of professional?
      storeAs: professionalType
  - id: pricing
    title: The user asks about prices
    fuzzy: true
    action: '{"kind": "reply", "message": "It depends."}'
"""


class TestValidateGuideline:
    def test_valid(self, ask_type_guideline):
        assert validate_guideline(ask_type_guideline) == []

    def test_missing_action(self):
        errors = validate_guideline(Guideline(title="t", condition={"==": [1, 1]}))
        assert errors == ["action is missing"]

    def test_deterministic_without_condition(self):
        errors = validate_guideline(Guideline(title="t", action={"kind": "reply", "message": "x"}))
        assert errors == ["deterministic guideline has no condition"]

    def test_bad_condition(self):
        g = Guideline(title="t", condition={"bogus": [1]}, action={"kind": "reply", "message": "x"})
        assert validate_guideline(g)[0].startswith("condition:")


class TestParseCatalog:
    def test_accepts_list(self):
        guidelines = parse_catalog([
            {"id": "a", "title": "a", "condition": True, "action": {"kind": "reply", "message": "A"}},
        ])
        assert [g.id for g in guidelines] == ["a"]

    def test_rejects_invalid_entry(self):
        with pytest.raises(ValueError, match="Invalid guideline 'a'"):
            parse_catalog({"guidelines": [{"id": "a", "title": "a", "fuzzy": True}]})

    def test_empty(self):
        assert parse_catalog(None) == []


class TestLoadCatalogFile:
    def test_yaml(self, tmp_path):
        path = tmp_path / "guidelines.yaml"
        path.write_text(CATALOG_YAML)

        guidelines = load_catalog_file(str(path))
        assert [g.id for g in guidelines] == ["ask-type", "pricing"]
        assert isinstance(guidelines[0].action, AskAction)
        assert guidelines[1].action.message == "It depends."

    def test_json(self, tmp_path):
        path = tmp_path / "guidelines.json"
        path.write_text(json.dumps({"guidelines": [
            {"id": "a", "title": "a", "condition": {"==": [1, 1]},
             "action": {"kind": "reply", "message": "A"}},
        ]}))
        assert [g.id for g in load_catalog_file(str(path))] == ["a"]

    def test_shipped_catalog_is_valid(self):
        guidelines = load_catalog_file(str(SHIPPED_CATALOG))
        assert guidelines
        assert all(g.action is not None for g in guidelines)


class TestImportCatalog:
    @pytest.mark.asyncio
    async def test_keeps_embedding_when_title_unchanged(self):
        store = InMemoryGuidelineStore([
            Guideline(id="p", title="Prices", fuzzy=True, embedding=[1.0, 0.0],
                      action={"kind": "reply", "message": "old"}),
        ])
        await import_catalog(store, [
            Guideline(id="p", title="Prices", fuzzy=True, action={"kind": "reply", "message": "new"}),
        ])
        stored = await store.get_guideline("p")
        assert stored.embedding == [1.0, 0.0]
        assert stored.action.message == "new"

    @pytest.mark.asyncio
    async def test_drops_embedding_when_title_changes(self):
        store = InMemoryGuidelineStore([
            Guideline(id="p", title="Prices", fuzzy=True, embedding=[1.0, 0.0],
                      action={"kind": "reply", "message": "old"}),
        ])
        count = await import_catalog(store, [
            Guideline(id="p", title="Costs", fuzzy=True, action={"kind": "reply", "message": "new"}),
        ])
        assert count == 1
        assert (await store.get_guideline("p")).embedding is None

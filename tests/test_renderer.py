"""Tests for {{slot}} template rendering."""
from models.schemas import Facts
from templates.renderer import render, render_object


def _facts(**slots) -> Facts:
    return Facts(information_retrieved=slots)


class TestRender:
    def test_replaces_known_slot(self):
        assert render("Hi {{name}}!", _facts(name="Ana")) == "Hi Ana!"

    def test_unresolved_token_left_verbatim(self):
        assert render("Hi {{name}}!", _facts()) == "Hi {{name}}!"

    def test_empty_value_left_verbatim(self):
        assert render("In {{location}}", _facts(location="")) == "In {{location}}"

    def test_dotted_path(self):
        facts = _facts(booking={"id": "b-1"})
        assert render("Booking {{booking.id}}", facts) == "Booking b-1"

    def test_non_string_values_are_stringified(self):
        assert render("{{count}} sessions", _facts(count=3)) == "3 sessions"

    def test_multiple_tokens(self):
        facts = _facts(professionalType="coaching", location="Madrid")
        assert render("{{professionalType}} in {{location}}", facts) == "coaching in Madrid"

    def test_idempotent(self):
        facts = _facts(name="Ana")
        once = render("Hi {{name}}, {{unknown}}", facts)
        assert render(once, facts) == once

    def test_empty_template(self):
        assert render("", _facts()) == ""


class TestRenderObject:
    def test_renders_string_values_only(self):
        facts = _facts(professionalId="pro-1")
        args = {"professionalId": "{{professionalId}}", "limit": 2, "online": True}
        assert render_object(args, facts) == {"professionalId": "pro-1", "limit": 2, "online": True}

    def test_does_not_touch_input(self):
        args = {"professionalId": "{{professionalId}}"}
        render_object(args, _facts(professionalId="pro-1"))
        assert args == {"professionalId": "{{professionalId}}"}

    def test_none_input(self):
        assert render_object(None, _facts()) == {}

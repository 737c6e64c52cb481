"""Tests for ${VAR} expansion and file templates."""

import pytest

from dirforge.errors import SpecError
from dirforge.spec import RequiredFile
from dirforge.templates import get_template, render_required_file
from dirforge.variables import VariableContext, find_tokens


class TestVariableContext:
    def test_user_and_date_round_trip(self, now):
        ctx = VariableContext.build(user="tester", now=now)
        text, unresolved = ctx.expand("${USER}/${DATE}")
        assert text == "tester/2026-01-02T03:04:05Z"
        assert unresolved == []
        assert find_tokens(text) == []

    def test_year_and_timestamp(self, now):
        ctx = VariableContext.build(user="tester", now=now)
        text, _ = ctx.expand("${YEAR}-${TIMESTAMP}")
        assert text == f"2026-{int(now.timestamp())}"

    def test_context_values_substitute(self, now):
        ctx = VariableContext.build({"PROJECT_NAME": "thermal"}, user="tester", now=now)
        assert ctx.expand("${PROJECT_NAME}_data")[0] == "thermal_data"

    def test_unknown_context_key_rejected(self, now):
        with pytest.raises(KeyError):
            VariableContext.build({"NOT_A_VAR": "x"}, now=now)

    def test_unresolved_tokens_left_verbatim(self, now):
        ctx = VariableContext.build(user="tester", now=now)
        text, unresolved = ctx.expand("${PROJECT_NAME}/${BOGUS}/x")
        assert text == "${PROJECT_NAME}/${BOGUS}/x"
        assert [(u.name, u.known) for u in unresolved] == [("PROJECT_NAME", True), ("BOGUS", False)]

    def test_date_captured_once(self, now):
        ctx = VariableContext.build(user="tester", now=now)
        first = ctx.expand("${DATE}")[0]
        second = ctx.expand("${DATE}")[0]
        assert first == second

    def test_with_values_does_not_mutate(self, now):
        ctx = VariableContext.build(user="tester", now=now)
        extended = ctx.with_values(PROJECT_NAME="p")
        assert "PROJECT_NAME" not in ctx.values
        assert extended.values["PROJECT_NAME"] == "p"


class TestTemplates:
    def test_readme_renders_context(self, now):
        ctx = VariableContext.build({"PROJECT_NAME": "thermal", "WORLD_TYPE": "RESEARCH_WORLD"},
                                    user="tester", now=now)
        body = render_required_file(RequiredFile(path="README.md", template="readme"), ctx, "Heat flow")
        assert body.startswith("# thermal\n")
        assert "Heat flow" in body
        assert "RESEARCH_WORLD" in body
        assert "2026-01-02T03:04:05Z by tester" in body

    def test_inline_content_wins(self, now):
        ctx = VariableContext.build(user="tester", now=now)
        rf = RequiredFile(path="notes.txt", template="readme", content="hello\n")
        assert render_required_file(rf, ctx) == "hello\n"

    def test_empty_template(self, now):
        ctx = VariableContext.build(user="tester", now=now)
        assert render_required_file(RequiredFile(path=".gitkeep", template="gitkeep"), ctx) == ""

    def test_unknown_template(self):
        with pytest.raises(SpecError) as exc:
            get_template("nope")
        assert exc.value.kind == "InvalidField"

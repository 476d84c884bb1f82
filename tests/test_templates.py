import pytest

from orchestrator.core.errors import ValidationError
from orchestrator.core.templates import TEMPLATES, fill_template, list_templates, render_template


def test_all_templates_listed() -> None:
    listing = list_templates()
    for name in (
        "codex-review",
        "codex-implement",
        "gemini-architecture",
        "gemini-research",
        "parallel-review",
        "pipeline",
        "feedback",
    ):
        assert name in TEMPLATES
        assert f"**{name}**" in listing


def test_fill_marks_missing_vars() -> None:
    assert fill_template("{{goal}} in {{scope}}", {"goal": "fix"}) == "fix in [TODO: scope]"


def test_render_with_vars() -> None:
    text = render_template("feedback", {"goal": "the parser", "other_model": "gemini"})
    assert text.startswith("## Template: feedback [both]")
    assert "You just completed work on: the parser" in text
    assert "[TODO:" not in text


def test_unknown_template() -> None:
    with pytest.raises(ValidationError) as excinfo:
        render_template("nope")
    assert "codex-review" in excinfo.value.message

from conftest import error_output, make_cell, make_notebook
from jupytutor.domain.models.config import RuleConfigOverride, default_rules
from jupytutor.domain.rules.rule_resolver import (
    cell_metadata_override, merge_rule_configs, resolve_cell_config
)

NO_RULES = []


def _single_cell_notebook(**cell_kwargs):
    return make_notebook([make_cell(**cell_kwargs)])


def test_default_config_without_rules_or_metadata():
    result = resolve_cell_config(_single_cell_notebook(), 0, NO_RULES)

    assert result.chat_enabled is False
    assert result.chat_proactive is True
    assert result.instructor_note == ""
    assert result.quick_responses == []


def test_cell_metadata_overrides_are_applied():
    notebook = _single_cell_notebook(metadata={
        "jupytutor": {"chatEnabled": True, "instructorNote": "Cell note", "quickResponses": ["Help me"]}
    })
    result = resolve_cell_config(notebook, 0, NO_RULES)

    assert result.chat_enabled is True
    assert result.instructor_note == "Cell note"
    assert result.quick_responses == ["Help me"]


def test_cell_metadata_takes_priority_over_rules():
    notebook = _single_cell_notebook(metadata={"jupytutor": {"instructorNote": "Cell override"}})
    rules = [{"config": {"chatEnabled": True, "instructorNote": "Rule note"}}]
    result = resolve_cell_config(notebook, 0, rules)

    assert result.instructor_note == "Cell override"
    assert result.chat_enabled is True


def test_cell_metadata_supports_prior_notes_placeholder():
    notebook = _single_cell_notebook(metadata={
        "jupytutor": {"instructorNote": "{{prior_notes}} -- cell addendum"}
    })
    rules = [{"config": {"instructorNote": "From rule"}}]

    assert resolve_cell_config(notebook, 0, rules).instructor_note == "From rule -- cell addendum"


def test_cell_metadata_that_is_not_an_object_is_ignored():
    notebook = _single_cell_notebook(metadata={"jupytutor": "not an object"})
    assert resolve_cell_config(notebook, 0, NO_RULES).chat_enabled is False

    notebook = _single_cell_notebook(metadata={"jupytutor": ["chatEnabled"]})
    assert resolve_cell_config(notebook, 0, NO_RULES).chat_enabled is False


def test_partial_cell_metadata_keeps_rule_values():
    notebook = _single_cell_notebook(metadata={"jupytutor": {"quickResponses": ["From cell"]}})
    rules = [{"config": {"chatEnabled": True, "instructorNote": "From rule"}}]
    result = resolve_cell_config(notebook, 0, rules)

    assert result.chat_enabled is True
    assert result.instructor_note == "From rule"
    assert result.quick_responses == ["From cell"]


def test_invalid_cell_metadata_is_ignored_as_a_whole():
    notebook = _single_cell_notebook(metadata={
        "jupytutor": {"instructorNote": "Applied?", "chatEnabled": "yes"}
    })
    rules = [{"config": {"instructorNote": "From rule"}}]

    assert resolve_cell_config(notebook, 0, rules).instructor_note == "From rule"


def test_rules_apply_in_order_and_only_when_matching():
    notebook = make_notebook([
        make_cell(cell_type="markdown", source="## Question 2"),
        make_cell(source="answer = ...", tags=["graded"]),
    ])
    rules = [
        {"config": {"chatEnabled": True, "instructorNote": "Base"}},
        {"when": {"cellType": "markdown"}, "config": {"instructorNote": "Markdown only"}},
        {"when": {"tags": {"any": "graded"}}, "config": {"instructorNote": "{{prior_notes}} (graded)"}},
        {"when": {"tags": {"any": "graded"}}, "config": {"chatProactive": False}},
    ]
    result = resolve_cell_config(notebook, 1, rules)

    assert result.chat_enabled is True
    assert result.chat_proactive is False
    assert result.instructor_note == "Base (graded)"


def test_default_rules_enable_manual_chat_and_proactive_errors():
    notebook = make_notebook([
        make_cell(source="x"),
        make_cell(source="print(y)", outputs=[error_output()]),
        make_cell(source="z", tags=["jupytutor:disable"]),
    ])
    rules = default_rules()

    plain = resolve_cell_config(notebook, 0, rules)
    assert (plain.chat_enabled, plain.chat_proactive) == (True, False)

    failing = resolve_cell_config(notebook, 1, rules)
    assert (failing.chat_enabled, failing.chat_proactive) == (True, True)
    assert failing.quick_responses == ["Explain this error."]

    disabled = resolve_cell_config(notebook, 2, rules)
    assert disabled.chat_enabled is False


def test_invalid_raw_rules_are_skipped():
    rules = [
        {"config": {"chatEnabled": "true"}},
        {"when": {"nope": 1}, "config": {"chatEnabled": True}},
        {"config": {"instructorNote": "kept"}},
    ]
    result = resolve_cell_config(_single_cell_notebook(), 0, rules)

    assert result.chat_enabled is False
    assert result.instructor_note == "kept"


def test_placeholder_is_replaced_once():
    current = RuleConfigOverride(instructor_note="A")
    merged = merge_rule_configs(current, {"instructor_note": "{{prior_notes}} and {{prior_notes}}"})

    assert merged.instructor_note == "A and {{prior_notes}}"


def test_merge_without_note_keeps_current_note():
    current = RuleConfigOverride(instructor_note="Keep me", chat_enabled=True)
    merged = merge_rule_configs(current, {"quick_responses": ["Hint"]})

    assert merged.instructor_note == "Keep me"
    assert merged.chat_enabled is True
    assert merged.quick_responses == ["Hint"]


def test_cell_override_carries_only_explicit_keys():
    notebook = _single_cell_notebook(metadata={"jupytutor": {"chatProactive": False}})
    assert cell_metadata_override(notebook, 0) == {"chat_proactive": False}
    assert cell_metadata_override(notebook, 3) == {}


def test_null_override_values_invalidate_the_override():
    notebook = _single_cell_notebook(metadata={"jupytutor": {"chatEnabled": None}})
    assert cell_metadata_override(notebook, 0) == {}

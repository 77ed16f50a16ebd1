from typing import List

import pytest

from jupytutor.domain.models.config import PredicateAdapter
from jupytutor.domain.rules.cell_context import CellContext
from jupytutor.domain.rules.predicate_evaluator import (
    compile_regex, evaluate_predicate, matches_array, matches_string
)


def _lookup(contexts: List[CellContext]):
    def context_for_index(index: int):
        if 0 <= index < len(contexts):
            return contexts[index]
        return None
    return context_for_index


CODE_WITH_ERROR = CellContext(
    type="code",
    text="import numpy as np\nnp.arange(x)",
    tags=("question", "q1"),
    output_text="NameError: name 'x' is not defined",
    has_error=True,
)
MARKDOWN = CellContext(type="markdown", text="## Question 1\nCompute the mean.", editable=False)
PLAIN_CODE = CellContext(type="code", text="y = 1")

CELLS = _lookup([MARKDOWN, CODE_WITH_ERROR, PLAIN_CODE])


def evaluate(raw, index=1):
    return evaluate_predicate(raw, CELLS, index)


@pytest.mark.parametrize("raw, expected", [
    ({"cellType": "code"}, True),
    ({"cellType": {"is": "code"}}, True),
    ({"cellType": "markdown"}, False),
    ({"hasError": True}, True),
    ({"hasError": False}, False),
    ({"isEditable": True}, True),
    ({"content": {"matchesRegex": {"pattern": "np\\.arange"}}}, True),
    ({"content": "y = 1"}, False),
    ({"output": {"matchesRegex": {"pattern": "nameerror", "flags": "i"}}}, True),
    ({"tags": {"any": "q1"}}, True),
    ({"tags": {"all": {"matchesRegex": {"pattern": "^q"}}}}, True),
    ({"tags": {"all": "q1"}}, False),
])
def test_leaf_predicates(raw, expected):
    assert evaluate(raw) is expected


def test_combinators():
    assert evaluate({"AND": [{"cellType": "code"}, {"hasError": True}]}) is True
    assert evaluate({"AND": [{"cellType": "code"}, {"hasError": False}]}) is False
    assert evaluate({"OR": [{"cellType": "markdown"}, {"hasError": True}]}) is True
    assert evaluate({"NOT": {"cellType": "markdown"}}) is True


def test_empty_combinators():
    assert evaluate({"AND": []}) is True
    assert evaluate({"OR": []}) is False


def test_nearby_cell_looks_at_neighbours():
    previous_is_question = {
        "nearbyCell": {
            "relativePosition": -1,
            "matches": {"content": {"matchesRegex": {"pattern": "^## Question", "flags": "m"}}},
        }
    }
    assert evaluate(previous_is_question, index=1) is True
    assert evaluate(previous_is_question, index=2) is False


def test_nearby_cell_out_of_range_is_false():
    assert evaluate({"nearbyCell": {"relativePosition": -5, "matches": {"cellType": "code"}}}) is False
    assert evaluate({"nearbyCell": {"relativePosition": 10, "matches": {"NOT": {"cellType": "code"}}}}) is False


def test_output_predicate_never_matches_cells_without_output():
    assert evaluate({"output": {"matchesRegex": {"pattern": ".*"}}}, index=2) is False


def test_tags_all_is_vacuously_true_without_tags():
    assert evaluate({"tags": {"all": "anything"}}, index=2) is True
    assert evaluate({"tags": {"any": "anything"}}, index=2) is False


@pytest.mark.parametrize("raw", [
    {},
    {"unknown": True},
    {"cellType": "code", "hasError": True},
    {"hasError": "yes"},
    {"AND": {"cellType": "code"}},
    {"tags": {"some": "q1"}},
    "cellType",
])
def test_malformed_predicates_fail_closed(raw):
    assert evaluate(raw) is False


def test_invalid_regex_fails_closed():
    assert evaluate({"content": {"matchesRegex": {"pattern": "("}}}) is False
    assert evaluate({"content": {"matchesRegex": {"pattern": "np", "flags": "x"}}}) is False


def test_parsed_predicates_evaluate_like_raw_ones():
    raw = {"AND": [{"cellType": "code"}, {"NOT": {"tags": {"any": "skip"}}}]}
    parsed = PredicateAdapter.validate_python(raw)
    assert evaluate_predicate(parsed, CELLS, 1) is evaluate(raw) is True


def test_matches_string_and_array_helpers():
    regex = PredicateAdapter.validate_python({"content": {"matchesRegex": {"pattern": "b+"}}}).content
    assert matches_string("abba", regex) is True
    assert matches_string("abba", "abba") is True
    assert matches_string("abba", None) is False
    assert matches_array(["a", "b"], None) is False


def test_compile_regex_maps_author_flags():
    assert compile_regex("ABC", "gi").search("xabcx")
    assert compile_regex("a.b", "s").search("a\nb")
    assert compile_regex("a", "q") is None

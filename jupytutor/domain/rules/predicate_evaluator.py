"""
Predicate evaluation against cell contexts.

Evaluation is pure and fail-closed: malformed predicates, missing cells and
broken regular expressions all evaluate to False instead of raising.
"""

from typing import Any, Callable, Iterable, Mapping, Optional
import re
import structlog
from pydantic import ValidationError

from jupytutor.domain.models.config import (
    AllTagMatch, AndPredicate, AnyTagMatch, CellTypePredicate, ContentPredicate,
    HasErrorPredicate, IsEditablePredicate, IsMatch, NearbyCellPredicate,
    NotPredicate, OrPredicate, OutputPredicate, PredicateAdapter, RegexMatch,
    TagsPredicate
)
from .cell_context import CellContext

logger = structlog.get_logger(__name__)

ContextLookup = Callable[[int], Optional[CellContext]]

# Regex flags as written by notebook authors (JavaScript letters)
_REGEX_FLAGS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "u": 0,
    # global / sticky / indices do not change the outcome of a single test
    "g": 0,
    "y": 0,
    "d": 0,
}

_LEAF_PREDICATES = (
    CellTypePredicate,
    OutputPredicate,
    HasErrorPredicate,
    ContentPredicate,
    IsEditablePredicate,
    TagsPredicate,
)


def evaluate_predicate(predicate: Any, context_for_index: ContextLookup, cell_index: int) -> bool:
    """
    Evaluate a predicate tree for the cell at ``cell_index``.

    Args:
        predicate: Parsed predicate model, or a raw mapping in the config document shape
        context_for_index: Returns the CellContext at an index, or None when out of range
        cell_index: Index of the cell the predicate is evaluated for

    Returns:
        Whether the predicate holds; False for anything malformed
    """

    if isinstance(predicate, Mapping):
        try:
            predicate = PredicateAdapter.validate_python(predicate)
        except ValidationError:
            logger.debug("Malformed predicate evaluated as false", predicate=predicate)
            return False

    if isinstance(predicate, AndPredicate):
        return all(evaluate_predicate(inner, context_for_index, cell_index) for inner in predicate.all_of)

    if isinstance(predicate, OrPredicate):
        return any(evaluate_predicate(inner, context_for_index, cell_index) for inner in predicate.any_of)

    if isinstance(predicate, NotPredicate):
        return not evaluate_predicate(predicate.negated, context_for_index, cell_index)

    if isinstance(predicate, NearbyCellPredicate):
        nearby = predicate.nearby_cell
        nearby_index = cell_index + nearby.relative_position
        # No neighbour means no match, even under a NOT
        if context_for_index(nearby_index) is None:
            return False
        return evaluate_predicate(nearby.matches, context_for_index, nearby_index)

    if not isinstance(predicate, _LEAF_PREDICATES):
        return False

    context = context_for_index(cell_index)
    if context is None:
        return False

    if isinstance(predicate, CellTypePredicate):
        expected = predicate.cell_type
        expected_value = expected.is_ if isinstance(expected, IsMatch) else expected
        return expected_value == context.type

    if isinstance(predicate, OutputPredicate):
        # No vacuous match against cells without output
        if not context.output_text:
            return False
        return matches_string(context.output_text, predicate.output)

    if isinstance(predicate, HasErrorPredicate):
        return predicate.has_error == context.has_error

    if isinstance(predicate, ContentPredicate):
        return matches_string(context.text, predicate.content)

    if isinstance(predicate, IsEditablePredicate):
        return predicate.is_editable == context.editable

    return matches_array(context.tags, predicate.tags)


def matches_array(values: Iterable[str], matcher: Any) -> bool:
    """{"any": m} holds if some value matches; {"all": m} if every value does"""

    if isinstance(matcher, AnyTagMatch):
        return any(matches_string(value, matcher.any_) for value in values)

    if isinstance(matcher, AllTagMatch):
        return all(matches_string(value, matcher.all_) for value in values)

    return False


def matches_string(value: str, matcher: Any) -> bool:
    if isinstance(matcher, str):
        return value == matcher

    if isinstance(matcher, IsMatch):
        return value == matcher.is_

    if isinstance(matcher, RegexMatch):
        regex = compile_regex(matcher.matches_regex.pattern, matcher.matches_regex.flags)
        if regex is None:
            return False
        return regex.search(value) is not None

    return False


def compile_regex(pattern: str, flags: str = "") -> Optional["re.Pattern[str]"]:
    """Compile an author-supplied regex; None for bad patterns or unknown flags"""

    compiled_flags = 0
    for flag in flags:
        if flag not in _REGEX_FLAGS:
            logger.debug("Unsupported regex flag", flag=flag, pattern=pattern)
            return None
        compiled_flags |= _REGEX_FLAGS[flag]

    try:
        return re.compile(pattern, compiled_flags)
    except re.error as e:
        logger.debug("Invalid regex pattern", pattern=pattern, error=str(e))
        return None

from typing import Any, Dict, Iterable, Mapping, Optional, Union
import structlog
from pydantic import ValidationError

from jupytutor.domain.models.config import PartialRuleConfig, Rule, RuleConfigOverride
from jupytutor.domain.notebook.handles import JUPYTUTOR_METADATA_KEY, NotebookHandle
from jupytutor.infrastructure.observability.logging import tutor_logger
from .cell_context import CellContext, build_cell_context
from .predicate_evaluator import evaluate_predicate

logger = structlog.get_logger(__name__)

PRIOR_NOTES_PLACEHOLDER = "{{prior_notes}}"


def resolve_cell_config(
    notebook: NotebookHandle,
    cell_index: int,
    rules: Iterable[Union[Rule, Mapping[str, Any]]]
) -> RuleConfigOverride:
    """
    Fold notebook rules and the cell's own metadata override into one config.

    Rules are applied in order, each one whose predicate holds (or that has no
    predicate) merging its explicitly set fields over the accumulator. The
    cell's ``jupytutor`` metadata is merged last, so it wins for every key it
    sets.
    """

    context_cache: Dict[int, CellContext] = {}

    def context_for_index(index: int) -> Optional[CellContext]:
        if index < 0 or index >= len(notebook):
            return None
        if index in context_cache:
            return context_cache[index]

        cell = notebook.cell_at(index)
        if cell is None:
            return None

        context = build_cell_context(cell)
        context_cache[index] = context
        return context

    merged = RuleConfigOverride()
    matched = 0

    for position, rule in enumerate(rules):
        rule = _coerce_rule(rule, position)
        if rule is None:
            continue

        if rule.when is None or evaluate_predicate(rule.when, context_for_index, cell_index):
            merged = merge_rule_configs(merged, rule.config.explicit_fields())
            matched += 1

    override = cell_metadata_override(notebook, cell_index)
    if override:
        merged = merge_rule_configs(merged, override)

    tutor_logger.log_rule_resolution(
        cell_index=cell_index,
        matched_rules=matched,
        cell_override=sorted(override) if override else [],
        chat_enabled=merged.chat_enabled,
    )

    return merged


def merge_rule_configs(current: RuleConfigOverride, update: Mapping[str, Any]) -> RuleConfigOverride:
    """
    Merge explicitly set fields over a resolved config.

    ``instructor_note`` is special: when the update contains the
    ``{{prior_notes}}`` placeholder, the first occurrence is replaced by the
    current note instead of replacing the note outright.
    """

    instructor_note = current.instructor_note
    if update.get("instructor_note") is not None:
        note = update["instructor_note"]
        if PRIOR_NOTES_PLACEHOLDER in note:
            instructor_note = note.replace(PRIOR_NOTES_PLACEHOLDER, instructor_note, 1)
        else:
            instructor_note = note

    values = current.model_dump()
    values.update(update)
    values["instructor_note"] = instructor_note
    return RuleConfigOverride.model_validate(values)


def cell_metadata_override(notebook: NotebookHandle, cell_index: int) -> Dict[str, Any]:
    """
    Explicitly present fields of a cell's ``jupytutor`` metadata.

    Anything that is not a mapping, or that fails validation as a partial
    config, is ignored as a whole.
    """

    cell = notebook.cell_at(cell_index)
    if cell is None:
        return {}

    raw = cell.get_metadata(JUPYTUTOR_METADATA_KEY)
    if raw is None or not isinstance(raw, Mapping):
        return {}

    try:
        parsed = PartialRuleConfig.model_validate(dict(raw))
    except ValidationError as e:
        logger.warning(
            "Ignoring invalid cell config override",
            cell_index=cell_index,
            errors=e.error_count()
        )
        return {}

    return parsed.explicit_fields()


def _coerce_rule(rule: Union[Rule, Mapping[str, Any]], position: int) -> Optional[Rule]:
    if isinstance(rule, Rule):
        return rule

    try:
        return Rule.model_validate(rule)
    except ValidationError as e:
        logger.warning("Skipping invalid rule", position=position, errors=e.error_count())
        return None

"""
Plugin configuration schema.

The configuration document lives in notebook metadata under the ``jupytutor``
key and uses camelCase keys. Parsing is two-phase: the raw document is
validated strictly for shape and type, and missing fields are filled from the
defaults below. A malformed document fails as a whole.
"""

from typing import Any, Dict, List, Optional, Union
from pydantic import (
    AnyHttpUrl, BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr,
    TypeAdapter, ValidationError, field_validator
)
from pydantic.alias_generators import to_camel

from jupytutor.domain.errors import ConfigValidationError


class RuleConfigOverride(BaseModel):
    """Resolved assistant configuration for a single cell"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    chat_enabled: StrictBool = Field(
        default=False,
        description="Whether this cell can have the chat UI invoked."
    )
    chat_proactive: StrictBool = Field(
        default=True,
        description="Whether the chat opens automatically when this cell is executed."
    )
    instructor_note: StrictStr = Field(
        default="",
        description=(
            "Context for this cell that is provided to the LLM. Visible to students. "
            "Replaces notes from previously matched rules unless it contains {{prior_notes}}."
        )
    )
    quick_responses: List[StrictStr] = Field(default_factory=list)


class PartialRuleConfig(BaseModel):
    """RuleConfigOverride with every field optional; unset fields never take part in merges"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    chat_enabled: Optional[StrictBool] = None
    chat_proactive: Optional[StrictBool] = None
    instructor_note: Optional[StrictStr] = None
    quick_responses: Optional[List[StrictStr]] = None

    @field_validator("*", mode="before")
    @classmethod
    def _reject_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("explicit null is not allowed")
        return value

    def explicit_fields(self) -> Dict[str, Any]:
        """Fields that were present in the source document"""
        return self.model_dump(exclude_unset=True)


# String / array matchers

class IsMatch(BaseModel):
    """Explicit equality matcher: {"is": "value"}"""
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    is_: StrictStr = Field(alias="is")


class RegexSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    pattern: StrictStr
    flags: StrictStr = ""


class RegexMatch(BaseModel):
    """Regex matcher: {"matchesRegex": {"pattern": ..., "flags": ...}}"""
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    matches_regex: RegexSpec = Field(alias="matchesRegex")


StringMatch = Union[StrictStr, IsMatch, RegexMatch]


class AnyTagMatch(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    any_: StringMatch = Field(alias="any")


class AllTagMatch(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)

    all_: StringMatch = Field(alias="all")


ArrayMatch = Union[AnyTagMatch, AllTagMatch]


# Predicate variants. Each node carries exactly one key, so extra="forbid"
# makes the union a closed sum type.

class _PredicateNode(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True, frozen=True)


class AndPredicate(_PredicateNode):
    all_of: List["Predicate"] = Field(alias="AND")


class OrPredicate(_PredicateNode):
    any_of: List["Predicate"] = Field(alias="OR")


class NotPredicate(_PredicateNode):
    negated: "Predicate" = Field(alias="NOT")


class NearbyCell(_PredicateNode):
    relative_position: StrictInt = Field(alias="relativePosition")
    matches: "Predicate"


class NearbyCellPredicate(_PredicateNode):
    nearby_cell: NearbyCell = Field(alias="nearbyCell")


class CellTypePredicate(_PredicateNode):
    cell_type: Union[StrictStr, IsMatch] = Field(alias="cellType")


class OutputPredicate(_PredicateNode):
    output: StringMatch


class HasErrorPredicate(_PredicateNode):
    has_error: StrictBool = Field(alias="hasError")


class ContentPredicate(_PredicateNode):
    content: StringMatch


class IsEditablePredicate(_PredicateNode):
    is_editable: StrictBool = Field(alias="isEditable")


class TagsPredicate(_PredicateNode):
    tags: ArrayMatch


Predicate = Union[
    AndPredicate,
    OrPredicate,
    NotPredicate,
    NearbyCellPredicate,
    CellTypePredicate,
    OutputPredicate,
    HasErrorPredicate,
    ContentPredicate,
    IsEditablePredicate,
    TagsPredicate,
]

for _model in (AndPredicate, OrPredicate, NotPredicate, NearbyCell, NearbyCellPredicate):
    _model.model_rebuild()

PredicateAdapter = TypeAdapter(Predicate)


class Rule(BaseModel):
    """A (predicate, partial config) pair; rules are applied in list order"""
    model_config = ConfigDict(populate_by_name=True)

    comment: Optional[StrictStr] = Field(
        default=None,
        alias="_comment",
        description="Optional comment describing the purpose of this rule."
    )
    when: Optional[Predicate] = Field(
        default=None,
        description="Conditions under which this rule applies. If omitted, the rule always applies."
    )
    config: PartialRuleConfig = Field(default_factory=PartialRuleConfig)

    def to_metadata(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.comment is not None:
            data["_comment"] = self.comment
        if self.when is not None:
            data["when"] = self.when.model_dump(mode="json", by_alias=True)
        data["config"] = self.config.model_dump(mode="json", by_alias=True, exclude_unset=True)
        return data


DEFAULT_RULES: List[Dict[str, Any]] = [
    {
        "_comment": "Jupytutor always available, but only when manually invoked",
        "config": {"chatEnabled": True, "chatProactive": False},
    },
    {
        "_comment": "Display proactively when there's an error in a code cell",
        "when": {"AND": [{"cellType": "code"}, {"hasError": True}]},
        "config": {
            "chatEnabled": True,
            "chatProactive": True,
            "quickResponses": ["Explain this error."],
        },
    },
    {
        "_comment": "Disable proactive mode when there's an explicit disable tag",
        "when": {"tags": {"any": "jupytutor:disable_proactive"}},
        "config": {"chatEnabled": False},
    },
    {
        "_comment": "Disable when there's an explicit disable tag",
        "when": {"tags": {"any": "jupytutor:disable"}},
        "config": {"chatEnabled": False},
    },
]


def default_rules() -> List[Rule]:
    return [Rule.model_validate(rule) for rule in DEFAULT_RULES]


class ApiConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    base_url: AnyHttpUrl = Field(
        default="http://localhost:3000/",
        alias="baseURL",
        validate_default=True
    )


class JupyterBookConfig(BaseModel):
    """Book-like sites whose chapter pages can be expanded"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    urls: List[StrictStr] = Field(
        default_factory=lambda: ["inferentialthinking.com"],
        description="JupyterBook domains; links to them are expanded to whole chapters."
    )
    link_expansion: StrictBool = Field(
        default=True,
        description="Expand JupyterBook links to retrieve entire chapters and subsections."
    )


class RemoteContextGatheringConfig(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    enabled: StrictBool = True
    whitelist: Optional[List[StrictStr]] = Field(
        default_factory=lambda: ["inferentialthinking.com"],
        description="If not null, only these domains are used for context gathering."
    )
    blacklist: List[StrictStr] = Field(
        default_factory=lambda: ["data8.org", "berkeley.edu", "gradescope.com"],
        description="Domains excluded from context gathering."
    )
    jupyterbook: JupyterBookConfig = Field(default_factory=JupyterBookConfig)


class PreferencesConfig(BaseModel):
    """Student-side preferences, set after the notebook is opened"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    proactive_enabled: StrictBool = Field(
        default=True,
        description="Global switch for proactive chat; overrides notebook rules when false."
    )


class PluginConfig(BaseModel):
    """Notebook-level plugin configuration"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    plugin_enabled: StrictBool = False
    api: ApiConfig = Field(default_factory=ApiConfig)
    rules: List[Rule] = Field(
        default_factory=default_rules,
        description="Rules applied in order; later matching rules override earlier ones."
    )
    remote_context_gathering: RemoteContextGatheringConfig = Field(
        default_factory=RemoteContextGatheringConfig
    )
    preferences: PreferencesConfig = Field(default_factory=PreferencesConfig)

    def to_metadata(self) -> Dict[str, Any]:
        """Serialize back to the camelCase document stored in notebook metadata"""

        data = self.model_dump(mode="json", by_alias=True, exclude={"rules"})
        data["rules"] = [rule.to_metadata() for rule in self.rules]
        return data


def parse_plugin_config(raw: Any) -> PluginConfig:
    """
    Validate a raw configuration document.

    Args:
        raw: Document loaded from notebook metadata; None means "no document"

    Returns:
        Fully defaulted configuration

    Raises:
        ConfigValidationError: If any present value has the wrong shape or type
    """

    if raw is None:
        raw = {}

    try:
        return PluginConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigValidationError(
            f"Invalid jupytutor configuration ({e.error_count()} error(s))",
            errors=e.errors(include_url=False, include_context=False, include_input=False)
        ) from e

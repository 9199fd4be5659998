"""Pydantic models describing scraper instructions and their building blocks."""
from __future__ import annotations

import re
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import AfterValidator, Field, StringConstraints, model_validator

from webscraper.schemas.common import CamelModel


DATA_KEY_PATTERN = r"^[^.]+\.[^.]+$"

ScraperDataKey = Annotated[str, StringConstraints(pattern=DATA_KEY_PATTERN)]
DataSourceName = Annotated[str, StringConstraints(min_length=1, pattern=r"^[^.\s]+$")]
PageIndex = Annotated[int, Field(ge=0, le=255)]


class ElementSelectorType(str, Enum):
    QUERY = "query"
    TAG_NAME = "tagName"
    TEXT_CONTENT = "textContent"
    ATTRIBUTES = "attributes"


class ScraperValueType(str, Enum):
    LITERAL = "literal"
    NULL = "null"
    CURRENT_TIMESTAMP = "currentTimestamp"
    EXTERNAL_DATA = "externalData"
    ELEMENT_TEXT_CONTENT = "elementTextContent"
    ELEMENT_ATTRIBUTE = "elementAttribute"


class ScraperConditionType(str, Enum):
    IS_VISIBLE = "isVisible"
    TEXT_EQUALS = "textEquals"


class PageActionType(str, Enum):
    WAIT = "wait"
    NAVIGATE = "navigate"
    CLICK = "click"
    TYPE = "type"
    SCROLL_TO_TOP = "scrollToTop"
    SCROLL_TO_BOTTOM = "scrollToBottom"
    SCROLL_TO_ELEMENT = "scrollToElement"
    EVALUATE = "evaluate"


class ScraperInstructionType(str, Enum):
    PAGE_ACTION = "pageAction"
    CONDITION = "condition"
    SAVE_DATA = "saveData"
    SAVE_DATA_BATCH = "saveDataBatch"
    DELETE_DATA = "deleteData"
    MARKER = "marker"
    JUMP = "jump"


# -- Selectors ---------------------------------------------------------------

_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}
_IGNORED_REGEX_FLAGS = set("gyud")


class SerializableRegex(CamelModel):
    """JSON friendly representation of a regular expression (``{source, flags}``)."""

    source: str
    flags: str = ""

    def compile(self) -> re.Pattern[str]:
        flags = 0
        for flag in self.flags:
            if flag in _REGEX_FLAGS:
                flags |= _REGEX_FLAGS[flag]
            elif flag not in _IGNORED_REGEX_FLAGS:
                raise ValueError(f"Unsupported regular expression flag: {flag}")
        return re.compile(self.source, flags)


TextMatcher = Union[str, SerializableRegex]


def match_text(text: str | None, matcher: TextMatcher) -> bool:
    """Compare ``text`` with a literal string or test it against a regex."""

    if isinstance(matcher, SerializableRegex):
        return matcher.compile().search(text or "") is not None
    return text == matcher


class QuerySelector(CamelModel):
    type: Literal["query"] = "query"
    query: str = Field(min_length=1)


class TagNameSelector(CamelModel):
    type: Literal["tagName"] = "tagName"
    tag_name: str = Field(min_length=1)


class TextContentSelector(CamelModel):
    type: Literal["textContent"] = "textContent"
    text: TextMatcher


class AttributesSelector(CamelModel):
    type: Literal["attributes"] = "attributes"
    attributes: dict[str, TextMatcher] = Field(min_length=1)


ElementSelector = Annotated[
    Union[QuerySelector, TagNameSelector, TextContentSelector, AttributesSelector],
    Field(discriminator="type"),
]


def _ensure_unique_selector_types(selectors: list) -> list:
    types = [selector.type for selector in selectors]
    if len(types) != len(set(types)):
        raise ValueError("Each selector type can be used only once")
    return selectors


ScraperElementSelectors = Annotated[
    list[ElementSelector],
    Field(min_length=1),
    AfterValidator(_ensure_unique_selector_types),
]


# -- Values ------------------------------------------------------------------


class LiteralValue(CamelModel):
    type: Literal["literal"] = "literal"
    value: str


class NullValue(CamelModel):
    type: Literal["null"] = "null"


class CurrentTimestampValue(CamelModel):
    type: Literal["currentTimestamp"] = "currentTimestamp"


class ExternalDataValue(CamelModel):
    type: Literal["externalData"] = "externalData"
    data_key: ScraperDataKey
    default_value: str | None = None


class ElementTextContentValue(CamelModel):
    type: Literal["elementTextContent"] = "elementTextContent"
    selectors: ScraperElementSelectors
    page_index: PageIndex | None = None


class ElementAttributeValue(CamelModel):
    type: Literal["elementAttribute"] = "elementAttribute"
    selectors: ScraperElementSelectors
    attribute_name: str = Field(min_length=1)
    page_index: PageIndex | None = None


ScraperValue = Annotated[
    Union[
        LiteralValue,
        NullValue,
        CurrentTimestampValue,
        ExternalDataValue,
        ElementTextContentValue,
        ElementAttributeValue,
    ],
    Field(discriminator="type"),
]


# -- Conditions --------------------------------------------------------------


class IsVisibleCondition(CamelModel):
    type: Literal["isVisible"] = "isVisible"
    selectors: ScraperElementSelectors
    page_index: PageIndex | None = None


class TextEqualsCondition(CamelModel):
    type: Literal["textEquals"] = "textEquals"
    value_selector: ScraperValue
    text: TextMatcher


ScraperCondition = Annotated[
    Union[IsVisibleCondition, TextEqualsCondition],
    Field(discriminator="type"),
]


# -- Page actions ------------------------------------------------------------


class WaitAction(CamelModel):
    type: Literal["wait"] = "wait"
    duration: int = Field(ge=0, description="Milliseconds to wait")


class NavigateAction(CamelModel):
    type: Literal["navigate"] = "navigate"
    url: str = Field(min_length=1)


class ClickAction(CamelModel):
    type: Literal["click"] = "click"
    selectors: ScraperElementSelectors
    wait_for_navigation: bool = False


class TypeAction(CamelModel):
    type: Literal["type"] = "type"
    selectors: ScraperElementSelectors
    value: ScraperValue
    clear_before_type: bool = False
    press_enter: bool = False
    wait_for_navigation: bool = False


class ScrollToTopAction(CamelModel):
    type: Literal["scrollToTop"] = "scrollToTop"


class ScrollToBottomAction(CamelModel):
    type: Literal["scrollToBottom"] = "scrollToBottom"


class ScrollToElementAction(CamelModel):
    type: Literal["scrollToElement"] = "scrollToElement"
    selectors: ScraperElementSelectors


class EvaluateAction(CamelModel):
    type: Literal["evaluate"] = "evaluate"
    code: str = Field(min_length=1)
    arguments: list[ScraperValue] = Field(default_factory=list)


PageAction = Annotated[
    Union[
        WaitAction,
        NavigateAction,
        ClickAction,
        TypeAction,
        ScrollToTopAction,
        ScrollToBottomAction,
        ScrollToElementAction,
        EvaluateAction,
    ],
    Field(discriminator="type"),
]


# -- Instructions ------------------------------------------------------------


class PageActionInstruction(CamelModel):
    type: Literal["pageAction"] = "pageAction"
    page_index: PageIndex = 0
    action: PageAction


class ConditionInstruction(CamelModel):
    """Runs ``then`` when ``if`` holds, ``else`` (optional) otherwise."""

    type: Literal["condition"] = "condition"
    if_: ScraperCondition = Field(alias="if")
    then: list[ScraperInstruction]
    else_: list[ScraperInstruction] | None = Field(default=None, alias="else")


class SaveDataInstruction(CamelModel):
    type: Literal["saveData"] = "saveData"
    data_key: ScraperDataKey
    value: ScraperValue


class SaveDataBatchItem(CamelModel):
    column_name: str = Field(min_length=1)
    value: ScraperValue


class SaveDataBatchInstruction(CamelModel):
    """Upserts several columns of one data source at once."""

    type: Literal["saveDataBatch"] = "saveDataBatch"
    data_source_name: DataSourceName
    items: list[SaveDataBatchItem]


class DeleteDataInstruction(CamelModel):
    type: Literal["deleteData"] = "deleteData"
    data_source_name: DataSourceName


class MarkerInstruction(CamelModel):
    type: Literal["marker"] = "marker"
    name: str = Field(min_length=1)


class JumpInstruction(CamelModel):
    """Moves execution right after the named marker of this or an enclosing scope."""

    type: Literal["jump"] = "jump"
    marker_name: str = Field(min_length=1)


ScraperInstruction = Annotated[
    Union[
        PageActionInstruction,
        ConditionInstruction,
        SaveDataInstruction,
        SaveDataBatchInstruction,
        DeleteDataInstruction,
        MarkerInstruction,
        JumpInstruction,
    ],
    Field(discriminator="type"),
]

ScraperInstructions = list[ScraperInstruction]

ConditionInstruction.model_rebuild()


def find_unresolved_jumps(
    instructions: list, _enclosing_markers: frozenset[str] = frozenset()
) -> list[str]:
    """Return the marker names of jumps that cannot reach a marker.

    A jump sees the markers of its own list and of every enclosing list, but
    never those of a sibling ``then``/``else`` branch.
    """

    markers = _enclosing_markers | {
        instruction.name
        for instruction in instructions
        if isinstance(instruction, MarkerInstruction)
    }
    unresolved: list[str] = []
    for instruction in instructions:
        if isinstance(instruction, JumpInstruction):
            if instruction.marker_name not in markers:
                unresolved.append(instruction.marker_name)
        elif isinstance(instruction, ConditionInstruction):
            unresolved.extend(find_unresolved_jumps(instruction.then, markers))
            unresolved.extend(find_unresolved_jumps(instruction.else_ or [], markers))
    return unresolved


# -- Scraper definitions -----------------------------------------------------


class DataSource(CamelModel):
    """Maps an alias used in data keys onto a data store table."""

    source_alias: DataSourceName
    table_name: str = Field(min_length=1)


class ScraperUpsertRequest(CamelModel):
    """Payload used to create or replace a scraper."""

    name: str = Field(min_length=1)
    instructions: ScraperInstructions = Field(min_length=1)
    data_sources: list[DataSource] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_jumps(self) -> "ScraperUpsertRequest":
        unresolved = find_unresolved_jumps(self.instructions)
        if unresolved:
            raise ValueError(
                f"Jump instructions reference unknown markers: {', '.join(unresolved)}"
            )
        return self


class ScraperResponse(ScraperUpsertRequest):
    """Representation of a persisted scraper."""

    id: int


__all__ = [
    "AttributesSelector",
    "ClickAction",
    "ConditionInstruction",
    "CurrentTimestampValue",
    "DATA_KEY_PATTERN",
    "DataSource",
    "DataSourceName",
    "DeleteDataInstruction",
    "ElementAttributeValue",
    "ElementSelector",
    "ElementSelectorType",
    "ElementTextContentValue",
    "EvaluateAction",
    "ExternalDataValue",
    "IsVisibleCondition",
    "JumpInstruction",
    "LiteralValue",
    "MarkerInstruction",
    "NavigateAction",
    "NullValue",
    "PageAction",
    "PageActionInstruction",
    "PageActionType",
    "QuerySelector",
    "SaveDataBatchInstruction",
    "SaveDataBatchItem",
    "SaveDataInstruction",
    "ScraperCondition",
    "ScraperConditionType",
    "ScraperDataKey",
    "ScraperElementSelectors",
    "ScraperInstruction",
    "ScraperInstructionType",
    "ScraperInstructions",
    "ScraperResponse",
    "ScraperUpsertRequest",
    "ScraperValue",
    "ScraperValueType",
    "ScrollToBottomAction",
    "ScrollToElementAction",
    "ScrollToTopAction",
    "SerializableRegex",
    "TagNameSelector",
    "TextContentSelector",
    "TextEqualsCondition",
    "TextMatcher",
    "TypeAction",
    "WaitAction",
    "find_unresolved_jumps",
    "match_text",
]

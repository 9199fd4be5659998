"""Pydantic models for the execution trace produced by the instruction interpreter."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import Field, TypeAdapter

from webscraper.schemas.common import CamelModel
from webscraper.schemas.routine import ExecutionIterator
from webscraper.schemas.scraper import (
    PageAction,
    SaveDataBatchItem,
    ScraperCondition,
    ScraperValue,
)


class ExecutionInfoType(str, Enum):
    INSTRUCTION = "instruction"
    EXTERNAL_DATA_OPERATION = "external-data-operation"
    SUCCESS = "success"
    ERROR = "error"


# -- Instruction info ----------------------------------------------------------


class PageActionInfo(CamelModel):
    type: Literal["pageAction"] = "pageAction"
    page_index: int = 0
    action: PageAction
    success: bool = True
    error: str | None = None


class ConditionInfo(CamelModel):
    type: Literal["condition"] = "condition"
    condition: ScraperCondition
    is_met: bool = False


class SaveDataInfo(CamelModel):
    type: Literal["saveData"] = "saveData"
    data_key: str
    value: ScraperValue


class SaveDataBatchInfo(CamelModel):
    type: Literal["saveDataBatch"] = "saveDataBatch"
    data_source_name: str
    items: list[SaveDataBatchItem]


class DeleteDataInfo(CamelModel):
    type: Literal["deleteData"] = "deleteData"
    data_source_name: str


class MarkerInfo(CamelModel):
    type: Literal["marker"] = "marker"
    name: str


class JumpInfo(CamelModel):
    type: Literal["jump"] = "jump"
    marker_name: str


InstructionInfo = Annotated[
    Union[
        PageActionInfo,
        ConditionInfo,
        SaveDataInfo,
        SaveDataBatchInfo,
        DeleteDataInfo,
        MarkerInfo,
        JumpInfo,
    ],
    Field(discriminator="type"),
]


class UrlChange(CamelModel):
    from_: str | None = Field(default=None, alias="from")
    to: str | None = None


class InstructionEntry(CamelModel):
    type: Literal["instruction"] = "instruction"
    instruction_info: InstructionInfo
    url: str | UrlChange | None = None
    duration: float = 0.0


# -- External data operations ------------------------------------------------

ExternalValue = Union[str, int, float, None]


class GetOperation(CamelModel):
    type: Literal["get"] = "get"
    key: str
    returned_value: ExternalValue = None
    error: str | None = None


class SetOperation(CamelModel):
    type: Literal["set"] = "set"
    key: str
    value: ExternalValue = None
    error: str | None = None


class ResolvedBatchItem(CamelModel):
    column_name: str
    value: ExternalValue = None


class SetManyOperation(CamelModel):
    type: Literal["setMany"] = "setMany"
    data_source_name: str
    items: list[ResolvedBatchItem]
    error: str | None = None


class DeleteOperation(CamelModel):
    type: Literal["delete"] = "delete"
    data_source_name: str
    error: str | None = None


ExternalDataOperation = Annotated[
    Union[GetOperation, SetOperation, SetManyOperation, DeleteOperation],
    Field(discriminator="type"),
]


class ExternalDataOperationEntry(CamelModel):
    type: Literal["external-data-operation"] = "external-data-operation"
    operation: ExternalDataOperation


# -- Terminal entries --------------------------------------------------------


class ExecutionSummary(CamelModel):
    duration: float = Field(ge=0, description="Milliseconds spent on the run")


class SuccessEntry(CamelModel):
    type: Literal["success"] = "success"
    summary: ExecutionSummary


class ErrorEntry(CamelModel):
    type: Literal["error"] = "error"
    error_message: str
    summary: ExecutionSummary


ExecutionInfoEntry = Annotated[
    Union[InstructionEntry, ExternalDataOperationEntry, SuccessEntry, ErrorEntry],
    Field(discriminator="type"),
]

ExecutionInfoAdapter: TypeAdapter[list[Any]] = TypeAdapter(list[ExecutionInfoEntry])


# -- Persisted executions ----------------------------------------------------


class ScraperExecutionIteration(CamelModel):
    iteration: int = Field(ge=1)
    execution_info: list[ExecutionInfoEntry]
    finished_at: datetime


class ScraperExecutionResponse(CamelModel):
    id: int
    scraper_id: int
    routine_id: int | None = None
    iterator: ExecutionIterator | None = None
    created_at: datetime
    iterations: list[ScraperExecutionIteration]


__all__ = [
    "ConditionInfo",
    "DeleteDataInfo",
    "DeleteOperation",
    "ErrorEntry",
    "ExecutionInfoAdapter",
    "ExecutionInfoEntry",
    "ExecutionInfoType",
    "ExecutionSummary",
    "ExternalDataOperation",
    "ExternalDataOperationEntry",
    "ExternalValue",
    "GetOperation",
    "InstructionEntry",
    "InstructionInfo",
    "JumpInfo",
    "MarkerInfo",
    "PageActionInfo",
    "ResolvedBatchItem",
    "SaveDataBatchInfo",
    "SaveDataInfo",
    "ScraperExecutionIteration",
    "ScraperExecutionResponse",
    "SetManyOperation",
    "SetOperation",
    "SuccessEntry",
    "UrlChange",
]

"""Business services for the Web Scraper Engine."""

from .data_bridge import DataBridge, SqlDataBridge, UnknownDataSource
from .instruction_interpreter import (
    InstructionInterpreter,
    MarkerNotFound,
    MaxStepsExceeded,
    ScraperEnvironment,
)
from .page_driver import PageDriver, PlaywrightPageDriver

__all__ = [
    "DataBridge",
    "InstructionInterpreter",
    "MarkerNotFound",
    "MaxStepsExceeded",
    "PageDriver",
    "PlaywrightPageDriver",
    "ScraperEnvironment",
    "SqlDataBridge",
    "UnknownDataSource",
]

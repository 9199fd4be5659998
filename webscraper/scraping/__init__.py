"""Pure scraping engine pieces: SQL filters, templates, values and scheduling."""

from .iterator import ExecutionPlan, IterationContext
from .scheduler import calculate_next_scheduled_execution_at
from .special_strings import SpecialStringContext, SpecialStringError, replace_special_strings
from .trace import ExecutionTrace
from .where import WhereSchemaError, where_schema_to_sql

__all__ = [
    "ExecutionPlan",
    "ExecutionTrace",
    "IterationContext",
    "SpecialStringContext",
    "SpecialStringError",
    "WhereSchemaError",
    "calculate_next_scheduled_execution_at",
    "replace_special_strings",
    "where_schema_to_sql",
]

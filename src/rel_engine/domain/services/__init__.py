"""Domain services for business logic.

Services implement complex domain logic that doesn't naturally
fit within a single entity. They coordinate between entities
and value objects to perform operations.
"""

from rel_engine.domain.services.aggregates import Accumulator, make_accumulator
from rel_engine.domain.services.catalog import Catalog
from rel_engine.domain.services.evaluator import (
    BoundColumn,
    BoundSubquery,
    ColumnSlot,
    EvalContext,
    ExpressionEvaluator,
    Grouping,
    Scope,
)

__all__ = [
    "Accumulator",
    "make_accumulator",
    "Catalog",
    "BoundColumn",
    "BoundSubquery",
    "ColumnSlot",
    "EvalContext",
    "ExpressionEvaluator",
    "Grouping",
    "Scope",
]

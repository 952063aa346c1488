"""Aggregate accumulators.

Each accumulator folds the values of one group. NULL inputs are ignored by
every aggregate except ``COUNT(*)``. Over an empty or all-NULL group,
``COUNT`` yields 0 and ``SUM``/``AVG``/``MIN``/``MAX`` yield NULL.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from rel_engine.domain.errors import TypeMismatchError
from rel_engine.domain.value_objects.expressions import AggregateFunc
from rel_engine.domain.value_objects.sql_types import (
    SqlType,
    arithmetic,
    compare,
    group_key,
    type_of,
)


class Accumulator(ABC):
    """Running state of one aggregate over one group."""

    @abstractmethod
    def add(self, value: Any) -> None:
        pass

    @abstractmethod
    def result(self) -> Any:
        pass


class CountStarAccumulator(Accumulator):
    """``COUNT(*)``: counts rows, NULL or not."""

    def __init__(self) -> None:
        self._count = 0

    def add(self, value: Any) -> None:
        self._count += 1

    def result(self) -> int:
        return self._count


class CountAccumulator(Accumulator):
    def __init__(self) -> None:
        self._count = 0

    def add(self, value: Any) -> None:
        if value is not None:
            self._count += 1

    def result(self) -> int:
        return self._count


class SumAccumulator(Accumulator):
    def __init__(self) -> None:
        self._total: Any = None

    def add(self, value: Any) -> None:
        if value is None:
            return
        _require_numeric(value, "SUM")
        self._total = value if self._total is None else arithmetic("+", self._total, value)

    def result(self) -> Any:
        return self._total


class AvgAccumulator(Accumulator):
    """Mean of the non-null inputs, always FLOAT."""

    def __init__(self) -> None:
        self._total: Any = None
        self._count = 0

    def add(self, value: Any) -> None:
        if value is None:
            return
        _require_numeric(value, "AVG")
        self._total = value if self._total is None else self._total + value
        self._count += 1

    def result(self) -> float | None:
        if self._count == 0:
            return None
        return self._total / self._count


class _ExtremeAccumulator(Accumulator):
    _wanted: int

    def __init__(self) -> None:
        self._best: Any = None

    def add(self, value: Any) -> None:
        if value is None:
            return
        if self._best is None or compare(value, self._best) == self._wanted:
            self._best = value

    def result(self) -> Any:
        return self._best


class MinAccumulator(_ExtremeAccumulator):
    _wanted = -1


class MaxAccumulator(_ExtremeAccumulator):
    _wanted = 1


class DistinctAccumulator(Accumulator):
    """Feeds each distinct non-null value to the wrapped accumulator once."""

    def __init__(self, inner: Accumulator) -> None:
        self._inner = inner
        self._seen: set[tuple] = set()

    def add(self, value: Any) -> None:
        if value is None:
            return
        key = group_key((value,))
        if key in self._seen:
            return
        self._seen.add(key)
        self._inner.add(value)

    def result(self) -> Any:
        return self._inner.result()


_ACCUMULATORS: dict[AggregateFunc, type[Accumulator]] = {
    AggregateFunc.COUNT: CountAccumulator,
    AggregateFunc.SUM: SumAccumulator,
    AggregateFunc.AVG: AvgAccumulator,
    AggregateFunc.MIN: MinAccumulator,
    AggregateFunc.MAX: MaxAccumulator,
}


def make_accumulator(func: AggregateFunc, star: bool = False, distinct: bool = False) -> Accumulator:
    """Create a fresh accumulator for an aggregate call.

    Args:
        func: The aggregate function.
        star: True for ``COUNT(*)``.
        distinct: True for ``FUNC(DISTINCT expr)``.
    """
    if star:
        return CountStarAccumulator()
    accumulator = _ACCUMULATORS[func]()
    if distinct:
        return DistinctAccumulator(accumulator)
    return accumulator


def _require_numeric(value: Any, name: str) -> None:
    value_type = type_of(value)
    if value_type not in (SqlType.INTEGER, SqlType.FLOAT):
        raise TypeMismatchError(f"{name} requires numeric input, got {value_type.value}")

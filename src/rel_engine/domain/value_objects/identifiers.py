"""Type-safe identifiers used by the storage layer."""

from __future__ import annotations

from typing import NewType

RowId = NewType("RowId", int)
"""Identifier of a row within its table. Monotonically increasing, never reused."""

FIRST_ROW_ID = RowId(1)

"""Catalog of tables and indexes.

The catalog resolves table and index names to live :class:`Table` instances.
Names are matched case-insensitively and keep the spelling they were declared
with. Index names are global across tables.
"""

from __future__ import annotations

import threading
from typing import Sequence

from rel_engine.domain.entities.index import HashIndex
from rel_engine.domain.entities.schema import Schema
from rel_engine.domain.entities.table import Table
from rel_engine.domain.errors import SchemaError, UnresolvedReferenceError


class Catalog:
    """In-memory registry of tables.

    Example:
        >>> catalog = Catalog()
        >>> catalog.create_table("users", schema)
        >>> catalog.get_table("USERS").name
        'users'
    """

    def __init__(self) -> None:
        self._tables: dict[str, Table] = {}
        self._lock = threading.RLock()

    def create_table(self, name: str, schema: Schema, if_not_exists: bool = False) -> Table | None:
        """Create a new table.

        Returns:
            The new table, or None if it already existed and ``if_not_exists``.

        Raises:
            SchemaError: If the table exists and ``if_not_exists`` is False.
        """
        with self._lock:
            if name.casefold() in self._tables:
                if if_not_exists:
                    return None
                raise SchemaError(f"Table '{name}' already exists")
            table = Table(name, schema)
            for index in table.indexes:
                self._check_index_name_free(index.name)
            self._tables[name.casefold()] = table
            return table

    def drop_table(self, name: str, if_exists: bool = False) -> bool:
        """Drop a table and its indexes.

        Returns:
            True if a table was dropped.
        """
        with self._lock:
            table = self._tables.pop(name.casefold(), None)
            if table is None:
                if if_exists:
                    return False
                raise UnresolvedReferenceError(f"Table '{name}' does not exist", name=name)
            table.drop()
            return True

    def get_table(self, name: str) -> Table:
        """Get a table by name.

        Raises:
            UnresolvedReferenceError: If the table does not exist.
        """
        table = self._tables.get(name.casefold())
        if table is None:
            raise UnresolvedReferenceError(f"Table '{name}' does not exist", name=name)
        return table

    def table_exists(self, name: str) -> bool:
        return name.casefold() in self._tables

    def table_names(self) -> list[str]:
        return [t.name for t in self._tables.values()]

    def describe(self, name: str) -> Schema:
        return self.get_table(name).schema

    def __len__(self) -> int:
        return len(self._tables)

    def create_index(
        self,
        index_name: str,
        table_name: str,
        columns: Sequence[str],
        unique: bool = False,
        if_not_exists: bool = False,
    ) -> HashIndex | None:
        """Create an explicit index on a table.

        Returns:
            The new index, or None if it already existed and ``if_not_exists``.
        """
        with self._lock:
            table = self.get_table(table_name)
            if self._find_index(index_name) is not None:
                if if_not_exists:
                    return None
                raise SchemaError(f"Index '{index_name}' already exists")
            return table.create_index(index_name, columns, unique=unique)

    def drop_index(self, index_name: str, if_exists: bool = False) -> bool:
        """Drop an explicit index.

        Returns:
            True if an index was dropped.
        """
        with self._lock:
            table = self._find_index(index_name)
            if table is None:
                if if_exists:
                    return False
                raise UnresolvedReferenceError(
                    f"Index '{index_name}' does not exist", name=index_name
                )
            table.drop_index(index_name)
            return True

    def _find_index(self, index_name: str) -> Table | None:
        """Table owning the named index, if any."""
        key = index_name.casefold()
        for table in self._tables.values():
            if any(index.name.casefold() == key for index in table.indexes):
                return table
        return None

    def _check_index_name_free(self, index_name: str) -> None:
        if self._find_index(index_name) is not None:
            raise SchemaError(f"Index '{index_name}' already exists")

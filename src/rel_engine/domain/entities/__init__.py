"""Domain entities for the query engine.

Entities are objects with identity that have a lifecycle. Unlike value objects,
two entities with the same attributes may not be equal if they have different
identities.

Exports:
    Schema:
        - ColumnDef: Column name, type, nullability, key flags and default
        - Schema: Ordered column definitions with key metadata

    Storage:
        - Table: Row storage with copy-on-write snapshots and constraint checks
        - HashIndex: Hash index from key tuples to row log slots
"""

from rel_engine.domain.entities.index import HashIndex
from rel_engine.domain.entities.schema import ColumnDef, Schema
from rel_engine.domain.entities.table import Table

__all__ = [
    "ColumnDef",
    "Schema",
    "Table",
    "HashIndex",
]

"""Inbound ports - API contracts for the query engine.

Inbound ports define the interfaces that clients and upper layers
use to feed statements into the engine.
"""

from rel_engine.ports.inbound.statement_parser import StatementParser

__all__ = [
    "StatementParser",
]

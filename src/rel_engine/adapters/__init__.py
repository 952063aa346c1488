"""Adapters layer - concrete implementations of port interfaces.

Adapters provide the actual implementations:
- Inbound adapters: Handle incoming requests (SQL text)
"""

from rel_engine.adapters.inbound import ParseError, SQLLexer, SQLParser

__all__ = [
    # Inbound adapters
    "ParseError",
    "SQLLexer",
    "SQLParser",
]

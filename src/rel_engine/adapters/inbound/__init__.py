"""Inbound adapters for the query engine.

Inbound adapters handle incoming requests and convert them to
internal domain operations.

Exports:
    SQL Parser:
        - SQLParser: Parser that converts SQL strings to statement ASTs
        - SQLLexer: Tokenizer used by the parser
        - ParseError: Exception for lexing and parsing errors
        - TYPE_NAMES: Accepted column type names
"""

from rel_engine.adapters.inbound.sql_lexer import ParseError, SQLLexer
from rel_engine.adapters.inbound.sql_parser import TYPE_NAMES, SQLParser, resolve_type

__all__ = [
    # SQL Parser
    "SQLParser",
    "SQLLexer",
    "ParseError",
    "TYPE_NAMES",
    "resolve_type",
]

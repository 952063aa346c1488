"""Lexer for the supported SQL dialect."""

from __future__ import annotations

import math

import ply.lex as lex

from rel_engine.domain.errors import EngineError


class ParseError(EngineError):
    """SQL text could not be tokenized or parsed.

    Attributes:
        position: Character offset of the offending token, if known.
    """

    def __init__(self, message: str, position: int | None = None) -> None:
        self.position = position
        super().__init__(message)


class SQLLexer:
    """Lexer for tokenizing SQL statements.

    Keywords are matched case-insensitively. Double-quoted identifiers keep
    their spelling and never collide with keywords. String literals use
    single quotes with ``''`` as the escaped quote.
    """

    # Reserved keywords
    reserved = {
        "select": "SELECT",
        "distinct": "DISTINCT",
        "from": "FROM",
        "where": "WHERE",
        "group": "GROUP",
        "by": "BY",
        "having": "HAVING",
        "order": "ORDER",
        "asc": "ASC",
        "desc": "DESC",
        "limit": "LIMIT",
        "offset": "OFFSET",
        "as": "AS",
        "and": "AND",
        "or": "OR",
        "not": "NOT",
        "null": "NULL",
        "is": "IS",
        "in": "IN",
        "like": "LIKE",
        "ilike": "ILIKE",
        "escape": "ESCAPE",
        "between": "BETWEEN",
        "exists": "EXISTS",
        "true": "TRUE",
        "false": "FALSE",
        "cast": "CAST",
        "join": "JOIN",
        "inner": "INNER",
        "left": "LEFT",
        "right": "RIGHT",
        "full": "FULL",
        "outer": "OUTER",
        "cross": "CROSS",
        "on": "ON",
        "using": "USING",
        "insert": "INSERT",
        "into": "INTO",
        "values": "VALUES",
        "update": "UPDATE",
        "set": "SET",
        "delete": "DELETE",
        "create": "CREATE",
        "table": "TABLE",
        "drop": "DROP",
        "truncate": "TRUNCATE",
        "index": "INDEX",
        "unique": "UNIQUE",
        "primary": "PRIMARY",
        "default": "DEFAULT",
        "if": "IF",
    }

    # Token list
    tokens = [
        "IDENTIFIER",
        "INTEGER",
        "FLOAT",
        "STRING",
        "STAR",
        "COMMA",
        "DOT",
        "LPAREN",
        "RPAREN",
        "SEMICOLON",
        "EQ",
        "NE",
        "LT",
        "LE",
        "GT",
        "GE",
        "PLUS",
        "MINUS",
        "SLASH",
        "PERCENT",
        "CONCAT",
    ] + list(reserved.values())

    # Simple tokens
    t_STAR = r"\*"
    t_COMMA = r","
    t_DOT = r"\."
    t_LPAREN = r"\("
    t_RPAREN = r"\)"
    t_SEMICOLON = r";"
    t_EQ = r"="
    t_NE = r"<>|!="
    t_LE = r"<="
    t_LT = r"<"
    t_GE = r">="
    t_GT = r">"
    t_PLUS = r"\+"
    t_MINUS = r"-"
    t_SLASH = r"/"
    t_PERCENT = r"%"
    t_CONCAT = r"\|\|"

    t_ignore = " \t\r"

    def __init__(self) -> None:
        self.lexer: lex.Lexer = None  # type: ignore

    def t_COMMENT(self, t: lex.LexToken) -> None:
        r"--[^\n]*"
        pass

    def t_BLOCK_COMMENT(self, t: lex.LexToken) -> None:
        r"/\*(.|\n)*?\*/"
        t.lexer.lineno += t.value.count("\n")

    def t_FLOAT(self, t: lex.LexToken) -> lex.LexToken:
        r"(\d+\.\d*|\.\d+)([eE][+-]?\d+)?|\d+[eE][+-]?\d+"
        text = t.value
        t.value = float(text)
        if math.isinf(t.value):
            raise ParseError(
                f"Numeric literal {text} out of range at position {t.lexpos}", position=t.lexpos
            )
        return t

    def t_INTEGER(self, t: lex.LexToken) -> lex.LexToken:
        r"\d+"
        t.value = int(t.value)
        return t

    def t_STRING(self, t: lex.LexToken) -> lex.LexToken:
        r"'([^']|'')*'"
        t.value = t.value[1:-1].replace("''", "'")
        t.lexer.lineno += t.value.count("\n")
        return t

    def t_QUOTED_IDENTIFIER(self, t: lex.LexToken) -> lex.LexToken:
        r'"([^"]|"")+"'
        # Always an identifier, bypassing keyword lookup
        t.value = t.value[1:-1].replace('""', '"')
        t.type = "IDENTIFIER"
        return t

    def t_IDENTIFIER(self, t: lex.LexToken) -> lex.LexToken:
        r"[a-zA-Z_][a-zA-Z0-9_]*"
        t.type = self.reserved.get(t.value.lower(), "IDENTIFIER")
        return t

    def t_NEWLINE(self, t: lex.LexToken) -> None:
        r"\n+"
        t.lexer.lineno += len(t.value)

    def t_error(self, t: lex.LexToken) -> None:
        raise ParseError(
            f"Illegal character '{t.value[0]}' at position {t.lexpos}", position=t.lexpos
        )

    # --- Lexer methods ---

    def build(self, **kwargs) -> None:  # type: ignore
        """Build the lexer."""
        self.lexer = lex.lex(module=self, **kwargs)

    def input(self, data: str) -> None:
        """Set the input string to tokenize."""
        self.lexer.input(data)

    def token(self) -> lex.LexToken | None:
        """Return the next token."""
        return self.lexer.token()

    def tokenize(self, data: str) -> list[lex.LexToken]:
        """Tokenize the input and return all tokens."""
        self.input(data)
        tokens = []
        while True:
            tok = self.token()
            if tok is None:
                break
            tokens.append(tok)
        return tokens

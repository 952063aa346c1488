"""Parser for the supported SQL dialect.

Produces the statement and expression ASTs from
:mod:`rel_engine.domain.value_objects`. The grammar is layered so that
BETWEEN bounds and comparison operands never see AND/OR:

    expr       OR / AND / NOT over predicates
    predicate  comparisons, LIKE/ILIKE, BETWEEN, IN, IS [NOT] NULL, EXISTS
    a_expr     + - || * / % and unary minus over primaries

Usage:
    parser = SQLParser()
    stmt = parser.parse("SELECT name FROM users WHERE id = 1")
    stmts = parser.parse_script("CREATE TABLE t (id INT); INSERT INTO t VALUES (1)")
"""

from __future__ import annotations

import threading
from typing import Any

import ply.yacc as yacc

from rel_engine.adapters.inbound.sql_lexer import ParseError, SQLLexer
from rel_engine.domain.errors import SchemaError
from rel_engine.domain.value_objects.expressions import (
    Aggregate,
    AggregateFunc,
    Between,
    BinaryOp,
    BinaryOperator,
    Cast,
    ColumnRef,
    Exists,
    FunctionCall,
    InList,
    InSubquery,
    Like,
    Literal,
    ScalarSubquery,
    Star,
    UnaryOp,
    UnaryOperator,
)
from rel_engine.domain.value_objects.sql_types import SqlType
from rel_engine.domain.value_objects.statements import (
    ColumnDefinition,
    CreateIndexStatement,
    CreateTableStatement,
    DeleteStatement,
    DropIndexStatement,
    DropTableStatement,
    InsertStatement,
    Join,
    JoinKind,
    OrderItem,
    SelectItem,
    SelectStatement,
    Statement,
    SubqueryRef,
    TableRef,
    TruncateStatement,
    UpdateStatement,
)

# Type name aliases accepted in CREATE TABLE and CAST
TYPE_NAMES: dict[str, SqlType] = {
    "INTEGER": SqlType.INTEGER,
    "INT": SqlType.INTEGER,
    "BIGINT": SqlType.INTEGER,
    "SMALLINT": SqlType.INTEGER,
    "TINYINT": SqlType.INTEGER,
    "FLOAT": SqlType.FLOAT,
    "REAL": SqlType.FLOAT,
    "DOUBLE": SqlType.FLOAT,
    "DOUBLE PRECISION": SqlType.FLOAT,
    "NUMERIC": SqlType.FLOAT,
    "DECIMAL": SqlType.FLOAT,
    "TEXT": SqlType.TEXT,
    "VARCHAR": SqlType.TEXT,
    "CHAR": SqlType.TEXT,
    "CHARACTER": SqlType.TEXT,
    "STRING": SqlType.TEXT,
    "BOOLEAN": SqlType.BOOLEAN,
    "BOOL": SqlType.BOOLEAN,
    "DATE": SqlType.DATE,
}

AGGREGATE_NAMES = {func.value: func for func in AggregateFunc}

_COMPARISONS = {
    "=": BinaryOperator.EQ,
    "<>": BinaryOperator.NE,
    "!=": BinaryOperator.NE,
    "<": BinaryOperator.LT,
    "<=": BinaryOperator.LE,
    ">": BinaryOperator.GT,
    ">=": BinaryOperator.GE,
}

_ARITHMETIC = {
    "+": BinaryOperator.ADD,
    "-": BinaryOperator.SUB,
    "*": BinaryOperator.MUL,
    "/": BinaryOperator.DIV,
    "%": BinaryOperator.MOD,
    "||": BinaryOperator.CONCAT,
}


def resolve_type(name: str) -> SqlType:
    """Map a declared type name to its SQL type.

    Raises:
        ParseError: If the type name is not recognized.
    """
    try:
        return TYPE_NAMES[name.upper()]
    except KeyError:
        raise ParseError(f"Unknown type '{name}'") from None


class SQLParser:
    """Parser for SQL statements."""

    tokens = SQLLexer.tokens

    precedence = (
        ("left", "OR"),
        ("left", "AND"),
        ("right", "NOT"),
        ("left", "PLUS", "MINUS", "CONCAT"),
        ("left", "STAR", "SLASH", "PERCENT"),
        ("right", "UMINUS"),
    )

    def __init__(self) -> None:
        self.lexer = SQLLexer()
        self.lexer.build()
        self.parser: yacc.LRParser = None  # type: ignore
        self._lock = threading.Lock()

    # --- Script ---

    def p_script(self, p: yacc.YaccProduction) -> None:
        """script : statement_list"""
        p[0] = [s for s in p[1] if s is not None]

    def p_statement_list_single(self, p: yacc.YaccProduction) -> None:
        """statement_list : opt_statement"""
        p[0] = [p[1]]

    def p_statement_list_multiple(self, p: yacc.YaccProduction) -> None:
        """statement_list : statement_list SEMICOLON opt_statement"""
        p[0] = p[1] + [p[3]]

    def p_opt_statement(self, p: yacc.YaccProduction) -> None:
        """opt_statement : statement
        | empty"""
        p[0] = p[1]

    def p_statement(self, p: yacc.YaccProduction) -> None:
        """statement : select_stmt
        | insert_stmt
        | update_stmt
        | delete_stmt
        | create_table_stmt
        | drop_table_stmt
        | truncate_stmt
        | create_index_stmt
        | drop_index_stmt"""
        p[0] = p[1]

    # --- SELECT ---

    def p_select_stmt(self, p: yacc.YaccProduction) -> None:
        """select_stmt : SELECT opt_distinct select_list opt_from opt_where opt_group_by opt_having opt_order_by opt_limit"""
        limit, offset = p[9]
        p[0] = SelectStatement(
            items=tuple(p[3]),
            from_item=p[4],
            where=p[5],
            group_by=tuple(p[6]),
            having=p[7],
            order_by=tuple(p[8]),
            limit=limit,
            offset=offset,
            distinct=p[2],
        )

    def p_opt_distinct(self, p: yacc.YaccProduction) -> None:
        """opt_distinct : DISTINCT
        | empty"""
        p[0] = p[1] is not None

    def p_select_list_single(self, p: yacc.YaccProduction) -> None:
        """select_list : select_item"""
        p[0] = [p[1]]

    def p_select_list_multiple(self, p: yacc.YaccProduction) -> None:
        """select_list : select_list COMMA select_item"""
        p[0] = p[1] + [p[3]]

    def p_select_item_star(self, p: yacc.YaccProduction) -> None:
        """select_item : STAR"""
        p[0] = SelectItem(Star())

    def p_select_item_qualified_star(self, p: yacc.YaccProduction) -> None:
        """select_item : IDENTIFIER DOT STAR"""
        p[0] = SelectItem(Star(p[1]))

    def p_select_item_expr(self, p: yacc.YaccProduction) -> None:
        """select_item : expr opt_alias"""
        p[0] = SelectItem(p[1], p[2])

    def p_opt_alias(self, p: yacc.YaccProduction) -> None:
        """opt_alias : AS IDENTIFIER
        | IDENTIFIER
        | empty"""
        p[0] = p[2] if len(p) == 3 else p[1]

    def p_opt_from(self, p: yacc.YaccProduction) -> None:
        """opt_from : FROM from_list
        | empty"""
        p[0] = p[2] if len(p) == 3 else None

    def p_from_list_single(self, p: yacc.YaccProduction) -> None:
        """from_list : join_expr"""
        p[0] = p[1]

    def p_from_list_comma(self, p: yacc.YaccProduction) -> None:
        """from_list : from_list COMMA join_expr"""
        p[0] = Join(p[1], p[3], JoinKind.CROSS)

    def p_join_expr_primary(self, p: yacc.YaccProduction) -> None:
        """join_expr : table_primary"""
        p[0] = p[1]

    def p_join_expr_join(self, p: yacc.YaccProduction) -> None:
        """join_expr : join_expr join_type JOIN table_primary join_spec"""
        condition, using = p[5]
        p[0] = Join(p[1], p[4], p[2], condition=condition, using=using)

    def p_join_expr_cross(self, p: yacc.YaccProduction) -> None:
        """join_expr : join_expr CROSS JOIN table_primary"""
        p[0] = Join(p[1], p[4], JoinKind.CROSS)

    def p_join_type(self, p: yacc.YaccProduction) -> None:
        """join_type : INNER
        | LEFT opt_outer
        | RIGHT opt_outer
        | FULL opt_outer
        | empty"""
        p[0] = JoinKind[p[1].upper()] if p[1] is not None else JoinKind.INNER

    def p_opt_outer(self, p: yacc.YaccProduction) -> None:
        """opt_outer : OUTER
        | empty"""
        p[0] = None

    def p_join_spec_on(self, p: yacc.YaccProduction) -> None:
        """join_spec : ON expr"""
        p[0] = (p[2], ())

    def p_join_spec_using(self, p: yacc.YaccProduction) -> None:
        """join_spec : USING LPAREN identifier_list RPAREN"""
        p[0] = (None, tuple(p[3]))

    def p_table_primary_table(self, p: yacc.YaccProduction) -> None:
        """table_primary : IDENTIFIER opt_alias"""
        p[0] = TableRef(p[1], p[2])

    def p_table_primary_subquery(self, p: yacc.YaccProduction) -> None:
        """table_primary : LPAREN select_stmt RPAREN opt_alias"""
        if p[4] is None:
            raise ParseError("Subquery in FROM must have an alias", position=p.lexpos(1))
        p[0] = SubqueryRef(p[2], p[4])

    def p_opt_where(self, p: yacc.YaccProduction) -> None:
        """opt_where : WHERE expr
        | empty"""
        p[0] = p[2] if len(p) == 3 else None

    def p_opt_group_by(self, p: yacc.YaccProduction) -> None:
        """opt_group_by : GROUP BY expr_list
        | empty"""
        p[0] = p[3] if len(p) == 4 else []

    def p_opt_having(self, p: yacc.YaccProduction) -> None:
        """opt_having : HAVING expr
        | empty"""
        p[0] = p[2] if len(p) == 3 else None

    def p_opt_order_by(self, p: yacc.YaccProduction) -> None:
        """opt_order_by : ORDER BY order_list
        | empty"""
        p[0] = p[3] if len(p) == 4 else []

    def p_order_list_single(self, p: yacc.YaccProduction) -> None:
        """order_list : order_item"""
        p[0] = [p[1]]

    def p_order_list_multiple(self, p: yacc.YaccProduction) -> None:
        """order_list : order_list COMMA order_item"""
        p[0] = p[1] + [p[3]]

    def p_order_item(self, p: yacc.YaccProduction) -> None:
        """order_item : expr ASC
        | expr DESC
        | expr"""
        ascending = len(p) == 2 or p[2].upper() == "ASC"
        p[0] = OrderItem(p[1], ascending)

    def p_opt_limit(self, p: yacc.YaccProduction) -> None:
        """opt_limit : LIMIT INTEGER
        | LIMIT INTEGER OFFSET INTEGER
        | OFFSET INTEGER
        | OFFSET INTEGER LIMIT INTEGER
        | empty"""
        if len(p) == 2:
            p[0] = (None, 0)
        elif len(p) == 3:
            p[0] = (p[2], 0) if p[1].upper() == "LIMIT" else (None, p[2])
        elif p[1].upper() == "LIMIT":
            p[0] = (p[2], p[4])
        else:
            p[0] = (p[4], p[2])

    # --- INSERT / UPDATE / DELETE ---

    def p_insert_values(self, p: yacc.YaccProduction) -> None:
        """insert_stmt : INSERT INTO IDENTIFIER opt_column_list VALUES values_list"""
        p[0] = InsertStatement(p[3], columns=tuple(p[4]), rows=tuple(p[6]))

    def p_insert_select(self, p: yacc.YaccProduction) -> None:
        """insert_stmt : INSERT INTO IDENTIFIER opt_column_list select_stmt"""
        p[0] = InsertStatement(p[3], columns=tuple(p[4]), query=p[5])

    def p_opt_column_list(self, p: yacc.YaccProduction) -> None:
        """opt_column_list : LPAREN identifier_list RPAREN
        | empty"""
        p[0] = p[2] if len(p) == 4 else []

    def p_values_list_single(self, p: yacc.YaccProduction) -> None:
        """values_list : LPAREN expr_list RPAREN"""
        p[0] = [tuple(p[2])]

    def p_values_list_multiple(self, p: yacc.YaccProduction) -> None:
        """values_list : values_list COMMA LPAREN expr_list RPAREN"""
        p[0] = p[1] + [tuple(p[4])]

    def p_update_stmt(self, p: yacc.YaccProduction) -> None:
        """update_stmt : UPDATE IDENTIFIER SET assignment_list opt_where"""
        p[0] = UpdateStatement(p[2], tuple(p[4]), p[5])

    def p_assignment_list_single(self, p: yacc.YaccProduction) -> None:
        """assignment_list : assignment"""
        p[0] = [p[1]]

    def p_assignment_list_multiple(self, p: yacc.YaccProduction) -> None:
        """assignment_list : assignment_list COMMA assignment"""
        p[0] = p[1] + [p[3]]

    def p_assignment(self, p: yacc.YaccProduction) -> None:
        """assignment : IDENTIFIER EQ expr"""
        p[0] = (p[1], p[3])

    def p_delete_stmt(self, p: yacc.YaccProduction) -> None:
        """delete_stmt : DELETE FROM IDENTIFIER opt_where"""
        p[0] = DeleteStatement(p[3], p[4])

    # --- DDL ---

    def p_create_table_stmt(self, p: yacc.YaccProduction) -> None:
        """create_table_stmt : CREATE TABLE opt_if_not_exists IDENTIFIER LPAREN table_element_list RPAREN"""
        columns: list[ColumnDefinition] = []
        primary_keys: list[tuple[str, ...]] = []
        unique: list[tuple[str, ...]] = []
        for kind, value in p[6]:
            if kind == "column":
                columns.append(value)
            elif kind == "primary_key":
                primary_keys.append(value)
            else:
                unique.append(value)
        if len(primary_keys) > 1:
            raise SchemaError("Multiple primary keys defined")
        p[0] = CreateTableStatement(
            table_name=p[4],
            columns=tuple(columns),
            primary_key=primary_keys[0] if primary_keys else (),
            unique_constraints=tuple(unique),
            if_not_exists=p[3],
        )

    def p_opt_if_not_exists(self, p: yacc.YaccProduction) -> None:
        """opt_if_not_exists : IF NOT EXISTS
        | empty"""
        p[0] = len(p) == 4

    def p_opt_if_exists(self, p: yacc.YaccProduction) -> None:
        """opt_if_exists : IF EXISTS
        | empty"""
        p[0] = len(p) == 3

    def p_table_element_list_single(self, p: yacc.YaccProduction) -> None:
        """table_element_list : table_element"""
        p[0] = [p[1]]

    def p_table_element_list_multiple(self, p: yacc.YaccProduction) -> None:
        """table_element_list : table_element_list COMMA table_element"""
        p[0] = p[1] + [p[3]]

    def p_table_element_column(self, p: yacc.YaccProduction) -> None:
        """table_element : IDENTIFIER type_name column_constraints"""
        options: dict[str, Any] = {}
        for name, value in p[3]:
            options[name] = value
        p[0] = ("column", ColumnDefinition(p[1], p[2], **options))

    def p_table_element_primary_key(self, p: yacc.YaccProduction) -> None:
        """table_element : PRIMARY IDENTIFIER LPAREN identifier_list RPAREN"""
        self._expect_key(p, 2)
        p[0] = ("primary_key", tuple(p[4]))

    def p_table_element_unique(self, p: yacc.YaccProduction) -> None:
        """table_element : UNIQUE LPAREN identifier_list RPAREN"""
        p[0] = ("unique", tuple(p[3]))

    def p_type_name(self, p: yacc.YaccProduction) -> None:
        """type_name : IDENTIFIER
        | IDENTIFIER IDENTIFIER
        | IDENTIFIER LPAREN INTEGER RPAREN
        | IDENTIFIER LPAREN INTEGER COMMA INTEGER RPAREN"""
        # Length and precision modifiers are accepted and ignored
        if len(p) == 3:
            p[0] = resolve_type(f"{p[1]} {p[2]}")
        else:
            p[0] = resolve_type(p[1])

    def p_column_constraints(self, p: yacc.YaccProduction) -> None:
        """column_constraints : column_constraints column_constraint
        | empty"""
        p[0] = p[1] + [p[2]] if len(p) == 3 else []

    def p_column_constraint_not_null(self, p: yacc.YaccProduction) -> None:
        """column_constraint : NOT NULL"""
        p[0] = ("nullable", False)

    def p_column_constraint_null(self, p: yacc.YaccProduction) -> None:
        """column_constraint : NULL"""
        p[0] = ("nullable", True)

    def p_column_constraint_primary_key(self, p: yacc.YaccProduction) -> None:
        """column_constraint : PRIMARY IDENTIFIER"""
        self._expect_key(p, 2)
        p[0] = ("primary_key", True)

    def p_column_constraint_unique(self, p: yacc.YaccProduction) -> None:
        """column_constraint : UNIQUE"""
        p[0] = ("unique", True)

    def p_column_constraint_default(self, p: yacc.YaccProduction) -> None:
        """column_constraint : DEFAULT a_expr"""
        p[0] = ("default", p[2])

    def p_drop_table_stmt(self, p: yacc.YaccProduction) -> None:
        """drop_table_stmt : DROP TABLE opt_if_exists IDENTIFIER"""
        p[0] = DropTableStatement(p[4], if_exists=p[3])

    def p_truncate_stmt(self, p: yacc.YaccProduction) -> None:
        """truncate_stmt : TRUNCATE TABLE IDENTIFIER
        | TRUNCATE IDENTIFIER"""
        p[0] = TruncateStatement(p[len(p) - 1])

    def p_create_index_stmt(self, p: yacc.YaccProduction) -> None:
        """create_index_stmt : CREATE opt_unique INDEX opt_if_not_exists IDENTIFIER ON IDENTIFIER LPAREN identifier_list RPAREN"""
        p[0] = CreateIndexStatement(
            index_name=p[5],
            table_name=p[7],
            columns=tuple(p[9]),
            unique=p[2],
            if_not_exists=p[4],
        )

    def p_opt_unique(self, p: yacc.YaccProduction) -> None:
        """opt_unique : UNIQUE
        | empty"""
        p[0] = p[1] is not None

    def p_drop_index_stmt(self, p: yacc.YaccProduction) -> None:
        """drop_index_stmt : DROP INDEX opt_if_exists IDENTIFIER"""
        p[0] = DropIndexStatement(p[4], if_exists=p[3])

    def p_identifier_list_single(self, p: yacc.YaccProduction) -> None:
        """identifier_list : IDENTIFIER"""
        p[0] = [p[1]]

    def p_identifier_list_multiple(self, p: yacc.YaccProduction) -> None:
        """identifier_list : identifier_list COMMA IDENTIFIER"""
        p[0] = p[1] + [p[3]]

    # --- Boolean expressions ---

    def p_expr_or(self, p: yacc.YaccProduction) -> None:
        """expr : expr OR expr"""
        p[0] = BinaryOp(BinaryOperator.OR, p[1], p[3])

    def p_expr_and(self, p: yacc.YaccProduction) -> None:
        """expr : expr AND expr"""
        p[0] = BinaryOp(BinaryOperator.AND, p[1], p[3])

    def p_expr_not(self, p: yacc.YaccProduction) -> None:
        """expr : NOT expr"""
        p[0] = UnaryOp(UnaryOperator.NOT, p[2])

    def p_expr_predicate(self, p: yacc.YaccProduction) -> None:
        """expr : predicate"""
        p[0] = p[1]

    def p_expr_list_single(self, p: yacc.YaccProduction) -> None:
        """expr_list : expr"""
        p[0] = [p[1]]

    def p_expr_list_multiple(self, p: yacc.YaccProduction) -> None:
        """expr_list : expr_list COMMA expr"""
        p[0] = p[1] + [p[3]]

    # --- Predicates ---

    def p_predicate_comparison(self, p: yacc.YaccProduction) -> None:
        """predicate : a_expr EQ a_expr
        | a_expr NE a_expr
        | a_expr LT a_expr
        | a_expr LE a_expr
        | a_expr GT a_expr
        | a_expr GE a_expr"""
        p[0] = BinaryOp(_COMPARISONS[p[2]], p[1], p[3])

    def p_predicate_is_null(self, p: yacc.YaccProduction) -> None:
        """predicate : a_expr IS NULL
        | a_expr IS NOT NULL"""
        op = UnaryOperator.IS_NULL if len(p) == 4 else UnaryOperator.IS_NOT_NULL
        p[0] = UnaryOp(op, p[1])

    def p_predicate_like(self, p: yacc.YaccProduction) -> None:
        """predicate : a_expr LIKE a_expr opt_escape
        | a_expr ILIKE a_expr opt_escape"""
        case_sensitive = False if p[2].upper() == "ILIKE" else None
        p[0] = Like(p[1], p[3], p[4], case_sensitive)

    def p_predicate_not_like(self, p: yacc.YaccProduction) -> None:
        """predicate : a_expr NOT LIKE a_expr opt_escape
        | a_expr NOT ILIKE a_expr opt_escape"""
        case_sensitive = False if p[3].upper() == "ILIKE" else None
        p[0] = UnaryOp(UnaryOperator.NOT, Like(p[1], p[4], p[5], case_sensitive))

    def p_opt_escape(self, p: yacc.YaccProduction) -> None:
        """opt_escape : ESCAPE a_expr
        | empty"""
        p[0] = p[2] if len(p) == 3 else None

    def p_predicate_between(self, p: yacc.YaccProduction) -> None:
        """predicate : a_expr BETWEEN a_expr AND a_expr"""
        p[0] = Between(p[1], p[3], p[5])

    def p_predicate_not_between(self, p: yacc.YaccProduction) -> None:
        """predicate : a_expr NOT BETWEEN a_expr AND a_expr"""
        p[0] = UnaryOp(UnaryOperator.NOT, Between(p[1], p[4], p[6]))

    def p_predicate_in_list(self, p: yacc.YaccProduction) -> None:
        """predicate : a_expr IN LPAREN expr_list RPAREN"""
        p[0] = InList(p[1], tuple(p[4]))

    def p_predicate_not_in_list(self, p: yacc.YaccProduction) -> None:
        """predicate : a_expr NOT IN LPAREN expr_list RPAREN"""
        p[0] = UnaryOp(UnaryOperator.NOT, InList(p[1], tuple(p[5])))

    def p_predicate_in_subquery(self, p: yacc.YaccProduction) -> None:
        """predicate : a_expr IN LPAREN select_stmt RPAREN"""
        p[0] = InSubquery(p[1], p[4])

    def p_predicate_not_in_subquery(self, p: yacc.YaccProduction) -> None:
        """predicate : a_expr NOT IN LPAREN select_stmt RPAREN"""
        p[0] = UnaryOp(UnaryOperator.NOT, InSubquery(p[1], p[5]))

    def p_predicate_exists(self, p: yacc.YaccProduction) -> None:
        """predicate : EXISTS LPAREN select_stmt RPAREN"""
        p[0] = Exists(p[3])

    def p_predicate_a_expr(self, p: yacc.YaccProduction) -> None:
        """predicate : a_expr"""
        p[0] = p[1]

    # --- Arithmetic ---

    def p_a_expr_binary(self, p: yacc.YaccProduction) -> None:
        """a_expr : a_expr PLUS a_expr
        | a_expr MINUS a_expr
        | a_expr STAR a_expr
        | a_expr SLASH a_expr
        | a_expr PERCENT a_expr
        | a_expr CONCAT a_expr"""
        p[0] = BinaryOp(_ARITHMETIC[p[2]], p[1], p[3])

    def p_a_expr_uminus(self, p: yacc.YaccProduction) -> None:
        """a_expr : MINUS a_expr %prec UMINUS"""
        operand = p[2]
        # Fold negative numeric literals so that -9223372036854775808 is representable
        if (
            isinstance(operand, Literal)
            and isinstance(operand.value, (int, float))
            and not isinstance(operand.value, bool)
        ):
            p[0] = Literal(-operand.value)
        else:
            p[0] = UnaryOp(UnaryOperator.NEG, operand)

    def p_a_expr_primary(self, p: yacc.YaccProduction) -> None:
        """a_expr : primary"""
        p[0] = p[1]

    # --- Primaries ---

    def p_primary_number(self, p: yacc.YaccProduction) -> None:
        """primary : INTEGER
        | FLOAT
        | STRING"""
        p[0] = Literal(p[1])

    def p_primary_boolean(self, p: yacc.YaccProduction) -> None:
        """primary : TRUE
        | FALSE"""
        p[0] = Literal(p[1].upper() == "TRUE")

    def p_primary_null(self, p: yacc.YaccProduction) -> None:
        """primary : NULL"""
        p[0] = Literal(None)

    def p_primary_typed_literal(self, p: yacc.YaccProduction) -> None:
        """primary : IDENTIFIER STRING"""
        if p[1].upper() != "DATE":
            raise ParseError(
                f"Unexpected string after '{p[1]}' at position {p.lexpos(2)}",
                position=p.lexpos(2),
            )
        p[0] = Cast(Literal(p[2]), SqlType.DATE)

    def p_primary_column(self, p: yacc.YaccProduction) -> None:
        """primary : IDENTIFIER"""
        p[0] = ColumnRef(p[1])

    def p_primary_qualified_column(self, p: yacc.YaccProduction) -> None:
        """primary : IDENTIFIER DOT IDENTIFIER"""
        p[0] = ColumnRef(p[3], p[1])

    def p_primary_function(self, p: yacc.YaccProduction) -> None:
        """primary : IDENTIFIER LPAREN expr_list RPAREN
        | IDENTIFIER LPAREN RPAREN"""
        name = p[1].upper()
        args = tuple(p[3]) if len(p) == 5 else ()
        if name in AGGREGATE_NAMES:
            if len(args) != 1:
                raise ParseError(
                    f"{name} takes exactly one argument", position=p.lexpos(1)
                )
            p[0] = Aggregate(AGGREGATE_NAMES[name], args[0])
        else:
            p[0] = FunctionCall(p[1], args)

    def p_primary_count_star(self, p: yacc.YaccProduction) -> None:
        """primary : IDENTIFIER LPAREN STAR RPAREN"""
        if p[1].upper() != "COUNT":
            raise ParseError(
                f"'*' argument is only valid for COUNT, not {p[1]}", position=p.lexpos(3)
            )
        p[0] = Aggregate(AggregateFunc.COUNT)

    def p_primary_distinct_aggregate(self, p: yacc.YaccProduction) -> None:
        """primary : IDENTIFIER LPAREN DISTINCT expr RPAREN"""
        name = p[1].upper()
        if name not in AGGREGATE_NAMES:
            raise ParseError(
                f"DISTINCT is only valid in aggregate functions, not {p[1]}",
                position=p.lexpos(3),
            )
        p[0] = Aggregate(AGGREGATE_NAMES[name], p[4], distinct=True)

    def p_primary_cast(self, p: yacc.YaccProduction) -> None:
        """primary : CAST LPAREN expr AS type_name RPAREN"""
        p[0] = Cast(p[3], p[5])

    def p_primary_group(self, p: yacc.YaccProduction) -> None:
        """primary : LPAREN expr RPAREN"""
        p[0] = p[2]

    def p_primary_subquery(self, p: yacc.YaccProduction) -> None:
        """primary : LPAREN select_stmt RPAREN"""
        p[0] = ScalarSubquery(p[2])

    def p_empty(self, p: yacc.YaccProduction) -> None:
        """empty :"""
        p[0] = None

    def p_error(self, p: yacc.YaccProduction | None) -> None:
        if p:
            raise ParseError(
                f"Syntax error at '{p.value}' (position {p.lexpos})", position=p.lexpos
            )
        raise ParseError("Syntax error at end of input")

    @staticmethod
    def _expect_key(p: yacc.YaccProduction, position: int) -> None:
        if p[position].upper() != "KEY":
            raise ParseError(
                f"Expected KEY after PRIMARY, got '{p[position]}'",
                position=p.lexpos(position),
            )

    # --- Parser methods ---

    def build(self, **kwargs) -> None:  # type: ignore
        """Build the parser."""
        self.parser = yacc.yacc(module=self, start="script", **kwargs)

    def parse_script(self, data: str) -> list[Statement]:
        """Parse semicolon-separated statements.

        Args:
            data: SQL text. Empty statements are skipped.

        Returns:
            Statements in source order.

        Raises:
            ParseError: On a lexical or syntax error anywhere in the text.
        """
        with self._lock:
            if self.parser is None:
                self.build(debug=False, write_tables=False)
            self.lexer.lexer.lineno = 1
            return self.parser.parse(data, lexer=self.lexer.lexer)

    def parse(self, data: str) -> Statement:
        """Parse exactly one statement (a trailing semicolon is allowed).

        Raises:
            ParseError: On a syntax error, empty input or more than one statement.
        """
        statements = self.parse_script(data)
        if not statements:
            raise ParseError("Empty statement")
        if len(statements) > 1:
            raise ParseError(f"Expected one statement, got {len(statements)}")
        return statements[0]

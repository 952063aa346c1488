"""Unit tests for the query executor, planner and operators."""

from __future__ import annotations

from datetime import date

import pytest

from rel_engine.adapters.inbound import SQLParser
from rel_engine.application import QueryExecutor, ResultSet, RowsAffected
from rel_engine.domain.errors import (
    ConstraintViolationError,
    QueryCancelledError,
    SchemaError,
    SQLArithmeticError,
    SubqueryCardinalityError,
    TypeMismatchError,
    UnresolvedReferenceError,
)
from rel_engine.domain.services import Catalog
from rel_engine.domain.value_objects import CancellationToken, NullOrdering

SETUP = """
CREATE TABLE dept (id INTEGER PRIMARY KEY, name TEXT NOT NULL);
CREATE TABLE emp (
    id INTEGER PRIMARY KEY,
    name TEXT,
    dept_id INTEGER,
    salary FLOAT,
    hired DATE
);
INSERT INTO dept VALUES (1, 'Eng'), (2, 'Sales'), (3, 'Ops');
INSERT INTO emp VALUES
    (1, 'Ann', 1, 100, DATE '2020-01-15'),
    (2, 'Bob', 1, 200, DATE '2021-06-01'),
    (3, 'Cid', 2, 150, DATE '2019-03-10'),
    (4, 'Dee', NULL, NULL, NULL);
"""


class Session:
    """Runs SQL text through a parser and an executor."""

    def __init__(self, executor: QueryExecutor, parser: SQLParser) -> None:
        self.executor = executor
        self.parser = parser

    def run(self, sql: str) -> ResultSet | RowsAffected:
        return self.executor.execute(self.parser.parse(sql))

    def rows(self, sql: str) -> list[tuple]:
        result = self.run(sql)
        assert isinstance(result, ResultSet)
        return result.rows

    def script(self, sql: str) -> None:
        for statement in self.parser.parse_script(sql):
            self.executor.execute(statement)


@pytest.fixture
def db(executor: QueryExecutor, parser: SQLParser) -> Session:
    session = Session(executor, parser)
    session.script(SETUP)
    return session


@pytest.mark.unit
class TestCommands:
    """Tests for DDL and DML statements."""

    def test_create_table_messages(self, executor: QueryExecutor, parser: SQLParser) -> None:
        """Test CREATE TABLE status messages."""
        session = Session(executor, parser)
        result = session.run("CREATE TABLE t (a INTEGER)")
        assert isinstance(result, RowsAffected)
        assert result.message == "OK: Table 't' created"
        result = session.run("CREATE TABLE IF NOT EXISTS t (a INTEGER)")
        assert result.message == "OK: Table 't' already exists"
        with pytest.raises(SchemaError):
            session.run("CREATE TABLE t (a INTEGER)")

    def test_executor_uses_given_empty_catalog(self, catalog: Catalog, parser: SQLParser) -> None:
        """Test tables created through the executor land in the catalog it was given."""
        executor = QueryExecutor(catalog)
        assert executor.catalog is catalog
        Session(executor, parser).run("CREATE TABLE kept (a INTEGER)")
        assert catalog.table_names() == ["kept"]

    def test_insert_counts(self, db: Session) -> None:
        """Test INSERT reports the number of rows."""
        result = db.run("INSERT INTO dept VALUES (4, 'HR'), (5, 'Legal')")
        assert result.count == 2
        assert result.message == "OK: 2 row(s) inserted"

    def test_insert_column_list_and_defaults(self, executor: QueryExecutor, parser: SQLParser) -> None:
        """Test omitted columns take their DEFAULT or NULL."""
        session = Session(executor, parser)
        session.run("CREATE TABLE t (a INTEGER, b TEXT DEFAULT 'x', c FLOAT)")
        session.run("INSERT INTO t (a) VALUES (1)")
        assert session.rows("SELECT * FROM t") == [(1, "x", None)]

    def test_insert_type_mismatch(self, db: Session) -> None:
        """Test storing TEXT into an INTEGER column."""
        with pytest.raises(TypeMismatchError):
            db.run("INSERT INTO dept VALUES ('x', 'y')")

    def test_insert_wrong_arity(self, db: Session) -> None:
        """Test a VALUES row with too few values."""
        with pytest.raises(TypeMismatchError):
            db.run("INSERT INTO dept VALUES (9)")

    def test_insert_select(self, db: Session) -> None:
        """Test INSERT ... SELECT, including from the target table."""
        db.run("CREATE TABLE names (name TEXT)")
        result = db.run("INSERT INTO names SELECT name FROM emp WHERE salary >= 150")
        assert result.count == 2
        db.run("INSERT INTO names SELECT name FROM names")
        assert len(db.rows("SELECT * FROM names")) == 4

    def test_insert_is_atomic(self, db: Session) -> None:
        """Test a duplicate key in a batch rejects the whole batch."""
        with pytest.raises(ConstraintViolationError):
            db.run("INSERT INTO dept VALUES (10, 'A'), (1, 'B')")
        assert db.rows("SELECT COUNT(*) FROM dept") == [(3,)]

    def test_update(self, db: Session) -> None:
        """Test UPDATE with an expression over the old row."""
        result = db.run("UPDATE emp SET salary = salary * 2 WHERE dept_id = 1")
        assert result.count == 2
        assert db.rows("SELECT salary FROM emp WHERE dept_id = 1 ORDER BY id") == [
            (200.0,),
            (400.0,),
        ]

    def test_update_unknown_where_skips_row(self, db: Session) -> None:
        """Test rows whose WHERE is unknown are not updated."""
        result = db.run("UPDATE emp SET name = 'X' WHERE salary < 1000")
        assert result.count == 3
        assert db.rows("SELECT name FROM emp WHERE id = 4") == [("Dee",)]

    def test_update_failure_is_atomic(self, db: Session) -> None:
        """Test a failing assignment leaves every row unchanged."""
        with pytest.raises(SQLArithmeticError):
            db.run("UPDATE emp SET salary = 1000 / (id - 3)")
        assert db.rows("SELECT salary FROM emp WHERE id = 1") == [(100.0,)]

    def test_update_key_conflict(self, db: Session) -> None:
        """Test an update producing a duplicate key fails."""
        with pytest.raises(ConstraintViolationError):
            db.run("UPDATE dept SET id = 1")

    def test_delete(self, db: Session) -> None:
        """Test DELETE with a predicate and a subquery."""
        result = db.run("DELETE FROM dept WHERE id NOT IN (SELECT dept_id FROM emp WHERE dept_id IS NOT NULL)")
        assert result.count == 1
        assert db.rows("SELECT name FROM dept ORDER BY id") == [("Eng",), ("Sales",)]

    def test_truncate_and_drop(self, db: Session) -> None:
        """Test TRUNCATE keeps the table and DROP removes it."""
        assert db.run("TRUNCATE TABLE emp").count == 4
        assert db.rows("SELECT COUNT(*) FROM emp") == [(0,)]
        db.run("DROP TABLE emp")
        with pytest.raises(UnresolvedReferenceError):
            db.run("SELECT * FROM emp")
        assert db.run("DROP TABLE IF EXISTS emp").message == "OK: Table 'emp' does not exist"

    def test_index_ddl(self, db: Session) -> None:
        """Test CREATE INDEX and DROP INDEX."""
        assert db.run("CREATE INDEX emp_dept ON emp (dept_id)").message == (
            "OK: Index 'emp_dept' created"
        )
        with pytest.raises(ConstraintViolationError):
            db.run("CREATE UNIQUE INDEX emp_dept_uq ON emp (dept_id)")
        assert db.run("DROP INDEX emp_dept").message == "OK: Index 'emp_dept' dropped"
        with pytest.raises(SchemaError):
            db.run("DROP INDEX emp_pkey")


@pytest.mark.unit
class TestSelect:
    """Tests for filtering, projection, sorting and limits."""

    def test_where_and_order(self, db: Session) -> None:
        """Test a filtered, sorted projection."""
        assert db.rows("SELECT name FROM emp WHERE salary > 120 ORDER BY name") == [
            ("Bob",),
            ("Cid",),
        ]

    def test_unknown_rows_rejected(self, db: Session) -> None:
        """Test a NULL comparison and its negation both reject the row."""
        assert len(db.rows("SELECT * FROM emp WHERE salary > 0")) == 3
        assert len(db.rows("SELECT * FROM emp WHERE NOT (salary > 0)")) == 0
        assert db.rows("SELECT name FROM emp WHERE salary IS NULL") == [("Dee",)]

    def test_column_names(self, db: Session) -> None:
        """Test output names for columns, aliases and expressions."""
        result = db.run("SELECT id, name AS who, salary + 1 FROM emp WHERE id = 1")
        assert result.columns == ["id", "who", "(salary + 1)"]
        assert result.records[0]["WHO"] == "Ann"

    def test_select_without_from(self, db: Session) -> None:
        """Test SELECT over a single empty row."""
        assert db.rows("SELECT 1 + 2, 'a' || 'b', 7 / 2") == [(3, "ab", 3)]

    def test_order_by_nulls_low(self, db: Session) -> None:
        """Test NULL sorts first ascending and last descending."""
        ascending = db.rows("SELECT salary FROM emp ORDER BY salary")
        assert ascending == [(None,), (100.0,), (150.0,), (200.0,)]
        descending = db.rows("SELECT salary FROM emp ORDER BY salary DESC")
        assert descending == [(200.0,), (150.0,), (100.0,), (None,)]

    def test_order_by_nulls_high(self, parser: SQLParser) -> None:
        """Test the NULLS_HIGH ordering mode."""
        session = Session(QueryExecutor(Catalog(), null_ordering=NullOrdering.NULLS_HIGH), parser)
        session.script(SETUP)
        assert session.rows("SELECT salary FROM emp ORDER BY salary")[-1] == (None,)

    def test_order_by_forms(self, db: Session) -> None:
        """Test ordinals, aliases, expressions and hidden columns."""
        by_ordinal = db.rows("SELECT name, id FROM emp ORDER BY 2 DESC")
        assert [r[1] for r in by_ordinal] == [4, 3, 2, 1]
        by_alias = db.rows("SELECT id AS k FROM emp ORDER BY k DESC LIMIT 1")
        assert by_alias == [(4,)]
        hidden = db.rows("SELECT name FROM emp WHERE salary IS NOT NULL ORDER BY salary DESC")
        assert hidden == [("Bob",), ("Cid",), ("Ann",)]
        multi = db.rows("SELECT dept_id, name FROM emp ORDER BY dept_id DESC, name")
        assert multi[0] == (2, "Cid")
        assert multi[-1] == (None, "Dee")

    def test_order_by_stable(self, db: Session) -> None:
        """Test ties keep their input order."""
        rows = db.rows("SELECT id FROM emp ORDER BY dept_id = 1")
        assert rows == [(4,), (3,), (1,), (2,)]

    def test_order_by_bad_ordinal(self, db: Session) -> None:
        """Test an ordinal outside the select list."""
        with pytest.raises(UnresolvedReferenceError):
            db.run("SELECT id FROM emp ORDER BY 3")

    def test_limit_offset(self, db: Session) -> None:
        """Test LIMIT and OFFSET."""
        assert db.rows("SELECT id FROM emp ORDER BY id LIMIT 2") == [(1,), (2,)]
        assert db.rows("SELECT id FROM emp ORDER BY id LIMIT 2 OFFSET 3") == [(4,)]
        assert db.rows("SELECT id FROM emp ORDER BY id OFFSET 10") == []
        assert db.rows("SELECT id FROM emp LIMIT 0") == []

    def test_distinct(self, executor: QueryExecutor, parser: SQLParser) -> None:
        """Test DISTINCT treats NULLs as equal."""
        session = Session(executor, parser)
        session.script(
            "CREATE TABLE t (a INTEGER, b INTEGER);"
            "INSERT INTO t VALUES (1, NULL), (1, NULL), (2, 3);"
        )
        assert session.rows("SELECT DISTINCT a, b FROM t") == [(1, None), (2, 3)]

    def test_like_and_between(self, db: Session) -> None:
        """Test LIKE, NOT LIKE and BETWEEN predicates."""
        assert db.rows("SELECT name FROM emp WHERE name LIKE 'a%'") == [("Ann",)]
        assert len(db.rows("SELECT name FROM emp WHERE name NOT LIKE '_o_'")) == 3
        between = db.rows("SELECT id FROM emp WHERE salary BETWEEN 100 AND 150 ORDER BY id")
        assert between == [(1,), (3,)]

    def test_dates(self, db: Session) -> None:
        """Test DATE literals, comparisons and casts."""
        rows = db.rows("SELECT name FROM emp WHERE hired < DATE '2020-06-01' ORDER BY hired")
        assert rows == [("Cid",), ("Ann",)]
        assert db.rows("SELECT hired FROM emp WHERE id = 2") == [(date(2021, 6, 1),)]
        assert db.rows("SELECT CAST(hired AS TEXT) FROM emp WHERE id = 1") == [("2020-01-15",)]

    def test_unknown_column_fails_before_rows(self, db: Session) -> None:
        """Test an unknown column fails at plan time even over an empty table."""
        db.run("CREATE TABLE empty (a INTEGER)")
        with pytest.raises(UnresolvedReferenceError):
            db.run("SELECT missing FROM empty")

    def test_division_by_zero(self, db: Session) -> None:
        """Test runtime arithmetic errors surface from execute."""
        with pytest.raises(SQLArithmeticError):
            db.run("SELECT id / 0 FROM emp")

    def test_non_finite_floats_rejected(self, db: Session) -> None:
        """Test CAST never produces NaN or infinity and ROUND accepts any precision."""
        with pytest.raises(TypeMismatchError):
            db.run("SELECT CAST('nan' AS FLOAT) = 1.0")
        with pytest.raises(TypeMismatchError):
            db.run("SELECT CAST('inf' AS FLOAT)")
        assert db.rows("SELECT ROUND(2.5, 100), ROUND(1.5e20, 10)") == [(2.5, 1.5e20)]


@pytest.mark.unit
class TestJoins:
    """Tests for join kinds."""

    def test_inner_join(self, db: Session) -> None:
        """Test an equality inner join."""
        rows = db.rows(
            "SELECT e.name, d.name FROM emp e JOIN dept d ON e.dept_id = d.id ORDER BY e.name"
        )
        assert rows == [("Ann", "Eng"), ("Bob", "Eng"), ("Cid", "Sales")]

    def test_inner_join_commutes(self, db: Session) -> None:
        """Test swapping join inputs gives the same rows up to column order."""
        left = db.rows("SELECT e.id, d.id FROM emp e JOIN dept d ON e.dept_id = d.id")
        right = db.rows("SELECT e.id, d.id FROM dept d JOIN emp e ON e.dept_id = d.id")
        assert sorted(left) == sorted(right)

    def test_left_join(self, db: Session) -> None:
        """Test unmatched left rows are padded with NULL exactly once."""
        inner = db.rows("SELECT e.id FROM emp e JOIN dept d ON e.dept_id = d.id")
        rows = db.rows(
            "SELECT e.name, d.name FROM emp e LEFT JOIN dept d ON e.dept_id = d.id ORDER BY e.id"
        )
        assert len(rows) >= len(inner)
        assert rows[-1] == ("Dee", None)
        assert len(rows) == 4

    def test_right_and_full_join(self, db: Session) -> None:
        """Test RIGHT and FULL joins keep unmatched right rows."""
        right = db.rows("SELECT d.name, e.name FROM emp e RIGHT JOIN dept d ON e.dept_id = d.id")
        assert ("Ops", None) in right
        assert len(right) == 4
        full = db.rows("SELECT e.name, d.name FROM emp e FULL OUTER JOIN dept d ON e.dept_id = d.id")
        assert len(full) == 5
        assert ("Dee", None) in full
        assert (None, "Ops") in full

    def test_cross_join(self, db: Session) -> None:
        """Test CROSS JOIN and comma-separated tables."""
        assert len(db.rows("SELECT * FROM emp CROSS JOIN dept")) == 12
        assert len(db.rows("SELECT * FROM emp, dept WHERE emp.dept_id = dept.id")) == 3

    def test_using(self, executor: QueryExecutor, parser: SQLParser) -> None:
        """Test USING exposes the shared column once."""
        session = Session(executor, parser)
        session.script(
            "CREATE TABLE a (id INTEGER, x TEXT);"
            "CREATE TABLE b (id INTEGER, y TEXT);"
            "INSERT INTO a VALUES (1, 'a1'), (2, 'a2');"
            "INSERT INTO b VALUES (2, 'b2'), (3, 'b3');"
        )
        result = session.run("SELECT * FROM a JOIN b USING (id)")
        assert result.columns == ["id", "x", "y"]
        assert result.rows == [(2, "a2", "b2")]
        left = session.rows("SELECT id, y FROM a LEFT JOIN b USING (id) ORDER BY id")
        assert left == [(1, None), (2, "b2")]

    def test_full_join_using_merges_key(self, executor: QueryExecutor, parser: SQLParser) -> None:
        """Test the shared column of a FULL JOIN USING takes whichever side is present."""
        session = Session(executor, parser)
        session.script(
            "CREATE TABLE lhs (k INTEGER, a TEXT);"
            "CREATE TABLE rhs (k INTEGER, b TEXT);"
            "INSERT INTO lhs VALUES (1, 'l1'), (2, 'l2'), (2, 'l2b'), (NULL, 'ln'), (5, 'l5');"
            "INSERT INTO rhs VALUES (2, 'r2'), (3, 'r3'), (NULL, 'rn');"
        )
        keys = session.rows("SELECT k FROM lhs FULL JOIN rhs USING (k)")
        assert keys == [(1,), (2,), (2,), (None,), (5,), (3,), (None,)]

        result = session.run("SELECT * FROM lhs FULL JOIN rhs USING (k) WHERE b = 'r3'")
        assert result.columns == ["k", "a", "b"]
        assert result.rows == [(3, None, "r3")]

        sides = session.rows(
            "SELECT lhs.k, rhs.k, k FROM lhs FULL JOIN rhs USING (k) WHERE a = 'l1'"
        )
        assert sides == [(1, None, 1)]

    def test_ambiguous_column(self, db: Session) -> None:
        """Test an unqualified column present in both tables."""
        with pytest.raises(UnresolvedReferenceError, match="ambiguous"):
            db.run("SELECT name FROM emp JOIN dept ON emp.dept_id = dept.id")

    def test_duplicate_binding(self, db: Session) -> None:
        """Test the same table twice without aliases."""
        with pytest.raises(UnresolvedReferenceError):
            db.run("SELECT * FROM emp JOIN emp ON emp.id = emp.id")

    def test_self_join_with_aliases(self, db: Session) -> None:
        """Test a self join through aliases."""
        rows = db.rows(
            "SELECT a.name, b.name FROM emp a JOIN emp b "
            "ON a.dept_id = b.dept_id AND a.id < b.id"
        )
        assert rows == [("Ann", "Bob")]

    def test_hash_and_nested_loop_agree(self, parser: SQLParser) -> None:
        """Test disabling hash joins does not change results or order."""
        sql = "SELECT e.id, d.id FROM emp e LEFT JOIN dept d ON e.dept_id = d.id"
        results = []
        for enabled in (True, False):
            session = Session(QueryExecutor(Catalog(), hash_join_enabled=enabled), parser)
            session.script(SETUP)
            results.append(session.rows(sql))
        assert results[0] == results[1]


@pytest.mark.unit
class TestAggregation:
    """Tests for grouping and aggregates."""

    def test_group_by_having(self, db: Session) -> None:
        """Test grouping with a HAVING filter."""
        rows = db.rows(
            "SELECT dept_id, COUNT(*), SUM(salary) FROM emp "
            "WHERE dept_id IS NOT NULL GROUP BY dept_id HAVING COUNT(*) > 1"
        )
        assert rows == [(1, 2, 300.0)]

    def test_null_group(self, db: Session) -> None:
        """Test NULL keys form one group."""
        rows = db.rows("SELECT dept_id, COUNT(*) FROM emp GROUP BY dept_id ORDER BY dept_id")
        assert rows == [(None, 1), (1, 2), (2, 1)]

    def test_empty_input(self, executor: QueryExecutor, parser: SQLParser) -> None:
        """Test aggregates over an empty table."""
        session = Session(executor, parser)
        session.run("CREATE TABLE t (a INTEGER)")
        rows = session.rows("SELECT COUNT(*), COUNT(a), SUM(a), AVG(a), MIN(a), MAX(a) FROM t")
        assert rows == [(0, 0, None, None, None, None)]
        assert session.rows("SELECT a, COUNT(*) FROM t GROUP BY a") == []

    def test_group_by_alias_and_ordinal(self, db: Session) -> None:
        """Test GROUP BY an output alias and a position."""
        by_alias = db.rows(
            "SELECT dept_id AS d, MAX(salary) FROM emp GROUP BY d ORDER BY d DESC LIMIT 1"
        )
        assert by_alias == [(2, 150.0)]
        by_ordinal = db.rows("SELECT dept_id, COUNT(*) FROM emp GROUP BY 1 ORDER BY 2 DESC")
        assert by_ordinal[0] == (1, 2)

    def test_aggregate_expressions(self, db: Session) -> None:
        """Test expressions over aggregates and DISTINCT aggregates."""
        rows = db.rows("SELECT COUNT(DISTINCT dept_id), MAX(salary) - MIN(salary) FROM emp")
        assert rows == [(2, 100.0)]

    def test_order_by_aggregate(self, db: Session) -> None:
        """Test ordering groups by an aggregate not in the select list."""
        rows = db.rows(
            "SELECT dept_id FROM emp WHERE dept_id IS NOT NULL "
            "GROUP BY dept_id ORDER BY SUM(salary) DESC"
        )
        assert rows == [(1,), (2,)]

    def test_ungrouped_column(self, db: Session) -> None:
        """Test a bare column outside GROUP BY is rejected."""
        with pytest.raises(UnresolvedReferenceError, match="GROUP BY"):
            db.run("SELECT name, COUNT(*) FROM emp GROUP BY dept_id")

    def test_aggregate_in_where(self, db: Session) -> None:
        """Test aggregates are not allowed in WHERE."""
        with pytest.raises(UnresolvedReferenceError):
            db.run("SELECT id FROM emp WHERE COUNT(*) > 1")


@pytest.mark.unit
class TestSubqueries:
    """Tests for nested SELECTs."""

    def test_in_subquery(self, db: Session) -> None:
        """Test IN over a subquery."""
        rows = db.rows(
            "SELECT name FROM dept WHERE id IN (SELECT dept_id FROM emp) ORDER BY name"
        )
        assert rows == [("Eng",), ("Sales",)]

    def test_not_in_with_null(self, db: Session) -> None:
        """Test NOT IN over a set containing NULL matches nothing."""
        assert db.rows("SELECT name FROM dept WHERE id NOT IN (SELECT dept_id FROM emp)") == []

    def test_correlated_exists(self, db: Session) -> None:
        """Test a correlated EXISTS."""
        rows = db.rows(
            "SELECT d.name FROM dept d WHERE NOT EXISTS "
            "(SELECT 1 FROM emp e WHERE e.dept_id = d.id)"
        )
        assert rows == [("Ops",)]

    def test_correlated_scalar(self, db: Session) -> None:
        """Test a correlated scalar subquery in the select list."""
        rows = db.rows(
            "SELECT d.name, (SELECT COUNT(*) FROM emp e WHERE e.dept_id = d.id) "
            "FROM dept d ORDER BY d.id"
        )
        assert rows == [("Eng", 2), ("Sales", 1), ("Ops", 0)]

    def test_scalar_subquery_empty_is_null(self, db: Session) -> None:
        """Test a scalar subquery with no rows yields NULL."""
        assert db.rows("SELECT (SELECT id FROM emp WHERE id = 99)") == [(None,)]

    def test_scalar_subquery_cardinality(self, db: Session) -> None:
        """Test a scalar subquery returning several rows."""
        with pytest.raises(SubqueryCardinalityError):
            db.run("SELECT (SELECT id FROM emp)")

    def test_subquery_width(self, db: Session) -> None:
        """Test IN requires a single-column subquery."""
        with pytest.raises(TypeMismatchError):
            db.run("SELECT * FROM dept WHERE id IN (SELECT id, name FROM emp)")

    def test_derived_table(self, db: Session) -> None:
        """Test a subquery in FROM."""
        rows = db.rows(
            "SELECT s.d, s.total FROM "
            "(SELECT dept_id AS d, SUM(salary) AS total FROM emp GROUP BY dept_id) AS s "
            "WHERE s.total > 160"
        )
        assert rows == [(1, 300.0)]

    def test_scalar_subquery_comparison(self, db: Session) -> None:
        """Test comparing against an aggregate subquery."""
        rows = db.rows("SELECT name FROM emp WHERE salary > (SELECT AVG(salary) FROM emp)")
        assert rows == [("Bob",)]


@pytest.mark.unit
class TestPlanning:
    """Tests for plan shapes, explain output and execution controls."""

    def test_index_pushdown(self, db: Session) -> None:
        """Test an equality on a key column uses the primary key index."""
        plan = db.executor.explain(db.parser.parse("SELECT name FROM emp WHERE id = 2"))
        assert "IndexScan(emp USING emp_pkey, key=(2))" in plan
        assert "Filter((id = 2))" in plan
        assert db.rows("SELECT name FROM emp WHERE id = 2") == [("Bob",)]
        assert db.executor.last_stats.index_lookups == {"emp_pkey": 1}
        assert db.executor.last_stats.rows_scanned == 1

    def test_no_pushdown_without_index(self, db: Session) -> None:
        """Test a non-indexed column falls back to a sequential scan."""
        plan = db.executor.explain(db.parser.parse("SELECT name FROM emp WHERE dept_id = 1"))
        assert "SeqScan(emp)" in plan
        db.run("CREATE INDEX emp_dept ON emp (dept_id)")
        plan = db.executor.explain(db.parser.parse("SELECT name FROM emp WHERE dept_id = 1"))
        assert "IndexScan(emp USING emp_dept" in plan

    def test_hash_join_chosen(self, db: Session) -> None:
        """Test equality joins run as hash joins and others as nested loops."""
        equality = db.executor.explain(
            db.parser.parse("SELECT * FROM emp e JOIN dept d ON e.dept_id = d.id")
        )
        assert equality.startswith("Project(")
        assert "HashJoin(INNER" in equality
        other = db.executor.explain(
            db.parser.parse("SELECT * FROM emp e JOIN dept d ON e.dept_id < d.id")
        )
        assert "NestedLoopJoin(INNER" in other

    def test_explain_tree(self, db: Session) -> None:
        """Test the rendered plan nests children under their parents."""
        plan = db.executor.explain(
            db.parser.parse("SELECT name FROM emp WHERE salary > 1 ORDER BY name LIMIT 1")
        )
        lines = plan.splitlines()
        assert lines[0] == "Limit(1)"
        assert lines[1] == "  -> Sort(name ASC)"
        assert lines[-1].strip() == "-> SeqScan(emp)"

    def test_stream(self, db: Session) -> None:
        """Test a cursor pulls rows on demand."""
        with db.executor.stream(db.parser.parse("SELECT id FROM emp ORDER BY id")) as cursor:
            assert cursor.columns == ["id"]
            assert cursor.fetchone() == (1,)
            assert cursor.fetchmany(2) == [(2,), (3,)]
            assert cursor.fetchall() == [(4,)]
            assert cursor.fetchone() is None

    def test_stream_limit_stops_early(self, db: Session) -> None:
        """Test LIMIT stops pulling from the scan."""
        with db.executor.stream(db.parser.parse("SELECT id FROM emp LIMIT 1")) as cursor:
            assert cursor.fetchall() == [(1,)]
            assert cursor.stats.rows_scanned == 1

    def test_cursor_cancel(self, db: Session) -> None:
        """Test cancelling a cursor stops the pipeline."""
        cursor = db.executor.stream(db.parser.parse("SELECT id FROM emp"))
        assert cursor.fetchone() == (1,)
        cursor.cancel()
        with pytest.raises(QueryCancelledError):
            cursor.fetchone()
        cursor.close()

    def test_cancelled_token(self, db: Session) -> None:
        """Test a pre-cancelled token stops execute."""
        token = CancellationToken()
        token.cancel()
        with pytest.raises(QueryCancelledError):
            db.executor.execute(db.parser.parse("SELECT * FROM emp"), token)

    def test_cancelled_delete_changes_nothing(self, db: Session) -> None:
        """Test a cancelled DELETE leaves the table as it was."""
        token = CancellationToken()
        token.cancel()
        with pytest.raises(QueryCancelledError):
            db.executor.execute(db.parser.parse("DELETE FROM emp WHERE id > 0"), token)
        assert db.rows("SELECT COUNT(*) FROM emp") == [(4,)]

    def test_describe(self, db: Session) -> None:
        """Test describing a table schema."""
        schema = db.executor.describe("EMP")
        assert schema.names == ["id", "name", "dept_id", "salary", "hired"]
        assert schema.primary_key == ("id",)

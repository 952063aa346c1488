"""Pytest configuration and fixtures for rel_engine tests."""

from __future__ import annotations

from typing import Generator

import pytest
from prometheus_client import CollectorRegistry

from rel_engine.adapters.inbound import SQLParser
from rel_engine.application import DatabaseEngine, QueryExecutor
from rel_engine.domain.services import Catalog
from rel_engine.infrastructure.config import Config, QueryConfig
from rel_engine.infrastructure.metrics import MetricsRegistry


@pytest.fixture
def catalog() -> Catalog:
    """Provide an empty catalog."""
    return Catalog()


@pytest.fixture
def executor(catalog: Catalog) -> QueryExecutor:
    """Provide a query executor over the test catalog."""
    return QueryExecutor(catalog)


@pytest.fixture(scope="session")
def parser() -> SQLParser:
    """Provide a SQL parser. Building the tables is slow, so share one."""
    return SQLParser()


@pytest.fixture
def collector_registry() -> CollectorRegistry:
    """Provide an isolated Prometheus collector registry."""
    return CollectorRegistry(auto_describe=True)


@pytest.fixture
def metrics_registry(collector_registry: CollectorRegistry) -> MetricsRegistry:
    """Provide a fresh metrics registry for each test."""
    # Use a separate registry to avoid conflicts between tests
    return MetricsRegistry(registry=collector_registry)


@pytest.fixture
def test_config() -> Config:
    """Provide a configuration with default query semantics."""
    return Config(query=QueryConfig())


@pytest.fixture
def engine(
    test_config: Config, metrics_registry: MetricsRegistry, parser: SQLParser
) -> Generator[DatabaseEngine, None, None]:
    """Provide a started engine with isolated metrics."""
    with DatabaseEngine(config=test_config, parser=parser, metrics=metrics_registry) as db:
        yield db


@pytest.fixture
def employees(engine: DatabaseEngine) -> DatabaseEngine:
    """Engine holding the Employees table used by the grouping tests."""
    engine.execute_script(
        """
        CREATE TABLE Employees (
            EmployeeID INTEGER PRIMARY KEY,
            DepartmentID INTEGER,
            Salary INTEGER
        );
        INSERT INTO Employees VALUES (1, 1, 100), (2, 1, 200), (3, 2, 300);
        """
    )
    return engine


# Markers for test categories
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")

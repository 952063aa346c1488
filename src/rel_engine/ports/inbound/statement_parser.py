"""Statement parser port.

The engine core consumes statement ASTs and never sees SQL text. Any
component that turns text into those ASTs can be plugged into
:class:`~rel_engine.application.database_engine.DatabaseEngine` through this
contract; the bundled ply-based parser is the default implementation.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol, runtime_checkable

from rel_engine.domain.value_objects.statements import Statement


@runtime_checkable
class StatementParser(Protocol):
    """Protocol for turning query text into statements.

    Thread Safety:
        Implementations must allow concurrent calls from multiple threads.
    """

    @abstractmethod
    def parse(self, data: str) -> Statement:
        """Parse exactly one statement.

        Args:
            data: Query text.

        Returns:
            The parsed statement.

        Raises:
            EngineError: If the text is not a single valid statement.
        """
        ...

    @abstractmethod
    def parse_script(self, data: str) -> list[Statement]:
        """Parse a sequence of statements separated by semicolons.

        Args:
            data: Query text.

        Returns:
            Statements in source order; empty statements are dropped.
        """
        ...

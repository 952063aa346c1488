"""Ports layer - interface definitions following Hexagonal Architecture.

Ports are abstract interfaces (protocols) that define contracts:
- Inbound ports: APIs offered to clients (e.g., StatementParser)

Adapters implement these ports with concrete functionality.
"""

from rel_engine.ports.inbound import StatementParser

__all__ = [
    # Inbound ports
    "StatementParser",
]

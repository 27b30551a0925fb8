"""Retold - Event Sourcing and CQRS runtime for Python.

This module provides the public API for building event-sourced applications.
"""

from .domain import (
    Aggregate,
    Command,
    DomainRuleViolation,
    Event,
    Payload,
    Query,
)
from .application import (
    Application,
    ApplicationBuilder,
    ReadModel,
    ReadModelReader,
    ReadModelWriter,
    TableSchema,
    ViewModel,
)
from .routing import (
    applies_event,
    handles_command,
    intercepts,
    projects,
    resolves,
)
from .settings import RetoldSettings

__all__ = [
    # Application
    "Application",
    "ApplicationBuilder",
    "RetoldSettings",
    # Domain primitives
    "Aggregate",
    "Command",
    "DomainRuleViolation",
    "Event",
    "Payload",
    "Query",
    # Read side
    "ReadModel",
    "ReadModelReader",
    "ReadModelWriter",
    "TableSchema",
    "ViewModel",
    # Decorators
    "applies_event",
    "handles_command",
    "intercepts",
    "projects",
    "resolves",
]

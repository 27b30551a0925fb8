"""Domain primitives for event sourcing and CQRS.

This module contains the building blocks applications extend or exchange:

- Aggregate: Base class for the write-side consistency boundary
- Payload: Base class for typed command and event payloads
- Command: Envelope for an intent to change one aggregate
- Event: Immutable, versioned record of a state change
- Query: Envelope for a read-only request
- Error taxonomy shared by the command and query sides
"""

from .aggregate import Aggregate
from .command import Command
from .event import Event, PendingEvent, epoch_millis
from .exceptions import (
    AggregateNotFound,
    CommandNotFound,
    ConcurrencyConflict,
    Contention,
    DomainRuleViolation,
    ProjectionApplicationError,
    ProjectionHalted,
    ReadModelAccessError,
    ReadModelNotFound,
    ReadModelSchemaError,
    ResolverExecutionError,
    ResolverNotFound,
    RetoldError,
    StoreUnavailable,
    ViewModelApplicationError,
    ViewModelNotFound,
)
from .payload import Payload, payload_schema_version, payload_type_name
from .query import Query

__all__ = [
    "Aggregate",
    "Command",
    "Event",
    "PendingEvent",
    "Payload",
    "Query",
    "epoch_millis",
    "payload_schema_version",
    "payload_type_name",
    # Errors
    "AggregateNotFound",
    "CommandNotFound",
    "ConcurrencyConflict",
    "Contention",
    "DomainRuleViolation",
    "ProjectionApplicationError",
    "ProjectionHalted",
    "ReadModelAccessError",
    "ReadModelNotFound",
    "ReadModelSchemaError",
    "ResolverExecutionError",
    "ResolverNotFound",
    "RetoldError",
    "StoreUnavailable",
    "ViewModelApplicationError",
    "ViewModelNotFound",
]

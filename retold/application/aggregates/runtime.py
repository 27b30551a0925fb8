import asyncio
import logging
from collections.abc import Iterable
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from ...context import get_context
from ...domain import Aggregate, Command, Event, PendingEvent
from ...domain.exceptions import (
    CommandNotFound,
    ConcurrencyConflict,
    Contention,
    DomainRuleViolation,
)
from ...domain.payload import payload_schema_version, payload_type_name
from ...settings import RetoldSettings
from ..events import EventLog
from ..registry import Registry

LOGGER = logging.getLogger(__name__)

A = TypeVar("A", bound=Aggregate)


def fold(aggregate_type: type[A], aggregate_id: str, events: Iterable[Event[Any]]) -> A:
    """Rebuild aggregate state from its initial state and an event history.

    Folding is deterministic: the same events always give the same state.
    """
    state = aggregate_type(id=aggregate_id)
    state.replay(events)
    return state


class AggregateRuntime:
    """Executes commands against event-sourced aggregates.

    For every command the runtime folds the aggregate's full history into a
    fresh state, asks the command handler for event proposals and appends
    them with the loaded version as the expected version. Nothing is cached
    between commands, so there is no stale state to invalidate.

    When the append hits a concurrency conflict the whole cycle (load, fold,
    handle, append) runs again, up to ``settings.command_max_attempts`` times.
    Handlers are pure, which is what makes re-running them safe.
    """

    def __init__(self, registry: Registry, event_log: EventLog, settings: RetoldSettings):
        self.registry = registry
        self.event_log = event_log
        self.settings = settings

    async def load_state(self, aggregate_name: str, aggregate_id: str) -> Aggregate:
        """Fold the current state of one aggregate instance.

        Raises:
            AggregateNotFound: If no aggregate is registered under the name.
        """
        aggregate_type = self.registry.aggregate(aggregate_name)
        return await self._load(aggregate_type, aggregate_id)

    async def execute(self, command: Command) -> list[Event[Any]]:
        """Execute a command and return the events it appended.

        A command whose handler proposes no events appends nothing and
        returns an empty list.

        Raises:
            AggregateNotFound: If the aggregate name is not registered.
            CommandNotFound: If the aggregate has no handler for the type.
            DomainRuleViolation: If the payload is invalid or the handler
                rejects the command.
            Contention: If every attempt hit a concurrency conflict.
            StoreUnavailable: If the event store cannot be reached.
        """
        aggregate_type = self.registry.aggregate(command.aggregate_name)
        if not aggregate_type.handles_command_type(command.type):
            raise CommandNotFound(
                f"Aggregate {command.aggregate_name} has no handler for command type {command.type!r}"
            )

        max_attempts = self.settings.command_max_attempts
        last_error: ConcurrencyConflict | None = None
        for attempt in range(1, max_attempts + 1):
            state = await self._load(aggregate_type, command.aggregate_id)
            proposed = self._decide(state, command)
            if not proposed:
                return []

            try:
                result = await self.event_log.append(
                    command.aggregate_id, command.aggregate_name, state.version, proposed
                )
            except ConcurrencyConflict as error:
                last_error = error
                LOGGER.warning(
                    "Concurrency conflict on attempt %d/%d: %s",
                    attempt,
                    max_attempts,
                    error,
                    extra={
                        "aggregate_id": command.aggregate_id,
                        "command_type": command.type,
                        **get_context().as_log_extra(),
                    },
                )
                if attempt < max_attempts:
                    await asyncio.sleep(self.settings.command_retry_delay)
                continue

            return result.events

        raise Contention(command.aggregate_id, max_attempts) from last_error

    async def _load(self, aggregate_type: type[A], aggregate_id: str) -> A:
        state = aggregate_type(id=aggregate_id)
        async for event in self.event_log.load_events(aggregate_id):
            state.apply(event)
        return state

    def _decide(self, state: Aggregate, command: Command) -> list[PendingEvent]:
        try:
            payloads = state.handle(command.type, command.payload)
        except ValidationError as error:
            raise DomainRuleViolation(
                f"Invalid payload for {command.type}: {error.error_count()} validation error(s)",
                code="invalid_payload",
            ) from error

        for payload in payloads:
            if not isinstance(payload, BaseModel):
                raise TypeError(
                    f"Handler for {command.type} returned {type(payload).__name__}, expected a payload model"
                )

        ctx = get_context()
        correlation_id = ctx.correlation_id or command.correlation_id
        causation_id = ctx.command_id or command.command_id
        return [
            PendingEvent(
                type=payload_type_name(type(payload)),
                payload=payload.model_dump(mode="json"),
                schema_version=payload_schema_version(type(payload)),
                meta=dict(command.meta),
                correlation_id=correlation_id,
                causation_id=causation_id,
            )
            for payload in payloads
        ]

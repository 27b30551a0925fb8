"""Durable progress tracking for projection engines."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal

CursorStatus = Literal["running", "halted"]


@dataclass(frozen=True)
class ProjectionCursor:
    """Where a read model stands in the event log.

    Attributes:
        read_model_name: The read model this cursor belongs to.
        position: Position of the last event applied (or skipped) by the
            read model; 0 before the first one.
        initialized: Whether the read model's ``init`` has run.
        events_applied: Number of events projected so far.
        status: "halted" after a failing event under the halt policy.
        failed_position: Position of the event that halted the projection.
        last_error: Description of the last projection failure.
    """

    read_model_name: str
    position: int = 0
    initialized: bool = False
    events_applied: int = 0
    status: CursorStatus = "running"
    failed_position: int | None = None
    last_error: str | None = None

    @property
    def halted(self) -> bool:
        return self.status == "halted"


class CursorBackend(ABC):
    """Storage for projection cursors, keyed by read model name."""

    @abstractmethod
    async def load_cursor(self, read_model_name: str) -> ProjectionCursor | None: ...

    @abstractmethod
    async def save_cursor(self, cursor: ProjectionCursor) -> None: ...


class InMemoryCursorBackend(CursorBackend):
    """Cursor backend for tests and single-process deployments."""

    def __init__(self) -> None:
        self.cursors: dict[str, ProjectionCursor] = {}

    async def load_cursor(self, read_model_name: str) -> ProjectionCursor | None:
        return self.cursors.get(read_model_name)

    async def save_cursor(self, cursor: ProjectionCursor) -> None:
        self.cursors[cursor.read_model_name] = cursor

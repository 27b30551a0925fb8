from .cursor import CursorBackend, InMemoryCursorBackend, ProjectionCursor
from .engine import ProjectionEngine
from .read_model import ReadModel
from .store import (
    InMemoryReadModelStore,
    ReadModelReader,
    ReadModelStore,
    ReadModelWriter,
    TableSchema,
)

__all__ = [
    "CursorBackend",
    "InMemoryCursorBackend",
    "InMemoryReadModelStore",
    "ProjectionCursor",
    "ProjectionEngine",
    "ReadModel",
    "ReadModelReader",
    "ReadModelStore",
    "ReadModelWriter",
    "TableSchema",
]

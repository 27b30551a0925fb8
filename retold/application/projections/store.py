"""Durable storage for read models.

This module provides:
- TableSchema: Declared shape of a read model table
- ReadModelStore: Abstract backend shared by every read model
- InMemoryReadModelStore: Dict-backed backend for tests and development
- ReadModelWriter / ReadModelReader: Role-restricted views of one read model

Tables are namespaced per read model: two read models may both define a
``lists`` table without seeing each other's records.
"""

import copy
import operator
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field

from ...domain.exceptions import ReadModelAccessError, ReadModelSchemaError

Record = dict[str, Any]
Filter = Mapping[str, Any]


class TableSchema(BaseModel):
    """Declared columns of a read model table.

    Index columns are required on every record and typed ("string" or
    "number"); plain fields are optional and untyped. Writes that reference
    any other column are rejected.

    Example:
        >>> TableSchema(indexes={"id": "string"}, fields=["name", "createdAt"])
    """

    indexes: dict[str, Literal["string", "number"]] = Field(default_factory=dict)
    fields: list[str] = Field(default_factory=list)

    def columns(self) -> set[str]:
        return set(self.indexes) | set(self.fields)

    def check_record(self, table: str, record: Mapping[str, Any]) -> None:
        unknown = set(record) - self.columns()
        if unknown:
            raise ReadModelSchemaError(f"Table {table!r} has no columns {sorted(unknown)}")
        for column, kind in self.indexes.items():
            if column not in record:
                raise ReadModelSchemaError(f"Table {table!r} requires index column {column!r}")
            if not _matches_kind(record[column], kind):
                raise ReadModelSchemaError(
                    f"Index column {column!r} of table {table!r} must be a {kind}"
                )


def _matches_kind(value: Any, kind: str) -> bool:
    if kind == "string":
        return isinstance(value, str)
    return isinstance(value, int | float) and not isinstance(value, bool)


def _compare(compare: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(value: Any, operand: Any) -> bool:
        if value is None:
            return False
        try:
            return compare(value, operand)
        except TypeError:
            return False

    return check


_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "$eq": operator.eq,
    "$ne": operator.ne,
    "$lt": _compare(operator.lt),
    "$lte": _compare(operator.le),
    "$gt": _compare(operator.gt),
    "$gte": _compare(operator.ge),
    "$in": lambda value, operand: value in operand,
    "$nin": lambda value, operand: value not in operand,
}


def _is_operator_dict(condition: Any) -> bool:
    return isinstance(condition, Mapping) and bool(condition) and all(
        isinstance(key, str) and key.startswith("$") for key in condition
    )


def matches(record: Mapping[str, Any], filter: Filter | None) -> bool:
    """Evaluate a filter against one record.

    Supports field equality, the comparison operators ``$eq $ne $lt $lte
    $gt $gte $in $nin`` and ``$and`` / ``$or`` lists of sub-filters. A
    missing field compares as None.

    Raises:
        ValueError: On an unknown operator.
    """
    if not filter:
        return True
    for key, condition in filter.items():
        if key == "$and":
            if not all(matches(record, sub) for sub in condition):
                return False
        elif key == "$or":
            if not any(matches(record, sub) for sub in condition):
                return False
        elif key.startswith("$"):
            raise ValueError(f"Unknown filter operator {key!r}")
        elif _is_operator_dict(condition):
            value = record.get(key)
            for op, operand in condition.items():
                check = _OPERATORS.get(op)
                if check is None:
                    raise ValueError(f"Unknown filter operator {op!r}")
                if not check(value, operand):
                    return False
        elif record.get(key) != condition:
            return False
    return True


def apply_patch(record: Record, patch: Mapping[str, Any]) -> Record:
    """Return a patched copy of ``record``.

    A patch is made of ``$set``, ``$unset`` and ``$inc`` sections; a plain
    dict is shorthand for ``$set``.

    Raises:
        ValueError: On an unknown patch operator.
    """
    if not any(key.startswith("$") for key in patch):
        patch = {"$set": patch}

    updated = dict(record)
    for op, changes in patch.items():
        if op == "$set":
            updated.update(copy.deepcopy(dict(changes)))
        elif op == "$unset":
            for column in changes:
                updated.pop(column, None)
        elif op == "$inc":
            for column, amount in changes.items():
                updated[column] = updated.get(column, 0) + amount
        else:
            raise ValueError(f"Unknown patch operator {op!r}")
    return updated


def patched_columns(patch: Mapping[str, Any]) -> set[str]:
    if not any(key.startswith("$") for key in patch):
        return set(patch)
    return {column for changes in patch.values() for column in changes}


def apply_projection(record: Record, projection: Mapping[str, int] | None) -> Record:
    """Keep (``{field: 1}``) or drop (``{field: 0}``) columns of a record.

    Raises:
        ValueError: When inclusion and exclusion are mixed.
    """
    if not projection:
        return record
    included = {column for column, flag in projection.items() if flag}
    excluded = {column for column, flag in projection.items() if not flag}
    if included and excluded:
        raise ValueError("A projection cannot mix included and excluded fields")
    if included:
        return {column: value for column, value in record.items() if column in included}
    return {column: value for column, value in record.items() if column not in excluded}


def sort_records(records: list[Record], sort: Mapping[str, int] | None) -> list[Record]:
    """Sort by ``{field: 1 | -1}`` keys, most significant first. None sorts first."""
    if not sort:
        return records
    result = list(records)
    for column, direction in reversed(list(sort.items())):
        present = [r for r in result if r.get(column) is not None]
        missing = [r for r in result if r.get(column) is None]
        present.sort(key=lambda r, c=column: r[c], reverse=direction < 0)
        result = present + missing if direction < 0 else missing + present
    return result


class ReadModelStore(ABC):
    """Abstract backend for read model tables.

    One store instance is shared by all read models of an application.
    Every method takes the read model name first; implementations keep the
    tables of different read models apart.

    Implementations must raise StoreUnavailable when the backend cannot be
    reached, so that projection engines back off instead of failing.
    """

    @abstractmethod
    async def define_table(self, read_model: str, table: str, schema: TableSchema) -> None:
        """Declare a table. Defining the same table twice is an error."""
        ...

    @abstractmethod
    async def insert(self, read_model: str, table: str, record: Record) -> None: ...

    @abstractmethod
    async def update(
        self, read_model: str, table: str, filter: Filter, patch: Mapping[str, Any]
    ) -> int:
        """Patch every matching record and return how many were changed."""
        ...

    @abstractmethod
    async def delete(self, read_model: str, table: str, filter: Filter) -> int:
        """Delete every matching record and return how many were deleted."""
        ...

    @abstractmethod
    async def find(
        self,
        read_model: str,
        table: str,
        filter: Filter | None = None,
        projection: Mapping[str, int] | None = None,
        sort: Mapping[str, int] | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Record]: ...

    async def find_one(
        self,
        read_model: str,
        table: str,
        filter: Filter | None = None,
        projection: Mapping[str, int] | None = None,
    ) -> Record | None:
        records = await self.find(read_model, table, filter, projection, limit=1)
        return records[0] if records else None

    @abstractmethod
    async def count(self, read_model: str, table: str, filter: Filter | None = None) -> int: ...

    @abstractmethod
    async def drop(self, read_model: str) -> None:
        """Remove every table of a read model, definitions included."""
        ...

    @abstractmethod
    def transaction(self, read_model: str) -> AbstractAsyncContextManager[None]:
        """Group the writes to one read model into an all-or-nothing unit.

        If the block raises, every write made inside it is undone.
        """
        ...

    def writer(self, read_model: str) -> "ReadModelWriter":
        return ReadModelWriter(self, read_model)

    def reader(self, read_model: str) -> "ReadModelReader":
        return ReadModelReader(self, read_model)


@dataclass
class _Table:
    schema: TableSchema
    records: list[Record] = field(default_factory=list)


def _restore(records: list[Record], replaced: list[tuple[int, Record]]) -> None:
    for index, record in replaced:
        records[index] = record


class InMemoryReadModelStore(ReadModelStore):
    """Dict-backed read model store.

    Records are deep-copied on the way in and on the way out, so callers
    can never mutate stored state by holding on to a record.
    """

    def __init__(self) -> None:
        self.tables: dict[str, dict[str, _Table]] = {}
        # Undo steps of the open transaction, per read model.
        self._journals: dict[str, list[Callable[[], None]]] = {}

    def _on_rollback(self, read_model: str, undo: Callable[[], None]) -> None:
        journal = self._journals.get(read_model)
        if journal is not None:
            journal.append(undo)

    def _table(self, read_model: str, table: str) -> _Table:
        try:
            return self.tables[read_model][table]
        except KeyError:
            raise ReadModelSchemaError(
                f"Read model {read_model!r} has no table {table!r}; define it in init()"
            ) from None

    async def define_table(self, read_model: str, table: str, schema: TableSchema) -> None:
        tables = self.tables.setdefault(read_model, {})
        if table in tables:
            raise ReadModelSchemaError(f"Table {table!r} of {read_model!r} is already defined")
        tables[table] = _Table(schema)
        self._on_rollback(read_model, lambda: tables.pop(table, None))

    async def insert(self, read_model: str, table: str, record: Record) -> None:
        stored = self._table(read_model, table)
        stored.schema.check_record(table, record)
        records = stored.records
        records.append(copy.deepcopy(dict(record)))
        self._on_rollback(read_model, records.pop)

    async def update(
        self, read_model: str, table: str, filter: Filter, patch: Mapping[str, Any]
    ) -> int:
        stored = self._table(read_model, table)
        unknown = patched_columns(patch) - stored.schema.columns()
        if unknown:
            raise ReadModelSchemaError(f"Table {table!r} has no columns {sorted(unknown)}")

        records = stored.records
        replaced: list[tuple[int, Record]] = []
        try:
            for index, record in enumerate(records):
                if matches(record, filter):
                    updated = apply_patch(record, patch)
                    stored.schema.check_record(table, updated)
                    records[index] = updated
                    replaced.append((index, record))
        finally:
            if replaced:
                self._on_rollback(read_model, lambda: _restore(records, replaced))
        return len(replaced)

    async def delete(self, read_model: str, table: str, filter: Filter) -> int:
        stored = self._table(read_model, table)
        previous = stored.records
        stored.records = [record for record in previous if not matches(record, filter)]
        self._on_rollback(read_model, lambda: setattr(stored, "records", previous))
        return len(previous) - len(stored.records)

    async def find(
        self,
        read_model: str,
        table: str,
        filter: Filter | None = None,
        projection: Mapping[str, int] | None = None,
        sort: Mapping[str, int] | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Record]:
        stored = self._table(read_model, table)
        found = sort_records([r for r in stored.records if matches(r, filter)], sort)
        end = None if limit is None else skip + limit
        return [copy.deepcopy(apply_projection(r, projection)) for r in found[skip:end]]

    async def count(self, read_model: str, table: str, filter: Filter | None = None) -> int:
        stored = self._table(read_model, table)
        return sum(1 for record in stored.records if matches(record, filter))

    async def drop(self, read_model: str) -> None:
        dropped = self.tables.pop(read_model, None)
        if dropped is not None:
            self._on_rollback(read_model, lambda: self.tables.__setitem__(read_model, dropped))

    @asynccontextmanager
    async def _transaction(self, read_model: str) -> AsyncIterator[None]:
        # Stored records are replaced, never mutated, so undoing a write
        # only has to put the previous objects back.
        if read_model in self._journals:
            # Nested blocks join the outer transaction.
            yield
            return
        journal = self._journals[read_model] = []
        try:
            yield
        except BaseException:
            for undo in reversed(journal):
                undo()
            raise
        finally:
            del self._journals[read_model]

    def transaction(self, read_model: str) -> AbstractAsyncContextManager[None]:
        return self._transaction(read_model)


class _RoleView:
    """Base for views exposing only one role's operations on one read model."""

    __slots__ = ("_store", "read_model")

    _role: str = ""
    _forbidden: frozenset[str] = frozenset()

    def __init__(self, store: ReadModelStore, read_model: str):
        self._store = store
        self.read_model = read_model

    def __getattr__(self, name: str) -> Any:
        if name in self._forbidden:
            raise ReadModelAccessError(
                f"{name}() is not available to {self._role} of read model {self.read_model!r}"
            )
        raise AttributeError(name)


class ReadModelWriter(_RoleView):
    """Write access to one read model, handed to projections and ``init``.

    Projections cannot read: calling ``find``, ``find_one`` or ``count``
    raises ReadModelAccessError.
    """

    __slots__ = ()

    _role = "projections"
    _forbidden = frozenset({"find", "find_one", "count", "drop"})

    async def define_table(self, table: str, schema: TableSchema | Mapping[str, Any]) -> None:
        if not isinstance(schema, TableSchema):
            schema = TableSchema.model_validate(schema)
        await self._store.define_table(self.read_model, table, schema)

    async def insert(self, table: str, record: Record) -> None:
        await self._store.insert(self.read_model, table, record)

    async def update(self, table: str, filter: Filter, patch: Mapping[str, Any]) -> int:
        return await self._store.update(self.read_model, table, filter, patch)

    async def delete(self, table: str, filter: Filter) -> int:
        return await self._store.delete(self.read_model, table, filter)


class ReadModelReader(_RoleView):
    """Read access to one read model, handed to resolvers.

    Resolvers cannot write: calling ``define_table``, ``insert``, ``update``
    or ``delete`` raises ReadModelAccessError.
    """

    __slots__ = ()

    _role = "resolvers"
    _forbidden = frozenset({"define_table", "insert", "update", "delete", "drop"})

    async def find(
        self,
        table: str,
        filter: Filter | None = None,
        projection: Mapping[str, int] | None = None,
        sort: Mapping[str, int] | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Record]:
        return await self._store.find(self.read_model, table, filter, projection, sort, skip, limit)

    async def find_one(
        self,
        table: str,
        filter: Filter | None = None,
        projection: Mapping[str, int] | None = None,
    ) -> Record | None:
        return await self._store.find_one(self.read_model, table, filter, projection)

    async def count(self, table: str, filter: Filter | None = None) -> int:
        return await self._store.count(self.read_model, table, filter)

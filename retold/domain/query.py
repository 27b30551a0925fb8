"""Query envelope for the read side of CQRS.

Queries name a read model (or a view model) and one of its resolvers.
Unlike commands, queries never change state.
"""

from typing import Any

from pydantic import BaseModel, Field, model_validator
from ulid import ULID


class Query(BaseModel):
    """A read-only request answered by a resolver.

    Exactly one of ``read_model_name`` and ``view_model_name`` must be set.

    Attributes:
        read_model_name: Durable read model to query.
        view_model_name: In-memory view model to build and return.
        resolver_name: Resolver to run (ignored for view models).
        args: Arguments passed to the resolver.
        query_id: Unique identifier for this query instance.
        correlation_id: Optional correlation ID for distributed tracing.

    Examples:
        >>> Query(read_model_name="ShoppingLists", resolver_name="all")
        >>> Query(view_model_name="ShoppingListView", args={"aggregate_ids": ["A1"]})
    """

    read_model_name: str | None = None
    view_model_name: str | None = None
    resolver_name: str = "default"
    args: dict[str, Any] = Field(default_factory=dict)
    query_id: ULID = Field(default_factory=ULID)
    correlation_id: ULID | None = None

    @model_validator(mode="after")
    def _check_target(self) -> "Query":
        if (self.read_model_name is None) == (self.view_model_name is None):
            raise ValueError("Exactly one of read_model_name and view_model_name must be set")
        return self

    @property
    def model_name(self) -> str:
        return self.read_model_name or self.view_model_name  # type: ignore[return-value]

from typing import TYPE_CHECKING

from ..domain import Aggregate
from ..domain.exceptions import AggregateNotFound, ReadModelNotFound, ViewModelNotFound

if TYPE_CHECKING:
    from .projections import ReadModel
    from .view_models import ViewModel


class Registry:
    """Name-keyed lookup of the aggregates, read models and view models of an app.

    Names are unique per kind. The registry is filled by ApplicationBuilder
    and read-only afterwards.
    """

    def __init__(self) -> None:
        self.aggregates: dict[str, type[Aggregate]] = {}
        self.read_models: dict[str, ReadModel] = {}
        self.view_models: dict[str, type[ViewModel]] = {}

    def add_aggregate(self, aggregate_type: type[Aggregate]) -> None:
        name = aggregate_type.get_name()
        if name in self.aggregates:
            raise ValueError(f"Aggregate {name} is already registered")
        self.aggregates[name] = aggregate_type

    def add_read_model(self, read_model: "ReadModel") -> None:
        name = read_model.get_name()
        if name in self.read_models:
            raise ValueError(f"Read model {name} is already registered")
        self.read_models[name] = read_model

    def add_view_model(self, view_model_type: "type[ViewModel]") -> None:
        name = view_model_type.get_name()
        if name in self.view_models:
            raise ValueError(f"View model {name} is already registered")
        self.view_models[name] = view_model_type

    def aggregate(self, name: str) -> type[Aggregate]:
        try:
            return self.aggregates[name]
        except KeyError:
            raise AggregateNotFound(f"No aggregate registered under {name!r}") from None

    def read_model(self, name: str) -> "ReadModel":
        try:
            return self.read_models[name]
        except KeyError:
            raise ReadModelNotFound(f"No read model registered under {name!r}") from None

    def view_model(self, name: str) -> "type[ViewModel]":
        try:
            return self.view_models[name]
        except KeyError:
            raise ViewModelNotFound(f"No view model registered under {name!r}") from None

from .runtime import AggregateRuntime, fold

__all__ = ["AggregateRuntime", "fold"]

from .bus import QueryBus, QueryHandler, QueryResolver

__all__ = ["QueryBus", "QueryHandler", "QueryResolver"]

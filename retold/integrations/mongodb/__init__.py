from .config import MongoConfiguration
from .event_store import MongoEventStore

__all__ = ["MongoConfiguration", "MongoEventStore"]

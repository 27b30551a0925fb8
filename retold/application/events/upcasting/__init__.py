from .pipeline import EventUpcaster, UpcasterMap, UpcastingPipeline, extract_upcaster_types
from .strategies import EagerUpcastingStrategy, LazyUpcastingStrategy, UpcastingStrategy

__all__ = [
    "EagerUpcastingStrategy",
    "EventUpcaster",
    "LazyUpcastingStrategy",
    "UpcasterMap",
    "UpcastingPipeline",
    "UpcastingStrategy",
    "extract_upcaster_types",
]

from abc import ABC, abstractmethod


class UpcastingStrategy(ABC):
    """Strategy for when to apply upcasting transformations.

    Stored events are never rewritten. Strategies only decide whether an
    event's payload is brought to the current schema when it is read back,
    when it is about to be written, or both.
    """

    @abstractmethod
    def should_upcast_on_read(self) -> bool:
        """Should events be upcasted when loaded from the event store?"""
        ...

    @abstractmethod
    def should_upcast_on_write(self) -> bool:
        """Should proposed events be upcasted before they are appended?"""
        ...


class LazyUpcastingStrategy(UpcastingStrategy):
    """Lazy upcasting: transform events only when reading from storage.

    This is the default. Old events stay in storage with their original
    schema and are transformed on the fly during replay, so old payload
    classes must stay importable for as long as such events exist.
    """

    def should_upcast_on_read(self) -> bool:
        return True

    def should_upcast_on_write(self) -> bool:
        return False


class EagerUpcastingStrategy(UpcastingStrategy):
    """Eager upcasting: also transform proposed events before they are stored.

    Useful while command handlers are being migrated: a handler that still
    emits an old payload version has it stored in the current shape.
    """

    def should_upcast_on_read(self) -> bool:
        return True

    def should_upcast_on_write(self) -> bool:
        return True

import inspect
from abc import ABC, abstractmethod
from collections.abc import Callable
from functools import singledispatch
from typing import Any, NamedTuple, TypeVar, get_args, get_origin

from pydantic import BaseModel

from .domain.exceptions import CommandNotFound
from .domain.payload import payload_type_name

T = TypeVar("T")

# Marker for handlers that want the Event wrapper, not just payload
_WANTS_EVENT_WRAPPER_ATTR = "_wants_event_wrapper"


class DefaultHandler(ABC):
    """Base handler for type tags nobody registered."""

    __slots__ = ("kind", "operation_name")

    def __init__(self, kind: str, operation_name: str):
        """Initialize the default handler.

        Args:
            kind: What is being routed (e.g., "command", "event").
            operation_name: Name of the operation for error messages.
        """
        self.kind = kind
        self.operation_name = operation_name

    @abstractmethod
    def __call__(self, type_tag: str, instance: Any) -> Any:
        """Handle an unregistered type tag.

        Args:
            type_tag: The tag nobody handles.
            instance: The instance the message was routed on.
        """
        ...


class RaiseHandler(DefaultHandler):
    """Raise CommandNotFound for unregistered type tags."""

    __slots__ = ()

    def __call__(self, type_tag: str, instance: Any) -> Any:
        raise CommandNotFound(
            f"No {self.operation_name} registered for {self.kind} type "
            f"'{type_tag}' on {type(instance).__name__}"
        )


class IgnoreHandler(DefaultHandler):
    """Silently ignore unregistered type tags."""

    __slots__ = ()

    def __call__(self, type_tag: str, instance: Any) -> Any:
        return None


def _extract_handler_type(func: Callable[..., Any], param_index: int = 1) -> tuple[type, bool]:
    """Extract the payload type annotation from a handler method.

    This also detects whether the handler wants the Event wrapper
    (annotated as ``Event[T]``) or just the payload (annotated as ``T``).

    Args:
        func: The handler method to inspect.
        param_index: Index of the parameter to extract
            (0=self, 1=first arg, etc.)

    Returns:
        A tuple of (payload_type, wants_wrapper).

    Raises:
        ValueError: If the parameter is missing or lacks a type annotation.
    """
    func_name = getattr(func, "__name__", repr(func))
    params = list(inspect.signature(func).parameters.values())
    if len(params) <= param_index:
        raise ValueError(f"Handler {func_name} must have at least {param_index + 1} parameters")

    param = params[param_index]
    if param.annotation is inspect.Parameter.empty:
        raise ValueError(f"Handler {func_name} parameter '{param.name}' must have a type annotation")
    annotation = param.annotation
    if isinstance(annotation, str):
        raise ValueError(
            f"Handler {func_name} parameter '{param.name}' uses a string annotation; "
            "routing needs the payload class itself"
        )

    from .domain.event import Event  # Import here to avoid circular dependency

    if get_origin(annotation) is Event:
        args = get_args(annotation)
        if not args:
            raise ValueError(
                f"Handler {func_name}: Event type must have a type"
                " argument, e.g., Event[ShoppingListCreated]"
            )
        return (args[0], True)

    # For Pydantic models, Event[T] creates a new class at runtime
    if isinstance(annotation, type) and issubclass(annotation, Event):
        metadata = getattr(annotation, "__pydantic_generic_metadata__", None)
        if metadata and metadata.get("origin") is Event and metadata.get("args"):
            return (metadata["args"][0], True)
        raise ValueError(
            f"Handler {func_name}: Event type must have a type"
            " argument, e.g., Event[ShoppingListCreated]"
        )

    if not (isinstance(annotation, type) and issubclass(annotation, BaseModel)):
        raise ValueError(f"Handler {func_name} must be annotated with a payload model")

    return (annotation, False)


class Route(NamedTuple):
    payload_type: type[BaseModel]
    handler: Callable[..., Any]
    wants_wrapper: bool


class MessageRouter:
    """Router dispatching type-tagged messages to handler methods.

    Each payload class registered here contributes one type tag. Routing
    validates the raw payload into that class before calling the handler,
    so handlers always work with typed payloads.

    Handlers are called as ``handler(instance, *args, message)``: any extra
    positional arguments (such as the read model store for projections) come
    before the message.
    """

    __slots__ = ("_routes", "_default_handler")

    def __init__(self, default_handler: DefaultHandler):
        """Initialize the message router.

        Args:
            default_handler: Handler for unregistered type tags.
        """
        self._routes: dict[str, Route] = {}
        self._default_handler = default_handler

    def register(
        self,
        payload_type: type[BaseModel],
        handler: Callable[..., Any],
        wants_wrapper: bool = False,
    ) -> None:
        """Register a handler for the type tag of ``payload_type``.

        A later registration for the same tag replaces the earlier one, which
        lets subclasses override inherited handlers.
        """
        self._routes[payload_type_name(payload_type)] = Route(payload_type, handler, wants_wrapper)

    def handles(self, type_tag: str) -> bool:
        return type_tag in self._routes

    def payload_type(self, type_tag: str) -> type[BaseModel] | None:
        route = self._routes.get(type_tag)
        return route.payload_type if route else None

    def type_tags(self) -> list[str]:
        return list(self._routes)

    def route(
        self,
        instance: Any,
        type_tag: str,
        payload: Any,
        *args: Any,
        event: Any = None,
    ) -> object:
        """Route a message to its registered handler.

        Args:
            instance: The instance to call the handler on (self).
            type_tag: Type tag of the message.
            payload: Raw or typed payload.
            *args: Extra positional arguments passed before the message.
            event: The full Event, for handlers annotated with ``Event[T]``.

        Returns:
            The result of the handler method.

        Raises:
            pydantic.ValidationError: If the payload does not fit the
                registered payload model.
        """
        route = self._routes.get(type_tag)
        if route is None:
            return self._default_handler(type_tag, instance)

        if isinstance(payload, route.payload_type):
            typed = payload
        else:
            typed = route.payload_type.model_validate(payload)

        if route.wants_wrapper and event is not None:
            message = event.model_copy(update={"payload": typed})
        else:
            message = typed
        return route.handler(instance, *args, message)


class ClassRouter:
    """Router dispatching messages on their Python class.

    Used by middleware, which intercepts whole message kinds (Command, Query)
    rather than individual type tags. Lookup follows the class hierarchy, so
    an interceptor for ``Command`` sees every command.
    """

    __slots__ = ("_dispatch",)

    def __init__(self) -> None:
        @singledispatch
        def dispatch(message: object, instance: object, *args: Any) -> object:
            return None

        self._dispatch = dispatch

    def register(self, message_type: type, handler: Callable[..., Any]) -> None:
        def wrapper(msg: object, inst: object, *args: Any, h: Any = handler) -> object:
            return h(inst, msg, *args)

        self._dispatch.register(message_type)(wrapper)

    def route(self, instance: Any, message: Any, *args: Any) -> object:
        return self._dispatch(message, instance, *args)


class HandlerDecorator:
    """Base class for handler decorators.

    Marks methods as handlers for the payload type found in their
    annotation at ``param_index``.
    """

    def __init__(self, marker_attr: str, type_attr: str, param_index: int = 1):
        """Initialize the decorator.

        Args:
            marker_attr: Attribute name to mark decorated methods
                (e.g., '_is_command_handler').
            type_attr: Attribute name to store the payload type
                (e.g., '_handles_command_type').
            param_index: Which parameter carries the message annotation.
        """
        self.marker_attr = marker_attr
        self.type_attr = type_attr
        self.param_index = param_index

    def __call__(self, func: Callable[..., T]) -> Callable[..., T]:
        message_type, wants_wrapper = _extract_handler_type(func, param_index=self.param_index)
        setattr(func, self.type_attr, message_type)
        setattr(func, self.marker_attr, True)
        setattr(func, _WANTS_EVENT_WRAPPER_ATTR, wants_wrapper)
        return func


class _InterceptsDecorator(HandlerDecorator):
    """Interceptors route on message classes, not payload models."""

    def __call__(self, func: Callable[..., T]) -> Callable[..., T]:
        params = list(inspect.signature(func).parameters.values())
        if len(params) < 3 or not isinstance(params[1].annotation, type):
            raise ValueError(
                f"Interceptor {func.__name__} must be declared as "
                "(self, message: MessageType, next: Handler)"
            )
        setattr(func, self.type_attr, params[1].annotation)
        setattr(func, self.marker_attr, True)
        return func


handles_command = HandlerDecorator("_is_command_handler", "_handles_command_type")
applies_event = HandlerDecorator("_is_event_applier", "_applies_event_type")
projects = HandlerDecorator("_is_projection", "_projects_event_type", param_index=2)
intercepts = _InterceptsDecorator("_is_interceptor", "_intercepts_type")

handles_command.__doc__ = """Decorator marking an aggregate method as a command handler.

The command type tag comes from the payload model in the annotation. The
handler returns the proposed event payloads: one payload, a list of them,
or None for no events.

Example:
    >>> class ShoppingList(Aggregate):
    ...     @handles_command
    ...     def create(self, cmd: CreateShoppingList) -> ShoppingListCreated:
    ...         return ShoppingListCreated(name=cmd.name)
"""

applies_event.__doc__ = """Decorator marking a method as an event reducer.

Used by aggregates and view models. Annotate with the payload model, or
with ``Event[Payload]`` to receive the full event.

Example:
    >>> class ShoppingList(Aggregate):
    ...     @applies_event
    ...     def created(self, event: Event[ShoppingListCreated]) -> None:
    ...         self.created_at = event.timestamp
"""

projects.__doc__ = """Decorator marking a read model method as a projection.

Projections take the writable store and the event.

Example:
    >>> class ShoppingLists(ReadModel):
    ...     @projects
    ...     async def created(self, store: ReadModelWriter,
    ...                       event: Event[ShoppingListCreated]) -> None:
    ...         await store.insert("lists", {"id": event.aggregate_id})
"""

intercepts.__doc__ = """Decorator marking a middleware method as an interceptor.

The message class comes from the annotation. Use Command or Query to
intercept every message of that kind.

Example:
    >>> class AuditMiddleware(Middleware):
    ...     @intercepts
    ...     async def audit(self, cmd: Command, next: Handler):
    ...         return await next(cmd)
"""


def resolves(name: str | Callable[..., Any] | None = None) -> Any:
    """Decorator marking a read model method as a query resolver.

    The resolver is registered under the method name unless a name is given.

    Example:
        >>> class ShoppingLists(ReadModel):
        ...     @resolves
        ...     async def all(self, store: ReadModelReader, args: dict) -> list[dict]:
        ...         return await store.find("lists", {})
        ...
        ...     @resolves("by-id")
        ...     async def by_id(self, store: ReadModelReader, args: dict) -> dict | None:
        ...         return await store.find_one("lists", {"id": args["id"]})
    """

    def mark(func: Callable[..., T], resolver_name: str | None = None) -> Callable[..., T]:
        setattr(func, "_resolver_name", resolver_name or func.__name__)
        return func

    if callable(name):
        return mark(name)
    return lambda func: mark(func, name)


def setup_routing(
    cls: type,
    marker_attr: str,
    type_attr: str,
    default_handler: DefaultHandler,
) -> MessageRouter:
    """Set up type-tag routing for a class.

    Scans the class hierarchy, base classes first, for methods decorated
    with the given marker and registers them with a MessageRouter.

    Args:
        cls: The class to set up routing for.
        marker_attr: Attribute name marking decorated methods.
        type_attr: Attribute name storing the payload type.
        default_handler: Handler for unregistered type tags.

    Returns:
        A configured MessageRouter.
    """
    router = MessageRouter(default_handler)
    for klass in reversed(cls.__mro__):
        for value in vars(klass).values():
            if getattr(value, marker_attr, None) is True:
                router.register(
                    getattr(value, type_attr),
                    value,
                    wants_wrapper=getattr(value, _WANTS_EVENT_WRAPPER_ATTR, False),
                )
    return router


def setup_command_routing(cls: type) -> MessageRouter:
    return setup_routing(
        cls,
        marker_attr="_is_command_handler",
        type_attr="_handles_command_type",
        default_handler=RaiseHandler("command", "handler"),
    )


def setup_event_applying(cls: type) -> MessageRouter:
    return setup_routing(
        cls,
        marker_attr="_is_event_applier",
        type_attr="_applies_event_type",
        default_handler=IgnoreHandler("event", "applier"),
    )


def setup_projection_routing(cls: type) -> MessageRouter:
    return setup_routing(
        cls,
        marker_attr="_is_projection",
        type_attr="_projects_event_type",
        default_handler=IgnoreHandler("event", "projection"),
    )


def setup_resolvers(cls: type) -> dict[str, Callable[..., Any]]:
    """Collect the resolver methods of a read model class by resolver name."""
    resolvers: dict[str, Callable[..., Any]] = {}
    for klass in reversed(cls.__mro__):
        for value in vars(klass).values():
            resolver_name = getattr(value, "_resolver_name", None)
            if isinstance(resolver_name, str):
                resolvers[resolver_name] = value
    return resolvers


def setup_middleware_routing(cls: type) -> ClassRouter:
    """Set up message interception routing for middleware.

    Args:
        cls: The middleware class to set up routing for.

    Returns:
        A configured ClassRouter for message interceptors.
    """
    router = ClassRouter()
    for klass in reversed(cls.__mro__):
        for value in vars(klass).values():
            if getattr(value, "_is_interceptor", None) is True:
                router.register(getattr(value, "_intercepts_type"), value)
    return router

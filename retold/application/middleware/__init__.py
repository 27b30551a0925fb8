from .base import Handler, Middleware
from .context import ContextPropagationMiddleware
from .logging import LoggingMiddleware

__all__ = [
    "ContextPropagationMiddleware",
    "Handler",
    "LoggingMiddleware",
    "Middleware",
]

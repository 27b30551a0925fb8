"""Logging middleware for command and query tracing."""

import logging
from typing import Any

from ...context import get_context
from ...domain import Command, Query
from ...routing import intercepts
from .base import Handler, Middleware

LOGGER = logging.getLogger(__name__)


class LoggingMiddleware(Middleware):
    """Middleware that logs commands and queries with correlation.

    Logs each message received at the configured level with its type, its
    target and the correlation/causation ids of the current execution
    context. Payloads and query arguments are NOT logged to avoid exposing
    PII or sensitive information.

    Attributes:
        level: The numeric logging level (e.g., logging.INFO).

    Examples:
        >>> app = (ApplicationBuilder()
        ...     .use_correlation_tracking()
        ...     .register_middleware(LoggingMiddleware("DEBUG"))
        ...     .build())

    Note:
        For correlation ids to show up, ContextPropagationMiddleware must
        come before LoggingMiddleware in the chain.
    """

    def __init__(self, level: str = "INFO"):
        """Initialize the logging middleware.

        Args:
            level: Name of the log level (e.g., "INFO", "DEBUG"). Case-insensitive.
        """
        self.level = getattr(logging, level.upper())

    @intercepts
    async def log_command(self, command: Command, next: Handler) -> Any:
        extra = {
            "command_type": command.type,
            "aggregate_name": command.aggregate_name,
            "aggregate_id": command.aggregate_id,
            **get_context().as_log_extra(),
        }
        LOGGER.log(self.level, "Received Command", extra=extra)
        return await next(command)

    @intercepts
    async def log_query(self, query: Query, next: Handler) -> Any:
        extra = {
            "model_name": query.model_name,
            "resolver_name": query.resolver_name,
            **get_context().as_log_extra(),
        }
        LOGGER.log(self.level, "Received Query", extra=extra)
        return await next(query)

from .bus import CommandBus, CommandHandler

__all__ = ["CommandBus", "CommandHandler"]

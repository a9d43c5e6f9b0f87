"""Status watch module."""

from .status_watch import ErrorHandler, IStatusWatch, StatusHandler, StatusWatch

__all__ = ["ErrorHandler", "IStatusWatch", "StatusHandler", "StatusWatch"]

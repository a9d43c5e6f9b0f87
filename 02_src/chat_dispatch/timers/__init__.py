"""Timer module."""

from .miss_timer import Countdown, MissTimer, TimerState

__all__ = ["Countdown", "MissTimer", "TimerState"]

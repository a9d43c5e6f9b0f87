"""Dispatch module: fan-out, race resolution and the session orchestrator."""

from .engine import DispatchBatch, DispatchEngine, IRaceListener
from .resolver import RaceResolver, ResolverState
from .session import DispatchSession

__all__ = [
    "DispatchBatch",
    "DispatchEngine",
    "IRaceListener",
    "RaceResolver",
    "ResolverState",
    "DispatchSession",
]

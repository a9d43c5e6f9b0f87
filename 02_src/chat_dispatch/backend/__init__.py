"""Backend collaborators."""

from .backend import IChatBackend, IpLookup, IStatusFeed, NowProvider
from .http import HttpTimeSource, IpAddressLookup, parse_server_time
from .memory import InMemoryChatBackend, StatusFeed

__all__ = [
    "IChatBackend",
    "IpLookup",
    "IStatusFeed",
    "NowProvider",
    "HttpTimeSource",
    "IpAddressLookup",
    "parse_server_time",
    "InMemoryChatBackend",
    "StatusFeed",
]

"""Dispatch error types and user-facing advisory messages."""

ERROR_MESSAGES = {
    "no_agents": "No agents are currently available. Please try again later.",
    "failed_to_start": "Failed to start conversation. Please try again.",
    "connection": "Connection error. Please check your internet connection.",
    "auth": "Authentication error. Please refresh the page and try again.",
    "timeout": "No agents responded within the expected time. Please try again.",
    "all_missed": "All agents are busy right now. Please try again in a few minutes.",
    "unexpected": "An unexpected error occurred. Please try again.",
    "contract_load_failed": "Failed to load contract information",
}


class DispatchError(Exception):
    """Base class for errors surfaced by the dispatch core."""


class ContractFetchError(DispatchError):
    """The contract pool for a website could not be loaded."""

    def __init__(self, website_id: str, cause: Exception | None = None):
        super().__init__(f"{ERROR_MESSAGES['contract_load_failed']}: {website_id}")
        self.website_id = website_id
        self.cause = cause


class NoAgentsAvailableError(DispatchError):
    """No contract is eligible at submission time."""

    def __init__(self) -> None:
        super().__init__(ERROR_MESSAGES["no_agents"])


class BackendError(DispatchError):
    """A backend call (create, mark missed, opening message) failed."""


class FeedAuthError(BackendError):
    """Status feed rejected the subscription; reconnecting cannot help."""

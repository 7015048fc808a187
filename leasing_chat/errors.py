from __future__ import annotations


class LeasingChatError(Exception):
    """Base class for errors raised by the chat core."""


class InputError(LeasingChatError):
    """The inbound turn is malformed; rejected before any state changes."""


class CompletionError(LeasingChatError):
    """The completion service failed or timed out; the client should retry."""

    def __init__(self, message: str, *, timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out


class SessionStoreError(LeasingChatError):
    pass


class LeadStoreError(LeasingChatError):
    pass


class LeadSyncError(LeasingChatError):
    def __init__(self, message: str, *, attempts: int = 0) -> None:
        super().__init__(message)
        self.attempts = attempts

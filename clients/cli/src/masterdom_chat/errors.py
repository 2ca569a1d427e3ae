"""Error taxonomy shared by the session, directory and channel layers."""

from __future__ import annotations


class ChatClientError(Exception):
    """Base class for every error raised by the chat client core."""


class UnauthenticatedError(ChatClientError):
    def __init__(self, message: str = "no valid session") -> None:
        super().__init__(message)


class ValidationError(ChatClientError):
    pass


class ChannelBusyError(ChatClientError):
    def __init__(self, state: str) -> None:
        self.state = state
        super().__init__(f"channel is not ready (state={state})")


class MalformedTokenError(ChatClientError):
    pass


class TransportError(ChatClientError):
    """Network failure, timeout or unusable response from the backend."""


class ProtocolError(TransportError):
    pass


class ApiError(TransportError):
    def __init__(self, status: int, message: str) -> None:
        self.status = status
        self.message = message
        super().__init__(f"backend returned {status}: {message}")


class TokenRejectedError(ApiError):
    def __init__(self, message: str = "Invalid or expired token") -> None:
        super().__init__(401, message)


class DirectoryUnavailableError(ChatClientError):
    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"conversation directory unavailable: {cause}")

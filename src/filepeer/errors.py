from __future__ import annotations


class TransferError(Exception):
    """Base class for failures contained to a single connection or request."""


class BindExhaustedError(TransferError):
    """No port in the range could be bound."""


class ConnectExhaustedError(TransferError):
    """No (address, port) pair accepted a connection."""


class DecodeError(TransferError, ValueError):
    """Malformed or truncated command stream."""


class NotFoundError(TransferError):
    """The file or directory a command refers to does not exist."""


class PathEscapeError(TransferError):
    """A name or path resolves outside the server root."""

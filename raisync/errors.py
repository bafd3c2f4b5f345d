from __future__ import annotations


class RaisyncError(Exception):
    """Base exception for raisync errors."""


class StoreError(RaisyncError):
    """Local store misuse or failure of the underlying database."""


class TransportError(RaisyncError):
    """Network failure or non-2xx response from the sync server."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(RaisyncError):
    """The server answered with a payload that does not match the protocol."""

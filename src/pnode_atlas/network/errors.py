"""Failure kinds raised by the pRPC client.

The collector never lets these escape: each one is caught where the call
settles and turned into a ``CollectionError`` entry of the snapshot.
"""

from __future__ import annotations

from typing import Any


class PrpcError(Exception):
    """Base class for every pRPC failure."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class NetworkError(PrpcError):
    """The host could not be reached or answered with a non-200 status."""


class PrpcTimeoutError(PrpcError):
    """The call did not complete within the configured timeout."""

    def __init__(self, timeout: float, endpoint: str) -> None:
        super().__init__(f"Request to {endpoint} timed out after {timeout:g}s")
        self.timeout = timeout
        self.endpoint = endpoint


class RpcError(PrpcError):
    """The peer answered with a JSON-RPC ``error`` object."""

    def __init__(self, message: str, rpc_code: int, rpc_data: Any = None) -> None:
        super().__init__(message, code=rpc_code)
        self.rpc_code = rpc_code
        self.rpc_data = rpc_data


class ValidationError(PrpcError):
    """The peer answered, but the payload does not match the method schema.

    ``issues`` holds one ``{"path": ..., "message": ...}`` dict per failing
    field.
    """

    def __init__(self, message: str, issues: list[dict[str, str]]) -> None:
        super().__init__(message)
        self.issues = issues

    def __str__(self) -> str:
        if not self.issues:
            return self.message
        details = "; ".join(f"{i['path']}: {i['message']}" for i in self.issues)
        return f"{self.message} ({details})"


def is_transport_failure(error: BaseException) -> bool:
    """True for failures that mean "not reachable directly" (timeout or network)."""
    return isinstance(error, (NetworkError, PrpcTimeoutError))

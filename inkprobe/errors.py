"""Exception hierarchy for inkprobe.

Every fault the client can detect locally derives from :class:`InkProbeError`.
A contract that executes and declines to produce a value is *not* an
exception: it is the ``Err`` outcome of a :class:`~inkprobe.types.QueryResult`.
"""

from __future__ import annotations

from typing import Any


class InkProbeError(Exception):
    """Base class for all inkprobe errors."""


class ConfigError(InkProbeError):
    """Raised when the run configuration cannot be loaded or validated."""


class InvalidPhraseError(InkProbeError):
    """Raised when a secret URI does not yield key material for the algorithm."""


class SignatureSelfCheckError(InkProbeError):
    """Raised when a freshly produced signature does not verify locally."""


class ConnectionFailedError(InkProbeError):
    """Raised when the node is unreachable or the transport drops."""


class MalformedInterfaceError(InkProbeError):
    """Raised when a contract interface description does not parse."""


class UnknownMethodError(InkProbeError):
    """Raised when a call names a message absent from the interface."""

    def __init__(self, name: str, known: list[str] | None = None) -> None:
        self.name = name
        self.known = known or []
        super().__init__(f"unknown contract message {name!r}")


class ArgumentMismatchError(InkProbeError):
    """Raised when call arguments do not match the declared message shape."""


class RpcError(InkProbeError):
    """Raised when the node answers a JSON-RPC request with an error object."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC error {code}: {message}")


class RequestTimeoutError(InkProbeError):
    """Raised when a request exceeds the configured deadline."""


class ResponseDecodeError(InkProbeError):
    """Raised when a node response does not decode into a query result."""

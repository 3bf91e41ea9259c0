# -----------------------------------------------------------------------------
# Copyright (c) 2025 ArrayPoll contributors
# Licensed under the MIT License. See LICENSE in project root for details.
# -----------------------------------------------------------------------------

"""
Exception hierarchy for ArrayPoll.

Lower layers (transport client, RPC channel, session store) raise these typed
exceptions; backend drivers decide whether a failure aborts the collection run.
"""

from typing import Optional


class ArrayPollError(Exception):
    """Base class for all ArrayPoll errors."""


class ConfigError(ArrayPollError):
    """Missing or invalid configuration."""


class SessionStoreError(ArrayPollError):
    """Session token file could not be read, written or removed."""


class TransportError(ArrayPollError):
    """The array was unreachable (connection, TLS or I/O failure)."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class HttpStatusError(TransportError):
    """The array answered with a non-2xx HTTP status."""

    def __init__(self, status: int, url: str, body: bytes = b""):
        super().__init__(f"HTTP {status} from {url}", url=url)
        self.status = status
        self.body = body


class AuthorizationError(ArrayPollError):
    """
    The session token was rejected by the array.

    Raising this from a transport-level check causes the cached session to be
    invalidated so that the next run logs in again.
    """

    def __init__(self, message: str, url: Optional[str] = None, code: Optional[str] = None):
        super().__init__(message)
        self.url = url
        self.code = code


class BusinessError(ArrayPollError):
    """A vendor error code inside an otherwise successful HTTP response."""

    def __init__(self, code: str, message: str = "", url: Optional[str] = None):
        super().__init__(f"vendor error {code}: {message}" if message else f"vendor error {code}")
        self.code = code
        self.vendor_message = message
        self.url = url


class PayloadError(ArrayPollError):
    """A response body could not be parsed as the expected XML/JSON document."""


class LoginError(ArrayPollError):
    """Login did not produce a session token."""


class ChannelError(ArrayPollError):
    """Base class for RPC channel failures."""


class ChannelHandshakeError(ChannelError):
    """The WebSocket handshake was rejected or could not complete."""


class ChannelClosedError(ChannelError):
    """The channel closed before a reply arrived, or was never open."""


class CallTimeoutError(ChannelError):
    """No reply arrived for a call within the bounded wait."""

    def __init__(self, correlation_id: str, timeout: float):
        super().__init__(f"no reply for correlationId {correlation_id} within {timeout}s")
        self.correlation_id = correlation_id
        self.timeout = timeout


class DuplicateCorrelationIdError(ChannelError):
    """A call was issued with a correlation id that is still pending."""

    def __init__(self, correlation_id: str):
        super().__init__(f"correlationId {correlation_id} is already pending")
        self.correlation_id = correlation_id

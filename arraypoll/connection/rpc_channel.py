# -----------------------------------------------------------------------------
# Copyright (c) 2025 ArrayPoll contributors
# Licensed under the MIT License. See LICENSE in project root for details.
# -----------------------------------------------------------------------------

"""
Correlated request/response RPC over one persistent WebSocket connection.

Callers send envelopes tagged with a correlation id and get back a PendingCall.
A single reader thread demultiplexes inbound frames by correlationId and
resolves the matching PendingCall; unmatched frames (push/event traffic) are
dropped. When the connection drops, every pending call fails with
ChannelClosedError, so no caller waits forever.
"""

import concurrent.futures
import itertools
import json
import logging
import ssl
import threading
import time
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus
from websockets.sync.client import connect as ws_connect

from arraypoll.errors import (
    AuthorizationError,
    CallTimeoutError,
    ChannelClosedError,
    ChannelHandshakeError,
    DuplicateCorrelationIdError,
    TransportError,
)

LOG = logging.getLogger(__name__)

DEFAULT_CALL_TIMEOUT = 30.0
DEFAULT_OPEN_TIMEOUT = 10.0


class ChannelState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class RpcRequest(BaseModel):
    """Outbound rpc-call envelope."""
    model_config = ConfigDict(populate_by_name=True)

    type: str = "rpc-call"
    plugin_id: str = Field(alias="pluginId")
    correlation_id: str = Field(alias="correlationId")
    method_name: str = Field(alias="methodName")
    method_arguments: List[Any] = Field(default_factory=list, alias="methodArguments")
    handler_name: str = Field(alias="handlerName")

    def to_frame(self) -> str:
        return json.dumps(self.model_dump(by_alias=True))


class CorrelationIdAllocator:
    """Thread-safe monotonic id source; ids are strings with no positional meaning."""

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next_id(self) -> str:
        with self._lock:
            return str(next(self._counter))


class PendingCall:
    """Handle for one outstanding call, resolved by its reply or by channel closure."""

    def __init__(self, correlation_id: str, method_name: Optional[str], channel: "RpcChannel"):
        self.correlation_id = correlation_id
        self.method_name = method_name
        self.future: concurrent.futures.Future = concurrent.futures.Future()
        self._channel = channel

    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Wait for the reply frame.

        Args:
            timeout: Seconds to wait; defaults to the channel's call timeout

        Returns:
            The decoded reply frame

        Raises:
            CallTimeoutError: No reply within the timeout
            ChannelClosedError: The channel closed before the reply arrived
        """
        wait = self._channel.call_timeout if timeout is None else timeout
        try:
            return self.future.result(timeout=wait)
        except concurrent.futures.TimeoutError:
            self._channel._discard(self.correlation_id, self)
            raise CallTimeoutError(self.correlation_id, wait) from None

    def __repr__(self):
        return f"PendingCall(correlation_id={self.correlation_id!r}, method={self.method_name!r}, done={self.done()})"


def _insecure_ssl_context() -> ssl.SSLContext:
    # Console certificates are self-signed
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


class RpcChannel:
    """
    One persistent WebSocket connection with correlated calls.

    Use as a context manager so the reader thread and connection are released
    on every exit path:

        with RpcChannel(call_timeout=30) as channel:
            channel.connect(url, {"Cookie": token})
            reply = channel.call("1", envelope).result()
    """

    def __init__(self, call_timeout: float = DEFAULT_CALL_TIMEOUT, open_timeout: float = DEFAULT_OPEN_TIMEOUT):
        self.call_timeout = call_timeout
        self.open_timeout = open_timeout
        self.state = ChannelState.DISCONNECTED
        self._ws = None
        self._reader: Optional[threading.Thread] = None
        self._pending: Dict[str, PendingCall] = {}
        self._lock = threading.Lock()
        self._url: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.state is ChannelState.CONNECTED

    def connect(self, url: str, headers: Optional[Dict[str, str]] = None) -> None:
        """
        Open the connection and start the reader thread.

        Raises:
            AuthorizationError: The handshake was rejected with 401/403
            ChannelHandshakeError: Any other handshake failure
        """
        if self.connected:
            raise ChannelHandshakeError(f"Channel already connected to {self._url}")

        ssl_context = _insecure_ssl_context() if url.startswith("wss://") else None
        LOG.debug(f"Opening RPC channel to {url}")
        try:
            ws = ws_connect(url, additional_headers=headers or {}, ssl=ssl_context,
                            open_timeout=self.open_timeout, max_size=None)
        except InvalidStatus as e:
            status = e.response.status_code
            LOG.error(f"RPC channel handshake to {url} rejected with HTTP {status}")
            if status in (401, 403):
                raise AuthorizationError(f"WebSocket handshake rejected with HTTP {status}", url=url,
                                         code=str(status)) from e
            raise ChannelHandshakeError(f"WebSocket handshake to {url} rejected with HTTP {status}") from e
        except (InvalidHandshake, OSError, TimeoutError) as e:
            LOG.error(f"RPC channel handshake to {url} failed: {e}")
            raise ChannelHandshakeError(f"WebSocket handshake to {url} failed: {e}") from e

        self._ws = ws
        self._url = url
        self.state = ChannelState.CONNECTED
        self._reader = threading.Thread(target=self._read_loop, name=f"rpc-reader-{url}", daemon=True)
        self._reader.start()
        LOG.info(f"RPC channel connected to {url}")

    def call(self, correlation_id: str, envelope: Union[RpcRequest, Dict[str, Any], str]) -> PendingCall:
        """
        Register a pending call and send its envelope.

        The call is registered before the frame is written, so a fast reply can
        never arrive for an unknown id.

        Raises:
            ChannelClosedError: The channel is not connected
            DuplicateCorrelationIdError: correlation_id is still pending
            TransportError: The frame could not be sent
        """
        correlation_id = str(correlation_id)
        frame, method_name = self._encode(correlation_id, envelope)

        with self._lock:
            ws = self._ws
            if not self.connected or ws is None:
                raise ChannelClosedError(f"Cannot call {method_name or correlation_id}: channel is not connected")
            if correlation_id in self._pending:
                raise DuplicateCorrelationIdError(correlation_id)
            pending = PendingCall(correlation_id, method_name, self)
            self._pending[correlation_id] = pending

        LOG.debug(f"[RPC] -> {method_name} (correlationId={correlation_id})")
        try:
            ws.send(frame)
        except (ConnectionClosed, OSError, RuntimeError) as e:
            self._discard(correlation_id, pending)
            LOG.error(f"[RPC] Failed to send {method_name} (correlationId={correlation_id}): {e}")
            raise TransportError(f"Failed to send {method_name}: {e}", url=self._url) from e
        return pending

    def gather(self, calls: Sequence[PendingCall], timeout: Optional[float] = None) -> List[Any]:
        """
        Wait for a batch of calls with one shared deadline.

        Returns:
            One entry per call, in call order: the reply frame, or the exception
            (CallTimeoutError / ChannelClosedError) that ended it
        """
        wait = self.call_timeout if timeout is None else timeout
        deadline = time.monotonic() + wait
        outcomes: List[Any] = []
        for pending in calls:
            remaining = max(0.0, deadline - time.monotonic())
            try:
                outcomes.append(pending.result(timeout=remaining))
            except (CallTimeoutError, ChannelClosedError) as e:
                outcomes.append(e)
        return outcomes

    def pending_ids(self) -> List[str]:
        with self._lock:
            return list(self._pending)

    def close(self) -> None:
        """Close the connection, stop the reader and fail every unresolved call."""
        with self._lock:
            ws, self._ws = self._ws, None
        if ws is not None:
            try:
                ws.close()
            except (ConnectionClosed, OSError, RuntimeError) as e:
                LOG.debug(f"Error while closing RPC channel: {e}")
        reader = self._reader
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=self.open_timeout)
        self._mark_closed("channel closed")
        self._reader = None

    def __enter__(self) -> "RpcChannel":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _read_loop(self) -> None:
        ws = self._ws
        reason = "connection closed"
        try:
            for message in ws:
                self._dispatch(message)
        except ConnectionClosed as e:
            reason = f"connection closed: {e}"
        except (OSError, RuntimeError) as e:
            reason = f"read error: {e}"
            LOG.error(f"RPC channel read failed: {e}")
        finally:
            LOG.debug(f"RPC reader for {self._url} stopped ({reason})")
            self._mark_closed(reason)

    def _dispatch(self, message: Union[str, bytes]) -> None:
        try:
            frame = json.loads(message)
        except (TypeError, ValueError):
            LOG.debug(f"[RPC] Dropping non-JSON frame: {str(message)[:100]}")
            return
        if not isinstance(frame, dict) or frame.get("correlationId") is None:
            LOG.debug("[RPC] Dropping frame without correlationId")
            return

        correlation_id = str(frame["correlationId"])
        with self._lock:
            pending = self._pending.pop(correlation_id, None)
        if pending is None:
            LOG.debug(f"[RPC] Dropping frame for unknown correlationId={correlation_id}")
            return
        LOG.debug(f"[RPC] <- {pending.method_name} (correlationId={correlation_id})")
        if not pending.future.done():
            pending.future.set_result(frame)

    def _mark_closed(self, reason: str) -> None:
        with self._lock:
            self.state = ChannelState.DISCONNECTED
            abandoned = list(self._pending.values())
            self._pending.clear()
        for pending in abandoned:
            if not pending.future.done():
                pending.future.set_exception(
                    ChannelClosedError(f"{pending.method_name or 'call'} (correlationId={pending.correlation_id}) "
                                       f"abandoned: {reason}"))
        if abandoned:
            LOG.warning(f"RPC channel closed with {len(abandoned)} unanswered call(s): {reason}")

    def _discard(self, correlation_id: str, pending: PendingCall) -> None:
        with self._lock:
            if self._pending.get(correlation_id) is pending:
                del self._pending[correlation_id]

    @staticmethod
    def _encode(correlation_id: str, envelope: Union[RpcRequest, Dict[str, Any], str]):
        if isinstance(envelope, RpcRequest):
            if envelope.correlation_id != correlation_id:
                envelope = envelope.model_copy(update={"correlation_id": correlation_id})
            return envelope.to_frame(), envelope.method_name
        if isinstance(envelope, dict):
            payload = dict(envelope)
            payload["correlationId"] = correlation_id
            return json.dumps(payload), payload.get("methodName")
        return envelope, None

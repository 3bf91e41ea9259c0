# -----------------------------------------------------------------------------
# Copyright (c) 2025 ArrayPoll contributors
# Licensed under the MIT License. See LICENSE in project root for details.
# -----------------------------------------------------------------------------

"""
Base class for vendor backend drivers.

A driver runs one collection pass against one array:
login (or reuse a cached session) -> prepare -> independent collection steps.
A login failure aborts the run. A failed step is logged, recorded in the
result and the run moves on, except for authorization failures, which stop
the remaining steps because the session has just been invalidated.
"""

import contextlib
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, ContextManager, Dict, List, Optional, Tuple

from arraypoll.config import VendorConfig
from arraypoll.connection.transport import TransportClient, TransportResponse
from arraypoll.enums.translator import EnumTranslator
from arraypoll.errors import ArrayPollError, AuthorizationError, LoginError, PayloadError
from arraypoll.models.result import CanonicalResult
from arraypoll.session.store import SessionStore

LOG = logging.getLogger(__name__)

Step = Tuple[str, Callable[[], None]]

# Raised by payload handlers when a vendor field has an unexpected shape
PAYLOAD_SHAPE_ERRORS = (KeyError, TypeError, AttributeError, ValueError)


def dig(document: Any, *keys: str) -> Any:
    """Follow nested object keys, returning None as soon as a level is not an object."""
    for key in keys:
        if not isinstance(document, dict):
            return None
        document = document.get(key)
    return document


def to_int(value: Any, default: int = 0) -> int:
    """Parse vendor numeric fields ('123', 123, '1.5e3', None) without raising."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return default


class BackendDriver(ABC):
    """
    Orchestrates Login -> SessionStore -> transport/RPC -> EnumTranslator -> CanonicalResult.
    """

    vendor: str = ""
    default_headers: Dict[str, str] = {}

    def __init__(self,
                 config: VendorConfig,
                 translator: Optional[EnumTranslator] = None,
                 session_store: Optional[SessionStore] = None,
                 transport: Optional[TransportClient] = None):
        """
        Args:
            config: Vendor configuration (host, credentials, session file, timeouts)
            translator: Enum translator; defaults to the bundled or configured table
            session_store: Token store; defaults to config.session_file
            transport: HTTP client; defaults to one bound to this driver's response check
        """
        self.config = config
        self.credentials = config.credentials
        self.translator = translator or EnumTranslator.for_vendor(self.vendor, config.enum_table)
        self.session_store = session_store or SessionStore(config.session_file)
        self.transport = transport or TransportClient(
            self.session_store,
            response_checker=self.check_response,
            default_headers=self.default_headers,
            timeout=config.request_timeout,
        )
        self.result = CanonicalResult(vendor=self.vendor, host=config.host)

    # --- hooks for vendor drivers -------------------------------------------------

    @abstractmethod
    def login(self) -> str:
        """Authenticate against the console and return the session token."""

    @abstractmethod
    def steps(self) -> List[Step]:
        """Named collection steps, executed in order."""

    def check_response(self, response: TransportResponse) -> None:
        """Raise AuthorizationError/BusinessError for vendor codes in a 2xx body."""

    def prepare(self) -> None:
        """Session-dependent setup that every step needs (device ids, serial numbers)."""

    def collection_scope(self) -> ContextManager:
        """Resources held open for the duration of the steps (e.g. an RPC channel)."""
        return contextlib.nullcontext()

    # --- orchestration ------------------------------------------------------------

    def url(self, path: str) -> str:
        return f"{self.config.base_url}{path}"

    @staticmethod
    def timestamp_ms() -> int:
        return int(time.time() * 1000)

    def establish_session(self) -> str:
        """
        Reuse the cached token or log in.

        Raises:
            LoginError: Login failed; the whole run must stop
        """
        try:
            return self.session_store.get_or_create(self._login)
        except LoginError:
            raise
        except ArrayPollError as e:
            raise LoginError(f"{self.vendor} login failed: {e}") from e

    def _login(self) -> str:
        LOG.info(f"[{self.vendor}] Logging in to {self.config.host} as {self.credentials.username}")
        token = self.login()
        if not token:
            raise LoginError(f"{self.vendor} login did not return a session token")
        LOG.info(f"[{self.vendor}] Login succeeded")
        return token

    def run(self) -> CanonicalResult:
        """
        Perform one full collection pass.

        Returns:
            The populated CanonicalResult; failed steps are listed in result.failures

        Raises:
            LoginError: No session could be established
        """
        LOG.info(f"[{self.vendor}] Starting collection from {self.config.host}")
        self.establish_session()

        try:
            self.prepare()
            with self.collection_scope():
                self._run_steps()
        except AuthorizationError as e:
            LOG.error(f"[{self.vendor}] Session rejected during setup, run again to log in: {e}")
            self.result.record_failure("session", e)
        except ArrayPollError as e:
            LOG.error(f"[{self.vendor}] Collection setup failed: {e}")
            self.result.record_failure("prepare", e)
        except PAYLOAD_SHAPE_ERRORS as e:
            LOG.error(f"[{self.vendor}] Collection setup got an unexpected payload: {e!r}")
            self.result.record_failure("prepare", PayloadError(f"Unexpected payload during setup: {e!r}"))
        finally:
            self.transport.close()

        LOG.info(f"[{self.vendor}] Collection finished: {len(self.result.components)} components, "
                 f"{len(self.result.pools)} pools, {len(self.result.performance)} samples, "
                 f"{len(self.result.failures)} failed steps")
        return self.result

    def _run_steps(self) -> None:
        for name, step in self.steps():
            LOG.debug(f"[{self.vendor}] Step {name}")
            try:
                step()
            except AuthorizationError as e:
                LOG.error(f"[{self.vendor}] Step {name}: session rejected, skipping remaining steps: {e}")
                self.result.record_failure(name, e)
                return
            except ArrayPollError as e:
                LOG.error(f"[{self.vendor}] Step {name} failed: {e}")
                self.result.record_failure(name, e)
            except PAYLOAD_SHAPE_ERRORS as e:
                LOG.error(f"[{self.vendor}] Step {name} got an unexpected payload: {e!r}")
                self.result.record_failure(name, PayloadError(f"Unexpected payload in step {name}: {e!r}"))

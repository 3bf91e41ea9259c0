# -----------------------------------------------------------------------------
# Copyright (c) 2025 ArrayPoll contributors
# Licensed under the MIT License. See LICENSE in project root for details.
# -----------------------------------------------------------------------------

"""
Unary HTTP transport shared by the synchronous vendor backends.

Storage consoles ship self-signed certificates, so every call is made over
TLS without certificate validation. This trust exception is limited to the
array management endpoints handled here.
"""

import http.cookiejar
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
import urllib3

from arraypoll.errors import AuthorizationError, HttpStatusError, TransportError
from arraypoll.session.store import SessionStore

LOG = logging.getLogger(__name__)
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

DEFAULT_TIMEOUT = 30


@dataclass
class TransportResponse:
    """Raw outcome of a successful (2xx) HTTP call."""
    status: int
    body: bytes
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def text(self) -> str:
        return self.body.decode('utf-8', errors='replace')

    def cookie(self, name: str) -> Optional[str]:
        for cookie_name, value in self.cookies:
            if cookie_name == name:
                return value
        return None


# A checker inspects a 2xx response for vendor business codes. It raises
# AuthorizationError for the vendor's session-expired code and BusinessError
# for any other failure code.
ResponseChecker = Callable[[TransportResponse], None]


def _no_cookie_session() -> requests.Session:
    session = requests.Session()
    session.verify = False
    # The credential header is the only credential sent; never replay cookies from the jar
    session.cookies.set_policy(http.cookiejar.DefaultCookiePolicy(allowed_domains=[]))
    return session


class TransportClient:
    """
    Authenticated HTTP client for one array.

    Classifies failures as:
    - TransportError: the array was unreachable
    - HttpStatusError: the array answered with a non-2xx status
    - AuthorizationError: the session was rejected (HTTP 401 or vendor code);
      the session store is invalidated exactly once before raising
    """

    def __init__(self,
                 session_store: SessionStore,
                 response_checker: Optional[ResponseChecker] = None,
                 credential_header: str = "Cookie",
                 default_headers: Optional[Dict[str, str]] = None,
                 timeout: float = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None):
        """
        Args:
            session_store: Store holding this backend's session token
            response_checker: Vendor-specific business code check for 2xx responses
            credential_header: Header carrying the token on authenticated calls
            default_headers: Headers sent with every call
            timeout: Per-request timeout in seconds
            session: Pre-built requests session (tests inject a stand-in)
        """
        self.session_store = session_store
        self.response_checker = response_checker
        self.credential_header = credential_header
        self.default_headers = dict(default_headers or {})
        self.timeout = timeout
        self.session = session if session is not None else _no_cookie_session()
        LOG.warning("TLS validation is DISABLED for storage console connections (self-signed certificates).")

    def request(self,
                method: str,
                url: str,
                headers: Optional[Dict[str, str]] = None,
                data: Any = None,
                json: Any = None,
                authenticated: bool = True,
                check: bool = True) -> TransportResponse:
        """
        Perform one HTTP call.

        Args:
            method: HTTP method (GET, POST)
            url: Absolute URL
            headers: Extra headers for this call
            data: Form or raw body
            json: JSON body
            authenticated: Attach the session token (False for login calls)
            check: Run the vendor response checker on 2xx responses

        Returns:
            TransportResponse with the raw body

        Raises:
            TransportError, HttpStatusError, AuthorizationError, BusinessError
        """
        call_headers = dict(self.default_headers)
        if headers:
            call_headers.update(headers)
        if authenticated:
            token = self.session_store.current_token()
            if token:
                call_headers[self.credential_header] = token
            else:
                LOG.debug(f"No session token available for authenticated call to {url}")

        try:
            resp = self.session.request(method, url, headers=call_headers, data=data,
                                        json=json, timeout=self.timeout, verify=False)
        except requests.exceptions.RequestException as e:
            LOG.error(f"{method} {url} failed: {e}")
            raise TransportError(f"{method} {url} failed: {e}", url=url) from e

        response = self._to_response(resp, url)

        if response.status == 401 and authenticated:
            LOG.error(f"{method} {url} was rejected with HTTP 401")
            self._invalidate_session()
            raise AuthorizationError(f"HTTP 401 from {url}", url=url, code="401")
        if not 200 <= response.status < 300:
            LOG.error(f"{method} {url} failed with HTTP {response.status}")
            raise HttpStatusError(response.status, url, response.body)

        if check and self.response_checker is not None:
            try:
                self.response_checker(response)
            except AuthorizationError:
                LOG.error(f"{method} {url} reported an authorization failure")
                self._invalidate_session()
                raise

        return response

    def get(self, url: str, **kwargs) -> TransportResponse:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs) -> TransportResponse:
        return self.request("POST", url, **kwargs)

    def close(self) -> None:
        self.session.close()

    def _invalidate_session(self) -> None:
        self.session_store.invalidate()

    @staticmethod
    def _to_response(resp, url: str) -> TransportResponse:
        cookies = []
        for previous in getattr(resp, 'history', None) or []:
            cookies.extend((c.name, c.value) for c in previous.cookies)
        cookies.extend((c.name, c.value) for c in resp.cookies)
        return TransportResponse(
            status=resp.status_code,
            body=resp.content or b"",
            url=url,
            headers=dict(resp.headers or {}),
            cookies=cookies,
        )

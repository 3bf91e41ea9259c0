# -----------------------------------------------------------------------------
# Copyright (c) 2025 ArrayPoll contributors
# Licensed under the MIT License. See LICENSE in project root for details.
# -----------------------------------------------------------------------------

"""
File-backed cache of one backend's session token.

A token is absent, valid or expired. Expiry is never detected by a timer; it
is discovered when the array rejects a call, at which point the token is
invalidated and the next run logs in again.
"""

import logging
import os
import threading
from typing import Callable, Optional, Tuple

from arraypoll.errors import SessionStoreError

LOG = logging.getLogger(__name__)


class SessionStore:
    """
    Persist and reuse a session token across process runs.

    Provides:
    - load/save/invalidate of the raw token file
    - an in-memory copy of the current token for the transport client
    - mutual exclusion between login and invalidation
    """

    def __init__(self, path: str):
        """
        Initialize the session store

        Args:
            path: Token file, e.g. cookie/hp.cookie
        """
        self.path = path
        self._token: Optional[str] = None
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def load(self) -> Tuple[Optional[str], bool]:
        """
        Read the persisted token.

        Returns:
            (token, True) if a non-empty token is stored, (None, False) otherwise

        Raises:
            SessionStoreError: If the file exists but cannot be read
        """
        with self._lock:
            try:
                with open(self.path, 'r', encoding='utf-8') as f:
                    token = f.read().strip()
            except FileNotFoundError:
                LOG.debug(f"No session file at {self.path}")
                self._token = None
                return None, False
            except OSError as e:
                raise SessionStoreError(f"Failed to read session file {self.path}: {e}") from e

            if not token:
                LOG.debug(f"Session file {self.path} is empty")
                self._token = None
                return None, False

            self._token = token
            return token, True

    def save(self, token: str) -> None:
        """
        Persist a token, creating the parent directory and replacing any previous value.

        Raises:
            SessionStoreError: If the token is empty or cannot be written
        """
        if not token:
            raise SessionStoreError("Refusing to save an empty session token")

        with self._lock:
            directory = os.path.dirname(self.path)
            try:
                if directory:
                    os.makedirs(directory, exist_ok=True)
                tmp_path = f"{self.path}.tmp"
                with open(tmp_path, 'w', encoding='utf-8') as f:
                    f.write(token)
                os.replace(tmp_path, self.path)
            except OSError as e:
                raise SessionStoreError(f"Failed to write session file {self.path}: {e}") from e
            self._token = token
            LOG.debug(f"Saved session token to {self.path}")

    def invalidate(self) -> None:
        """
        Delete the persisted token. A missing file is not an error.

        Raises:
            SessionStoreError: If the file exists but cannot be removed
        """
        with self._lock:
            self._token = None
            try:
                os.remove(self.path)
                LOG.warning(f"Session token rejected by the array, removed {self.path}; next run will log in again")
            except FileNotFoundError:
                pass
            except OSError as e:
                raise SessionStoreError(f"Failed to remove session file {self.path}: {e}") from e

    def current_token(self) -> Optional[str]:
        """The token loaded or saved most recently in this process, if any."""
        with self._lock:
            return self._token

    def get_or_create(self, login: Callable[[], str]) -> str:
        """
        Return the cached token, logging in first when none is stored.

        Login and saving the new token happen under the store lock, so no
        authenticated call can observe a half-established session.

        Args:
            login: Callable performing the vendor login and returning the token

        Returns:
            The session token
        """
        with self._lock:
            token, found = self.load()
            if found:
                LOG.debug(f"Reusing cached session from {self.path}")
                return token

            LOG.info(f"No cached session in {self.path}, logging in")
            token = login()
            self.save(token)
            return token

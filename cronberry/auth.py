"""Credential stores held for the outer web and API layers."""

from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)


class CredentialStore:
    """Two independent maps: username -> password and api key -> description.

    Values are stored as given; hashing and expiry belong to the caller.
    """

    def __init__(self) -> None:
        self._passwords: dict[str, str] = {}
        self._api_keys: dict[str, str] = {}
        self._users_lock = threading.RLock()
        self._keys_lock = threading.RLock()

    def add_web_user(self, username: str, password: str) -> None:
        with self._users_lock:
            self._passwords[username] = password
        logger.info("Added web user '%s'", username)

    def add_api_key(self, api_key: str, description: str) -> None:
        with self._keys_lock:
            self._api_keys[api_key] = description
        logger.info("Added API key (%s)", description)

    def lookup_password(self, username: str) -> str | None:
        with self._users_lock:
            return self._passwords.get(username)

    def lookup_api_key(self, api_key: str) -> str | None:
        with self._keys_lock:
            return self._api_keys.get(api_key)

    @property
    def has_web_users(self) -> bool:
        with self._users_lock:
            return bool(self._passwords)

    @property
    def has_api_keys(self) -> bool:
        with self._keys_lock:
            return bool(self._api_keys)

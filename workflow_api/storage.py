"""
In-Memory Storage Layer for the Workflow Manager API.

This module keeps the per-user GitHub access tokens and the publish history.
Both live in memory for the application lifetime and are guarded by a
reentrant lock so request handlers can use them concurrently.

Classes:
    AccessTokenProvider: Abstract source of per-user GitHub tokens
    InMemoryStore: Thread-safe token store and publish history

Note:
    Tokens are never logged. A production deployment would replace this
    store with a real secret store and database.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import deque
from threading import RLock
from typing import Deque, Dict, List, Optional

from .config import settings
from .errors import AccessTokenNotFound
from .models import PublishRecord

DEFAULT_MAX_RECORDS = 1000


class AccessTokenProvider(ABC):
    """Resolves the GitHub access token of a user."""

    @abstractmethod
    def get_access_token(self, user_id: str) -> str:
        """
        Return the token registered for ``user_id``.

        Raises:
            AccessTokenNotFound: If the user has no token
        """


class InMemoryStore(AccessTokenProvider):
    """
    Thread-safe in-memory store for access tokens and publish records.

    Attributes:
        _tokens (Dict[str, str]): Access tokens indexed by user ID
        _records (Deque[PublishRecord]): Publish history, oldest first; the
            oldest record is dropped once max_records is reached
        _lock (RLock): Reentrant lock for thread safety
    """

    def __init__(self, max_records: int = DEFAULT_MAX_RECORDS) -> None:
        self._tokens: Dict[str, str] = {}
        self._records: Deque[PublishRecord] = deque(maxlen=max_records)
        self._lock = RLock()

    def save_token(self, user_id: str, token: str) -> None:
        with self._lock:
            self._tokens[user_id] = token

    def delete_token(self, user_id: str) -> bool:
        """Forget the token of ``user_id``; returns False if there was none."""
        with self._lock:
            return self._tokens.pop(user_id, None) is not None

    def has_token(self, user_id: str) -> bool:
        with self._lock:
            return bool(self._tokens.get(user_id))

    def get_access_token(self, user_id: str) -> str:
        with self._lock:
            token = self._tokens.get(user_id)
        if not token:
            raise AccessTokenNotFound(user_id)
        return token

    def add_record(self, record: PublishRecord) -> PublishRecord:
        with self._lock:
            self._records.append(record)
            return record

    def list_records(self, user_id: Optional[str] = None) -> List[PublishRecord]:
        """
        Return publish records, newest first.

        Args:
            user_id: Only return the records of this user when given
        """
        with self._lock:
            records = [r for r in self._records if user_id is None or r.user_id == user_id]
        return list(reversed(records))


# Global store instance
store = InMemoryStore(settings.history_limit)

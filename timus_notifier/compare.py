"""
Compare module for the Timus Notifier pipeline.

This module decides which attempts are new. The status page lists the
newest attempts first, so attempts are put in chronological order before
they are checked against the persisted seen-set. Every new attempt is
announced and then recorded, one at a time, so announcements go out
oldest first and never overlap.
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from timus_notifier.utils import get_logger, read_json, safe_write_json


# Module logger
logger = get_logger("compare")

# Default path for storing the seen-set
DEFAULT_SEEN_PATH = "data/seen_attempts.json"

Attempt = Dict[str, Any]


class SeenStoreError(Exception):
    """Raised when the seen-set cannot be read or written."""


def get_attempt_identifier(attempt: Attempt) -> str:
    """
    Get the identifier an attempt is stored under.

    Args:
        attempt: Parsed attempt record.

    Returns:
        The submission id, or an empty string when the row had none.
    """
    return attempt.get("id", "")


def in_chronological_order(attempts: List[Attempt]) -> List[Attempt]:
    """Return the attempts oldest first; the status page lists newest first."""
    return list(reversed(attempts))


class SeenStore(ABC):
    """Key-value capability holding serialized attempts by id."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value for key, or None if it was never stored."""

    @abstractmethod
    def put(self, key: str, value: str) -> None:
        """Store value under key."""


class JsonSeenStore(SeenStore):
    """
    Seen-set kept in a single JSON object on disk.

    The file is loaded lazily on first access and rewritten atomically on
    every put. Entries are never removed.
    """

    def __init__(self, filepath: str = DEFAULT_SEEN_PATH):
        self.filepath = filepath
        self._entries: Optional[Dict[str, str]] = None

    def __repr__(self) -> str:
        return f"JsonSeenStore(filepath={self.filepath})"

    def _load(self) -> Dict[str, str]:
        if self._entries is not None:
            return self._entries

        try:
            data = read_json(self.filepath, default={})
        except (OSError, ValueError) as e:
            raise SeenStoreError(f"Could not read seen-set from {self.filepath}: {e}") from e

        if not isinstance(data, dict):
            raise SeenStoreError(f"Unexpected data format in {self.filepath}, expected an object")

        logger.debug(f"Loaded {len(data)} seen attempt(s) from {self.filepath}")
        self._entries = data
        return data

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def put(self, key: str, value: str) -> None:
        entries = dict(self._load())
        entries[key] = value

        if not safe_write_json(self.filepath, entries):
            raise SeenStoreError(f"Could not write seen-set to {self.filepath}")

        self._entries = entries

    def __len__(self) -> int:
        return len(self._load())


class MemorySeenStore(SeenStore):
    """Seen-set held in memory, used for dry runs and tests."""

    def __init__(self, entries: Optional[Dict[str, str]] = None):
        self.entries: Dict[str, str] = dict(entries or {})

    def get(self, key: str) -> Optional[str]:
        return self.entries.get(key)

    def put(self, key: str, value: str) -> None:
        self.entries[key] = value


def serialize_attempt(attempt: Attempt) -> str:
    """Serialize an attempt snapshot for the seen-set."""
    return json.dumps(attempt, ensure_ascii=False)


def announce_new_attempts(
    attempts: List[Attempt],
    store: SeenStore,
    announce: Callable[[Attempt], bool],
    mark_failed_as_seen: bool = True
) -> int:
    """
    Announce every attempt that is not in the seen-set yet.

    Attempts must already be in chronological order. Each new attempt is
    announced and then recorded before the next one is looked at.

    Args:
        attempts: Attempts, oldest first.
        store: Seen-set to consult and update.
        announce: Formats and delivers one attempt; returns whether the
                  delivery succeeded.
        mark_failed_as_seen: If True (at-most-once), attempts are recorded
                  even when their delivery failed. If False (at-least-once),
                  failed deliveries stay unrecorded and are retried next run.

    Returns:
        Number of attempts recorded as announced.

    Raises:
        SeenStoreError: If the seen-set cannot be read or written.
    """
    posted = 0

    for attempt in attempts:
        attempt_id = get_attempt_identifier(attempt)

        if store.get(attempt_id):
            logger.debug(f"Attempt {attempt_id!r} already announced, skipping")
            continue

        delivered = announce(attempt)

        if not delivered and not mark_failed_as_seen:
            logger.warning(f"Attempt {attempt_id!r} was not delivered, will retry next run")
            continue

        store.put(attempt_id, serialize_attempt(attempt))
        posted += 1

    logger.info(f"Found {posted} new attempt(s)")

    return posted

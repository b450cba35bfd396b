"""
Message store for discovered services.

Reconciles the unordered, duplicated and expiring stream of SSDP
announcements and search responses into one entry per service identity
(USN). Expired entries are evicted lazily when the store is read.
"""

import logging
import threading
from datetime import datetime
from typing import Optional

from .message import DiscoveryMessage, is_admissible

logger = logging.getLogger("upnp_scout.discovery.store")


class MessageStore:
    """
    Discovery messages keyed by USN.

    At most one entry exists per USN; the most recent admissible alive
    announcement or search response wins, and a byebye announcement removes
    the entry. Lists returned to callers are copies.
    """

    def __init__(self):
        self._messages: dict[str, DiscoveryMessage] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        """Raw entry count, including expired entries not yet evicted."""
        return len(self._messages)

    def __contains__(self, usn: object) -> bool:
        return usn in self._messages

    def get(self, usn: str) -> Optional[DiscoveryMessage]:
        """The stored message for a USN, without expiry filtering."""
        return self._messages.get(usn)

    def update(self, message: DiscoveryMessage) -> bool:
        """
        Apply a message to the store.

        Inadmissible messages (no USN, no LOCATION, or an announcement
        without NTS) are dropped. Search responses and non-byebye
        announcements insert or replace the entry for their USN; a byebye
        removes it, and is ignored when the USN is unknown.

        Returns:
            True if the store changed
        """
        if not is_admissible(message):
            logger.debug(
                "Dropping inadmissible message from %s: %s",
                message.remote_address[0] if message.remote_address else "?",
                " ".join(message.status_line),
            )
            return False

        usn = message.usn
        withdrawal = not message.is_search_response and message.is_byebye

        with self._lock:
            existing = self._messages.get(usn)
            if withdrawal:
                if existing is None:
                    logger.debug("Ignoring byebye for unknown USN %s", usn)
                    return False
                del self._messages[usn]
                logger.debug("Removed %s (byebye)", usn)
                return True

            self._messages[usn] = message

        if existing is None:
            logger.debug("Added %s at %s", usn, message.location)
        else:
            logger.debug("Refreshed %s at %s", usn, message.location)
        return True

    def evict_expired_and_list(self, now: Optional[datetime] = None) -> list[DiscoveryMessage]:
        """
        Remove expired entries and return the rest.

        This is the only place expired entries are reclaimed; a store that is
        never read keeps them.

        Args:
            now: Reference instant (defaults to the current time)

        Returns:
            The live messages in insertion order
        """
        with self._lock:
            expired = [
                usn for usn, message in self._messages.items()
                if message.is_expired(now)
            ]
            for usn in expired:
                del self._messages[usn]
            live = list(self._messages.values())

        if expired:
            logger.debug("Evicted %d expired entries", len(expired))
        return live

    @property
    def messages(self) -> list[DiscoveryMessage]:
        """Live messages; evicts expired entries as a side effect."""
        return self.evict_expired_and_list()

    def clear(self) -> None:
        with self._lock:
            self._messages.clear()

    def find_by_service_type(self, st: str) -> list[DiscoveryMessage]:
        """
        Live messages whose ST header equals ``st``.

        Only search responses carry ST, so services known solely through
        NOTIFY announcements are never returned here.
        """
        return [
            message for message in self.evict_expired_and_list()
            if st in message.search_targets
        ]

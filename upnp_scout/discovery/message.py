"""
SSDP discovery messages.

Parses raw datagram payloads into immutable DiscoveryMessage records and
derives the facts the message store needs from their headers: whether a
message is an announcement (NOTIFY) or a search response, whether it is an
alive or byebye announcement, and whether its advertised lifetime has run
out.

Based on the UPnP Device Architecture 1.1 discovery section.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

# Status line first tokens
NOTIFY_METHOD = "NOTIFY"
SEARCH_METHOD = "M-SEARCH"
RESPONSE_VERSION = "HTTP/1.1"

# NTS values
NTS_ALIVE = "ssdp:alive"
NTS_BYEBYE = "ssdp:byebye"

MAX_AGE_PATTERN = re.compile(r"max-age\s*=\s*\"?(\d+)", re.IGNORECASE)

Address = tuple[str, int]


@dataclass(frozen=True)
class Header:
    """A header line in a discovery message.

    ``value`` is None when the line carried no colon.
    """

    name: str
    value: Optional[str] = None

    def matches(self, name: str) -> bool:
        return self.name.strip().upper() == name.upper()


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def parse_http_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 1123 HTTP date, returning None when it cannot be parsed."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError, OverflowError):
        return None
    if parsed is None:
        return None
    return _as_utc(parsed)


@dataclass(frozen=True)
class DiscoveryMessage:
    """A message received on the discovery socket.

    Instances are immutable snapshots of one datagram. Everything beyond the
    raw status line and headers is derived on access, so time-dependent facts
    such as expiry are always answered against the current clock.
    """

    remote_address: Address
    timestamp: datetime
    status_line: tuple[str, ...]
    headers: tuple[Header, ...]

    @classmethod
    def parse(cls, remote_address: Address, timestamp: datetime, text: str) -> "DiscoveryMessage":
        return parse_message(remote_address, timestamp, text)

    # ------------------------------------------------------------------ #
    # Header access
    # ------------------------------------------------------------------ #

    def headers_named(self, name: str) -> list[Header]:
        """All headers with the given name (case-insensitive), in order."""
        return [header for header in self.headers if header.matches(name)]

    def header_value(self, name: str) -> Optional[str]:
        """Value of the first header with the given name, if any."""
        for header in self.headers:
            if header.matches(name):
                return header.value
        return None

    def has_header(self, name: str) -> bool:
        return any(header.matches(name) for header in self.headers)

    @property
    def location(self) -> Optional[str]:
        return self.header_value("LOCATION")

    @property
    def locations(self) -> list[str]:
        return [h.value for h in self.headers_named("LOCATION") if h.value is not None]

    @property
    def nt(self) -> Optional[str]:
        return self.header_value("NT")

    @property
    def nts(self) -> Optional[str]:
        return self.header_value("NTS")

    @property
    def st(self) -> Optional[str]:
        return self.header_value("ST")

    @property
    def search_targets(self) -> list[str]:
        return [h.value for h in self.headers_named("ST") if h.value is not None]

    @property
    def usn(self) -> Optional[str]:
        return self.header_value("USN")

    @property
    def server(self) -> Optional[str]:
        return self.header_value("SERVER")

    @property
    def cache_control(self) -> Optional[str]:
        return self.header_value("CACHE-CONTROL")

    @property
    def date(self) -> Optional[str]:
        return self.header_value("DATE")

    # ------------------------------------------------------------------ #
    # Classification
    # ------------------------------------------------------------------ #

    @property
    def method(self) -> Optional[str]:
        return self.status_line[0] if self.status_line else None

    @property
    def is_notify(self) -> bool:
        return self.method == NOTIFY_METHOD

    @property
    def is_search_request(self) -> bool:
        return self.method == SEARCH_METHOD

    @property
    def is_search_response(self) -> bool:
        return self.method == RESPONSE_VERSION

    @property
    def is_alive(self) -> bool:
        return self.nts == NTS_ALIVE

    @property
    def is_byebye(self) -> bool:
        return self.nts == NTS_BYEBYE

    @property
    def max_age(self) -> Optional[int]:
        """Seconds from the first CACHE-CONTROL max-age directive, if any."""
        for header in self.headers_named("CACHE-CONTROL"):
            if header.value is None:
                continue
            match = MAX_AGE_PATTERN.search(header.value)
            if match:
                return int(match.group(1))
        return None

    @property
    def effective_date(self) -> datetime:
        """The DATE header when parseable, else the receipt timestamp."""
        parsed = parse_http_date(self.date)
        if parsed is not None:
            return parsed
        return _as_utc(self.timestamp)

    @property
    def expires_at(self) -> Optional[datetime]:
        """When the message expires; None if it never does.

        A lifetime that runs past the largest representable date never
        expires.
        """
        max_age = self.max_age
        if max_age is None:
            return None
        try:
            return self.effective_date + timedelta(seconds=max_age)
        except OverflowError:
            return None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Whether the advertised lifetime has passed.

        Messages without CACHE-CONTROL max-age never expire.
        """
        expires_at = self.expires_at
        if expires_at is None:
            return False
        if now is None:
            now = datetime.now(timezone.utc)
        return expires_at < _as_utc(now)


def is_admissible(message: DiscoveryMessage) -> bool:
    """Whether a message carries enough identity to be stored.

    Requires non-empty USN and LOCATION values, and an NTS header unless it
    is a search response.
    """
    if not message.usn or not message.location:
        return False
    return message.is_search_response or message.has_header("NTS")


def _parse_status_line(line: str) -> tuple[str, ...]:
    return tuple(line.split())


def _parse_header_line(line: str) -> Header:
    name, sep, value = line.partition(":")
    if not sep:
        return Header(line, None)
    return Header(name, value.strip())


def parse_message(remote_address: Address, timestamp: datetime, text: str) -> DiscoveryMessage:
    """
    Parse a datagram payload into a DiscoveryMessage.

    Never fails: the status line and headers are whatever the text yields,
    however degenerate. Lines end in CRLF; payloads with no CRLF at all are
    split on bare LF. Blank lines are skipped rather than treated as the end
    of the headers.

    Args:
        remote_address: (host, port) the datagram came from
        timestamp: Instant the datagram was received
        text: Decoded payload

    Returns:
        The parsed message
    """
    separator = "\r\n" if "\r\n" in text else "\n"
    lines = text.split(separator)
    status_line = _parse_status_line(lines[0])
    headers = tuple(
        _parse_header_line(line)
        for line in lines[1:]
        if line.strip()
    )
    return DiscoveryMessage(
        remote_address=remote_address,
        timestamp=timestamp,
        status_line=status_line,
        headers=headers,
    )


def decode_datagram(data: bytes) -> str:
    """Decode a datagram payload; undecodable bytes are replaced."""
    return data.decode("utf-8", errors="replace")

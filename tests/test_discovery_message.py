"""
Tests for SSDP message parsing and classification.

Covers:
1. parse_message: status line, headers, line endings, degenerate input
2. Header access: case-insensitive lookup, first vs all values
3. Classification: NOTIFY vs search response vs M-SEARCH, alive/byebye
4. Expiry: CACHE-CONTROL max-age against DATE or receipt time
5. Admissibility rules for the store
"""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import pytest

from upnp_scout.discovery.message import (
    DiscoveryMessage,
    Header,
    decode_datagram,
    is_admissible,
    parse_http_date,
    parse_message,
)

ADDR = ("192.168.1.20", 1900)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _http_date(dt: datetime) -> str:
    return format_datetime(dt, usegmt=True)


def _msg(status: str, *headers: str, timestamp: datetime | None = None) -> DiscoveryMessage:
    text = "\r\n".join([status, *headers]) + "\r\n\r\n"
    return parse_message(ADDR, timestamp or _now(), text)


# ------------------------------------------------------------------ #
# Parsing
# ------------------------------------------------------------------ #

class TestParseMessage:
    """parse_message: permissive datagram parsing."""

    def test_notify_status_line_and_headers(self):
        msg = _msg(
            "NOTIFY * HTTP/1.1",
            "HOST: 239.255.255.250:1900",
            "NTS: ssdp:alive",
            "USN: uuid:1::urn:x",
        )
        assert msg.status_line == ("NOTIFY", "*", "HTTP/1.1")
        assert msg.headers == (
            Header("HOST", "239.255.255.250:1900"),
            Header("NTS", "ssdp:alive"),
            Header("USN", "uuid:1::urn:x"),
        )

    def test_value_keeps_colons_after_the_first(self):
        msg = _msg("HTTP/1.1 200 OK", "LOCATION: http://10.0.0.5:8080/desc.xml")
        assert msg.location == "http://10.0.0.5:8080/desc.xml"

    def test_value_is_stripped(self):
        msg = _msg("NOTIFY * HTTP/1.1", "NT:    upnp:rootdevice   ")
        assert msg.nt == "upnp:rootdevice"

    def test_line_without_colon_has_no_value(self):
        msg = _msg("NOTIFY * HTTP/1.1", "garbage line")
        assert msg.headers == (Header("garbage line", None),)

    def test_blank_lines_are_skipped_not_terminators(self):
        text = "NOTIFY * HTTP/1.1\r\nNT: a\r\n\r\n   \r\nUSN: b\r\n\r\n"
        msg = parse_message(ADDR, _now(), text)
        assert [h.name for h in msg.headers] == ["NT", "USN"]

    def test_lf_only_payload(self):
        msg = parse_message(ADDR, _now(), "HTTP/1.1 200 OK\nST: ssdp:all\nUSN: uuid:9\n")
        assert msg.is_search_response
        assert msg.st == "ssdp:all"
        assert msg.usn == "uuid:9"

    def test_status_line_split_on_runs_of_whitespace(self):
        msg = parse_message(ADDR, _now(), "HTTP/1.1   200 \t OK")
        assert msg.status_line == ("HTTP/1.1", "200", "OK")

    def test_empty_string(self):
        msg = parse_message(ADDR, _now(), "")
        assert msg.status_line == ()
        assert msg.headers == ()
        assert msg.method is None

    @pytest.mark.parametrize("text", [
        ":",
        "\r\n\r\n\r\n",
        "\n",
        "NOTIFY",
        "::::",
        "\x00\x01\x02",
        "HTTP/1.1 200 OK\r\n:no-name\r\nno-value:\r\n",
        "��\r\nX: �",
    ])
    def test_parsing_is_total(self, text):
        msg = parse_message(ADDR, _now(), text)
        assert isinstance(msg, DiscoveryMessage)

    def test_parse_classmethod(self):
        msg = DiscoveryMessage.parse(ADDR, _now(), "NOTIFY * HTTP/1.1\r\nNT: a")
        assert msg.is_notify

    def test_message_is_immutable(self):
        msg = _msg("NOTIFY * HTTP/1.1", "NT: a")
        with pytest.raises(AttributeError):
            msg.headers = ()

    def test_decode_datagram_replaces_invalid_bytes(self):
        text = decode_datagram(b"NOTIFY * HTTP/1.1\r\nX: \xff\xfe")
        assert text.startswith("NOTIFY")
        assert "�" in text


# ------------------------------------------------------------------ #
# Header access
# ------------------------------------------------------------------ #

class TestHeaderAccess:
    """Case-insensitive header lookup."""

    def test_lookup_ignores_case(self):
        msg = _msg("HTTP/1.1 200 OK", "usn: uuid:1", "Location: http://h/d.xml", "st: urn:x")
        assert msg.usn == "uuid:1"
        assert msg.location == "http://h/d.xml"
        assert msg.st == "urn:x"

    def test_first_value_wins(self):
        msg = _msg("NOTIFY * HTTP/1.1", "LOCATION: http://a/", "LOCATION: http://b/")
        assert msg.location == "http://a/"
        assert msg.locations == ["http://a/", "http://b/"]
        assert len(msg.headers_named("location")) == 2

    def test_missing_header_is_none(self):
        msg = _msg("NOTIFY * HTTP/1.1")
        assert msg.usn is None
        assert msg.nts is None
        assert msg.locations == []

    def test_header_present_without_value(self):
        msg = _msg("NOTIFY * HTTP/1.1", "USN")
        assert msg.has_header("USN")
        assert msg.usn is None


# ------------------------------------------------------------------ #
# Classification
# ------------------------------------------------------------------ #

class TestClassification:
    """is_notify / is_search_response / alive and byebye."""

    def test_notify(self):
        msg = _msg("NOTIFY * HTTP/1.1", "NTS: ssdp:alive")
        assert msg.is_notify
        assert not msg.is_search_response
        assert msg.is_alive
        assert not msg.is_byebye

    def test_byebye(self):
        msg = _msg("NOTIFY * HTTP/1.1", "NTS: ssdp:byebye")
        assert msg.is_byebye
        assert not msg.is_alive

    def test_search_response(self):
        msg = _msg("HTTP/1.1 200 OK", "ST: upnp:rootdevice")
        assert msg.is_search_response
        assert not msg.is_notify

    def test_search_request_is_neither(self):
        msg = _msg("M-SEARCH * HTTP/1.1", "ST: ssdp:all")
        assert msg.is_search_request
        assert not msg.is_notify
        assert not msg.is_search_response

    def test_method_match_is_exact(self):
        assert not _msg("notify * HTTP/1.1").is_notify
        assert not _msg("HTTP/1.0 200 OK").is_search_response


# ------------------------------------------------------------------ #
# Expiry
# ------------------------------------------------------------------ #

class TestExpiry:
    """is_expired: CACHE-CONTROL max-age measured from DATE or receipt."""

    def test_no_cache_control_never_expires(self):
        old = _now() - timedelta(days=365)
        msg = _msg("NOTIFY * HTTP/1.1", timestamp=old)
        assert msg.max_age is None
        assert msg.expires_at is None
        assert not msg.is_expired()

    def test_cache_control_without_max_age_never_expires(self):
        old = _now() - timedelta(days=1)
        msg = _msg("NOTIFY * HTTP/1.1", "CACHE-CONTROL: no-cache", timestamp=old)
        assert msg.max_age is None
        assert not msg.is_expired()

    @pytest.mark.parametrize("value,expected", [
        ("max-age=1800", 1800),
        ("max-age = 60", 60),
        ("MAX-AGE=5", 5),
        ('no-cache, max-age="120"', 120),
    ])
    def test_max_age_parsing(self, value, expected):
        msg = _msg("NOTIFY * HTTP/1.1", f"CACHE-CONTROL: {value}")
        assert msg.max_age == expected

    def test_expired_by_date_header(self):
        msg = _msg(
            "NOTIFY * HTTP/1.1",
            "CACHE-CONTROL: max-age=1",
            f"DATE: {_http_date(_now() - timedelta(seconds=10))}",
        )
        assert msg.is_expired()

    def test_date_header_takes_precedence_over_receipt(self):
        # Received long ago, but the device says it was sent just now
        msg = _msg(
            "NOTIFY * HTTP/1.1",
            "CACHE-CONTROL: max-age=1800",
            f"DATE: {_http_date(_now())}",
            timestamp=_now() - timedelta(hours=2),
        )
        assert not msg.is_expired()

    def test_receipt_time_used_without_date(self):
        fresh = _msg("NOTIFY * HTTP/1.1", "CACHE-CONTROL: max-age=60")
        stale = _msg(
            "NOTIFY * HTTP/1.1",
            "CACHE-CONTROL: max-age=60",
            timestamp=_now() - timedelta(seconds=120),
        )
        assert not fresh.is_expired()
        assert stale.is_expired()

    def test_unparseable_date_falls_back_to_receipt(self):
        msg = _msg(
            "NOTIFY * HTTP/1.1",
            "CACHE-CONTROL: max-age=5",
            "DATE: not a date",
            timestamp=_now() - timedelta(seconds=30),
        )
        assert msg.effective_date == msg.timestamp
        assert msg.is_expired()

    def test_explicit_now(self):
        received = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        msg = _msg("NOTIFY * HTTP/1.1", "CACHE-CONTROL: max-age=100", timestamp=received)
        assert not msg.is_expired(received + timedelta(seconds=100))
        assert msg.is_expired(received + timedelta(seconds=101))

    def test_naive_timestamps_are_utc(self):
        received = datetime(2024, 1, 1, 12, 0, 0)
        msg = _msg("NOTIFY * HTTP/1.1", "CACHE-CONTROL: max-age=10", timestamp=received)
        assert msg.expires_at == datetime(2024, 1, 1, 12, 0, 10, tzinfo=timezone.utc)

    def test_parse_http_date(self):
        parsed = parse_http_date("Sun, 06 Nov 1994 08:49:37 GMT")
        assert parsed == datetime(1994, 11, 6, 8, 49, 37, tzinfo=timezone.utc)
        assert parse_http_date("") is None
        assert parse_http_date(None) is None
        assert parse_http_date("yesterday") is None


# ------------------------------------------------------------------ #
# Admissibility
# ------------------------------------------------------------------ #

class TestIsAdmissible:
    """USN + LOCATION + (search response or NTS)."""

    def test_complete_notify(self):
        msg = _msg("NOTIFY * HTTP/1.1", "NTS: ssdp:alive", "USN: u", "LOCATION: http://h/")
        assert is_admissible(msg)

    def test_search_response_needs_no_nts(self):
        msg = _msg("HTTP/1.1 200 OK", "USN: u", "LOCATION: http://h/")
        assert is_admissible(msg)

    def test_notify_without_nts(self):
        msg = _msg("NOTIFY * HTTP/1.1", "USN: u", "LOCATION: http://h/")
        assert not is_admissible(msg)

    def test_missing_usn(self):
        msg = _msg("HTTP/1.1 200 OK", "LOCATION: http://h/")
        assert not is_admissible(msg)

    def test_missing_location(self):
        msg = _msg("NOTIFY * HTTP/1.1", "NTS: ssdp:alive", "USN: u")
        assert not is_admissible(msg)

    def test_usn_without_value(self):
        msg = _msg("HTTP/1.1 200 OK", "USN", "LOCATION: http://h/")
        assert not is_admissible(msg)

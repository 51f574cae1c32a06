"""Tests for message body parsing."""

import pytest

from sia_dc09.errors import AccountMismatch
from sia_dc09.messages import (
    Message,
    check_account,
    extract_event_fields,
    extract_header,
    extract_loose_header,
    extract_timestamp,
    parse_message,
    strip_protocol_id,
)


class TestExtractors:
    """Tests for the individual field extractors."""

    def test_timestamp_present(self):
        timestamp, rest = extract_timestamp('"12:00:00,01-02-2024"Nri1#1234[01] BA')
        assert timestamp == "12:00:00,01-02-2024"
        assert rest == "Nri1#1234[01] BA"

    def test_timestamp_absent(self):
        timestamp, rest = extract_timestamp("  Nri1#1234[01] BA")
        assert timestamp is None
        assert rest == "Nri1#1234[01] BA"

    @pytest.mark.parametrize(
        "text,expected",
        [
            ('"SIA-DCS"0001R0L0#1234[01] BA', "0001R0L0#1234[01] BA"),
            ("SIA-DCS0001#1234[01] BA", "0001#1234[01] BA"),
            ("Nri1#1234[01] BA", "Nri1#1234[01] BA"),
        ],
    )
    def test_strip_protocol_id(self, text, expected):
        assert strip_protocol_id(text) == expected

    def test_strict_header(self):
        header = extract_header("0007R1L2#1234[07] BA Z01")
        assert header.function == "0007"
        assert header.receiver == "R1"
        assert header.line == "L2"
        assert header.account == "1234"
        assert header.sequence == "07"
        assert header.event_code == "BA"
        assert header.remainder == " Z01"

    def test_strict_header_without_receiver_line(self):
        header = extract_header("Nri1#000123[05] OP U12")
        assert header.function == "Nri1"
        assert header.receiver == "R0"
        assert header.line == "L0"
        assert header.account == "000123"

    def test_strict_header_requires_sequence(self):
        assert extract_header("Nri1#1234 BA") is None

    def test_loose_header(self):
        header = extract_loose_header("xx #1234 BA Z05")
        assert header.account == "1234"
        assert header.event_code == "BA"
        assert header.function is None
        assert header.sequence == "00"

    def test_loose_header_uses_expected_account(self):
        """A known account splits an alphanumeric account from the event code."""
        assert extract_loose_header("#12ABBA Z1").account == "12AB"
        header = extract_loose_header("#12ABBA Z1", account="12A")
        assert header.account == "12A"
        assert header.event_code == "BBA"

    def test_event_fields(self):
        assert extract_event_fields(" Z01 U12 A3") == {"zone": 1, "user": 12, "area": 3}

    def test_event_fields_first_wins(self):
        assert extract_event_fields(" Z01 Z02") == {"zone": 1}

    def test_event_fields_none(self):
        assert extract_event_fields(" ") == {}


class TestParseMessage:
    """Tests for parse_message."""

    def test_full_message(self):
        message = parse_message('"SIA-DCS"0007R0L0#1234[07] BA Z01')
        assert message.valid
        assert message.account == "1234"
        assert message.sequence == "07"
        assert message.receiver == "R0"
        assert message.line == "L0"
        assert message.event_code == "BA"
        assert message.zone == 1
        assert message.error is None

    def test_timestamp_user_area(self):
        message = parse_message('"2024-01-01 12:00:00"Nri1#000123[05] OP U12 A2')
        assert message.valid
        assert message.timestamp == "2024-01-01 12:00:00"
        assert message.account == "000123"
        assert message.event_code == "OP"
        assert message.user == 12
        assert message.area == 2
        assert message.zone is None

    def test_loose_fallback(self):
        message = parse_message("#1234 BA Z05")
        assert message.valid
        assert message.account == "1234"
        assert message.event_code == "BA"
        assert message.zone == 5
        assert message.sequence == "00"

    def test_link_test(self):
        message = parse_message("SIA-DCS0003#1234[03] DUH")
        assert message.valid
        assert message.is_link_test

    def test_too_short(self):
        message = parse_message("#12 BA")
        assert not message.valid
        assert message.error == "Body too short (6 chars)"

    def test_missing_tokens(self):
        message = parse_message("garbage text here")
        assert not message.valid
        assert message.error == "Account or event code not found"
        assert message.raw == b"garbage text here"

    def test_flags_and_raw_carried(self):
        message = parse_message(
            "#1234 BA Z05", crc_valid=False, encrypted=True, raw=b"\r\n0012#1234 BA Z05XXXX\r\n"
        )
        assert message.crc_valid is False
        assert message.encrypted is True
        assert message.raw.startswith(b"\r\n0012")

    def test_message_is_immutable(self):
        message = parse_message("#1234 BA Z05")
        with pytest.raises(AttributeError):
            message.account = "9999"


class TestCheckAccount:
    """Tests for shared-line account filtering."""

    def test_matching_account(self):
        message = parse_message("#1234 BA Z05")
        assert check_account(message, "1234") is message

    def test_no_expected_account(self):
        message = parse_message("#1234 BA Z05")
        assert check_account(message, None) is message

    def test_other_account(self):
        message = Message(account="5678", event_code="BA", raw=b"")
        with pytest.raises(AccountMismatch) as exc_info:
            check_account(message, "1234")
        assert exc_info.value.details == {"account": "5678", "expected": "1234"}

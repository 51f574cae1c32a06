"""
SIA DC-09 message parsing.

A decoded (and, when encryption is enabled, decrypted) frame body is turned
into an immutable Message. The body layout is:

    ["SIA-DCS"] ["<timestamp>"] <function>[R<x>L<x>]#<account>[<seq>] <event> [Z<n>] [U<n>] [A<n>]

Each field is extracted by its own small function so the variants seen in
the field can be handled (and tested) independently.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import AccountMismatch

MIN_BODY_LENGTH = 8
DEFAULT_SEQUENCE = "00"
DEFAULT_RECEIVER = "R0"
DEFAULT_LINE = "L0"
LINK_TEST_EVENT = "DUH"

_TIMESTAMP = re.compile(r'^\s*"([^"]*)"\s*')
_PROTOCOL_ID = re.compile(r'^\s*(?:"SIA-DCS"|SIA-DCS)\s*')
_STRICT_HEADER = re.compile(
    r"(?P<function>[A-Za-z0-9]+?)"
    r"(?:(?P<receiver>R[0-9A-Fa-f])(?P<line>L[0-9A-Fa-f]))?"
    r"#(?P<account>[A-Za-z0-9]+)"
    r"\[(?P<sequence>\d{2})\]"
    r"\s+(?P<event>[A-Z]{2,3})(?![A-Za-z])"
)
_LOOSE_HEADER = re.compile(r"#(?P<account>[A-Za-z0-9]+)\s*(?P<event>[A-Z]{2,3})(?![A-Za-z])")
_EVENT_FIELD = re.compile(r"([ZUA])(\d+)")


@dataclass(frozen=True, slots=True)
class MessageHeader:
    """Identification fields found at the start of a body."""

    account: str
    event_code: str
    remainder: str
    function: str | None = None
    sequence: str = DEFAULT_SEQUENCE
    receiver: str = DEFAULT_RECEIVER
    line: str = DEFAULT_LINE


@dataclass(frozen=True, slots=True)
class Message:
    """Decoded result of one inbound frame."""

    account: str
    event_code: str
    raw: bytes
    sequence: str = DEFAULT_SEQUENCE
    receiver: str = DEFAULT_RECEIVER
    line: str = DEFAULT_LINE
    function: str | None = None
    zone: int | None = None
    user: int | None = None
    area: int | None = None
    timestamp: str | None = None
    crc_valid: bool = True
    encrypted: bool = False
    valid: bool = True
    error: str | None = None

    @property
    def is_link_test(self) -> bool:
        """Whether this is a link-test/heartbeat message."""
        return self.event_code == LINK_TEST_EVENT


def strip_protocol_id(text: str) -> str:
    """Drop a leading SIA-DCS protocol token (quoted or bare)."""
    return _PROTOCOL_ID.sub("", text, count=1)


def extract_timestamp(text: str) -> tuple[str | None, str]:
    """
    Extract the optional quoted timestamp.

    Returns:
        Tuple of (timestamp or None, rest of text)
    """
    match = _TIMESTAMP.match(text)
    if not match:
        return None, text.lstrip()
    return match.group(1), text[match.end() :]


def extract_header(text: str) -> MessageHeader | None:
    """Match the strict <function>#<account>[<seq>] <event> form."""
    match = _STRICT_HEADER.match(text)
    if not match:
        return None
    return MessageHeader(
        account=match.group("account"),
        event_code=match.group("event"),
        remainder=text[match.end() :],
        function=match.group("function"),
        sequence=match.group("sequence"),
        receiver=(match.group("receiver") or DEFAULT_RECEIVER).upper(),
        line=(match.group("line") or DEFAULT_LINE).upper(),
    )


def extract_loose_header(text: str, account: str | None = None) -> MessageHeader | None:
    """
    Match a bare #<account> followed by an event code, anywhere in text.

    When the expected account is known it is tried first, which resolves
    bodies where an alphanumeric account runs into the event code.
    """
    match = None
    if account:
        pattern = re.compile(
            r"#(?P<account>" + re.escape(account) + r")\s*(?P<event>[A-Z]{2,3})(?![A-Za-z])"
        )
        match = pattern.search(text)
    if match is None:
        match = _LOOSE_HEADER.search(text)
    if match is None:
        return None
    return MessageHeader(
        account=match.group("account"),
        event_code=match.group("event"),
        remainder=text[match.end() :],
    )


def extract_event_fields(text: str) -> dict[str, int]:
    """
    Extract zone/user/area numbers (Z<n>, U<n>, A<n>).

    The first occurrence of each field wins.
    """
    names = {"Z": "zone", "U": "user", "A": "area"}
    result: dict[str, int] = {}
    for letter, digits in _EVENT_FIELD.findall(text):
        result.setdefault(names[letter], int(digits))
    return result


def parse_message(
    body: str,
    account: str | None = None,
    *,
    crc_valid: bool = True,
    encrypted: bool = False,
    raw: bytes = b"",
) -> Message:
    """
    Parse a frame body into a Message.

    Never raises: failures are reported with valid=False and an error text.

    Args:
        body: Frame body (already decrypted when encryption is enabled)
        account: Expected account, used to disambiguate the loose form
        crc_valid: Result of the frame CRC check
        encrypted: Whether the body arrived encrypted
        raw: Original frame bytes

    Returns:
        Parsed Message
    """
    raw = raw or body.encode("latin-1", errors="replace")

    def invalid(error: str) -> Message:
        return Message(
            account="",
            event_code="",
            raw=raw,
            crc_valid=crc_valid,
            encrypted=encrypted,
            valid=False,
            error=error,
        )

    text = body.strip()
    if len(text) < MIN_BODY_LENGTH:
        return invalid(f"Body too short ({len(text)} chars)")

    timestamp, rest = extract_timestamp(strip_protocol_id(text))
    header = extract_header(rest) or extract_loose_header(rest, account)
    if header is None:
        return invalid("Account or event code not found")

    fields = extract_event_fields(header.remainder)
    return Message(
        account=header.account,
        event_code=header.event_code,
        raw=raw,
        sequence=header.sequence,
        receiver=header.receiver,
        line=header.line,
        function=header.function,
        zone=fields.get("zone"),
        user=fields.get("user"),
        area=fields.get("area"),
        timestamp=timestamp,
        crc_valid=crc_valid,
        encrypted=encrypted,
    )


def check_account(message: Message, expected: str | None) -> Message:
    """
    Check that a message belongs to the expected account.

    Raises:
        AccountMismatch: If an account is expected and the message carries
            another one
    """
    if expected and message.account != expected:
        raise AccountMismatch(
            f"Message for account {message.account}, expected {expected}",
            details={"account": message.account, "expected": expected},
        )
    return message

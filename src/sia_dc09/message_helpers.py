"""
Outbound packet construction for SIA DC-09 communication.

- DC-09 ACKs (always 14-character body, 26-byte packet)
- Handshake ACKs in the configured style
- Control commands (arm/disarm/bypass/restore/output)
- Poll packets (inquiry line, framed heartbeat)
"""

from __future__ import annotations

import logging
import re

from .config import AckStyle
from .errors import ProtocolInvariantViolation
from .messages import DEFAULT_LINE, DEFAULT_RECEIVER, DEFAULT_SEQUENCE
from .protocol import encode_frame, encrypt_body, pad

logger = logging.getLogger(__name__)

ACK_BODY_LENGTH = 14
ACK_PACKET_LENGTH = 26
ACK_ACCOUNT_LENGTH = 4

# Command function codes
FUNCTION_ARM = "A"
FUNCTION_DISARM = "D"
FUNCTION_BYPASS = "B"
FUNCTION_RESTORE = "R"
FUNCTION_OUTPUT = "O"

PARTITION_WIDTH = 2
ZONE_WIDTH = 3
OUTPUT_WIDTH = 2
PIN_WIDTH = 6

OUTPUT_ON = "01"
OUTPUT_OFF = "00"

INQUIRY_SEQUENCE_MODULO = 9999

_ACK_BODY = re.compile(r"^ACK\d{2}R[0-9A-F]L[0-9A-F]#[0-9A-Z]{4}$")
_PEER_REPLY = re.compile(r"^(?:ACK|NAK)\d{0,2}(?:R[0-9A-F]L[0-9A-F])?#[0-9A-Za-z]+$")
_PIN = re.compile(r"^\d{4,6}$")

# Fixed handshake replies, keyed by style
_PLAIN_ACKS = {
    AckStyle.PLAIN_A: b"A",
    AckStyle.PLAIN_A_CRLF: b"A\r\n",
    AckStyle.ACK: b"ACK",
    AckStyle.ACK_CRLF: b"ACK\r\n",
}


def normalize_account(account: str) -> str:
    """
    Normalize an account to the 4 characters carried in an ACK.

    Non-alphanumerics are dropped, shorter accounts are left-padded with
    zeros and longer ones keep their last 4 characters. Idempotent.
    """
    cleaned = "".join(c for c in str(account) if c.isascii() and c.isalnum()).upper()
    if len(cleaned) > ACK_ACCOUNT_LENGTH:
        return cleaned[-ACK_ACCOUNT_LENGTH:]
    return pad(cleaned, ACK_ACCOUNT_LENGTH)


def build_ack_body(
    account: str,
    seq: str | int = DEFAULT_SEQUENCE,
    receiver: str = DEFAULT_RECEIVER,
    line: str = DEFAULT_LINE,
) -> str:
    """
    Build the 14-character DC-09 ACK body ACK<seq><receiver><line>#<acct4>.

    Raises:
        ProtocolInvariantViolation: If the result is not a well-formed
            14-character body
    """
    body = f"ACK{pad(seq, 2)}{str(receiver).upper()}{str(line).upper()}#{normalize_account(account)}"
    if len(body) != ACK_BODY_LENGTH or not _ACK_BODY.match(body):
        raise ProtocolInvariantViolation(
            f"ACK body must be {ACK_BODY_LENGTH} characters, got {body!r}",
            details={"account": account, "seq": seq, "receiver": receiver, "line": line},
        )
    return body


def is_ack_body(body: str) -> bool:
    """Whether a frame body is an ACK/NAK sent by the other side."""
    return bool(_PEER_REPLY.match(body.strip()))


def build_ack(
    account: str,
    seq: str | int = DEFAULT_SEQUENCE,
    receiver: str = DEFAULT_RECEIVER,
    line: str = DEFAULT_LINE,
) -> bytes:
    """
    Build a framed DC-09 ACK packet.

    Args:
        account: Account being acknowledged (normalized to 4 characters)
        seq: 2-digit sequence echoed from the message
        receiver: Receiver token (R<x>)
        line: Line token (L<x>)

    Returns:
        26-byte ACK packet
    """
    packet = encode_frame(build_ack_body(account, seq, receiver, line))
    if len(packet) != ACK_PACKET_LENGTH:
        raise ProtocolInvariantViolation(f"ACK packet must be {ACK_PACKET_LENGTH} bytes")
    return packet


def build_handshake_ack(
    style: AckStyle,
    account: str,
    raw: bytes = b"",
    custom: str = "",
) -> bytes:
    """
    Build the reply to a handshake line.

    Args:
        style: Configured ACK style
        account: Account learned from the handshake (or configured)
        raw: The handshake line as received (for ECHO)
        custom: Reply text for CUSTOM

    Returns:
        Bytes to write back
    """
    if style == AckStyle.DC09_FRAMED:
        return build_ack(account)
    if style == AckStyle.ECHO:
        return raw
    if style == AckStyle.CUSTOM:
        return custom.encode("ascii")
    return _PLAIN_ACKS[style]


# ============================================================================
# Commands
# ============================================================================


def _fixed_number(value: int | str, width: int, name: str) -> str:
    """Format a non-negative number to a fixed number of digits."""
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name} must be a number, got {value!r}") from e
    if not 0 <= number < 10**width:
        raise ValueError(f"{name} must fit in {width} digits, got {number}")
    return pad(number, width)


def _pin_field(pin: str | int) -> str:
    pin = str(pin)
    if not _PIN.match(pin):
        raise ValueError("PIN must be 4 to 6 digits")
    return pad(pin, PIN_WIDTH)


def build_command(
    function: str,
    payload: str,
    account: str,
    *,
    key: str | bytes | None = None,
    key_is_hex: bool = False,
) -> bytes:
    """
    Build a framed control command <function><payload>#<account>.

    Args:
        function: Single-character function code
        payload: Fixed-width payload
        account: Full account (not truncated)
        key: Encryption key; when set the body is encrypted before framing
        key_is_hex: Interpret key as hex

    Returns:
        Framed command packet
    """
    if len(function) != 1 or not function.isalpha():
        raise ValueError(f"Function code must be a single letter, got {function!r}")
    if not account:
        raise ValueError("Account is required")

    body = f"{function}{payload}#{account}"
    logger.debug(f"Command body: {body}")
    if key:
        body = encrypt_body(body, key, key_is_hex)
    return encode_frame(body)


def arm(
    account: str,
    partition: int,
    pin: str,
    *,
    key: str | bytes | None = None,
    key_is_hex: bool = False,
) -> bytes:
    """Build an arm command for a partition."""
    payload = _fixed_number(partition, PARTITION_WIDTH, "partition") + _pin_field(pin)
    return build_command(FUNCTION_ARM, payload, account, key=key, key_is_hex=key_is_hex)


def disarm(
    account: str,
    partition: int,
    pin: str,
    *,
    key: str | bytes | None = None,
    key_is_hex: bool = False,
) -> bytes:
    """Build a disarm command for a partition."""
    payload = _fixed_number(partition, PARTITION_WIDTH, "partition") + _pin_field(pin)
    return build_command(FUNCTION_DISARM, payload, account, key=key, key_is_hex=key_is_hex)


def bypass(
    account: str, zone: int, *, key: str | bytes | None = None, key_is_hex: bool = False
) -> bytes:
    """Build a zone bypass command."""
    payload = _fixed_number(zone, ZONE_WIDTH, "zone")
    return build_command(FUNCTION_BYPASS, payload, account, key=key, key_is_hex=key_is_hex)


def restore(
    account: str, zone: int, *, key: str | bytes | None = None, key_is_hex: bool = False
) -> bytes:
    """Build a zone restore (un-bypass) command."""
    payload = _fixed_number(zone, ZONE_WIDTH, "zone")
    return build_command(FUNCTION_RESTORE, payload, account, key=key, key_is_hex=key_is_hex)


def set_output(
    account: str,
    output: int,
    on: bool,
    *,
    key: str | bytes | None = None,
    key_is_hex: bool = False,
) -> bytes:
    """Build an output (PGM) on/off command."""
    payload = _fixed_number(output, OUTPUT_WIDTH, "output") + (OUTPUT_ON if on else OUTPUT_OFF)
    return build_command(FUNCTION_OUTPUT, payload, account, key=key, key_is_hex=key_is_hex)


# ============================================================================
# Polling
# ============================================================================


def next_inquiry_sequence(current: int) -> int:
    """Advance an inquiry sequence number (modulo 9999)."""
    return (current + 1) % INQUIRY_SEQUENCE_MODULO


def build_inquiry(account: str, sequence: int) -> bytes:
    """Build the unframed inquiry line I<account>,<seq4>,00 CRLF."""
    return f"I{account},{pad(sequence, 4)},00\r\n".encode("ascii")


def build_heartbeat(
    account: str,
    *,
    key: str | bytes | None = None,
    key_is_hex: bool = False,
) -> bytes:
    """Build a framed heartbeat packet, encrypted like commands when key is set."""
    body = f"NULL#{account}"
    if key:
        body = encrypt_body(body, key, key_is_hex)
    return encode_frame(body)

"""
Protocol utilities for SIA DC-09 communication.

This module provides low-level utilities for:
- CRC-16 checksums (CCITT/XModem)
- AES-128-ECB encryption of the message body
- DC-09 framing (length + body + CRC envelope)
- Detection of the unframed handshake line
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from Crypto.Cipher import AES

from .errors import CrcMismatch, CryptoError, FrameError, FrameErrorReason, ProtocolInvariantViolation

# Framing constants
CR = 0x0D
LF = 0x0A
CRLF = b"\r\n"
LENGTH_DIGITS = 4
CRC_DIGITS = 4
MAX_BODY_LENGTH = 9999

# CRC-16/XMODEM parameters
CRC16_POLY = 0x1021
CRC16_INIT = 0x0000

AES_BLOCK_SIZE = 16

_CRC_FIELD = re.compile(rb"^[0-9A-Fa-f]{4}$")
_HANDSHAKE_LINE = re.compile(rb"^[\r\n]*([FD])#([0-9A-Za-z]+)[ \t]*(?:\r\n|\r|\n)")
_HANDSHAKE_PREFIX = re.compile(rb"^[\r\n]*[FD](?:#[0-9A-Za-z]*[ \t]*)?\Z")


def _to_bytes(data: bytes | bytearray | str) -> bytes:
    if isinstance(data, str):
        return data.encode("ascii")
    return bytes(data)


def pad(value: int | str, width: int) -> str:
    """Left-pad a number or string with zeros to a fixed width."""
    return str(value).rjust(width, "0")


def crc16(data: bytes | str, offset: int = 0, length: int | None = None) -> int:
    """
    Calculate CRC-16 checksum.

    Uses polynomial 0x1021, initial value 0x0000, no final XOR
    (CRC-16/XMODEM, the checksum mandated by DC-09).

    Args:
        data: Input data (str is encoded as ASCII)
        offset: Start offset in data
        length: Number of bytes to process (default: rest of data from offset)

    Returns:
        CRC-16 value
    """
    data = _to_bytes(data)
    if length is None:
        length = len(data) - offset

    crc = CRC16_INIT
    for i in range(length):
        crc ^= data[offset + i] << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ CRC16_POLY) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return crc


def crc16_hex(data: bytes | str) -> str:
    """Return the CRC-16 of data as 4 uppercase hex digits."""
    return f"{crc16(data):04X}"


# ============================================================================
# Encryption
# ============================================================================


def make_key(key: str | bytes, key_is_hex: bool = False) -> bytes:
    """
    Build a 16-byte AES key from configuration.

    Args:
        key: 16-character key, or 32 hex digits when key_is_hex is set
        key_is_hex: Interpret key as hex

    Returns:
        16-byte AES-128 key

    Raises:
        CryptoError: If the key does not yield exactly 16 bytes
    """
    if isinstance(key, bytes):
        raw = key
    elif key_is_hex:
        try:
            raw = bytes.fromhex(key.strip())
        except ValueError as e:
            raise CryptoError("Encryption key is not valid hex") from e
    else:
        raw = key.encode("utf-8")

    if len(raw) != AES_BLOCK_SIZE:
        raise CryptoError(
            f"Encryption key must be 16 bytes, got {len(raw)}",
            details={"key_is_hex": key_is_hex},
        )
    return raw


def zero_pad(data: bytes) -> bytes:
    """Pad data with NUL bytes up to the next AES block boundary."""
    remainder = len(data) % AES_BLOCK_SIZE
    if remainder == 0:
        return data
    return data + bytes(AES_BLOCK_SIZE - remainder)


def aes_ecb_encrypt(data: bytes, key: bytes) -> bytes:
    """
    AES-128-ECB encryption without padding.

    Raises:
        CryptoError: If data is not a multiple of 16 bytes
    """
    if len(data) % AES_BLOCK_SIZE:
        raise CryptoError(f"Plaintext length {len(data)} is not block aligned")
    return AES.new(make_key(key), AES.MODE_ECB).encrypt(data)


def aes_ecb_decrypt(data: bytes, key: bytes) -> bytes:
    """
    AES-128-ECB decryption without padding.

    Raises:
        CryptoError: If data is not a multiple of 16 bytes
    """
    if len(data) % AES_BLOCK_SIZE:
        raise CryptoError(f"Ciphertext length {len(data)} is not block aligned")
    return AES.new(make_key(key), AES.MODE_ECB).decrypt(data)


def encrypt_body(plaintext: str, key: str | bytes, key_is_hex: bool = False) -> str:
    """
    Encrypt a message body for transmission.

    The plaintext is zero-padded to the block size before encryption.

    Args:
        plaintext: Message body
        key: Encryption key as configured
        key_is_hex: Interpret key as hex

    Returns:
        Ciphertext as uppercase hex (the bytes actually placed on the wire)
    """
    aes_key = make_key(key, key_is_hex)
    return aes_ecb_encrypt(zero_pad(plaintext.encode("utf-8")), aes_key).hex().upper()


def decrypt_body(ciphertext_hex: str, key: str | bytes, key_is_hex: bool = False) -> str:
    """
    Decrypt a received message body.

    Args:
        ciphertext_hex: Body as transmitted (hex)
        key: Encryption key as configured
        key_is_hex: Interpret key as hex

    Returns:
        Plaintext with trailing NUL padding stripped

    Raises:
        CryptoError: On bad key, non-hex or misaligned ciphertext, or
            plaintext that does not decode (wrong key)
    """
    aes_key = make_key(key, key_is_hex)
    try:
        ciphertext = bytes.fromhex(ciphertext_hex.strip())
    except ValueError as e:
        raise CryptoError("Ciphertext is not valid hex") from e

    plaintext = aes_ecb_decrypt(ciphertext, aes_key).rstrip(b"\x00")
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise CryptoError("Decrypted body is not valid text (wrong key?)") from e


# ============================================================================
# Framing
# ============================================================================


class _Incomplete(Enum):
    NEED_MORE_DATA = "need_more_data"


NEED_MORE_DATA = _Incomplete.NEED_MORE_DATA


@dataclass(frozen=True, slots=True)
class Frame:
    """A DC-09 frame extracted from the stream."""

    length: int
    body: str
    crc: str
    crc_valid: bool
    raw: bytes


@dataclass(frozen=True, slots=True)
class HandshakeLine:
    """An unframed link-establishment line (F#acct or D#acct)."""

    kind: str
    account: str
    raw: bytes


DecodeResult = Frame | FrameError | _Incomplete


def encode_frame(body: str | bytes) -> bytes:
    """
    Wrap a body in the DC-09 envelope.

    The body must already be in its transmitted form (ciphertext hex when
    encryption is enabled), since length and CRC describe the wire bytes.

    Args:
        body: Body to frame

    Returns:
        CRLF + 4-digit length + body + 4-hex CRC + CRLF

    Raises:
        ProtocolInvariantViolation: If the body is not ASCII or too long
    """
    try:
        body_bytes = _to_bytes(body)
        body_bytes.decode("ascii")
    except UnicodeError as e:
        raise ProtocolInvariantViolation("Frame body must be ASCII") from e

    if len(body_bytes) > MAX_BODY_LENGTH:
        raise ProtocolInvariantViolation(
            f"Frame body of {len(body_bytes)} bytes exceeds {MAX_BODY_LENGTH}"
        )

    header = pad(len(body_bytes), LENGTH_DIGITS).encode("ascii")
    crc = crc16_hex(body_bytes).encode("ascii")
    return CRLF + header + body_bytes + crc + CRLF


def _find_terminator(data: bytes, start: int, end: int) -> int:
    """Return the index of the first CR or LF in data[start:end], or -1."""
    for i in range(start, end):
        if data[i] in (CR, LF):
            return i
    return -1


def _resync(data: bytes, start: int) -> bytes:
    """Drop everything up to and including the next line terminator."""
    index = data.find(b"\n", start)
    if index == -1:
        index = data.find(b"\r", start)
    if index == -1:
        return b""
    return data[index + 1 :]


def decode_frame(buffer: bytes | bytearray) -> tuple[DecodeResult, bytes]:
    """
    Extract the next DC-09 frame from a stream buffer.

    Args:
        buffer: Bytes received so far

    Returns:
        Tuple of (Frame, FrameError or NEED_MORE_DATA, remaining buffer).
        A CRC mismatch is reported through Frame.crc_valid, not as an error.
    """
    data = bytes(buffer)

    start = 0
    while start < len(data) and data[start] in (CR, LF):
        start += 1

    if len(data) - start < LENGTH_DIGITS:
        return NEED_MORE_DATA, data[start:]

    header = data[start : start + LENGTH_DIGITS]
    if not header.isdigit():
        error = FrameError(
            f"Length field is not 4 digits: {header!r}",
            reason=FrameErrorReason.MALFORMED_HEADER,
        )
        return error, _resync(data, start)

    length = int(header)
    body_start = start + LENGTH_DIGITS
    crc_start = body_start + length
    crc_end = crc_start + CRC_DIGITS
    frame_end = crc_end + len(CRLF)

    # Bodies never contain line terminators, so one inside the declared span
    # means the declared length is longer than what was sent.
    terminator = _find_terminator(data, body_start, min(crc_end, len(data)))
    if terminator != -1:
        error = FrameError(
            f"Declared length {length} does not match frame",
            reason=FrameErrorReason.LENGTH_MISMATCH,
        )
        return error, _resync(data, terminator)

    if len(data) < frame_end:
        return NEED_MORE_DATA, data[start:]

    crc_field = data[crc_start:crc_end]
    if not _CRC_FIELD.match(crc_field):
        error = FrameError(
            f"CRC field is not 4 hex digits: {crc_field!r}",
            reason=FrameErrorReason.MALFORMED_HEADER,
        )
        return error, _resync(data, crc_start)

    if data[crc_end:frame_end] != CRLF:
        error = FrameError(
            f"Declared length {length} does not match frame",
            reason=FrameErrorReason.LENGTH_MISMATCH,
        )
        return error, _resync(data, crc_end)

    body_bytes = data[body_start:crc_start]
    crc = crc_field.decode("ascii").upper()
    frame = Frame(
        length=length,
        body=body_bytes.decode("latin-1"),
        crc=crc,
        crc_valid=crc16(body_bytes) == int(crc, 16),
        raw=data[:frame_end],
    )
    return frame, data[frame_end:]


def match_handshake(
    buffer: bytes | bytearray,
) -> tuple[HandshakeLine, bytes] | _Incomplete | None:
    """
    Detect an unframed handshake line at the start of the buffer.

    The line must be terminated. An unterminated `[FD]#...` prefix may still
    grow into a handshake and is left for the next delivery.

    Args:
        buffer: Bytes received so far

    Returns:
        Tuple of (HandshakeLine, remaining buffer), NEED_MORE_DATA if the
        buffer holds an incomplete handshake line, or None if the buffer does
        not start with a handshake
    """
    data = bytes(buffer)
    match = _HANDSHAKE_LINE.match(data)
    if not match:
        if _HANDSHAKE_PREFIX.match(data):
            return NEED_MORE_DATA
        return None

    line = HandshakeLine(
        kind=match.group(1).decode("ascii"),
        account=match.group(2).decode("ascii"),
        raw=data[: match.end()].lstrip(b"\r\n"),
    )
    return line, data[match.end() :]


def verify_frame(frame: Frame) -> Frame:
    """
    Check the CRC of a decoded frame.

    Returns:
        The frame, unchanged

    Raises:
        CrcMismatch: If the received CRC does not match the body
    """
    if frame.crc_valid:
        return frame
    computed = crc16_hex(frame.body.encode("latin-1"))
    raise CrcMismatch(
        f"CRC mismatch: received {frame.crc}, computed {computed}",
        details={"received": frame.crc, "computed": computed},
    )

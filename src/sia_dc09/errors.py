"""
Error classes for SIA DC-09 communication.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Error codes for common scenarios."""

    # Framing/validation errors
    FRAME_ERROR = "FRAME_ERROR"
    CRC_MISMATCH = "CRC_MISMATCH"
    CRYPTO_ERROR = "CRYPTO_ERROR"
    ACCOUNT_MISMATCH = "ACCOUNT_MISMATCH"
    PARSE_ERROR = "PARSE_ERROR"

    # Internal bugs (malformed outbound packet)
    PROTOCOL_INVARIANT = "PROTOCOL_INVARIANT"

    # Connection errors
    CONNECTION_FAILED = "CONNECTION_FAILED"
    TIMEOUT = "TIMEOUT"

    # Unknown
    UNKNOWN = "UNKNOWN"


class FrameErrorReason(StrEnum):
    """Why a frame could not be extracted from the stream."""

    MALFORMED_HEADER = "MALFORMED_HEADER"
    LENGTH_MISMATCH = "LENGTH_MISMATCH"


class SiaError(Exception):
    """
    Base exception for SIA DC-09 operations.

    Provides structured error information for consistent error handling.
    """

    default_code: ErrorCode = ErrorCode.UNKNOWN

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize a SiaError.

        Args:
            message: Human-readable error message
            code: Error code (defaults to the class default)
            details: Additional structured details (e.g., raw bytes, account)
        """
        super().__init__(message)
        if code is None:
            code = self.default_code
        self.code = code if isinstance(code, ErrorCode) else ErrorCode(code)
        self.details = details or {}

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.code != ErrorCode.UNKNOWN:
            parts.append(f"code={self.code}")
        if self.details:
            parts.append(f"details={self.details}")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({super().__str__()!r}, code={self.code!r}, "
            f"details={self.details!r})"
        )


class FrameError(SiaError):
    """Malformed length/CRC header or a declared length that does not fit."""

    default_code = ErrorCode.FRAME_ERROR

    def __init__(
        self,
        message: str,
        *,
        reason: FrameErrorReason = FrameErrorReason.MALFORMED_HEADER,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.reason = reason


class CrcMismatch(SiaError):
    """Frame is structurally valid but its checksum does not match."""

    default_code = ErrorCode.CRC_MISMATCH


class CryptoError(SiaError):
    """Bad key length or ciphertext that is not block aligned."""

    default_code = ErrorCode.CRYPTO_ERROR


class AccountMismatch(SiaError):
    """Message belongs to another account on a shared line."""

    default_code = ErrorCode.ACCOUNT_MISMATCH


class ProtocolInvariantViolation(SiaError):
    """An outbound packet would violate the wire format. Never transmitted."""

    default_code = ErrorCode.PROTOCOL_INVARIANT

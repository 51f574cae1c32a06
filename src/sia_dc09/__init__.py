"""
SIA DC-09 - Async Python receiver and dialer for alarm panels.

This library implements the SIA DC-09 IP alarm transmission protocol:
framing with CRC-16, optional AES-128 body encryption, ACK generation,
per-connection sessions with polling, a TCP receiver and a reconnecting
dialer for sending control commands.
"""

from __future__ import annotations

from .client import SiaClient
from .config import AckStyle, PollingStyle, SiaConfig, parse_ack_style
from .connection import SessionConnection
from .errors import (
    AccountMismatch,
    CrcMismatch,
    CryptoError,
    ErrorCode,
    FrameError,
    FrameErrorReason,
    ProtocolInvariantViolation,
    SiaError,
)
from .events import EventDispatcher, EventKind, SiaEvent
from .message_helpers import (
    arm,
    build_ack,
    build_command,
    build_handshake_ack,
    build_heartbeat,
    build_inquiry,
    bypass,
    disarm,
    normalize_account,
    restore,
    set_output,
)
from .messages import Message, check_account, parse_message
from .polling import PollScheduler, ReconnectPolicy
from .protocol import (
    NEED_MORE_DATA,
    Frame,
    HandshakeLine,
    crc16,
    crc16_hex,
    decode_frame,
    decrypt_body,
    encode_frame,
    encrypt_body,
    match_handshake,
    verify_frame,
)
from .server import SiaReceiver
from .session import Action, ActionKind, ConnectionSession, SessionState

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Receiver / dialer
    "SiaReceiver",
    "SiaClient",
    "SessionConnection",
    # Configuration
    "SiaConfig",
    "AckStyle",
    "PollingStyle",
    "parse_ack_style",
    # Errors
    "SiaError",
    "ErrorCode",
    "FrameError",
    "FrameErrorReason",
    "CrcMismatch",
    "CryptoError",
    "AccountMismatch",
    "ProtocolInvariantViolation",
    # Events
    "EventDispatcher",
    "EventKind",
    "SiaEvent",
    # Session
    "ConnectionSession",
    "SessionState",
    "Action",
    "ActionKind",
    "PollScheduler",
    "ReconnectPolicy",
    # Messages
    "Message",
    "parse_message",
    "check_account",
    # Message helpers
    "build_ack",
    "build_handshake_ack",
    "normalize_account",
    "build_command",
    "arm",
    "disarm",
    "bypass",
    "restore",
    "set_output",
    "build_inquiry",
    "build_heartbeat",
    # Protocol
    "NEED_MORE_DATA",
    "Frame",
    "HandshakeLine",
    "crc16",
    "crc16_hex",
    "encode_frame",
    "decode_frame",
    "match_handshake",
    "verify_frame",
    "encrypt_body",
    "decrypt_body",
]

"""
Per-connection SIA DC-09 session state machine.

The session is transport-agnostic: the transport feeds it raw bytes and
carries out the returned actions (write bytes, emit an event, start
polling, close). States:

    AWAITING_HANDSHAKE --handshake line / valid frame--> ACTIVE
    any --close()--> CLOSED
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from .config import PollingStyle, SiaConfig
from .errors import AccountMismatch, CrcMismatch, CryptoError, FrameError, ProtocolInvariantViolation
from .events import EventKind, SiaEvent
from .message_helpers import (
    build_ack,
    build_handshake_ack,
    build_heartbeat,
    build_inquiry,
    is_ack_body,
    next_inquiry_sequence,
)
from .messages import check_account, parse_message
from .protocol import (
    NEED_MORE_DATA,
    Frame,
    HandshakeLine,
    decode_frame,
    decrypt_body,
    match_handshake,
    verify_frame,
)

logger = logging.getLogger(__name__)


class SessionState(StrEnum):
    """Lifecycle of a connection."""

    AWAITING_HANDSHAKE = "awaiting_handshake"
    ACTIVE = "active"
    CLOSED = "closed"


class ActionKind(StrEnum):
    """Instructions for the transport."""

    WRITE = "write"
    EMIT = "emit"
    START_POLLING = "start_polling"
    CLOSE = "close"


@dataclass(frozen=True, slots=True)
class Action:
    """A single instruction returned by the session."""

    kind: ActionKind
    data: bytes = b""
    event: SiaEvent | None = None


class ConnectionSession:
    """
    State for one TCP connection to a panel.

    Example:
        ```python
        session = ConnectionSession(config)
        for action in session.feed(data):
            if action.kind == ActionKind.WRITE:
                writer.write(action.data)
        ```
    """

    def __init__(
        self,
        config: SiaConfig,
        *,
        session_id: int = 0,
        peer: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.session_id = session_id
        self.peer = peer
        self.state = SessionState.AWAITING_HANDSHAKE
        self.handshake_done = False
        self.bound_account: str | None = config.account or None
        self.sequence_counter = 0
        self._clock = clock
        self.last_activity = clock()
        self._buffer = bytearray()
        self._polling_requested = False

    def __repr__(self) -> str:
        return (
            f"ConnectionSession(id={self.session_id}, peer={self.peer!r}, "
            f"state={self.state.value}, account={self.bound_account!r})"
        )

    @property
    def is_active(self) -> bool:
        return self.state == SessionState.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self.state == SessionState.CLOSED

    @property
    def expected_account(self) -> str | None:
        """Account messages must carry; None accepts any account."""
        return self.config.account or self.bound_account

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for the rest of a frame."""
        return len(self._buffer)

    def is_idle(self, interval: float) -> bool:
        """Whether nothing has been received for at least interval seconds."""
        return self._clock() - self.last_activity >= interval

    # ========================================================================
    # Inbound
    # ========================================================================

    def feed(self, data: bytes) -> list[Action]:
        """
        Consume received bytes.

        A chunk may hold zero, one or several frames; all complete frames are
        processed, in order, before returning. Partial frames stay buffered.

        Args:
            data: Bytes as received from the socket

        Returns:
            Actions for the transport, in the order they must be carried out
        """
        if self.is_closed:
            return []

        self._buffer.extend(data)
        self.last_activity = self._clock()

        actions: list[Action] = []
        while self._buffer and not self.is_closed:
            handshake = match_handshake(self._buffer)
            if handshake is NEED_MORE_DATA:
                break
            if handshake:
                line, remaining = handshake
                self._buffer = bytearray(remaining)
                actions.extend(self._on_handshake(line))
                continue

            result, remaining = decode_frame(self._buffer)
            self._buffer = bytearray(remaining)

            if result is NEED_MORE_DATA:
                break
            if isinstance(result, FrameError):
                logger.warning(f"[{self.session_id}] Dropping malformed frame: {result}")
                actions.append(self._validation_error(bytes(data), str(result)))
                continue
            actions.extend(self._on_frame(result))

        return actions

    def _activate(self) -> list[Action]:
        """Move to ACTIVE; request polling the first time."""
        self.state = SessionState.ACTIVE
        if self._polling_requested or self.config.polling_style == PollingStyle.NONE:
            return []
        self._polling_requested = True
        return [Action(ActionKind.START_POLLING)]

    def _on_handshake(self, line: HandshakeLine) -> list[Action]:
        logger.info(f"[{self.session_id}] Handshake {line.kind}#{line.account}")
        self.bound_account = line.account
        self.handshake_done = True

        actions = self._activate()

        ack: bytes | None = None
        try:
            ack = build_handshake_ack(
                self.config.ack_style, line.account, line.raw, self.config.ack_custom
            )
        except ProtocolInvariantViolation as e:
            logger.error(f"[{self.session_id}] Internal error building handshake ACK: {e}")

        if ack:
            actions.insert(0, Action(ActionKind.WRITE, data=ack))

        event = SiaEvent(
            kind=EventKind.HANDSHAKE,
            raw=line.raw,
            ack=ack,
            account=line.account,
            session_id=self.session_id,
        )
        actions.append(Action(ActionKind.EMIT, event=event))
        return actions

    def _on_frame(self, frame: Frame) -> list[Action]:
        logger.debug(f"[{self.session_id}] RX frame: {frame.raw!r}")

        actions: list[Action] = []
        if self.state == SessionState.AWAITING_HANDSHAKE:
            logger.debug(f"[{self.session_id}] Frame before handshake, activating session")
            actions.extend(self._activate())

        try:
            verify_frame(frame)
        except CrcMismatch as e:
            logger.warning(f"[{self.session_id}] {e}, frame not acknowledged: {frame.raw!r}")
            actions.append(self._validation_error(frame.raw, str(e), crc_valid=False))
            return actions

        body = frame.body
        encrypted = False
        key = self.config.active_encryption_key
        if key and not is_ack_body(body):
            try:
                body = decrypt_body(body, key, self.config.key_is_hex)
                encrypted = True
            except CryptoError as e:
                logger.warning(f"[{self.session_id}] Decryption failed: {e}")
                actions.append(self._validation_error(frame.raw, f"Decryption failed: {e}"))
                return actions

        if is_ack_body(body):
            logger.debug(f"[{self.session_id}] Panel acknowledged: {body}")
            return actions

        expected = self.expected_account
        message = parse_message(body, expected, crc_valid=True, encrypted=encrypted, raw=frame.raw)
        if not message.valid:
            logger.warning(f"[{self.session_id}] Invalid message ({message.error}): {body!r}")
            actions.append(
                Action(
                    ActionKind.EMIT,
                    event=SiaEvent.from_message(
                        EventKind.VALIDATION_ERROR, message, session_id=self.session_id
                    ),
                )
            )
            return actions

        try:
            check_account(message, expected)
        except AccountMismatch as e:
            logger.debug(f"[{self.session_id}] Ignoring message: {e}")
            return actions

        try:
            ack = build_ack(message.account, message.sequence, message.receiver, message.line)
        except ProtocolInvariantViolation as e:
            logger.error(f"[{self.session_id}] Internal error building ACK: {e}")
            return actions

        actions.append(Action(ActionKind.WRITE, data=ack))

        if message.is_link_test and self.config.discard_test_messages:
            logger.debug(f"[{self.session_id}] Link test acknowledged, not forwarded")
            return actions

        event = SiaEvent.from_message(
            EventKind.MESSAGE, message, ack=ack, session_id=self.session_id
        )
        actions.append(Action(ActionKind.EMIT, event=event))
        return actions

    def _validation_error(self, raw: bytes, error: str, crc_valid: bool | None = None) -> Action:
        event = SiaEvent(
            kind=EventKind.VALIDATION_ERROR,
            raw=raw,
            crc_valid=crc_valid,
            error=error,
            session_id=self.session_id,
        )
        return Action(ActionKind.EMIT, event=event)

    # ========================================================================
    # Outbound
    # ========================================================================

    def poll_packet(self) -> bytes | None:
        """
        Build the next poll packet for the configured polling style.

        Returns:
            Inquiry line or heartbeat frame, or None when the session is not
            active, polling is disabled or no account is known
        """
        if not self.is_active:
            return None

        account = self.bound_account or self.config.account
        if not account:
            logger.debug(f"[{self.session_id}] No account known, skipping poll")
            return None

        if self.config.polling_style == PollingStyle.INQUIRY:
            self.sequence_counter = next_inquiry_sequence(self.sequence_counter)
            return build_inquiry(account, self.sequence_counter)
        if self.config.polling_style == PollingStyle.HEARTBEAT:
            return build_heartbeat(
                account,
                key=self.config.active_encryption_key,
                key_is_hex=self.config.key_is_hex,
            )
        return None

    def close(self) -> list[Action]:
        """Move to CLOSED. Returns a CLOSE action the first time only."""
        if self.is_closed:
            return []
        logger.debug(f"[{self.session_id}] Session closed")
        self.state = SessionState.CLOSED
        self._buffer.clear()
        return [Action(ActionKind.CLOSE)]

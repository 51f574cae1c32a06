"""
Event records and callback dispatch.

Sessions produce SiaEvent records; receivers and dialers hand them to an
EventDispatcher, which fans them out to registered callbacks:
- on_event(callback)             every event
- on_handshake(callback)
- on_message(callback)
- on_validation_error(callback)

Example:
    ```python
    receiver = SiaReceiver(config)
    receiver.on_message(lambda e: print(e.account, e.event_code))
    await receiver.start()
    ```
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Callable, Coroutine

if TYPE_CHECKING:
    from .messages import Message

logger = logging.getLogger(__name__)


class EventKind(StrEnum):
    """Kinds of records delivered to the sink."""

    HANDSHAKE = "handshake"
    MESSAGE = "message"
    VALIDATION_ERROR = "validation_error"


@dataclass(frozen=True, slots=True)
class SiaEvent:
    """A record delivered to the external sink."""

    kind: EventKind
    raw: bytes
    ack: bytes | None = None
    account: str | None = None
    sequence: str | None = None
    event_code: str | None = None
    zone: int | None = None
    user: int | None = None
    area: int | None = None
    timestamp: str | None = None
    crc_valid: bool | None = None
    error: str | None = None
    session_id: int | None = None
    message: Message | None = None

    @classmethod
    def from_message(
        cls,
        kind: EventKind,
        message: Message,
        *,
        ack: bytes | None = None,
        error: str | None = None,
        session_id: int | None = None,
    ) -> SiaEvent:
        """Build an event carrying the fields of a parsed message."""
        return cls(
            kind=kind,
            raw=message.raw,
            ack=ack,
            account=message.account or None,
            sequence=message.sequence,
            event_code=message.event_code or None,
            zone=message.zone,
            user=message.user,
            area=message.area,
            timestamp=message.timestamp,
            crc_valid=message.crc_valid,
            error=error or message.error,
            session_id=session_id,
            message=message,
        )

    def to_dict(self) -> dict[str, Any]:
        """Render the event in its external (camelCase) shape."""
        result: dict[str, Any] = {
            "type": self.kind.value,
            "raw": self.raw.decode("latin-1"),
            "ack": self.ack.decode("latin-1") if self.ack is not None else None,
            "account": self.account,
            "sequence": self.sequence,
            "eventCode": self.event_code,
            "zone": self.zone,
            "user": self.user,
            "area": self.area,
            "timestamp": self.timestamp,
            "crcValid": self.crc_valid,
        }
        if self.error:
            result["error"] = self.error
        return result


EventCallback = Callable[[SiaEvent], Coroutine[Any, Any, None] | None]


class EventDispatcher:
    """Registry of sink callbacks."""

    def __init__(self) -> None:
        self._on_event: list[EventCallback] = []
        self._by_kind: dict[EventKind, list[EventCallback]] = {kind: [] for kind in EventKind}

    def on_event(self, callback: EventCallback) -> None:
        """Register a callback for every event."""
        self._on_event.append(callback)

    def on_handshake(self, callback: EventCallback) -> None:
        """Register a callback for handshake events."""
        self._by_kind[EventKind.HANDSHAKE].append(callback)

    def on_message(self, callback: EventCallback) -> None:
        """Register a callback for decoded alarm messages."""
        self._by_kind[EventKind.MESSAGE].append(callback)

    def on_validation_error(self, callback: EventCallback) -> None:
        """Register a callback for frames that failed validation."""
        self._by_kind[EventKind.VALIDATION_ERROR].append(callback)

    async def emit(self, event: SiaEvent) -> None:
        """Emit an event to all matching callbacks, in registration order."""
        for callback in [*self._on_event, *self._by_kind[event.kind]]:
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Error in event callback: {e}")

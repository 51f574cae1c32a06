"""
Asyncio transport for a ConnectionSession.

SessionConnection reads from a stream pair, feeds the session and carries
out the actions it returns. It is used by both the receiver (accepted
connections) and the dialer (outbound connections).
"""

from __future__ import annotations

import asyncio
import logging

from .config import PollingStyle
from .events import EventDispatcher
from .polling import PollScheduler
from .session import Action, ActionKind, ConnectionSession

logger = logging.getLogger(__name__)

READ_SIZE = 1024


class SessionConnection:
    """One live TCP connection bound to a session."""

    def __init__(
        self,
        session: ConnectionSession,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        dispatcher: EventDispatcher,
        read_size: int = READ_SIZE,
    ) -> None:
        self.session = session
        self._reader = reader
        self._writer = writer
        self._dispatcher = dispatcher
        self._read_size = read_size
        self._poller: PollScheduler | None = None
        self._closed = False

    @property
    def session_id(self) -> int:
        return self.session.session_id

    @property
    def is_open(self) -> bool:
        """Check if the connection can still be written to."""
        return not self._closed and not self._writer.is_closing()

    @property
    def poller(self) -> PollScheduler | None:
        return self._poller

    async def run(self) -> None:
        """Read until the peer disconnects or the connection is closed."""
        sid = self.session_id
        try:
            while not self._closed:
                data = await self._reader.read(self._read_size)
                if not data:
                    logger.info(f"[{sid}] Peer closed connection")
                    break
                logger.debug(f"[{sid}] RX: {data!r}")
                await self.apply(self.session.feed(data))
        except (ConnectionError, OSError) as e:
            logger.warning(f"[{sid}] Socket error: {e}")
        finally:
            await self.close()

    async def apply(self, actions: list[Action]) -> None:
        """Carry out session actions in order."""
        for action in actions:
            if action.kind == ActionKind.WRITE:
                await self.send(action.data)
            elif action.kind == ActionKind.EMIT and action.event is not None:
                await self._dispatcher.emit(action.event)
            elif action.kind == ActionKind.START_POLLING:
                self._start_polling()
            elif action.kind == ActionKind.CLOSE:
                await self.close()

    async def send(self, data: bytes) -> bool:
        """
        Write bytes to the peer.

        Failed writes are logged, not retried.

        Returns:
            True if the bytes were written
        """
        if not self.is_open:
            logger.debug(f"[{self.session_id}] Not sending on closed connection")
            return False
        try:
            self._writer.write(data)
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            logger.warning(f"[{self.session_id}] Write failed: {e}")
            return False
        logger.debug(f"[{self.session_id}] TX: {data!r}")
        return True

    def _start_polling(self) -> None:
        if self._poller or self.session.config.polling_style == PollingStyle.NONE:
            return
        self._poller = PollScheduler(self.session, self.send)
        self._poller.start()

    async def close(self) -> None:
        """Stop polling, close the session and the socket."""
        if self._closed:
            return
        self._closed = True

        if self._poller:
            self._poller.stop()
        self.session.close()

        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"[{self.session_id}] Close error: {e}")

"""
Listening receiver for panels that dial in.

Each accepted TCP connection gets its own ConnectionSession; sessions share
the read-only config and the event dispatcher but no other state.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

from .config import SiaConfig
from .connection import SessionConnection
from .events import EventCallback, EventDispatcher
from .session import ConnectionSession

logger = logging.getLogger(__name__)


def _format_peer(peername: Any) -> str | None:
    if not peername:
        return None
    if isinstance(peername, tuple):
        return f"{peername[0]}:{peername[1]}"
    return str(peername)


class SiaReceiver:
    """
    TCP server accepting SIA DC-09 panel connections.

    Example:
        ```python
        config = SiaConfig(account="1234", listen_port=10002)
        async with SiaReceiver(config) as receiver:
            receiver.on_message(handle_message)
            await receiver.serve_forever()
        ```
    """

    def __init__(
        self,
        config: SiaConfig | dict[str, Any],
        dispatcher: EventDispatcher | None = None,
    ) -> None:
        """
        Initialize the receiver.

        Args:
            config: Receiver configuration (SiaConfig or a config dict)
            dispatcher: Event dispatcher to share; a new one is created if omitted
        """
        self.config = config if isinstance(config, SiaConfig) else SiaConfig.from_dict(config)
        self.dispatcher = dispatcher or EventDispatcher()
        self._server: asyncio.Server | None = None
        self._connections: dict[int, SessionConnection] = {}
        self._session_ids = itertools.count(1)

    async def __aenter__(self) -> SiaReceiver:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.stop()

    # ========================================================================
    # Callbacks
    # ========================================================================

    def on_event(self, callback: EventCallback) -> None:
        self.dispatcher.on_event(callback)

    def on_handshake(self, callback: EventCallback) -> None:
        self.dispatcher.on_handshake(callback)

    def on_message(self, callback: EventCallback) -> None:
        self.dispatcher.on_message(callback)

    def on_validation_error(self, callback: EventCallback) -> None:
        self.dispatcher.on_validation_error(callback)

    # ========================================================================
    # State
    # ========================================================================

    @property
    def is_running(self) -> bool:
        return self._server is not None and self._server.is_serving()

    @property
    def port(self) -> int | None:
        """Port actually bound (useful when listening on port 0)."""
        if not self._server or not self._server.sockets:
            return None
        return self._server.sockets[0].getsockname()[1]

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def sessions(self) -> dict[int, ConnectionSession]:
        """Live sessions keyed by session id."""
        return {sid: conn.session for sid, conn in self._connections.items()}

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self) -> None:
        """Bind the listening socket."""
        if self._server:
            return
        self._server = await asyncio.start_server(
            self._handle_connection,
            self.config.host,
            self.config.listen_port,
        )
        logger.info(f"Listening on {self.config.host}:{self.port}")

    async def serve_forever(self) -> None:
        """Start (if needed) and serve until cancelled."""
        await self.start()
        assert self._server is not None
        await self._server.serve_forever()

    async def stop(self) -> None:
        """Stop listening and close every live connection."""
        if not self._server:
            return
        server, self._server = self._server, None
        server.close()

        for connection in list(self._connections.values()):
            await connection.close()

        await server.wait_closed()
        logger.info("Receiver stopped")

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        peer = _format_peer(writer.get_extra_info("peername"))

        if len(self._connections) >= self.config.max_connections:
            logger.warning(
                f"Refusing connection from {peer}: "
                f"limit of {self.config.max_connections} reached"
            )
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            return

        session_id = next(self._session_ids)
        session = ConnectionSession(self.config, session_id=session_id, peer=peer)
        connection = SessionConnection(session, reader, writer, self.dispatcher)
        self._connections[session_id] = connection
        logger.info(f"[{session_id}] Connection from {peer}")

        try:
            await connection.run()
        finally:
            self._connections.pop(session_id, None)
            logger.info(f"[{session_id}] Connection from {peer} closed")

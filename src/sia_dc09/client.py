"""
Async dialer for panels that accept receiver-initiated connections.

SiaClient connects out to a panel, runs the same session logic as the
receiver on that connection, keeps it alive with exponential-backoff
reconnects and sends control commands.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

from . import message_helpers
from .config import SiaConfig
from .connection import SessionConnection
from .errors import ErrorCode, SiaError
from .events import EventCallback, EventDispatcher
from .polling import ReconnectPolicy
from .session import ConnectionSession

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10.0


class SiaClient:
    """
    Async client for dialing a SIA DC-09 panel.

    Example usage:
        ```python
        async with SiaClient(config) as client:
            client.on_message(handle_message)
            await client.arm(1, "1234")
        ```
    """

    def __init__(
        self,
        config: SiaConfig | dict[str, Any],
        dispatcher: EventDispatcher | None = None,
    ) -> None:
        """
        Initialize the dialer.

        Args:
            config: Configuration dict or SiaConfig instance
            dispatcher: Event dispatcher to share; a new one is created if omitted
        """
        self.config = config if isinstance(config, SiaConfig) else SiaConfig.from_dict(config)
        self.dispatcher = dispatcher or EventDispatcher()
        self.reconnect = ReconnectPolicy(
            self.config.reconnect_initial_delay, self.config.reconnect_max_delay
        )

        self._connection: SessionConnection | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._run_task: asyncio.Task[None] | None = None
        self._running = False
        self._connected = asyncio.Event()
        self._session_ids = itertools.count(1)

        # Commands are written one at a time
        self._command_lock = asyncio.Lock()

    async def __aenter__(self) -> SiaClient:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.disconnect()

    def on_event(self, callback: EventCallback) -> None:
        self.dispatcher.on_event(callback)

    def on_handshake(self, callback: EventCallback) -> None:
        self.dispatcher.on_handshake(callback)

    def on_message(self, callback: EventCallback) -> None:
        self.dispatcher.on_message(callback)

    def on_validation_error(self, callback: EventCallback) -> None:
        self.dispatcher.on_validation_error(callback)

    @property
    def is_connected(self) -> bool:
        """Check if connected to the panel."""
        return self._connection is not None and self._connection.is_open

    @property
    def session(self) -> ConnectionSession | None:
        """Session of the current connection."""
        return self._connection.session if self._connection else None

    # ========================================================================
    # Connection
    # ========================================================================

    async def connect(self, timeout: float = CONNECT_TIMEOUT) -> None:
        """
        Open a single connection to the panel.

        Raises:
            SiaError: If no panel address is configured or the connection fails
        """
        host = self.config.panel_address
        port = self.config.panel_port
        if not host:
            raise SiaError("No panel address configured", code=ErrorCode.CONNECTION_FAILED)

        logger.debug(f"Connecting to {host}:{port}...")
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise SiaError("Connection timeout", code=ErrorCode.TIMEOUT) from e
        except OSError as e:
            raise SiaError(f"Connection failed: {e}", code=ErrorCode.CONNECTION_FAILED) from e

        session = ConnectionSession(
            self.config, session_id=next(self._session_ids), peer=f"{host}:{port}"
        )
        self._connection = SessionConnection(session, reader, writer, self.dispatcher)
        self._reader_task = asyncio.create_task(self._connection.run())
        self.reconnect.reset()
        self._connected.set()
        logger.info(f"Connected to panel at {host}:{port}")

    async def disconnect(self) -> None:
        """Stop reconnecting and close the current connection."""
        self._running = False

        if self._run_task:
            self._run_task.cancel()
            try:
                await self._run_task
            except asyncio.CancelledError:
                pass
            self._run_task = None

        await self._close_connection()
        logger.debug("Disconnected from panel")

    async def _close_connection(self) -> None:
        self._connected.clear()
        if self._connection:
            await self._connection.close()
        if self._reader_task:
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

    def start(self) -> None:
        """Start the reconnect loop in the background."""
        if self._run_task:
            return
        self._running = True
        self._run_task = asyncio.create_task(self.run())

    async def run(self) -> None:
        """Keep a connection to the panel open, reconnecting with backoff."""
        self._running = True
        while self._running:
            try:
                await self.connect()
                if self._reader_task:
                    await self._reader_task
                logger.info("Connection to panel lost")
            except SiaError as e:
                logger.warning(f"Connect failed: {e}")
            finally:
                self._connected.clear()

            if not self._running:
                break
            delay = self.reconnect.next_delay()
            logger.info(f"Reconnecting in {delay:.1f}s (attempt {self.reconnect.attempt})")
            await asyncio.sleep(delay)

    async def wait_connected(self, timeout: float | None = None) -> None:
        """Wait until a connection is established."""
        await asyncio.wait_for(self._connected.wait(), timeout)

    # ========================================================================
    # Commands
    # ========================================================================

    async def send(self, packet: bytes) -> None:
        """
        Write a packet to the panel.

        Raises:
            SiaError: If not connected or the write fails
        """
        if not self._connection or not self.is_connected:
            raise SiaError("Not connected", code=ErrorCode.CONNECTION_FAILED)
        async with self._command_lock:
            if not await self._connection.send(packet):
                raise SiaError("Write failed", code=ErrorCode.CONNECTION_FAILED)

    def _command_options(self) -> dict[str, Any]:
        return {
            "key": self.config.active_encryption_key,
            "key_is_hex": self.config.key_is_hex,
        }

    def _command_account(self) -> str:
        session = self.session
        account = self.config.account or (session.bound_account if session else None)
        if not account:
            raise SiaError("No account configured")
        return account

    async def arm(self, partition: int, pin: str) -> bytes:
        """
        Arm a partition.

        Args:
            partition: Partition number (0-99)
            pin: User PIN (4-6 digits)

        Returns:
            The packet sent
        """
        packet = message_helpers.arm(
            self._command_account(), partition, pin, **self._command_options()
        )
        logger.info(f"Arming partition {partition}")
        await self.send(packet)
        return packet

    async def disarm(self, partition: int, pin: str) -> bytes:
        """Disarm a partition."""
        packet = message_helpers.disarm(
            self._command_account(), partition, pin, **self._command_options()
        )
        logger.info(f"Disarming partition {partition}")
        await self.send(packet)
        return packet

    async def bypass(self, zone: int) -> bytes:
        """Bypass a zone."""
        packet = message_helpers.bypass(self._command_account(), zone, **self._command_options())
        logger.info(f"Bypassing zone {zone}")
        await self.send(packet)
        return packet

    async def restore(self, zone: int) -> bytes:
        """Restore (un-bypass) a zone."""
        packet = message_helpers.restore(self._command_account(), zone, **self._command_options())
        logger.info(f"Restoring zone {zone}")
        await self.send(packet)
        return packet

    async def set_output(self, output: int, on: bool) -> bytes:
        """Switch an output on or off."""
        packet = message_helpers.set_output(
            self._command_account(), output, on, **self._command_options()
        )
        logger.info(f"Output {output} {'on' if on else 'off'}")
        await self.send(packet)
        return packet

"""
Timers: idle-panel polling and dialer reconnect backoff.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .config import DEFAULT_RECONNECT_INITIAL_DELAY, DEFAULT_RECONNECT_MAX_DELAY

if TYPE_CHECKING:
    from .session import ConnectionSession

logger = logging.getLogger(__name__)


class PollScheduler:
    """
    Sends a poll packet to a panel whenever it has been idle for an interval.

    The scheduler only reads session state; it never sends after the
    session is closed or the scheduler is stopped.
    """

    def __init__(
        self,
        session: ConnectionSession,
        send: Callable[[bytes], Awaitable[object]],
        interval: float | None = None,
    ) -> None:
        self._session = session
        self._send = send
        self.interval = interval or session.config.effective_polling_interval
        self._task: asyncio.Task[None] | None = None
        self._stopped = False
        self.sent = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the polling task."""
        if self._task or self._stopped:
            return
        logger.debug(f"[{self._session.session_id}] Polling every {self.interval}s")
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        """Stop the polling task. Safe to call more than once."""
        self._stopped = True
        if self._task:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.interval)
                if self._stopped or self._session.is_closed:
                    break
                if not self._session.is_idle(self.interval):
                    continue

                packet = self._session.poll_packet()
                if packet is None:
                    continue
                logger.debug(f"[{self._session.session_id}] TX poll: {packet!r}")
                await self._send(packet)
                self.sent += 1
            except asyncio.CancelledError:
                break
            except Exception as e:
                # Keep polling through transient write errors
                logger.debug(f"Poll failed: {e}")


@dataclass(slots=True)
class ReconnectPolicy:
    """
    Exponential backoff for the dialer.

    Delays start at initial_delay and double on every failed attempt, capped
    at max_delay. A successful connect resets the policy.
    """

    initial_delay: float = DEFAULT_RECONNECT_INITIAL_DELAY
    max_delay: float = DEFAULT_RECONNECT_MAX_DELAY
    current_delay: float = field(init=False)
    attempt: int = field(default=0, init=False)

    def __post_init__(self) -> None:
        if self.initial_delay <= 0:
            raise ValueError("initial_delay must be positive")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must not be less than initial_delay")
        self.current_delay = self.initial_delay

    def next_delay(self) -> float:
        """Return the delay before the next attempt and advance the backoff."""
        delay = self.current_delay
        self.attempt += 1
        self.current_delay = min(self.current_delay * 2, self.max_delay)
        return delay

    def reset(self) -> None:
        self.current_delay = self.initial_delay
        self.attempt = 0

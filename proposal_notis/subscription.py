"""
Live subscription to governor events with reconnect handling.

Connection lifecycle:
    DISCONNECTED -> CONNECTING -> CONNECTED -> (failure) DISCONNECTED

The manager is the only owner of the live handle. A failed handle is closed and
replaced, never reused. Every transition into CONNECTED runs the on_connected
hook (catch-up reconciliation) in the background to cover the gap.
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Set

from . import config
from .api.models import TransportError
from .event_processor import ProposalProcessor

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class StartupError(Exception):
    """No connection could be established at startup."""


StateListener = Callable[[ConnectionState], None]
ConnectedHook = Callable[[bool], Awaitable[None]]


class LiveSubscriptionManager:
    """
    Keeps one persistent subscription open and feeds events to the processor.

    Args:
        provider: Chain-log provider exposing subscribe()
        processor: Shared event processor
        on_connected: Coroutine run after every successful connect; receives
                      True for the first connection of the process
        base_delay: First reconnect delay in seconds
        max_delay: Cap for the exponential backoff
        startup_attempts: Connection attempts before giving up with StartupError
                          when no connection has ever succeeded (0 retries forever)
    """

    def __init__(
        self,
        provider,
        processor: ProposalProcessor,
        on_connected: Optional[ConnectedHook] = None,
        base_delay: float = config.RECONNECT_BASE_DELAY,
        max_delay: float = config.RECONNECT_MAX_DELAY,
        startup_attempts: int = 3,
    ):
        self.provider = provider
        self.processor = processor
        self.on_connected = on_connected
        self.base_delay = base_delay
        self.max_delay = max(base_delay, max_delay)
        self.startup_attempts = startup_attempts

        self.state = ConnectionState.DISCONNECTED
        self.connect_count = 0
        self.events_received = 0

        self._handle = None
        self._listeners: List[StateListener] = []
        self._hook_tasks: Set[asyncio.Task] = set()
        self._stop_event: Optional[asyncio.Event] = None

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        logger.info(f"Connection state: {self.state.value} -> {state.value}")
        self.state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error(f"State listener failed: {e}", exc_info=True)

    @property
    def stopped(self) -> bool:
        return self._stop_event is not None and self._stop_event.is_set()

    def backoff_delay(self, attempt: int) -> float:
        """Exponential backoff: base_delay, 2x, 4x ... capped at max_delay."""
        return min(self.base_delay * (2 ** max(0, attempt - 1)), self.max_delay)

    async def run(self) -> None:
        """
        Connect, consume and reconnect until stop() is called.

        Raises:
            StartupError: The first connection never succeeded within startup_attempts
        """
        if self._stop_event is None:
            self._stop_event = asyncio.Event()

        attempt = 0
        while not self.stopped:
            self._set_state(ConnectionState.CONNECTING)
            try:
                handle = await self.provider.subscribe()
            except TransportError as e:
                self._set_state(ConnectionState.DISCONNECTED)
                attempt += 1
                logger.error(f"Connection attempt {attempt} failed: {e}")
                if self.connect_count == 0 and self.startup_attempts and attempt >= self.startup_attempts:
                    raise StartupError(f"Could not connect after {attempt} attempts: {e}") from e
                await self._wait_backoff(attempt)
                continue

            attempt = 0
            await self._consume(handle)

            if self.stopped:
                break
            attempt += 1
            await self._wait_backoff(attempt)

        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Live subscription stopped")

    async def _consume(self, handle) -> None:
        self._handle = handle
        self.connect_count += 1
        first = self.connect_count == 1
        self._set_state(ConnectionState.CONNECTED)
        self._start_hook(first)

        try:
            async for event in handle.events():
                self.events_received += 1
                try:
                    await self.processor.handle_event(event)
                except Exception as e:
                    logger.error(f"Error handling live event {event!r}: {e}", exc_info=True)
            logger.warning("Subscription stream ended without error")
        except TransportError as e:
            if not self.stopped:
                logger.error(f"Subscription dropped: {e}")
        finally:
            self._handle = None
            try:
                await handle.close()
            except Exception as e:
                logger.debug(f"Error closing subscription handle: {e}")
            self._set_state(ConnectionState.DISCONNECTED)

    def _start_hook(self, first: bool) -> None:
        if self.on_connected is None:
            return
        task = asyncio.get_running_loop().create_task(self._run_hook(first), name="on-connected")
        self._hook_tasks.add(task)
        task.add_done_callback(self._hook_tasks.discard)

    async def _run_hook(self, first: bool) -> None:
        try:
            await self.on_connected(first)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Post-connect reconciliation failed: {e}", exc_info=True)

    async def _wait_backoff(self, attempt: int) -> None:
        delay = self.backoff_delay(attempt)
        logger.info(f"Reconnecting in {delay:.1f} seconds... (attempt {attempt})")
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def wait_hooks(self) -> None:
        """Wait for in-flight post-connect passes to finish."""
        if self._hook_tasks:
            await asyncio.gather(*list(self._hook_tasks), return_exceptions=True)

    async def stop(self) -> None:
        """Stop reconnecting, close the live handle and cancel in-flight catch-up passes."""
        if self._stop_event is None:
            self._stop_event = asyncio.Event()
        self._stop_event.set()

        handle = self._handle
        if handle is not None:
            try:
                await handle.close()
            except Exception as e:
                logger.debug(f"Error closing subscription handle: {e}")

        for task in list(self._hook_tasks):
            task.cancel()
        await self.wait_hooks()

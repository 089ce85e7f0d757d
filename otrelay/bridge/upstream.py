"""Upstream connection - the single link to the OpenTherm Gateway.

The gateway (usually otmonitor's relay port) may not be up yet when the relay
starts, and it may go away at any time. A supervisor task keeps exactly one
connection alive: after a graceful close it reconnects quickly, after an error
it waits longer, and it never gives up.
"""
from __future__ import annotations

import asyncio
import logging
from enum import Enum, auto
from typing import Awaitable, Callable, Optional

logger = logging.getLogger("otrelay.bridge.upstream")

# Callback type for handling received gateway data
ChunkHandler = Callable[[bytes], Awaitable[None]]


class LinkState(Enum):
    IDLE = auto()
    CONNECTING = auto()
    CONNECTED = auto()
    WAITING = auto()


class GatewayConnection:
    """TCP client for the gateway with unlimited, failure-dependent retries."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 7686,
        reconnect_delay: float = 1.0,
        retry_delay: float = 10.0,
        read_size: int = 4096,
    ):
        self.host = host
        self.port = port
        self.reconnect_delay = reconnect_delay
        self.retry_delay = retry_delay
        self.read_size = read_size

        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._chunk_handler: Optional[ChunkHandler] = None
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self.state = LinkState.IDLE
        self.connect_attempts = 0

    def set_chunk_handler(self, handler: ChunkHandler) -> None:
        """Set the callback for data received from the gateway."""
        self._chunk_handler = handler

    async def start(self) -> None:
        """Start the supervisor task (returns immediately)."""
        if self._task is not None:
            return
        self._running = True
        self._task = asyncio.create_task(self._supervise())

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._close()
        self.state = LinkState.IDLE
        logger.info("Gateway connection stopped")

    async def connect(self) -> bool:
        """Make one connection attempt. Returns True when connected."""
        self.state = LinkState.CONNECTING
        self.connect_attempts += 1
        try:
            self._reader, self._writer = await asyncio.open_connection(self.host, self.port)
        except (OSError, ValueError) as e:
            # bad host names surface as UnicodeError from the resolver
            logger.warning("Could not connect to the gateway at %s:%d: %s", self.host, self.port, e)
            logger.warning("Make sure the gateway is running and provides this port.")
            self._reader = self._writer = None
            return False
        self.state = LinkState.CONNECTED
        logger.info("Connected to gateway at %s:%d", self.host, self.port)
        return True

    def write(self, data: bytes) -> None:
        """Fire-and-forget write; silently dropped when not connected."""
        if not self.is_connected:
            logger.debug("Gateway not connected, dropping %d bytes", len(data))
            return
        try:
            self._writer.write(data)
        except Exception as e:
            logger.warning("Failed to write to gateway: %s", e)

    # --- Supervisor ---

    async def _supervise(self) -> None:
        while self._running:
            if not await self.connect():
                logger.info("Will try to reconnect in %.0f seconds, the gateway may be starting up", self.retry_delay)
                await self._backoff(self.retry_delay)
                continue
            delay = await self._read_loop()
            await self._close()
            if self._running:
                await self._backoff(delay)

    async def _read_loop(self) -> float:
        """Pump gateway data to the handler; returns the delay before reconnecting."""
        while True:
            try:
                data = await self._reader.read(self.read_size)
            except OSError as e:
                logger.warning("Gateway connection error: %s", e)
                logger.info("Reconnecting in %.0f seconds", self.retry_delay)
                return self.retry_delay
            if not data:
                logger.info("Gateway disconnected, reconnecting in %.0f second(s)", self.reconnect_delay)
                return self.reconnect_delay
            if self._chunk_handler:
                try:
                    await self._chunk_handler(data)
                except Exception as e:
                    logger.exception("Error handling gateway data: %s", e)

    async def _backoff(self, delay: float) -> None:
        self.state = LinkState.WAITING
        await asyncio.sleep(delay)

    async def _close(self) -> None:
        writer, self._writer, self._reader = self._writer, None, None
        if writer is None:
            return
        try:
            writer.close()
            await writer.wait_closed()
        except Exception:
            pass

    # --- Properties ---

    @property
    def is_connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    @property
    def is_running(self) -> bool:
        return self._running

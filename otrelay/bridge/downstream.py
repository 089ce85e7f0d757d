"""Downstream server - accepts clients that expect the gateway's own protocol.

Any number of clients may connect. Their commands are forwarded to the
gateway and every relayed status line is broadcast to all of them.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Set

logger = logging.getLogger("otrelay.bridge.downstream")

# Callback type for handling data received from a client
DataHandler = Callable[[bytes, "ClientSession"], Awaitable[None]]


class ClientSession:
    """Represents a connected downstream client."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        session_id: int,
        max_buffer: int = 65536,
    ):
        self.reader = reader
        self.writer = writer
        self.session_id = session_id
        self.max_buffer = max_buffer
        self.connected = True
        self._addr = writer.get_extra_info("peername")

    @property
    def address(self) -> str:
        if self._addr:
            return f"{self._addr[0]}:{self._addr[1]}"
        return "unknown"

    @property
    def alive(self) -> bool:
        return self.connected and not self.writer.is_closing()

    def send(self, data: bytes) -> bool:
        """Queue data without waiting for the client to drain it."""
        if not self.alive:
            return False
        try:
            if self.writer.transport.get_write_buffer_size() > self.max_buffer:
                logger.warning("Client %s is not reading, dropping it", self.address)
                self.connected = False
                self.writer.close()
                return False
            self.writer.write(data)
        except Exception as e:
            logger.warning("Failed to send to client %s: %s", self.address, e)
            self.connected = False
            return False
        return True

    async def close(self) -> None:
        self.connected = False
        try:
            self.writer.close()
            await self.writer.wait_closed()
        except Exception:
            pass


class DownstreamServer:
    """TCP server keeping the registry of live clients."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 7689,
        max_client_buffer: int = 65536,
        read_size: int = 4096,
    ):
        self.host = host
        self.port = port
        self.max_client_buffer = max_client_buffer
        self.read_size = read_size

        self._server: Optional[asyncio.Server] = None
        self._clients: Set[ClientSession] = set()
        self._data_handler: Optional[DataHandler] = None
        self._running = False
        self._session_counter = 0

    def set_data_handler(self, handler: DataHandler) -> None:
        """Set the callback for data received from clients."""
        self._data_handler = handler

    async def start(self) -> None:
        """Bind and listen. Raises OSError if the port cannot be bound."""
        self._server = await asyncio.start_server(
            self._handle_client,
            self.host,
            self.port,
        )
        self._running = True
        addrs = ", ".join(str(s.getsockname()) for s in self._server.sockets)
        logger.info("Listening for clients on %s", addrs)

    async def stop(self) -> None:
        self._running = False

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        for client in list(self._clients):
            await client.close()
        self._clients.clear()

        logger.info("Downstream server stopped")

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        self._session_counter += 1
        session = ClientSession(reader, writer, self._session_counter, self.max_client_buffer)
        self._clients.add(session)

        logger.info("Incoming client connection: %s (session %d)", session.address, session.session_id)

        try:
            await self._client_loop(session)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.exception("Error handling client %s: %s", session.address, e)
        finally:
            self.remove(session)
            await session.close()
            logger.info("Client disconnected: %s", session.address)

    async def _client_loop(self, session: ClientSession) -> None:
        while self._running and session.connected:
            try:
                data = await session.reader.read(self.read_size)
            except OSError as e:
                logger.warning("Error on client socket %s: %s", session.address, e)
                break
            if not data:
                break
            if self._data_handler:
                await self._data_handler(data, session)

    def remove(self, session: ClientSession) -> None:
        """Drop a session from the registry; safe to call repeatedly."""
        self._clients.discard(session)

    def broadcast(self, data: bytes) -> int:
        """Write data to every live client. Returns the number of writes."""
        sent = 0
        for client in list(self._clients):
            if client.send(data):
                sent += 1
            elif not client.connected:
                self.remove(client)
        return sent

    # --- Properties ---

    @property
    def clients(self) -> List[ClientSession]:
        return list(self._clients)

    @property
    def client_count(self) -> int:
        return len(self._clients)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def bound_port(self) -> Optional[int]:
        if self._server and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return None

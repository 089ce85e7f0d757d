"""Relay orchestrator - coordinates the gateway link, the client server and the pipeline.

The Relay class is the main entry point for sharing one OpenTherm Gateway
between otmonitor and any number of other clients.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from otrelay.config import RelayConfig

from .downstream import ClientSession, DownstreamServer
from .pipeline import RelayPipeline
from .upstream import GatewayConnection

logger = logging.getLogger("otrelay.bridge")


class Relay:
    """Transparent relay between one gateway and many clients.

    The Relay:
      - Keeps a single connection to the gateway, reconnecting forever
      - Accepts client connections and forwards their commands to the gateway
      - Relays repaired status lines to every client, never the raw frames
      - Optionally substitutes one PS=1 field and resets the PS state

    Example:
        relay = Relay(RelayConfig(gateway_host="otgw.local"))
        await relay.run_forever()
    """

    def __init__(self, config: Optional[RelayConfig] = None):
        self.config = config or RelayConfig()
        self.config.validate()

        self._pipeline = RelayPipeline(self.config)

        self._gateway = GatewayConnection(
            host=self.config.gateway_host,
            port=self.config.gateway_port,
            reconnect_delay=self.config.reconnect_delay,
            retry_delay=self.config.retry_delay,
        )

        self._server = DownstreamServer(
            host=self.config.listen_host,
            port=self.config.listen_port,
            max_client_buffer=self.config.max_client_buffer,
        )

        self._gateway.set_chunk_handler(self._handle_gateway_data)
        self._server.set_data_handler(self._handle_client_data)

        self._running = False

    async def start(self) -> None:
        """Start the relay. Raises OSError if the listen port cannot be bound."""
        logger.info("Starting relay...")
        logger.info("  Gateway: %s:%d", self.config.gateway_host, self.config.gateway_port)
        logger.info("  Clients: %s:%d", self.config.listen_host, self.config.listen_port)

        await self._gateway.start()
        try:
            await self._server.start()
        except OSError:
            await self._gateway.stop()
            raise

        self._running = True
        logger.info("Relay started, point clients to port %d", self._server.bound_port)

    async def stop(self) -> None:
        logger.info("Stopping relay...")
        self._running = False
        await self._server.stop()
        await self._gateway.stop()
        logger.info("Relay stopped")

    async def run_forever(self) -> None:
        """Run the relay until cancelled."""
        await self.start()
        try:
            while self._running:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    # --- Traffic Handling ---

    async def _handle_gateway_data(self, data: bytes) -> None:
        result = self._pipeline.process_upstream(data)
        for line in result.relay:
            self._server.broadcast(line)
        for command in result.commands:
            self._gateway.write(command)

    async def _handle_client_data(self, data: bytes, client: ClientSession) -> None:
        self._gateway.write(self._pipeline.process_downstream(data))

    # --- Access ---

    @property
    def pipeline(self) -> RelayPipeline:
        """Access the pipeline for adding hooks."""
        return self._pipeline

    @property
    def gateway(self) -> GatewayConnection:
        return self._gateway

    @property
    def server(self) -> DownstreamServer:
        return self._server

    @property
    def is_running(self) -> bool:
        return self._running

    def get_stats(self) -> dict:
        return {
            "running": self._running,
            "clients": self._server.client_count,
            "gateway_connected": self._gateway.is_connected,
            "replacement_value": self._pipeline.session.replacement_value,
            **self._pipeline.get_stats(),
        }

"""
Modbus Session Manager

Public attach/detach surface for consumers. Shares one socket per
host:port and one logical client per host:port:unitId across consumers,
runs the one-time info read on a new logical client and starts each
consumer's polling.
"""

import asyncio
from typing import Any

from gxsession.common.config import ConsumerConfig, identity_of
from gxsession.common.logging_setup import get_service_logger
from .client_registry import Attachment, ClientRegistry, LogicalClient, make_client_key
from .events import EventBus, EventKind, event_topic
from .polling import PollingScheduler
from .register_reader import RegisterReader
from .socket_pool import SocketPool, make_socket_key

logger = get_service_logger("session.manager")

# Time given to a freshly opened socket before the info read
DEFAULT_SETTLE_DELAY_S = 1.0


class ModbusManager:
    """
    Connection/session multiplexer and polling scheduler.

    Attach, detach and socket rebuilds for one host:port run one at a
    time under a per-key lock; polls never take it and rely on the
    liveness gate and stale-attachment checks instead.
    """

    def __init__(
        self,
        socket_pool: SocketPool | None = None,
        events: EventBus | None = None,
        settle_delay: float = DEFAULT_SETTLE_DELAY_S,
    ):
        self.pool = socket_pool or SocketPool()
        self.events = events or EventBus()
        self.registry = ClientRegistry()
        self.reader = RegisterReader(self.registry, self.pool, self.events)
        self.scheduler = PollingScheduler(self.registry, self.reader)
        self._settle_delay = settle_delay
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, socket_key: str) -> asyncio.Lock:
        lock = self._locks.get(socket_key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[socket_key] = lock
        return lock

    async def create_connection(
        self,
        host: str,
        port: int,
        unit_id: int,
        config: ConsumerConfig,
    ) -> None:
        """
        Attach a consumer to host:port:unit_id.

        Raises:
            ConfigError: if config is invalid or its event name is taken
            CommunicationError: if a new socket cannot be opened or rebuilt
        """
        client_key = make_client_key(host, port, unit_id)
        identity = config.identity

        async with self._lock_for(make_socket_key(host, port)):
            self.registry.claim_event_name(config.event_name, client_key, identity)
            existing = self.registry.get(client_key)

            logger.debug(
                f"Creating connection {client_key} for {config.label} "
                f"(existing client: {existing is not None})"
            )

            if existing is not None:
                attachment = self._attach(existing, config)
                logger.info(
                    f"Added configuration for device type {identity} to existing client "
                    f"{client_key} ({existing.ref_count} consumers)"
                )
            else:
                try:
                    lease = await self.pool.acquire(host, port, unit_id)
                except Exception:
                    self.registry.release_event_name(config.event_name, client_key, identity)
                    raise

                if lease.rebound:
                    count = self.registry.rebind(host, port, lease.rebound)
                    logger.info(f"Re-pointed {count} logical clients after rebuilding {lease.socket.key}")

                client = LogicalClient(
                    host=host,
                    port=port,
                    unit_id=unit_id,
                    modbus_client=lease.unit_client,
                )
                self.registry.add(client)
                attachment = self._attach(client, config)
                logger.info(f"Created new modbus client for '{client_key}'")

        if existing is None:
            # Let the new socket settle before the first request
            if self._settle_delay > 0:
                await asyncio.sleep(self._settle_delay)

            if not self.registry.is_current(client_key, identity, attachment):
                logger.debug(f"{identity} detached from {client_key} before the info read")
                return

            await self.reader.read_info(client_key, identity)

        if config.polls and self.registry.is_current(client_key, identity, attachment):
            await self.scheduler.start(client_key, identity)

    def _attach(self, client: LogicalClient, config: ConsumerConfig) -> Attachment:
        """Insert or replace the attachment for config's identity"""
        previous = client.configs.get(config.identity)
        if previous is not None:
            logger.info(f"Replacing configuration for {config.identity} on {client.key}")
            self._detach(client, previous, keep_listeners=True)

        attachment = Attachment(config=config)
        client.configs[config.identity] = attachment
        # Detaching the replaced config released its event name, which may be
        # the same name create_connection claimed for this one
        self.registry.claim_event_name(config.event_name, client.key, config.identity)

        if config.on_info is not None:
            self.events.on(event_topic(config.event_name, EventKind.INFO), config.on_info)
        if config.on_reading is not None:
            self.events.on(event_topic(config.event_name, EventKind.READING), config.on_reading)
        return attachment

    def _detach(
        self,
        client: LogicalClient,
        attachment: Attachment,
        keep_listeners: bool = False,
    ) -> None:
        """
        Stop the timer, drop subscriptions and remove the attachment.

        With keep_listeners (a config being replaced) only the callbacks the
        old config registered itself are removed; outside subscribers stay.
        """
        config = attachment.config
        self.scheduler.stop(attachment)

        if keep_listeners:
            if config.on_info is not None:
                self.events.off(event_topic(config.event_name, EventKind.INFO), config.on_info)
            if config.on_reading is not None:
                self.events.off(event_topic(config.event_name, EventKind.READING), config.on_reading)
        else:
            logger.debug(f"Removing event listeners for {config.event_name}")
            for kind in EventKind:
                self.events.remove_all_listeners(event_topic(config.event_name, kind))

        if client.configs.get(attachment.identity) is attachment:
            del client.configs[attachment.identity]
        self.registry.release_event_name(config.event_name, client.key, attachment.identity)

    async def close_connection(
        self,
        host: str,
        port: int,
        unit_id: int,
        device_type: Any,
    ) -> bool:
        """
        Detach a consumer. Safe to call repeatedly.

        Returns:
            True if a consumer was detached
        """
        client_key = make_client_key(host, port, unit_id)
        identity = identity_of(device_type)

        async with self._lock_for(make_socket_key(host, port)):
            logger.debug(f"Starting cleanup for {identity} on {client_key}")

            client = self.registry.get(client_key)
            if client is None:
                logger.warning(f"No client found for {client_key}")
                return False

            attachment = client.configs.get(identity)
            if attachment is None:
                logger.warning(f"No config found for {identity} in client {client_key}")
                return False

            self._detach(client, attachment)
            logger.debug(f"Removed config for {identity}, client refCount {client.ref_count}")

            if client.ref_count > 0:
                return True

            logger.debug(f"Last reference to client {client_key}, removing client")
            self.registry.remove(client_key)
            await self.pool.release(host, port, unit_id)
            return True

    async def close_all(self) -> None:
        """Detach every consumer and close every socket"""
        for client in self.registry.all_clients():
            async with self._lock_for(client.socket_key):
                for attachment in list(client.configs.values()):
                    self._detach(client, attachment)
                self.registry.remove(client.key)

        await self.scheduler.drain()
        await self.pool.stop()
        await self.events.drain()
        logger.info("All Modbus sessions closed")

    def is_connected(self, host: str, port: int) -> bool:
        return self.pool.is_connected(host, port)

    def get_stats(self) -> dict:
        """Get pool and registry statistics"""
        return {
            "pool": self.pool.get_stats(),
            "registry": self.registry.get_stats(),
        }

"""
Register Reader

Reads a consumer's ordered registry list over its logical client and
publishes the raw buffers. The one-time info read and each poll cycle go
through the same path; every failure is contained and logged here.
"""

from gxsession.common.config import RegistryDescriptor
from gxsession.common.exceptions import ReadError
from gxsession.common.logging_setup import get_service_logger, log_batch_read
from .client_registry import Attachment, ClientRegistry, LogicalClient
from .events import EventBus, EventKind, event_topic
from .socket_pool import SocketPool

logger = get_service_logger("session.reader")


class RegisterReader:
    """
    Reads info and reading registries for attached consumers.

    Nothing here raises to the caller: lookup misses, liveness-gate skips
    and read errors are logged and the batch is dropped.
    """

    def __init__(
        self,
        registry: ClientRegistry,
        socket_pool: SocketPool,
        events: EventBus,
    ):
        self._registry = registry
        self._pool = socket_pool
        self._events = events

    async def read_info(self, client_key: str, identity: str) -> bool:
        """Read the info registries once and publish `<event_name>_info`"""
        return await self._read_and_publish(client_key, identity, EventKind.INFO)

    async def poll(self, client_key: str, identity: str) -> bool:
        """Run one poll cycle and publish `<event_name>`"""
        return await self._read_and_publish(client_key, identity, EventKind.READING)

    async def _read_and_publish(
        self,
        client_key: str,
        identity: str,
        kind: EventKind,
    ) -> bool:
        """
        Returns:
            True if an event was published
        """
        client = self._registry.get(client_key)
        if client is None:
            logger.warning(f"Client {client_key} not found for {kind.value} read")
            return False

        attachment = client.configs.get(identity)
        if attachment is None:
            logger.warning(
                f"Config for device type {identity} not found in client {client_key}"
            )
            return False

        if not self._pool.is_connected(client.host, client.port):
            logger.warning(
                f"Client {client_key} not connected, skipping {kind.value} read "
                f"for {attachment.config.label}"
            )
            return False

        if kind == EventKind.INFO:
            registries = attachment.config.info_registries
        else:
            registries = attachment.config.reading_registries

        try:
            readings = await self._read_batch(client, registries)
        except ReadError as e:
            log_batch_read(
                logger.logger, client_key, identity, kind.value,
                len(registries), success=False, error=str(e),
            )
            return False

        # Detached or replaced while the reads were in flight
        if not self._registry.is_current(client_key, identity, attachment):
            logger.debug(
                f"Discarding {kind.value} result for detached {identity} on {client_key}"
            )
            return False

        log_batch_read(logger.logger, client_key, identity, kind.value, len(registries))
        self._publish(attachment, kind, readings)
        return True

    @staticmethod
    async def _read_batch(
        client: LogicalClient,
        registries: tuple[RegistryDescriptor, ...],
    ) -> list[bytes]:
        """Read registries strictly in order; the first error aborts the batch"""
        unit_client = client.modbus_client
        readings = []
        for registry in registries:
            readings.append(
                await unit_client.read_holding_registers(registry.address, registry.count)
            )
        return readings

    def _publish(self, attachment: Attachment, kind: EventKind, readings: list[bytes]) -> None:
        topic = event_topic(attachment.config.event_name, kind)
        self._events.emit(topic, readings)

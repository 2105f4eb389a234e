"""
Modbus Socket Pool

Owns one TCP connection per host:port and the unit-bound protocol clients
sharing it. A socket's reference count is the number of distinct unit ids
bound to it; the connection closes when the last one is released.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pymodbus.client import AsyncModbusTcpClient
from pymodbus.exceptions import ModbusException

from gxsession.common.exceptions import CommunicationError
from gxsession.common.logging_setup import get_service_logger
from .modbus_client import UnitClient

logger = get_service_logger("session.pool")


def make_socket_key(host: str, port: int) -> str:
    return f"{host}:{port}"


class SocketState(str, Enum):
    """Connection state of a pooled socket"""
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class PooledSocket:
    """A pooled Modbus TCP connection and the unit ids bound to it"""
    host: str
    port: int
    client: AsyncModbusTcpClient
    unit_clients: dict[int, UnitClient] = field(default_factory=dict)
    state: SocketState = SocketState.OPEN
    rebuild_count: int = 0
    last_used: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def key(self) -> str:
        return make_socket_key(self.host, self.port)

    @property
    def ref_count(self) -> int:
        return len(self.unit_clients)

    @property
    def is_connected(self) -> bool:
        return (
            self.state == SocketState.OPEN
            and self.client is not None
            and bool(self.client.connected)
        )


@dataclass
class SocketLease:
    """
    Result of acquiring a unit on a socket.

    `rebound` holds the recreated clients of the unit ids that were already
    bound when the socket had to be rebuilt; it is empty otherwise.
    """
    socket: PooledSocket
    unit_client: UnitClient
    rebound: dict[int, UnitClient] = field(default_factory=dict)


class SocketPool:
    """
    Modbus TCP socket pool.

    - One connection per host:port
    - Unit ids bound per connection, counted as references
    - Rebuilds the connection when a new unit id joins an open socket
      (unless rebuild_on_new_unit is disabled)
    - Per-key locking so a connect or rebuild is never interleaved with
      another mutation of the same socket
    """

    def __init__(
        self,
        connection_timeout: float = 3.0,
        rebuild_on_new_unit: bool = True,
    ):
        self._sockets: dict[str, PooledSocket] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._connection_timeout = connection_timeout
        self._rebuild_on_new_unit = rebuild_on_new_unit

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def get(self, host: str, port: int) -> PooledSocket | None:
        return self._sockets.get(make_socket_key(host, port))

    def __len__(self) -> int:
        return len(self._sockets)

    async def acquire(self, host: str, port: int, unit_id: int) -> SocketLease:
        """
        Get a protocol client for unit_id on host:port, opening or
        rebuilding the socket as needed.

        Raises:
            CommunicationError: if the connection cannot be established
        """
        key = make_socket_key(host, port)

        async with self._lock_for(key):
            pooled = self._sockets.get(key)

            if pooled is None:
                logger.info(f"Creating new socket for '{key}'")
                client = await self._open(host, port)
                unit_client = UnitClient(client, unit_id, key)
                pooled = PooledSocket(
                    host=host,
                    port=port,
                    client=client,
                    unit_clients={unit_id: unit_client},
                )
                self._sockets[key] = pooled
                logger.info(f"Connected socket for '{key}'")
                return SocketLease(socket=pooled, unit_client=unit_client)

            pooled.last_used = datetime.now(timezone.utc)

            existing = pooled.unit_clients.get(unit_id)
            if existing is not None:
                logger.debug(f"Unit {unit_id} already bound on '{key}'")
                return SocketLease(socket=pooled, unit_client=existing)

            if not self._rebuild_on_new_unit and pooled.is_connected:
                unit_client = UnitClient(pooled.client, unit_id, key)
                pooled.unit_clients[unit_id] = unit_client
                logger.info(
                    f"Bound unit {unit_id} on open socket '{key}' "
                    f"({pooled.ref_count} units)"
                )
                return SocketLease(socket=pooled, unit_client=unit_client)

            return await self._rebuild(pooled, unit_id)

    async def _rebuild(self, pooled: PooledSocket, unit_id: int) -> SocketLease:
        """Replace the connection and rebind every unit id plus the new one"""
        key = pooled.key
        previous_units = list(pooled.unit_clients)
        logger.info(
            f"Rebuilding socket for '{key}' to add unit {unit_id} "
            f"(existing units: {previous_units})"
        )

        pooled.state = SocketState.CONNECTING
        self._close_client(pooled.client, key)

        try:
            client = await self._open(pooled.host, pooled.port)
        except CommunicationError:
            # Keep the bindings so existing consumers still release correctly;
            # their polls are skipped until a later attach rebuilds again.
            pooled.state = SocketState.CLOSED
            logger.error(
                f"Rebuild of '{key}' failed, {len(previous_units)} units left disconnected"
            )
            raise

        rebound = {uid: UnitClient(client, uid, key) for uid in previous_units}
        unit_client = UnitClient(client, unit_id, key)

        pooled.client = client
        pooled.unit_clients = {**rebound, unit_id: unit_client}
        pooled.state = SocketState.OPEN
        pooled.rebuild_count += 1

        logger.info(
            f"Connected rebuilt socket for '{key}' with {pooled.ref_count} units"
        )
        return SocketLease(socket=pooled, unit_client=unit_client, rebound=rebound)

    async def release(self, host: str, port: int, unit_id: int) -> None:
        """Unbind unit_id; close the socket when no unit is left"""
        key = make_socket_key(host, port)

        async with self._lock_for(key):
            pooled = self._sockets.get(key)
            if pooled is None:
                logger.warning(f"No socket found for '{key}' on release")
                return

            if pooled.unit_clients.pop(unit_id, None) is None:
                logger.warning(f"Unit {unit_id} was not bound on '{key}'")

            if pooled.ref_count > 0:
                logger.debug(f"Socket '{key}' still has {pooled.ref_count} active references")
                return

            logger.debug(f"Closing last connection for '{key}'")
            self._close_client(pooled.client, key)
            pooled.state = SocketState.CLOSED
            del self._sockets[key]

    def is_connected(self, host: str, port: int) -> bool:
        """Liveness predicate: socket exists, is open and the transport is up"""
        pooled = self._sockets.get(make_socket_key(host, port))
        return pooled is not None and pooled.is_connected

    async def stop(self) -> None:
        """Close every socket, waiting for opens that are still in flight"""
        while True:
            # A key with a lock but no socket yet may be mid-open
            for key in set(self._sockets) | set(self._locks):
                async with self._lock_for(key):
                    pooled = self._sockets.pop(key, None)
                    if pooled is None:
                        continue
                    self._close_client(pooled.client, key)
                    pooled.state = SocketState.CLOSED
                    pooled.unit_clients.clear()
            if not self._sockets:
                break
        logger.info("Socket pool stopped")

    async def _open(self, host: str, port: int) -> AsyncModbusTcpClient:
        """Open a TCP connection; pymodbus auto-reconnect stays off"""
        client = AsyncModbusTcpClient(
            host=host,
            port=port,
            timeout=self._connection_timeout,
            reconnect_delay=0,
        )

        try:
            connected = await client.connect()
        except (ModbusException, OSError, asyncio.TimeoutError) as e:
            self._close_client(client, make_socket_key(host, port))
            raise CommunicationError(
                f"Connection error to {host}:{port}: {e}",
                host=host,
                port=port,
            ) from e

        if not connected:
            self._close_client(client, make_socket_key(host, port))
            raise CommunicationError(
                f"Failed to connect to {host}:{port}",
                host=host,
                port=port,
            )

        return client

    @staticmethod
    def _close_client(client: AsyncModbusTcpClient, key: str) -> None:
        try:
            client.close()
        except Exception as e:
            logger.warning(f"Error closing socket '{key}': {e}")
        else:
            logger.info(f"Closed Modbus socket '{key}'")

    def get_stats(self) -> dict:
        """Get socket pool statistics"""
        return {
            "total_sockets": len(self._sockets),
            "sockets": {
                key: {
                    "state": pooled.state.value,
                    "connected": pooled.is_connected,
                    "ref_count": pooled.ref_count,
                    "unit_ids": sorted(pooled.unit_clients),
                    "rebuild_count": pooled.rebuild_count,
                    "last_used": pooled.last_used.isoformat(),
                }
                for key, pooled in self._sockets.items()
            },
        }

"""Shared fixtures: an in-memory stand-in for the pymodbus TCP client."""

import asyncio
from dataclasses import dataclass, field
from unittest.mock import MagicMock

import pytest

from gxsession.services.session import socket_pool
from gxsession.services.session.manager import ModbusManager
from gxsession.services.session.socket_pool import SocketPool


@dataclass
class FakeNetwork:
    """Records every client the pool creates and every read they serve."""
    clients: list = field(default_factory=list)
    reads: list = field(default_factory=list)
    refuse: bool = False
    fail_reads: bool = False
    fail_addresses: set[int] = field(default_factory=set)
    read_gate: asyncio.Event | None = None
    connect_gate: asyncio.Event | None = None

    def clients_for(self, host: str, port: int) -> list:
        return [c for c in self.clients if (c.host, c.port) == (host, port)]

    def reads_for(self, unit_id: int) -> list[tuple[int, int]]:
        return [(address, count) for (_, _, uid, address, count) in self.reads if uid == unit_id]


class FakeTcpClient:
    """Mimics the subset of AsyncModbusTcpClient the pool and readers use."""

    network: FakeNetwork

    def __init__(self, host: str, port: int = 502, timeout: float = 3.0, reconnect_delay: float = 0):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.reconnect_delay = reconnect_delay
        self.connected = False
        self.close_calls = 0
        self.network.clients.append(self)

    async def connect(self) -> bool:
        if self.network.connect_gate is not None:
            await self.network.connect_gate.wait()
        if self.network.refuse:
            return False
        self.connected = True
        return True

    def close(self) -> None:
        self.close_calls += 1
        self.connected = False

    async def read_holding_registers(self, address: int, count: int = 1, device_id: int = 1):
        network = self.network
        if network.read_gate is not None:
            await network.read_gate.wait()
        if not self.connected:
            raise ConnectionResetError("socket closed")
        network.reads.append((self.host, self.port, device_id, address, count))

        response = MagicMock()
        response.isError.return_value = network.fail_reads or address in network.fail_addresses
        response.registers = [(address + i) & 0xFFFF for i in range(count)]
        return response


@pytest.fixture
def network(monkeypatch) -> FakeNetwork:
    net = FakeNetwork()
    fake_class = type("BoundFakeTcpClient", (FakeTcpClient,), {"network": net})
    monkeypatch.setattr(socket_pool, "AsyncModbusTcpClient", fake_class)
    return net


@pytest.fixture
def manager(network) -> ModbusManager:
    return ModbusManager(socket_pool=SocketPool(connection_timeout=0.5), settle_delay=0)


def expected_bytes(address: int, count: int) -> bytes:
    """Payload the fake network returns for one registry"""
    return b"".join(((address + i) & 0xFFFF).to_bytes(2, "big") for i in range(count))


async def run_pending(seconds: float = 0.02) -> None:
    """Give scheduled tasks a chance to run"""
    await asyncio.sleep(seconds)

"""Tests for SocketPool: sharing, rebuilds and release."""

import asyncio

import pytest

from gxsession.common.exceptions import CommunicationError, ReadError
from gxsession.services.session.socket_pool import SocketPool, SocketState

from tests.conftest import expected_bytes

HOST = "10.0.0.5"
PORT = 502


@pytest.mark.asyncio
async def test_first_acquire_opens_one_socket(network) -> None:
    pool = SocketPool()
    lease = await pool.acquire(HOST, PORT, 100)

    assert len(network.clients) == 1
    assert network.clients[0].reconnect_delay == 0
    assert lease.rebound == {}
    assert lease.socket.ref_count == 1
    assert pool.is_connected(HOST, PORT)


@pytest.mark.asyncio
async def test_same_unit_reuses_client(network) -> None:
    pool = SocketPool()
    first = await pool.acquire(HOST, PORT, 100)
    second = await pool.acquire(HOST, PORT, 100)

    assert second.unit_client is first.unit_client
    assert second.socket.ref_count == 1
    assert len(network.clients) == 1


@pytest.mark.asyncio
async def test_new_unit_rebuilds_socket_once(network) -> None:
    pool = SocketPool()
    first = await pool.acquire(HOST, PORT, 100)
    old_transport = network.clients[0]

    lease = await pool.acquire(HOST, PORT, 225)

    assert len(network.clients) == 2
    assert old_transport.close_calls == 1
    assert lease.socket.rebuild_count == 1
    assert lease.socket.ref_count == 2
    assert set(lease.rebound) == {100}
    assert lease.rebound[100] is not first.unit_client
    assert lease.rebound[100].transport is network.clients[1]
    assert pool.is_connected(HOST, PORT)


@pytest.mark.asyncio
async def test_no_rebuild_mode_binds_on_open_socket(network) -> None:
    pool = SocketPool(rebuild_on_new_unit=False)
    await pool.acquire(HOST, PORT, 100)
    lease = await pool.acquire(HOST, PORT, 225)

    assert len(network.clients) == 1
    assert lease.rebound == {}
    assert lease.socket.rebuild_count == 0
    assert lease.unit_client.transport is network.clients[0]


@pytest.mark.asyncio
async def test_connect_failure_raises_and_leaves_nothing(network) -> None:
    network.refuse = True
    pool = SocketPool()

    with pytest.raises(CommunicationError):
        await pool.acquire(HOST, PORT, 100)

    assert len(pool) == 0
    assert not pool.is_connected(HOST, PORT)


@pytest.mark.asyncio
async def test_failed_rebuild_keeps_bindings_closed(network) -> None:
    pool = SocketPool()
    await pool.acquire(HOST, PORT, 100)

    network.refuse = True
    with pytest.raises(CommunicationError):
        await pool.acquire(HOST, PORT, 225)

    pooled = pool.get(HOST, PORT)
    assert pooled.state == SocketState.CLOSED
    assert list(pooled.unit_clients) == [100]
    assert not pool.is_connected(HOST, PORT)

    # A later attach retries the rebuild
    network.refuse = False
    lease = await pool.acquire(HOST, PORT, 225)
    assert lease.socket.state == SocketState.OPEN
    assert set(lease.socket.unit_clients) == {100, 225}


@pytest.mark.asyncio
async def test_release_closes_on_last_unit(network) -> None:
    pool = SocketPool(rebuild_on_new_unit=False)
    await pool.acquire(HOST, PORT, 100)
    await pool.acquire(HOST, PORT, 225)

    await pool.release(HOST, PORT, 100)
    assert pool.is_connected(HOST, PORT)
    assert network.clients[0].close_calls == 0

    await pool.release(HOST, PORT, 225)
    assert len(pool) == 0
    assert network.clients[0].close_calls == 1

    # Unknown socket is a logged no-op
    await pool.release(HOST, PORT, 225)


@pytest.mark.asyncio
async def test_unit_client_reads_raw_bytes(network) -> None:
    pool = SocketPool()
    lease = await pool.acquire(HOST, PORT, 225)

    data = await lease.unit_client.read_holding_registers(259, 4)

    assert data == expected_bytes(259, 4)
    assert network.reads_for(225) == [(259, 4)]


@pytest.mark.asyncio
async def test_unit_client_error_response_raises_read_error(network) -> None:
    pool = SocketPool()
    lease = await pool.acquire(HOST, PORT, 225)
    network.fail_reads = True

    with pytest.raises(ReadError) as info:
        await lease.unit_client.read_holding_registers(259, 4)

    assert info.value.client_key == f"{HOST}:{PORT}:225"
    assert info.value.address == 259


@pytest.mark.asyncio
async def test_stop_closes_everything(network) -> None:
    pool = SocketPool()
    await pool.acquire(HOST, PORT, 100)
    await pool.acquire("10.0.0.6", PORT, 1)

    await pool.stop()

    assert len(pool) == 0
    assert all(client.close_calls >= 1 for client in network.clients)
    assert pool.get_stats()["total_sockets"] == 0


@pytest.mark.asyncio
async def test_stop_closes_socket_opened_during_shutdown(network) -> None:
    pool = SocketPool()
    await pool.acquire(HOST, PORT, 100)

    network.connect_gate = asyncio.Event()
    opening = asyncio.create_task(pool.acquire("10.0.0.6", PORT, 1))
    await asyncio.sleep(0.01)

    stopping = asyncio.create_task(pool.stop())
    await asyncio.sleep(0.01)
    network.connect_gate.set()
    await opening
    await stopping

    assert len(pool) == 0
    assert len(network.clients) == 2
    assert all(client.close_calls >= 1 for client in network.clients)
    assert not pool.is_connected("10.0.0.6", PORT)

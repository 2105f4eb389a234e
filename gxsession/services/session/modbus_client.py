"""
Unit-Bound Modbus Client

Binds one pymodbus TCP connection to one Modbus unit id. The pool creates
one UnitClient per (socket, unit id) pair; logical clients hold a reference
to theirs and read holding registers through it.
"""

import asyncio

from pymodbus.client import AsyncModbusTcpClient
from pymodbus.exceptions import ModbusException

from gxsession.common.exceptions import ReadError
from gxsession.common.logging_setup import get_service_logger

logger = get_service_logger("session.modbus")


def registers_to_bytes(registers: list[int]) -> bytes:
    """Pack 16-bit register values into their raw big-endian wire bytes"""
    return b"".join((reg & 0xFFFF).to_bytes(2, byteorder="big") for reg in registers)


class UnitClient:
    """
    Modbus-TCP protocol client for a single unit id.

    Holds a non-owning reference to the pooled pymodbus client; closing the
    connection is the pool's job.
    """

    def __init__(self, client: AsyncModbusTcpClient, unit_id: int, socket_key: str):
        self._client = client
        self.unit_id = unit_id
        self.socket_key = socket_key

    @property
    def client_key(self) -> str:
        return f"{self.socket_key}:{self.unit_id}"

    @property
    def transport(self) -> AsyncModbusTcpClient:
        return self._client

    async def read_holding_registers(self, address: int, count: int) -> bytes:
        """
        Read holding registers (function code 3).

        Args:
            address: Starting register address
            count: Number of registers to read

        Returns:
            Raw register bytes, 2 per register, in wire order

        Raises:
            ReadError: on exception responses, timeouts or a dropped socket
        """
        try:
            response = await self._client.read_holding_registers(
                address=address,
                count=count,
                device_id=self.unit_id,
            )
        except ModbusException as e:
            raise self._error(f"Modbus exception: {e}", address, count) from e
        except asyncio.TimeoutError as e:
            raise self._error("Read timeout", address, count) from e
        except OSError as e:
            raise self._error(f"Socket error: {e}", address, count) from e

        if response.isError():
            raise self._error(f"Modbus error: {response}", address, count)

        registers = list(getattr(response, "registers", None) or [])
        if len(registers) < count:
            raise self._error(
                f"Short register response ({len(registers)} of {count})",
                address,
                count,
            )

        return registers_to_bytes(registers[:count])

    def _error(self, message: str, address: int, count: int) -> ReadError:
        return ReadError(
            message,
            client_key=self.client_key,
            address=address,
            count=count,
            unit_id=self.unit_id,
        )

    def __repr__(self) -> str:
        return f"UnitClient({self.client_key})"

"""
Session Service - Modbus Session Multiplexing

Shares Modbus-TCP sockets across unit ids and consumers, reads info
registries on attach and polls reading registries per consumer.
"""

from .client_registry import Attachment, ClientRegistry, LogicalClient, make_client_key
from .events import EventBus, EventKind, event_topic
from .manager import ModbusManager
from .modbus_client import UnitClient, registers_to_bytes
from .polling import PollingScheduler
from .register_reader import RegisterReader
from .service import SessionService
from .socket_pool import PooledSocket, SocketLease, SocketPool, SocketState, make_socket_key

__all__ = [
    "Attachment",
    "ClientRegistry",
    "LogicalClient",
    "make_client_key",
    "EventBus",
    "EventKind",
    "event_topic",
    "ModbusManager",
    "UnitClient",
    "registers_to_bytes",
    "PollingScheduler",
    "RegisterReader",
    "SessionService",
    "PooledSocket",
    "SocketLease",
    "SocketPool",
    "SocketState",
    "make_socket_key",
]

"""gxsession: shared Modbus-TCP sessions and per-consumer register polling."""

__version__ = "0.1.0"

from .common.config import ConsumerConfig, RegistryDescriptor
from .common.exceptions import CommunicationError, ConfigError, GxSessionError, ReadError
from .services.session import EventBus, EventKind, ModbusManager, SocketPool, event_topic

__all__ = [
    "__version__",
    "ConsumerConfig",
    "RegistryDescriptor",
    "CommunicationError",
    "ConfigError",
    "GxSessionError",
    "ReadError",
    "EventBus",
    "EventKind",
    "ModbusManager",
    "SocketPool",
    "event_topic",
]

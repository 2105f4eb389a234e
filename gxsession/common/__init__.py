"""
Common Utilities

Shared modules used by the session manager and the service:
- config.py - Configuration dataclasses and YAML loading
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
- scheduler.py - Repeating timer for poll cycles
"""

from .config import (
    RegistryDescriptor,
    ConsumerConfig,
    SessionTarget,
    ServiceSettings,
    SessionConfig,
    identity_of,
    parse_registries,
    load_session_config,
    load_session_config_file,
)
from .exceptions import (
    GxSessionError,
    ConfigError,
    DeviceError,
    CommunicationError,
    ReadError,
    ServiceError,
)
from .logging_setup import (
    setup_logging,
    get_service_logger,
    set_log_level,
    log_batch_read,
)
from .scheduler import ScheduledLoop

__all__ = [
    # Config
    "RegistryDescriptor",
    "ConsumerConfig",
    "SessionTarget",
    "ServiceSettings",
    "SessionConfig",
    "identity_of",
    "parse_registries",
    "load_session_config",
    "load_session_config_file",
    # Exceptions
    "GxSessionError",
    "ConfigError",
    "DeviceError",
    "CommunicationError",
    "ReadError",
    "ServiceError",
    # Logging
    "setup_logging",
    "get_service_logger",
    "set_log_level",
    "log_batch_read",
    # Scheduling
    "ScheduledLoop",
]

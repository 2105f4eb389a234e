"""
Custom Exception Classes for gxsession

Hierarchical exception structure for error handling across the
session manager and the service runner.
"""


class GxSessionError(Exception):
    """Base exception for all gxsession errors"""

    def __init__(self, message: str, recoverable: bool = True):
        self.message = message
        self.recoverable = recoverable
        super().__init__(message)


class ConfigError(GxSessionError):
    """Configuration-related errors"""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(f"Config Error: {message}", recoverable)


class DeviceError(GxSessionError):
    """Device communication errors"""

    def __init__(
        self,
        message: str,
        client_key: str | None = None,
        recoverable: bool = True,
    ):
        self.client_key = client_key
        super().__init__(f"Device Error: {message}", recoverable)


class CommunicationError(DeviceError):
    """Socket open or rebuild failed"""

    def __init__(
        self,
        message: str,
        host: str | None = None,
        port: int | None = None,
        client_key: str | None = None,
    ):
        self.host = host
        self.port = port
        super().__init__(message, client_key, recoverable=True)


class ReadError(DeviceError):
    """Holding register read failed"""

    def __init__(
        self,
        message: str,
        client_key: str | None = None,
        address: int | None = None,
        count: int | None = None,
        unit_id: int | None = None,
    ):
        self.address = address
        self.count = count
        self.unit_id = unit_id
        super().__init__(message, client_key, recoverable=True)


class ServiceError(GxSessionError):
    """Service lifecycle errors"""

    def __init__(self, message: str, service_name: str, recoverable: bool = True):
        self.service_name = service_name
        super().__init__(f"Service [{service_name}]: {message}", recoverable)

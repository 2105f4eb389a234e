"""
Configuration Dataclasses

Type-safe configuration structures for consumers attaching to a Modbus
session and for the long-running session service. All consumer input is
validated here so bad configuration fails at attach time.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml

from .exceptions import ConfigError

# Largest register count a single function code 3 request may ask for
MAX_REGISTERS_PER_READ = 125

# Callback signature for info/reading events: receives the ordered raw buffers
EventCallback = Callable[[list[bytes]], Any]


def identity_of(device_type: Any) -> str:
    """
    Resolve a consumer identity.

    Accepts a plain string, a class (its __name__) or an instance
    (its `name` attribute if set, otherwise its class name).
    """
    if isinstance(device_type, str):
        return device_type
    if isinstance(device_type, type):
        return device_type.__name__
    name = getattr(device_type, "name", None)
    if isinstance(name, str) and name:
        return name
    return type(device_type).__name__


@dataclass(frozen=True)
class RegistryDescriptor:
    """A holding register range: start address and register count"""
    address: int
    count: int

    def __post_init__(self) -> None:
        if not isinstance(self.address, int) or not 0 <= self.address <= 0xFFFF:
            raise ConfigError(f"registry address must be 0..65535, got {self.address!r}")
        if not isinstance(self.count, int) or not 1 <= self.count <= MAX_REGISTERS_PER_READ:
            raise ConfigError(
                f"registry count must be 1..{MAX_REGISTERS_PER_READ}, got {self.count!r}"
            )

    @classmethod
    def parse(cls, value: Any) -> "RegistryDescriptor":
        """Build from a descriptor, an {address, count} mapping or an (address, count) pair"""
        if isinstance(value, RegistryDescriptor):
            return value
        if isinstance(value, dict):
            try:
                return cls(address=value["address"], count=value["count"])
            except KeyError as e:
                raise ConfigError(f"registry is missing {e.args[0]!r}: {value!r}") from e
        if isinstance(value, (list, tuple)) and len(value) == 2:
            return cls(address=value[0], count=value[1])
        raise ConfigError(f"cannot parse registry from {value!r}")


def parse_registries(values: Any) -> tuple[RegistryDescriptor, ...]:
    """Parse an ordered registry list, preserving order"""
    if values is None:
        return ()
    if not isinstance(values, (list, tuple)):
        raise ConfigError(f"registries must be a list, got {type(values).__name__}")
    return tuple(RegistryDescriptor.parse(v) for v in values)


@dataclass
class ConsumerConfig:
    """One consumer's subscription to a Modbus unit"""
    device_type: Any
    event_name: str
    info_registries: tuple[RegistryDescriptor, ...] = ()
    reading_registries: tuple[RegistryDescriptor, ...] = ()
    refresh_interval: float | None = None  # seconds; None/0 = attach only
    device: Any = None  # consumer handle, used for log labels
    on_info: EventCallback | None = None
    on_reading: EventCallback | None = None

    def __post_init__(self) -> None:
        if self.device_type is None or (isinstance(self.device_type, str) and not self.device_type):
            raise ConfigError("device_type is required")
        if not isinstance(self.event_name, str) or not self.event_name:
            raise ConfigError(f"event_name is required for {self.identity}")

        self.info_registries = parse_registries(self.info_registries)
        self.reading_registries = parse_registries(self.reading_registries)

        if self.refresh_interval is not None:
            if isinstance(self.refresh_interval, bool) or not isinstance(self.refresh_interval, (int, float)):
                raise ConfigError(f"refresh_interval must be a number, got {self.refresh_interval!r}")
            if self.refresh_interval < 0:
                raise ConfigError(f"refresh_interval cannot be negative, got {self.refresh_interval}")

        if not self.info_registries and not self.reading_registries:
            raise ConfigError(f"{self.identity} has no info or reading registries")
        if self.polls and not self.reading_registries:
            raise ConfigError(f"{self.identity} polls every {self.refresh_interval}s but has no reading registries")

    @property
    def identity(self) -> str:
        return identity_of(self.device_type)

    @property
    def polls(self) -> bool:
        return bool(self.refresh_interval)

    @property
    def label(self) -> str:
        """Consumer label for logs: the device name when one is attached"""
        name = getattr(self.device, "name", None) if self.device is not None else None
        return f"{self.identity}[{name}]" if name else self.identity


@dataclass
class SessionTarget:
    """A consumer attachment declared in the service configuration"""
    host: str
    consumer: ConsumerConfig
    port: int = 502
    unit_id: int = 1


@dataclass
class ServiceSettings:
    """Session service runtime configuration"""
    health_host: str = "127.0.0.1"
    health_port: int = 8090
    log_level: str = "INFO"
    settle_delay_s: float = 1.0
    connection_timeout_s: float = 3.0
    rebuild_on_new_unit: bool = True


@dataclass
class SessionConfig:
    """Top-level service configuration"""
    service: ServiceSettings = field(default_factory=ServiceSettings)
    targets: list[SessionTarget] = field(default_factory=list)

    def get_socket_keys(self) -> list[str]:
        """Distinct host:port pairs in declaration order"""
        keys: list[str] = []
        for target in self.targets:
            key = f"{target.host}:{target.port}"
            if key not in keys:
                keys.append(key)
        return keys


def _require(data: dict, key: str, where: str) -> Any:
    if key not in data or data[key] in (None, ""):
        raise ConfigError(f"{where}: missing required field '{key}'")
    return data[key]


def _number(data: dict, key: str, default: Any, where: str, cast: Callable = float) -> Any:
    value = data.get(key, default)
    if isinstance(value, bool):
        raise ConfigError(f"{where}: {key} must be a number, got {value!r}")
    try:
        return cast(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{where}: {key} must be a number, got {value!r}") from e


def _flag(data: dict, key: str, default: bool, where: str) -> bool:
    value = data.get(key, default)
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "yes", "on", "1"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("false", "no", "off", "0"):
        return False
    raise ConfigError(f"{where}: {key} must be true or false, got {value!r}")


def load_session_config(data: dict) -> SessionConfig:
    """Load SessionConfig from dictionary (e.g., parsed YAML)"""
    if not isinstance(data, dict):
        raise ConfigError("configuration root must be a mapping")

    service_data = data.get("service") or {}
    if not isinstance(service_data, dict):
        raise ConfigError("service: must be a mapping")

    service = ServiceSettings(
        health_host=str(service_data.get("health_host", "127.0.0.1")),
        health_port=_number(service_data, "health_port", 8090, "service", int),
        log_level=str(service_data.get("log_level", "INFO")),
        settle_delay_s=_number(service_data, "settle_delay_s", 1.0, "service"),
        connection_timeout_s=_number(service_data, "connection_timeout_s", 3.0, "service"),
        rebuild_on_new_unit=_flag(service_data, "rebuild_on_new_unit", True, "service"),
    )
    if service.settle_delay_s < 0:
        raise ConfigError("service.settle_delay_s cannot be negative")
    if service.connection_timeout_s <= 0:
        raise ConfigError("service.connection_timeout_s must be positive")

    consumers = data.get("consumers") or []
    if not isinstance(consumers, list):
        raise ConfigError("consumers: must be a list")

    targets = []
    for index, t in enumerate(consumers):
        where = f"consumers[{index}]"
        if not isinstance(t, dict):
            raise ConfigError(f"{where}: must be a mapping")

        unit_id = _number(t, "unit_id", 1, where, int)
        if not 0 <= unit_id <= 255:
            raise ConfigError(f"{where}: unit_id must be 0..255, got {unit_id}")

        consumer = ConsumerConfig(
            device_type=_require(t, "device_type", where),
            event_name=_require(t, "event_name", where),
            info_registries=t.get("info_registries", ()),
            reading_registries=t.get("reading_registries", ()),
            refresh_interval=t.get("refresh_interval"),
        )
        targets.append(SessionTarget(
            host=str(_require(t, "host", where)),
            port=_number(t, "port", 502, where, int),
            unit_id=unit_id,
            consumer=consumer,
        ))

    return SessionConfig(service=service, targets=targets)


def load_session_config_file(path: str | Path) -> SessionConfig:
    """Read a YAML configuration file and load it"""
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"configuration file not found: {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e

    return load_session_config(data or {})

"""
Logical Client Registry

Owns one LogicalClient per host:port:unitId and, through it, the consumer
attachments. A logical client's reference count is its number of
attachments; it exists only while at least one is attached.
"""

from dataclasses import dataclass, field

from gxsession.common.config import ConsumerConfig
from gxsession.common.exceptions import ConfigError
from gxsession.common.scheduler import ScheduledLoop
from .modbus_client import UnitClient
from .socket_pool import make_socket_key


def make_client_key(host: str, port: int, unit_id: int) -> str:
    return f"{host}:{port}:{unit_id}"


@dataclass
class Attachment:
    """A consumer config attached to a logical client, with its poll timer"""
    config: ConsumerConfig
    timer: ScheduledLoop | None = None

    @property
    def identity(self) -> str:
        return self.config.identity


@dataclass
class LogicalClient:
    """One Modbus unit reachable over a pooled socket"""
    host: str
    port: int
    unit_id: int
    modbus_client: UnitClient
    configs: dict[str, Attachment] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return make_client_key(self.host, self.port, self.unit_id)

    @property
    def socket_key(self) -> str:
        return make_socket_key(self.host, self.port)

    @property
    def ref_count(self) -> int:
        return len(self.configs)


class ClientRegistry:
    """
    Logical clients keyed by host:port:unitId.

    Also tracks which (client key, identity) owns each event name so two
    live consumers never share one.
    """

    def __init__(self):
        self._clients: dict[str, LogicalClient] = {}
        self._event_owners: dict[str, tuple[str, str]] = {}

    def __len__(self) -> int:
        return len(self._clients)

    def __contains__(self, client_key: str) -> bool:
        return client_key in self._clients

    def get(self, client_key: str) -> LogicalClient | None:
        return self._clients.get(client_key)

    def get_attachment(self, client_key: str, identity: str) -> Attachment | None:
        client = self._clients.get(client_key)
        if client is None:
            return None
        return client.configs.get(identity)

    def is_current(self, client_key: str, identity: str, attachment: Attachment) -> bool:
        """True while attachment is still the live one for its identity"""
        return self.get_attachment(client_key, identity) is attachment

    def add(self, client: LogicalClient) -> None:
        if client.key in self._clients:
            raise ValueError(f"Logical client {client.key} already registered")
        self._clients[client.key] = client

    def remove(self, client_key: str) -> LogicalClient | None:
        return self._clients.pop(client_key, None)

    def clients_on_socket(self, host: str, port: int) -> list[LogicalClient]:
        socket_key = make_socket_key(host, port)
        return [c for c in self._clients.values() if c.socket_key == socket_key]

    def rebind(self, host: str, port: int, rebound: dict[int, UnitClient]) -> int:
        """Point logical clients at their rebuilt protocol clients; configs are untouched"""
        count = 0
        for client in self.clients_on_socket(host, port):
            unit_client = rebound.get(client.unit_id)
            if unit_client is not None:
                client.modbus_client = unit_client
                count += 1
        return count

    def claim_event_name(self, event_name: str, client_key: str, identity: str) -> None:
        """
        Reserve event_name for (client_key, identity).

        Raises:
            ConfigError: if another live consumer already publishes under it
        """
        owner = self._event_owners.get(event_name)
        if owner is not None and owner != (client_key, identity):
            raise ConfigError(
                f"event name '{event_name}' is already used by {owner[1]} on {owner[0]}"
            )
        self._event_owners[event_name] = (client_key, identity)

    def release_event_name(self, event_name: str, client_key: str, identity: str) -> None:
        if self._event_owners.get(event_name) == (client_key, identity):
            del self._event_owners[event_name]

    def all_clients(self) -> list[LogicalClient]:
        return list(self._clients.values())

    def get_stats(self) -> dict:
        """Get logical client statistics"""
        return {
            "total_clients": len(self._clients),
            "clients": {
                key: {
                    "ref_count": client.ref_count,
                    "consumers": {
                        identity: {
                            "event_name": attachment.config.event_name,
                            "refresh_interval": attachment.config.refresh_interval,
                            "polling": attachment.timer is not None and attachment.timer.is_running,
                        }
                        for identity, attachment in client.configs.items()
                    },
                }
                for key, client in self._clients.items()
            },
        }

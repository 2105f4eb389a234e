"""
Session Service - Modbus Polling Process

Responsible for:
- Building the ModbusManager from service settings
- Attaching every configured consumer
- Logging published events
- Serving health and session status over HTTP
"""

import asyncio
import signal
from datetime import datetime, timezone

from aiohttp import web

from gxsession.common.config import SessionConfig, SessionTarget
from gxsession.common.exceptions import GxSessionError, ServiceError
from gxsession.common.logging_setup import get_service_logger
from .events import EventKind, event_topic
from .manager import ModbusManager
from .socket_pool import SocketPool

logger = get_service_logger("session.service")


class SessionService:
    """
    Session Service

    Runs one ModbusManager for the lifetime of the process:
    - Socket pooling and unit multiplexing
    - Per-consumer info read and polling
    - Health endpoint with pool and registry stats
    """

    def __init__(self, config: SessionConfig):
        self.config = config
        settings = config.service

        self.manager = ModbusManager(
            socket_pool=SocketPool(
                connection_timeout=settings.connection_timeout_s,
                rebuild_on_new_unit=settings.rebuild_on_new_unit,
            ),
            settle_delay=settings.settle_delay_s,
        )

        self._start_time = datetime.now(timezone.utc)
        self._attached: list[SessionTarget] = []
        self._failed: dict[str, str] = {}
        self._event_counts: dict[str, int] = {}

        # Health server
        self._health_app: web.Application | None = None
        self._health_runner: web.AppRunner | None = None

        # State
        self._running = False
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start the service and block until shutdown is requested"""
        try:
            await self.setup()
        except Exception:
            logger.error("Session Service failed to start, releasing attached sessions")
            self._running = False
            await self.manager.close_all()
            await self._stop_health_server()
            raise

        self._setup_signal_handlers()

        await self._shutdown_event.wait()
        await self.stop()

    async def setup(self) -> None:
        """Attach consumers and start the health server"""
        logger.info("Starting Session Service")
        self._running = True

        await self.attach_targets()
        await self._start_health_server()

        logger.info(
            f"Session Service started ({len(self._attached)} consumers, "
            f"{len(self._failed)} failed)",
            extra={"consumer_count": len(self._attached)},
        )

    async def stop(self) -> None:
        """Detach every consumer and stop the health server"""
        logger.info("Stopping Session Service")
        self._running = False

        await self.manager.close_all()
        self._attached.clear()
        await self._stop_health_server()

        logger.info("Session Service stopped")

    def request_shutdown(self) -> None:
        logger.info("Received shutdown signal")
        self._shutdown_event.set()

    def _setup_signal_handlers(self) -> None:
        """Setup graceful shutdown signal handlers"""
        loop = asyncio.get_running_loop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
            except NotImplementedError:
                signal.signal(sig, lambda s, f: self.request_shutdown())

    async def attach_targets(self) -> None:
        """
        Attach every configured consumer concurrently.

        A target that fails to attach is logged and recorded; the others
        still attach.
        """
        results = await asyncio.gather(
            *(self._attach_target(target) for target in self.config.targets),
            return_exceptions=True,
        )

        for target, result in zip(self.config.targets, results):
            label = f"{target.host}:{target.port}:{target.unit_id}/{target.consumer.identity}"
            if isinstance(result, GxSessionError):
                self._failed[label] = str(result)
                logger.error(f"Failed to attach {label}: {result}")
            elif isinstance(result, BaseException):
                raise ServiceError(f"unexpected error attaching {label}: {result}", "session") from result
            else:
                self._attached.append(target)

    async def _attach_target(self, target: SessionTarget) -> None:
        consumer = target.consumer
        listeners = []
        for kind in EventKind:
            topic = event_topic(consumer.event_name, kind)
            listener = self._event_logger(topic)
            self.manager.events.on(topic, listener)
            listeners.append((topic, listener))

        try:
            await self.manager.create_connection(
                target.host,
                target.port,
                target.unit_id,
                consumer,
            )
        except GxSessionError:
            for topic, listener in listeners:
                self.manager.events.off(topic, listener)
            raise

    def _event_logger(self, topic: str):
        def log_event(readings: list[bytes]) -> None:
            self._event_counts[topic] = self._event_counts.get(topic, 0) + 1
            logger.debug(
                f"Event '{topic}': " + " ".join(buf.hex() for buf in readings),
                extra={"topic": topic, "buffers": len(readings)},
            )
        return log_event

    async def _start_health_server(self) -> None:
        """Start the health check HTTP server"""
        settings = self.config.service
        self._health_app = web.Application()
        self._health_app.router.add_get("/health", self._health_handler)
        self._health_app.router.add_get("/sessions", self._sessions_handler)

        self._health_runner = web.AppRunner(self._health_app)
        await self._health_runner.setup()

        site = web.TCPSite(self._health_runner, settings.health_host, settings.health_port)
        await site.start()

        logger.info(f"Health server started on {settings.health_host}:{settings.health_port}")

    async def _stop_health_server(self) -> None:
        """Stop the health check HTTP server"""
        if self._health_runner:
            await self._health_runner.cleanup()
            self._health_runner = None

    async def _health_handler(self, request: web.Request) -> web.Response:
        """Handle health check requests"""
        uptime = (datetime.now(timezone.utc) - self._start_time).total_seconds()
        pool = self.manager.pool
        connected = sum(
            1 for key in self.config.get_socket_keys()
            if pool.is_connected(*self._split_socket_key(key))
        )

        return web.json_response({
            "status": "healthy" if self._running else "unhealthy",
            "service": "session",
            "uptime": int(uptime),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "sockets": len(pool),
            "connected_sockets": connected,
            "clients": len(self.manager.registry),
            "consumers": len(self._attached),
            "failed": self._failed,
        })

    async def _sessions_handler(self, request: web.Request) -> web.Response:
        """Return pool and registry stats plus event counters"""
        stats = self.manager.get_stats()
        stats["events"] = dict(self._event_counts)
        return web.json_response(stats)

    @staticmethod
    def _split_socket_key(key: str) -> tuple[str, int]:
        host, _, port = key.rpartition(":")
        return host, int(port)

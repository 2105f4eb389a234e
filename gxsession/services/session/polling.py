"""
Polling Scheduler

Starts and stops the per-consumer poll timer. Each timer does one poll
right away and then one every refresh_interval seconds.
"""

from gxsession.common.logging_setup import get_service_logger
from gxsession.common.scheduler import ScheduledLoop
from .client_registry import Attachment, ClientRegistry
from .register_reader import RegisterReader

logger = get_service_logger("session.polling")


class PollingScheduler:
    """Owns the lifecycle of each attachment's ScheduledLoop"""

    def __init__(self, registry: ClientRegistry, reader: RegisterReader):
        self._registry = registry
        self._reader = reader
        self._draining: set[ScheduledLoop] = set()

    async def start(self, client_key: str, identity: str) -> bool:
        """
        (Re)start polling for one consumer.

        Returns:
            False if the consumer is not attached (anymore) or does not poll
        """
        attachment = self._registry.get_attachment(client_key, identity)
        if attachment is None:
            logger.warning(f"Cannot start polling: {identity} not attached to {client_key}")
            return False

        config = attachment.config
        if not config.polls:
            return False

        # Never leave two timers running for one consumer
        self.stop(attachment)

        async def poll_once() -> None:
            await self._reader.poll(client_key, identity)

        attachment.timer = ScheduledLoop(
            float(config.refresh_interval),
            poll_once,
            name=f"{client_key}/{identity}",
            run_immediately=True,
        )
        await attachment.timer.start()

        logger.info(
            f"Polling {len(config.reading_registries)} registries every "
            f"{config.refresh_interval}s for {config.label} on {client_key}"
        )
        return True

    def stop(self, attachment: Attachment) -> None:
        """Cancel the attachment's timer, if any"""
        timer = attachment.timer
        if timer is None:
            return
        logger.debug(f"Clearing polling timer for {attachment.identity}")
        timer.stop()
        attachment.timer = None

        # A cycle still in flight finishes on its own; hold it until then
        self._draining = {t for t in self._draining if not t.done}
        if not timer.done:
            self._draining.add(timer)

    async def drain(self) -> None:
        """Wait for stopped timers whose last cycle is still running"""
        draining, self._draining = self._draining, set()
        for timer in draining:
            await timer.join()

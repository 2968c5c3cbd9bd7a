"""Long-running receive loop for one lifecycle queue.

Runs as a background task inside the arq worker process, next to the cron
jobs. Deliveries are handled concurrently; a semaphore shared by all
consumers of the process bounds the number of transitions in flight.
"""

import asyncio
from typing import TYPE_CHECKING

from rpde_proxy.lifecycle.transition import run_transition
from rpde_proxy.main.logging import get_logger
from rpde_proxy.queues.names import QueueName

if TYPE_CHECKING:
    from rpde_proxy.lifecycle.context import LifecycleContext

logger = get_logger(__name__)


class QueueConsumer:
    def __init__(
        self,
        ctx: "LifecycleContext",
        queue_name: QueueName,
        semaphore: asyncio.Semaphore,
        idle_sleep_seconds: float = 1.0,
    ):
        self._ctx = ctx
        self.queue_name = queue_name
        self._queue = ctx.broker.get(queue_name)
        self._semaphore = semaphore
        self._idle_sleep_seconds = idle_sleep_seconds
        self._running = False
        self._in_flight: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def receive_one(self) -> bool:
        """Receive one delivery and start handling it.

        Returns False when nothing was visible on the queue.
        """
        await self._semaphore.acquire()
        try:
            delivery = await self._queue.receive()
        except BaseException:
            self._semaphore.release()
            raise

        if delivery is None:
            self._semaphore.release()
            return False

        task = asyncio.create_task(self._handle(delivery))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return True

    async def _handle(self, delivery) -> None:
        try:
            await run_transition(self._ctx, delivery)
        finally:
            self._semaphore.release()

    async def run_forever(self) -> None:
        logger.info("Starting queue consumer", extra={"queue": self.queue_name.value})
        self._running = True

        while self._running:
            try:
                if not await self.receive_one():
                    await asyncio.sleep(self._idle_sleep_seconds)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(
                    f"Error in consumer loop: {exc}",
                    extra={"queue": self.queue_name.value},
                )
                # Keep consuming; the queue may be briefly unreachable
                await asyncio.sleep(self._idle_sleep_seconds)

    async def stop(self) -> None:
        """Stop receiving and wait for in-flight transitions to finish."""
        logger.info("Stopping queue consumer", extra={"queue": self.queue_name.value})
        self._running = False
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

from rpde_proxy.lifecycle import resync
from rpde_proxy.lifecycle.context import LifecycleContext
from rpde_proxy.worker.worker import Worker


worker = Worker()

EVERY_TEN_SECONDS = set(range(0, 60, 10))
EVERY_FIVE_MINUTES = set(range(0, 60, 5))


# One run samples for about 14 s, so consecutive runs overlap. A later run keeps
# sampling after an earlier run has injected its purges, so it sees them and
# never injects a second purge for the same feed.
@worker.cron_job(second=EVERY_TEN_SECONDS, run_at_startup=True)
async def resync_dropped_feeds(lifecycle: LifecycleContext) -> list[str]:
    return await resync.resync_dropped_feeds(lifecycle)


@worker.cron_job(minute=EVERY_FIVE_MINUTES, second=0)
async def prune_expired_items(lifecycle: LifecycleContext) -> int:
    """Delete tombstones whose retention has passed."""
    return await lifecycle.store.prune_expired_items(lifecycle.clock())

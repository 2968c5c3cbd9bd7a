from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from rpde_proxy.feeds.feed_state import utcnow
from rpde_proxy.feeds.origin_client import OriginClient
from rpde_proxy.feeds.store import CacheStore
from rpde_proxy.main.config import OperatorControls, Settings, get_operator_controls
from rpde_proxy.queues.broker import QueueBroker


@dataclass
class LifecycleContext:
    """Collaborators shared by every transition handler in a worker process."""

    broker: QueueBroker
    store: CacheStore
    origin: OriginClient
    settings: Settings
    controls: Callable[[], OperatorControls] = get_operator_controls
    clock: Callable[[], datetime] = field(default=utcnow)

    def clear_cache_requested(self) -> bool:
        # Read fresh on every call so an operator flip is seen by the next message
        return self.controls().clear_proxy_cache

"""Show every feed message across the lifecycle queues.

Usage:
    python -m rpde_proxy.cli.feed_status [--name NAME] [--json]
"""

import argparse
import asyncio
import json
import sys

from rich.console import Console
from rich.table import Table

from rpde_proxy.lifecycle.status import QueueStatusEntry, collect_queue_status
from rpde_proxy.main.config import get_settings
from rpde_proxy.queues.broker import QueueBroker
from rpde_proxy.redis.connection import create_redis_client


async def fetch_status(name: str | None) -> list[QueueStatusEntry]:
    settings = get_settings()
    redis = create_redis_client(settings)
    try:
        return await collect_queue_status(QueueBroker.from_redis(redis, settings), name)
    finally:
        await redis.aclose()


def render_table(entries: list[QueueStatusEntry]) -> Table:
    table = Table(title="Feed lifecycle queues")
    table.add_column("Feed")
    table.add_column("Queue")
    table.add_column("Stage")
    table.add_column("Pages", justify="right")
    table.add_column("Items", justify="right")
    table.add_column("Visible at")
    table.add_column("Locked until")
    table.add_column("Deliveries", justify="right")
    table.add_column("Last error")

    for entry in entries:
        state = entry.feed_state
        table.add_row(
            state.name,
            entry.queue,
            state.stage.value,
            str(state.pages_read),
            str(state.items_read),
            entry.visible_at.isoformat() if entry.visible_at else "-",
            entry.locked_until.isoformat() if entry.locked_until else "-",
            str(entry.delivery_count),
            state.last_error_text or "",
        )
    return table


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Show feed lifecycle queue status")
    parser.add_argument("--name", default=None, help="Only show this feed")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    args = parser.parse_args(argv)

    entries = asyncio.run(fetch_status(args.name))

    if args.json:
        print(json.dumps([entry.to_json_dict() for entry in entries], indent=2))
    else:
        Console().print(render_table(entries))
    return 0


if __name__ == "__main__":
    sys.exit(main())

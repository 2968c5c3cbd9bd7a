"""Queue an origin RPDE feed for proxying.

Usage:
    python -m rpde_proxy.cli.register_feed <name> <url> [--dataset-url URL]
"""

import argparse
import asyncio
import json
import sys

from rpde_proxy.cli._runtime import lifecycle_context
from rpde_proxy.feeds.errors import NameConflictError
from rpde_proxy.lifecycle.intake import (
    RegistrationReceipt,
    RegistrationRejected,
    RegistrationRequest,
    request_registration,
)
from rpde_proxy.main.logging import get_logger

logger = get_logger(__name__)


async def register(request: RegistrationRequest) -> RegistrationReceipt:
    async with lifecycle_context() as ctx:
        return await request_registration(ctx, request)


def parse_args(argv: list[str] | None = None) -> RegistrationRequest:
    parser = argparse.ArgumentParser(description="Register an RPDE feed with the proxy")
    parser.add_argument("name", help="Feed name, used in the proxied feed url")
    parser.add_argument("url", help="First page of the origin feed")
    parser.add_argument("--dataset-url", default=None)
    parser.add_argument(
        "--deleted-item-retention-days",
        type=int,
        default=7,
        help="How long deleted items are kept before pruning (default: 7)",
    )
    args = parser.parse_args(argv)
    return RegistrationRequest(
        name=args.name,
        url=args.url,
        dataset_url=args.dataset_url,
        deleted_item_retention_days=args.deleted_item_retention_days,
    )


def main(argv: list[str] | None = None) -> int:
    """Entry point for CLI script."""
    request = parse_args(argv)
    try:
        receipt = asyncio.run(register(request))
    except (RegistrationRejected, NameConflictError) as e:
        logger.error(f"Registration refused: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Registration interrupted by user")
        return 130

    print(json.dumps(receipt.model_dump(mode="json", by_alias=True), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())

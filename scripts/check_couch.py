"""Quick check that the configured CouchDB server is reachable."""

import asyncio
import logging
import sys

from couchops.client import CouchClient
from couchops.config import get_couch_url, get_log_level


async def _check() -> int:
    async with CouchClient.from_env() as client:
        if not await client.is_available():
            print(f"  {get_couch_url()} is not reachable")
            return 1
        info = await client.server_info()
        print(f"  {info.get('couchdb', 'server')} {info.get('version', '(unknown version)')}")
        return 0


def main() -> None:
    """Check server connectivity and print its version."""
    logging.basicConfig(
        level=getattr(logging, get_log_level()),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    print(f"Checking CouchDB at {get_couch_url()}...")
    sys.exit(asyncio.run(_check()))


if __name__ == "__main__":
    main()

"""Run one webhook retry sweep by hand.

Useful after a receiver outage, without waiting for the beat schedule.
"""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

from hlsforge.container import ServiceContainer  # noqa: E402
from hlsforge.core.config import settings  # noqa: E402
from hlsforge.core.logging import setup_logging  # noqa: E402


async def run_sweep() -> int:
    setup_logging(level=settings.LOG_LEVEL, json_format=False)
    async with ServiceContainer(settings) as container:
        pending = await container.records.list_pending_callbacks(settings.CALLBACK_MAX_ATTEMPTS)
        print(f"Pending callbacks: {len(pending)}")
        result = await container.sweeper.sweep()

    print(f"  Attempted: {result.attempted}")
    print(f"  Delivered: {result.delivered}")
    print(f"  Failed:    {result.failed}")
    print(f"  Errors:    {result.errors}")
    return 0 if result.errors == 0 else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(run_sweep()))

"""
Synthetic Telemetry Seeder
Tracks downloads and version checks for fake clients over the last N days,
then runs the rollups so a development database has something to show.

Usage:
    python scripts/seed_events.py --days 30 --clients 500
"""

import argparse
import asyncio
import hashlib
import random
import sys
from datetime import datetime, time, timedelta, timezone
from pathlib import Path

from faker import Faker

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config.logging import configure_logging  # noqa: E402
from src.database.connection import (  # noqa: E402
    close_database,
    create_schema,
    get_db,
    init_database,
)
from src.rollups.aggregator import RollupAggregator  # noqa: E402
from src.rollups.version_updates import record_version_updates  # noqa: E402
from src.tracking.tracker import EventTracker  # noqa: E402

fake = Faker()
random.seed(42)
Faker.seed(42)

TOOLS = {
    "node": ("core:node", ["20.11.0", "20.11.1", "22.1.0"]),
    "python": ("core:python", ["3.11.9", "3.12.3", "3.13.0"]),
    "go": ("core:go", ["1.21.6", "1.22.2"]),
    "ripgrep": ("aqua:BurntSushi/ripgrep", ["14.1.0"]),
    "jq": ("aqua:jqlang/jq", ["1.7.1"]),
    "terraform": ("asdf:asdf-community/asdf-hashicorp", ["1.7.5", "1.8.0"]),
    "shellcheck": ("ubi:koalaman/shellcheck", ["0.10.0"]),
    "kubectl": (None, ["1.29.3", "1.30.0"]),
}
PLATFORMS = [("linux", "x64"), ("linux", "arm64"), ("macos", "arm64"), ("macos", "x64"), ("windows", "x64"), (None, None)]


def client_hash(address: str) -> str:
    return hashlib.sha256(address.encode("utf-8")).hexdigest()


async def seed(days: int, clients: int, events_per_day: int) -> None:
    hashes = [client_hash(fake.ipv4()) for _ in range(clients)]
    today = datetime.now(timezone.utc).date()
    aggregator = RollupAggregator()

    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        midnight = datetime.combine(day, time.min, tzinfo=timezone.utc)

        def clock():
            return midnight + timedelta(seconds=random.randint(0, 86399))

        tracker = EventTracker(clock=clock)
        recorded = 0
        async with get_db() as db:
            for _ in range(events_per_day):
                tool = random.choice(list(TOOLS))
                backend, versions = TOOLS[tool]
                os_name, arch = random.choice(PLATFORMS)
                result = await tracker.track_download(
                    db, tool, random.choice(versions), random.choice(hashes), os_name, arch, backend
                )
                recorded += not result.deduplicated
            for h in random.sample(hashes, k=max(1, clients // 3)):
                await tracker.track_version_check(db, h)
            await db.commit()

            if random.random() < 0.3:
                await record_version_updates(db, random.choice(list(TOOLS)), random.randint(1, 3), day=day)

        async with get_db() as db:
            await aggregator.compute_rollups(db, day)
            await aggregator.compute_version_stats(db, day)
            await aggregator.compute_mau_stats(db, day)

        print(f"   {day.isoformat()}: {recorded} downloads recorded")


def main():
    parser = argparse.ArgumentParser(description="Seed synthetic telemetry events")
    parser.add_argument("--days", type=int, default=30)
    parser.add_argument("--clients", type=int, default=500)
    parser.add_argument("--events-per-day", type=int, default=400)
    parser.add_argument("--database-url", default=None)
    args = parser.parse_args()

    configure_logging("WARNING")

    async def _run():
        await init_database(args.database_url)
        try:
            await create_schema()
            await seed(args.days, args.clients, args.events_per_day)
        finally:
            await close_database()

    print(f"Seeding {args.days} days for {args.clients:,} clients...")
    asyncio.run(_run())
    print("Done")


if __name__ == "__main__":
    main()

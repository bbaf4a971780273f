"""
Run Trigger

One-shot heartbeat, meant to be invoked by an external scheduler. Sends a
trigger message to the query queue and exits 0 on success, 1 on failure.

Usage:
    python -m relation_pipeline.run_trigger
    python -m relation_pipeline.run_trigger --from 2024-01-01 --to 2024-01-31
"""
import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv
load_dotenv()

from relation_pipeline.config import Settings, get_settings, create_redis_client, create_message_queue
from relation_pipeline.errors import QueueInitError
from relation_pipeline.models.envelope import TriggerRequest
from relation_pipeline.services import HandlerOutcome, Runner
from relation_pipeline.utils.datetime_utils import parse_date_bound
from relation_pipeline.workers import TriggerRole

logger = logging.getLogger(__name__)


async def main(settings: Settings, request: TriggerRequest = None) -> int:
    redis_client = create_redis_client(settings)
    runner = Runner(
        TriggerRole(settings, request),
        settings,
        queue_factory=lambda name: create_message_queue(name, redis_client, settings),
        worker_name="trigger",
    )

    try:
        outcome = await runner.start()
    except QueueInitError as e:
        logger.error(f"Trigger failed to start: {e}")
        return 1
    finally:
        await redis_client.aclose()

    return 0 if outcome is HandlerOutcome.SUCCESS else 1


def cli():
    parser = argparse.ArgumentParser(description="Trigger a document discovery run")
    parser.add_argument('--from', dest='from_date', type=parse_date_bound, help="Window start (YYYY-MM-DD)")
    parser.add_argument('--to', dest='to_date', type=parse_date_bound, help="Window end (YYYY-MM-DD)")
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    request = None
    if args.from_date or args.to_date:
        request = TriggerRequest(from_date=args.from_date, to_date=args.to_date)

    sys.exit(asyncio.run(main(settings, request)))


if __name__ == '__main__':
    cli()

"""
Run Pipeline Worker

Launches one continuous pipeline role that processes messages from its
Redis queue until SIGTERM/SIGINT.

Usage:
    python -m relation_pipeline.run_worker query
    python -m relation_pipeline.run_worker parser
    WORKER_ID=2 python -m relation_pipeline.run_worker scoring

Exits 1 when the database or a queue cannot be initialized.
"""
import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv
load_dotenv()

from relation_pipeline.config import (
    Settings,
    get_settings,
    create_postgres_pool,
    create_redis_client,
    create_message_queue,
)
from relation_pipeline.errors import QueueInitError
from relation_pipeline.repositories import DocumentRepository
from relation_pipeline.services import HttpAnalysisService, Runner
from relation_pipeline.workers import QueryRole, ParserRole, ScoringRole

logger = logging.getLogger(__name__)

CONTINUOUS_ROLES = {
    'query': QueryRole,
    'parser': ParserRole,
    'scoring': ScoringRole,
}


async def main(role_name: str, settings: Settings) -> int:
    """Main worker entry point"""
    # Get worker ID from environment (for scaling)
    worker_id = int(os.getenv('WORKER_ID', '1'))

    if role_name == 'scoring' and not settings.scoring_service_urls:
        logger.error("SCORING_SERVICES must be configured for the scoring worker")
        return 1

    # Connect to PostgreSQL
    try:
        db_pool = await create_postgres_pool(settings)
    except Exception as e:
        logger.error(f"Cannot connect to PostgreSQL: {e}")
        return 1

    redis_client = create_redis_client(settings)
    analysis = HttpAnalysisService(
        settings.doc_service_url,
        settings.scoring_service_urls,
        timeout=settings.http_timeout_seconds,
    )

    role = CONTINUOUS_ROLES[role_name](settings, analysis, DocumentRepository(db_pool))
    runner = Runner(
        role,
        settings,
        queue_factory=lambda name: create_message_queue(name, redis_client, settings),
        worker_name=f"{role_name}-worker-{worker_id}",
        install_signal_handlers=True,
    )

    logger.info(f"Starting {role_name} worker {worker_id}")

    try:
        await runner.start()
    except QueueInitError as e:
        logger.error(f"Worker failed to start: {e}")
        return 1
    finally:
        # Cleanup
        await analysis.close()
        await redis_client.aclose()
        await db_pool.close()
        logger.info("Worker shut down cleanly")

    return 0


def cli():
    parser = argparse.ArgumentParser(description="Run a continuous pipeline worker")
    parser.add_argument('role', choices=sorted(CONTINUOUS_ROLES))
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    sys.exit(asyncio.run(main(args.role, settings)))


if __name__ == '__main__':
    cli()

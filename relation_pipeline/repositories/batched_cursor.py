"""
Batched cursor - stream large result sets page by page

Every page is queried "as of" one snapshot timestamp captured when the scan
starts, so rows written while a long scan runs are not picked up and offsets
stay stable. The query receives ($1 timestamp, $2 offset, $3 batch size).

The connection is released after each page; the row handler is awaited for
every row before the next page is requested, so memory stays bounded to one
page and the producer never outruns the consumer.
"""
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import asyncpg

from relation_pipeline.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

RowHandler = Callable[[Any], Awaitable[None]]


class BatchedCursor:

    def __init__(
        self,
        db_pool: asyncpg.Pool,
        query: str,
        batch_size: int = 1000,
        timestamp: Optional[datetime] = None
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.db_pool = db_pool
        self.query = query
        self.batch_size = batch_size
        self.timestamp = timestamp
        self.pages_fetched = 0

    async def stream(self, row_handler: RowHandler) -> int:
        """
        Run the scan, awaiting row_handler(row) for every row

        Any page-fetch or handler error aborts the scan and propagates;
        there is no checkpoint, a retry starts again from offset 0.

        Returns:
            Number of rows handled
        """
        timestamp = self.timestamp or utc_now()
        offset = 0
        handled = 0
        self.pages_fetched = 0

        while True:
            async with self.db_pool.acquire() as conn:
                rows = await conn.fetch(self.query, timestamp, offset, self.batch_size)
            self.pages_fetched += 1

            for row in rows:
                await row_handler(row)
                handled += 1

            # A full page means there may be more rows
            if len(rows) < self.batch_size:
                return handled

            offset += self.batch_size
            logger.debug(f"Getting next batch: {offset} - {self.batch_size}")

"""
QueryRole - discover documents and fan out getDocument requests

Responsibilities:
- trigger:   ask the document service for documents published in a window
             (default: last `lookback_days` days), drop the ones already
             known to the store, enqueue one getDocument per new document
- reprocess: re-enqueue every stored document (re-drives stuck documents)

Any failed send cancels the sends still in flight and fails the whole
message; the redelivered trigger re-runs the window. The parser tolerates
duplicate getDocument messages.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Dict, List

from relation_pipeline.config.settings import Settings
from relation_pipeline.models.envelope import (
    DocumentRef,
    Envelope,
    RequestType,
    TriggerRequest,
    get_document_envelope,
)
from relation_pipeline.repositories.document_repository import DocumentRepository
from relation_pipeline.services.analysis_service import AnalysisService
from relation_pipeline.services.role_base import Handler, HandlerOutcome, PipelineRole
from relation_pipeline.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class QueryRole(PipelineRole):

    name = "query"

    def __init__(self, settings: Settings, analysis: AnalysisService, store: DocumentRepository):
        super().__init__()
        self.queue_in_name = settings.queue_trigger_query
        self.queue_out_name = settings.queue_new_ids
        self.analysis = analysis
        self.store = store
        self.lookback = timedelta(days=settings.lookback_days)
        self.batch_size = settings.db_batch_size
        self.send_concurrency = settings.query_send_concurrency

    @property
    def handlers(self) -> Dict[RequestType, Handler]:
        return {
            RequestType.TRIGGER: self.handle_trigger,
            RequestType.REPROCESS: self.handle_reprocess,
        }

    async def handle_trigger(self, envelope: Envelope) -> HandlerOutcome:
        request = TriggerRequest.from_data(envelope.data)
        now = utc_now()
        to_date = request.to_date or now
        from_date = request.from_date or now - self.lookback
        logger.info(f"Getting documents from {from_date:%Y-%m-%d} to {to_date:%Y-%m-%d}")

        documents = await self.analysis.discover_new_documents(from_date, to_date)
        if documents is None:
            logger.warning("Document discovery returned no list, nothing to queue")
            return HandlerOutcome.SUCCESS

        new_documents = await self.store.filter_unprocessed(documents)
        logger.info(f"Found {len(new_documents)} new documents ({len(documents)} discovered)")

        await self._enqueue_all(new_documents)
        logger.info("Done queuing messages for all documents")
        return HandlerOutcome.SUCCESS

    async def handle_reprocess(self, envelope: Envelope) -> HandlerOutcome:
        logger.info("Starting documents reprocessing request")

        async def row_handler(row):
            await self._enqueue_document(DocumentRef(source_id=row['source_id'], doc_id=row['doc_id']))

        count = await self.store.stream_all_documents(self.batch_size, row_handler)
        logger.info(f"Reprocessing request done, {count} documents sent for reprocessing")
        return HandlerOutcome.SUCCESS

    async def _enqueue_all(self, documents: List[DocumentRef]):
        """
        Send getDocument for every document, at most send_concurrency at once

        The first failed send cancels the rest; no send outlives this call.
        """
        semaphore = asyncio.Semaphore(self.send_concurrency)

        async def send(ref: DocumentRef):
            async with semaphore:
                await self._enqueue_document(ref)

        tasks = [asyncio.ensure_future(send(ref)) for ref in documents]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _enqueue_document(self, ref: DocumentRef):
        await self.queue_out.send_message(get_document_envelope(ref))
        logger.debug(f"Queued document {ref.doc_id} from source {ref.source_id}")

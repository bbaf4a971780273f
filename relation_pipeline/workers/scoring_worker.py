"""
ScoringRole - score sentences and persist relations

Request types on the scoring queue:
- score:           score one sentence; zero relations is a normal outcome
                   (acked, nothing stored), otherwise entities + relations
                   are upserted and a storage failure leaves the message
                   for redelivery
- lastItemToScore: mark the document PROCESSED. Queue order is not
                   guaranteed, so this is a liveness signal only, some of
                   the document's score messages may still be pending
- rescore:         re-emit every stored sentence as a score message onto
                   this role's own input queue (full re-scoring after a
                   model upgrade)
"""
import json
import logging
from typing import Dict

from relation_pipeline.config.settings import Settings
from relation_pipeline.models.document import DocumentStatus
from relation_pipeline.models.envelope import (
    DocumentRef,
    Envelope,
    RequestType,
    ScoreRequest,
    score_envelope,
)
from relation_pipeline.repositories.document_repository import DocumentRepository
from relation_pipeline.services.analysis_service import AnalysisService
from relation_pipeline.services.role_base import Handler, HandlerOutcome, PipelineRole

logger = logging.getLogger(__name__)


class ScoringRole(PipelineRole):

    name = "scoring"

    def __init__(self, settings: Settings, analysis: AnalysisService, store: DocumentRepository):
        super().__init__()
        self.queue_in_name = settings.queue_scoring
        self.analysis = analysis
        self.store = store
        self.batch_size = settings.db_batch_size

    @property
    def handlers(self) -> Dict[RequestType, Handler]:
        return {
            RequestType.SCORE: self.handle_score,
            RequestType.LAST_ITEM_TO_SCORE: self.handle_last_item,
            RequestType.RESCORE: self.handle_rescore,
        }

    async def handle_score(self, envelope: Envelope) -> HandlerOutcome:
        request = ScoreRequest.from_data(envelope.data)
        result = await self.analysis.score_sentence(request)

        if not result.has_relations:
            logger.info(
                f"Scorer returned no relations for sentence {request.sentence_index} "
                f"of document {request.doc_id}, deleting"
            )
            return HandlerOutcome.SUCCESS

        await self.store.upsert_sentence_and_relations(request, result)
        logger.debug(
            f"Stored {len(result.relations)} relations for sentence {request.sentence_index} "
            f"of document {request.doc_id}"
        )
        return HandlerOutcome.SUCCESS

    async def handle_last_item(self, envelope: Envelope) -> HandlerOutcome:
        ref = DocumentRef.from_data(envelope.data)
        await self.store.update_document_status(ref, DocumentStatus.PROCESSED)
        logger.info(f"Document {ref.doc_id} from source {ref.source_id} marked processed")
        return HandlerOutcome.SUCCESS

    async def handle_rescore(self, envelope: Envelope) -> HandlerOutcome:
        logger.info("Starting rescoring request")

        async def row_handler(row):
            request = ScoreRequest(
                source_id=row['source_id'],
                doc_id=row['doc_id'],
                sentence_index=row['sentence_index'],
                sentence=row['sentence'],
                mentions=json.loads(row['mentions_json']),
            )
            await self.queue_in.send_message(score_envelope(request))

        count = await self.store.stream_all_sentences(self.batch_size, row_handler)
        logger.info(f"Rescoring request done, {count} sentences sent for rescoring")
        return HandlerOutcome.SUCCESS

"""
ParserRole - split a document into sentences to score

Steps for each getDocument message:
1. Upsert the document as PROCESSING
2. Fetch its sentences + mentions from the document service
3. Filter sentences through the supported-entity allowlist and re-index
   the survivors 0..n-1 (this index is the durable sentence_index)
4. Send one score message per surviving sentence, in order
5. Send the lastItemToScore marker, then move the document to SCORING

Any failure leaves the message for redelivery, which re-runs all steps
(upserts are idempotent, duplicate score messages only cost extra scoring).
A document the service reports as gone is marked NOT_ACCESSIBLE and dropped.
"""
import logging
from typing import Dict, List

from relation_pipeline.config.settings import Settings
from relation_pipeline.errors import DocumentNotAccessibleError
from relation_pipeline.models.document import DocumentStatus
from relation_pipeline.models.envelope import (
    DocumentRef,
    Envelope,
    RequestType,
    ScoreRequest,
    last_item_envelope,
    score_envelope,
)
from relation_pipeline.models.scoring import Sentence
from relation_pipeline.repositories.document_repository import DocumentRepository
from relation_pipeline.services.analysis_service import AnalysisService
from relation_pipeline.services.entity_filter import SupportedEntities
from relation_pipeline.services.role_base import Handler, HandlerOutcome, PipelineRole

logger = logging.getLogger(__name__)


class ParserRole(PipelineRole):

    name = "parser"

    def __init__(self, settings: Settings, analysis: AnalysisService, store: DocumentRepository):
        super().__init__()
        self.queue_in_name = settings.queue_new_ids
        self.queue_out_name = settings.queue_scoring
        self.analysis = analysis
        self.store = store
        self.supported_entities = SupportedEntities.parse(settings.supported_entities)

    @property
    def handlers(self) -> Dict[RequestType, Handler]:
        return {RequestType.GET_DOCUMENT: self.handle_document}

    async def handle_document(self, envelope: Envelope) -> HandlerOutcome:
        ref = DocumentRef.from_data(envelope.data)
        logger.info(f"Processing document: source: {ref.source_id}, id: {ref.doc_id}")

        await self.store.upsert_document(ref, DocumentStatus.PROCESSING)

        try:
            sentences = await self.analysis.fetch_sentences(ref.doc_id, ref.source_id)
        except DocumentNotAccessibleError as e:
            logger.warning(f"{e}, marking as not accessible")
            await self.store.update_document_status(ref, DocumentStatus.NOT_ACCESSIBLE)
            return HandlerOutcome.SUCCESS

        requests = await self.filter_and_index(ref, sentences)
        logger.info(f"Found {len(requests)} relevant sentences for scoring ({len(sentences)} total)")

        for request in requests:
            await self.queue_out.send_message(score_envelope(request))
            logger.debug(f"Queued sentence {request.sentence_index} of document {ref.doc_id}")

        logger.info(f"Done queuing messages for document <{ref.doc_id}>")

        # Marks the end of this document's sentences for the scoring role
        await self.queue_out.send_message(last_item_envelope(ref))
        await self.store.update_document_status(ref, DocumentStatus.SCORING)
        return HandlerOutcome.SUCCESS

    async def filter_and_index(self, ref: DocumentRef, sentences: List[Sentence]) -> List[ScoreRequest]:
        """Keep sentences that satisfy the entity allowlist, indexed in filtered order"""
        kept = []
        for sentence in sentences:
            entities = await self.analysis.extract_entities(sentence)
            _, passes = self.supported_entities.apply(entities)
            if not passes:
                logger.debug(f"Filtering out a sentence without all required entity types: {sentence.text[:80]}")
                continue
            kept.append(sentence)

        return [
            ScoreRequest(
                source_id=ref.source_id,
                doc_id=ref.doc_id,
                sentence_index=index,
                sentence=sentence.text,
                mentions=sentence.mentions,
            )
            for index, sentence in enumerate(kept)
        ]

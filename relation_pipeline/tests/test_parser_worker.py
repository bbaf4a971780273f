"""
Test: ParserRole sentence filtering and scoring fan-out
"""

import pytest

from relation_pipeline.models.document import DocumentStatus
from relation_pipeline.models.envelope import (
    DocumentRef,
    Envelope,
    RequestType,
    ScoreRequest,
    get_document_envelope,
)
from relation_pipeline.models.scoring import Sentence
from relation_pipeline.services.role_base import HandlerOutcome
from relation_pipeline.workers.parser_worker import ParserRole

from .conftest import mention
from .fakes import StubAnalysisService


DOC = DocumentRef(1, '85500001')


@pytest.fixture
def role(settings, analysis, store, new_ids_queue, scoring_queue):
    role = ParserRole(settings, analysis, store)
    role.bind_queues(new_ids_queue, scoring_queue)
    return role


@pytest.mark.asyncio
async def test_document_is_split_into_filtered_score_messages(role, store, scoring_queue, sample_sentences):
    outcome = await role.process_message(get_document_envelope(DOC))

    assert outcome is HandlerOutcome.SUCCESS
    envelopes = scoring_queue.envelopes()
    assert [e.request_type for e in envelopes] == [
        RequestType.SCORE,
        RequestType.SCORE,
        RequestType.LAST_ITEM_TO_SCORE,
    ]

    requests = [ScoreRequest.from_data(e.data) for e in envelopes[:2]]
    assert [r.sentence_index for r in requests] == [0, 1]
    assert [r.sentence for r in requests] == [sample_sentences[0].text, sample_sentences[2].text]
    assert requests[1].mentions == sample_sentences[2].mentions
    assert DocumentRef.from_data(envelopes[2].data) == DOC

    assert store.status_history[DOC] == [DocumentStatus.PROCESSING, DocumentStatus.SCORING]


@pytest.mark.asyncio
async def test_document_without_relevant_sentences_still_sends_marker(settings, store, new_ids_queue, scoring_queue):
    analysis = StubAnalysisService(sentences={DOC.doc_id: []})
    role = ParserRole(settings, analysis, store)
    role.bind_queues(new_ids_queue, scoring_queue)

    assert await role.process_message(get_document_envelope(DOC)) is HandlerOutcome.SUCCESS
    assert [e.request_type for e in scoring_queue.envelopes()] == [RequestType.LAST_ITEM_TO_SCORE]
    assert store.documents[DOC].status is DocumentStatus.SCORING


@pytest.mark.asyncio
async def test_empty_allowlist_scores_every_sentence(settings, analysis, store, new_ids_queue, scoring_queue):
    settings = settings.model_copy(update={'supported_entities': ''})
    role = ParserRole(settings, analysis, store)
    role.bind_queues(new_ids_queue, scoring_queue)

    await role.process_message(get_document_envelope(DOC))

    assert len(scoring_queue.envelopes()) == 4


@pytest.mark.asyncio
async def test_sentence_missing_required_type_is_dropped(settings, store, new_ids_queue, scoring_queue):
    sentences = [
        Sentence("Only one type here.", [mention('entityType1', '1', 'x')]),
        Sentence("Unlisted type only.", [mention('entityType3', '2', 'y')]),
    ]
    analysis = StubAnalysisService(sentences={DOC.doc_id: sentences})
    role = ParserRole(settings, analysis, store)
    role.bind_queues(new_ids_queue, scoring_queue)

    await role.process_message(get_document_envelope(DOC))

    assert [e.request_type for e in scoring_queue.envelopes()] == [RequestType.LAST_ITEM_TO_SCORE]


@pytest.mark.asyncio
async def test_fetch_failure_retries(role, analysis, store, scoring_queue):
    analysis.fetch_error = ConnectionError("document service timeout")

    assert await role.process_message(get_document_envelope(DOC)) is HandlerOutcome.RETRY
    assert scoring_queue.envelopes() == []
    assert store.documents[DOC].status is DocumentStatus.PROCESSING


@pytest.mark.asyncio
async def test_send_failure_retries(role, scoring_queue, store):
    scoring_queue.send_error = ConnectionError("redis reset")
    scoring_queue.fail_after = 1

    assert await role.process_message(get_document_envelope(DOC)) is HandlerOutcome.RETRY
    assert store.documents[DOC].status is DocumentStatus.PROCESSING


@pytest.mark.asyncio
async def test_not_accessible_document_is_marked_and_dropped(role, analysis, store, scoring_queue):
    analysis.not_accessible.add(DOC.doc_id)

    assert await role.process_message(get_document_envelope(DOC)) is HandlerOutcome.SUCCESS
    assert store.documents[DOC].status is DocumentStatus.NOT_ACCESSIBLE
    assert scoring_queue.envelopes() == []


@pytest.mark.asyncio
async def test_redelivered_document_is_idempotent(role, store, scoring_queue):
    await role.process_message(get_document_envelope(DOC))
    await role.process_message(get_document_envelope(DOC))

    assert len(store.documents) == 1
    assert store.documents[DOC].status is DocumentStatus.SCORING
    indexes = [e.data['sentenceIndex'] for e in scoring_queue.envelopes() if e.request_type is RequestType.SCORE]
    assert indexes == [0, 1, 0, 1]


@pytest.mark.asyncio
async def test_missing_doc_id_is_dropped(role, store):
    outcome = await role.process_message(Envelope(RequestType.GET_DOCUMENT, {'sourceId': 1}))

    assert outcome is HandlerOutcome.SUCCESS
    assert store.documents == {}

"""
Pytest configuration for pipeline tests.

All collaborators are in-memory (see fakes.py); no Redis, PostgreSQL or
HTTP services are needed.
"""

import pytest

from relation_pipeline.config.settings import Settings
from relation_pipeline.models.envelope import DocumentRef
from relation_pipeline.models.scoring import (
    EntityRef,
    Relation,
    ScoredEntity,
    ScoringResult,
    Sentence,
)

from .fakes import InMemoryDocumentStore, InMemoryQueue, StubAnalysisService


def pytest_configure(config):
    """Configure pytest with asyncio marker."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as an async test."
    )


@pytest.fixture
def settings():
    """Settings isolated from the environment and .env files."""
    return Settings(
        _env_file=None,
        poll_interval_seconds=0.01,
        db_batch_size=2,
        supported_entities="entityType1:required;entityType2:required",
        scoring_services="SK::http://scorer.test/score",
    )


@pytest.fixture
def trigger_queue(settings):
    return InMemoryQueue(settings.queue_trigger_query)


@pytest.fixture
def new_ids_queue(settings):
    return InMemoryQueue(settings.queue_new_ids)


@pytest.fixture
def scoring_queue(settings):
    return InMemoryQueue(settings.queue_scoring)


@pytest.fixture
def store():
    return InMemoryDocumentStore()


def mention(entity_type: str, entity_id: str, value: str, start: int = 0) -> dict:
    return {
        'from': str(start),
        'to': str(start + len(value)),
        'id': entity_id,
        'type': entity_type,
        'value': value,
    }


@pytest.fixture
def sample_sentences():
    """Three sentences, two of which carry both required entity types."""
    return [
        Sentence(
            text="This is a sentence about entity-1 and entity-2.",
            mentions=[
                mention('entityType1', '1234', 'entity-1', 25),
                mention('entityType2', 'ABCD', 'entity-2', 38),
            ],
        ),
        Sentence(text="This sentence contains no mentions.", mentions=[]),
        Sentence(
            text="This sentence also contains entity-1 and entity-2.",
            mentions=[
                mention('entityType1', '1234', 'entity-1', 28),
                mention('entityType2', 'ABCD', 'entity-2', 41),
            ],
        ),
    ]


def two_relation_result(request=None) -> ScoringResult:
    e1 = ScoredEntity(type_id=1, id='1234', name='entity-1')
    e2 = ScoredEntity(type_id=2, id='ABCD', name='entity-2')
    return ScoringResult(
        entities=[e1, e2],
        relations=[
            Relation(
                entity1=EntityRef(1, '1234'),
                entity2=EntityRef(2, 'ABCD'),
                scoring_service_id='SERVICE1',
                model_version='0.1.0.1',
                relation='2',
                score=0.8,
            ),
            Relation(
                entity1=EntityRef(1, '1234'),
                entity2=EntityRef(2, 'ABCD'),
                scoring_service_id='SERVICE2',
                model_version='1',
                relation='1',
                score=0.99,
            ),
        ],
    )


@pytest.fixture
def sample_documents():
    return [DocumentRef(1, '85500001'), DocumentRef(2, '90800001')]


@pytest.fixture
def analysis(sample_documents, sample_sentences):
    return StubAnalysisService(
        documents=sample_documents,
        sentences={ref.doc_id: sample_sentences for ref in sample_documents},
        scoring=two_relation_result,
    )

"""
In-memory stand-ins for the pipeline's external collaborators.

- InMemoryQueue: visibility-timeout queue on a manual clock (advance())
- InMemoryDocumentStore: DocumentRepository semantics without PostgreSQL
- StubAnalysisService: canned documents, sentences and scoring results
- FakePool / FakeConnection: enough of asyncpg to exercise SQL call paths
"""
import json
import uuid
from collections import deque
from typing import Any, Callable, Dict, List, Optional

from relation_pipeline.errors import DocumentNotAccessibleError
from relation_pipeline.models.document import Document, DocumentStatus
from relation_pipeline.models.envelope import DocumentRef, Envelope, ScoreRequest
from relation_pipeline.models.scoring import ScoringResult, Sentence
from relation_pipeline.services.analysis_service import AnalysisService
from relation_pipeline.services.message_queue import QueueMessage


class InMemoryQueue:

    def __init__(self, name: str, visibility_timeout: int = 300):
        self.name = name
        self.visibility_timeout = visibility_timeout
        self.clock = 0.0
        self.pending = deque()
        self.messages: Dict[str, str] = {}
        self.inflight: Dict[str, float] = {}
        self.dequeues: Dict[str, int] = {}
        self.sent: List[Envelope] = []
        self.init_calls = 0
        self.init_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None
        self.fail_after: Optional[int] = None

    def advance(self, seconds: float):
        self.clock += seconds

    async def init(self):
        self.init_calls += 1
        if self.init_error:
            raise self.init_error

    def push_raw(self, body: str) -> str:
        message_id = uuid.uuid4().hex
        self.messages[message_id] = body
        self.pending.append(message_id)
        return message_id

    async def send_message(self, envelope: Envelope) -> str:
        if self.send_error and (self.fail_after is None or len(self.sent) >= self.fail_after):
            raise self.send_error
        self.sent.append(envelope)
        return self.push_raw(envelope.to_json())

    async def get_single_message(self) -> Optional[QueueMessage]:
        for message_id, visible_at in list(self.inflight.items()):
            if visible_at <= self.clock:
                del self.inflight[message_id]
                self.pending.appendleft(message_id)

        while self.pending:
            message_id = self.pending.popleft()
            if message_id not in self.messages:
                continue
            visible_at = self.clock + self.visibility_timeout
            self.inflight[message_id] = visible_at
            self.dequeues[message_id] = self.dequeues.get(message_id, 0) + 1
            return QueueMessage(
                message_id=message_id,
                body=self.messages[message_id],
                receipt=repr(visible_at),
                dequeue_count=self.dequeues[message_id],
            )
        return None

    async def delete_message(self, message: QueueMessage) -> bool:
        if message.message_id not in self.inflight:
            return message.message_id not in self.messages
        if self.inflight[message.message_id] != float(message.receipt):
            return False
        del self.inflight[message.message_id]
        del self.messages[message.message_id]
        self.dequeues.pop(message.message_id, None)
        return True

    async def count(self) -> int:
        return len(self.pending) + len(self.inflight)

    def envelopes(self) -> List[Envelope]:
        """Messages still in the queue, in delivery order"""
        ids = list(self.pending) + list(self.inflight)
        return [Envelope.from_json(self.messages[i]) for i in ids]


class InMemoryDocumentStore:

    def __init__(self):
        self.documents: Dict[DocumentRef, Document] = {}
        self.status_history: Dict[DocumentRef, List[DocumentStatus]] = {}
        self.sentences: Dict[tuple, Dict[str, Any]] = {}
        self.entities: Dict[str, Any] = {}
        self.relations: Dict[tuple, Any] = {}
        self.fail_relation_writes = 0
        self.relation_write_attempts = 0

    def _record(self, ref: DocumentRef, status: DocumentStatus):
        history = self.status_history.setdefault(ref, [])
        if not history or history[-1] != status:
            history.append(status)

    async def upsert_document(self, ref: DocumentRef, status: DocumentStatus, description: str = None):
        existing = self.documents.get(ref)
        if existing is None:
            self.documents[ref] = Document(ref.source_id, ref.doc_id, status, description)
        else:
            existing.status = DocumentStatus(max(existing.status, status))
            existing.description = description or existing.description
        self._record(ref, self.documents[ref].status)

    async def update_document_status(self, ref: DocumentRef, status: DocumentStatus) -> bool:
        existing = self.documents.get(ref)
        if existing is None:
            return False
        existing.status = DocumentStatus(max(existing.status, status))
        self._record(ref, existing.status)
        return True

    async def get_document(self, ref: DocumentRef) -> Optional[Document]:
        return self.documents.get(ref)

    async def filter_unprocessed(self, refs: List[DocumentRef]) -> List[DocumentRef]:
        return [r for r in dict.fromkeys(refs) if r not in self.documents]

    async def upsert_sentence_and_relations(self, request: ScoreRequest, result: ScoringResult):
        self.relation_write_attempts += 1
        if self.fail_relation_writes > 0:
            self.fail_relation_writes -= 1
            raise ConnectionError("database connection reset")

        key = (request.source_id, request.doc_id, request.sentence_index)
        self.sentences[key] = {
            'source_id': request.source_id,
            'doc_id': request.doc_id,
            'sentence_index': request.sentence_index,
            'sentence': request.sentence,
            'mentions_json': json.dumps(request.mentions),
        }
        for entity in result.entities:
            self.entities.setdefault(entity.id, entity)
        for relation in result.relations:
            self.relations[key + (
                relation.scoring_service_id,
                relation.model_version,
                relation.entity1.id,
                relation.entity2.id,
                relation.relation,
            )] = relation

    def add_sentence(self, source_id: int, doc_id: str, index: int, text: str, mentions=None):
        self.sentences[(source_id, doc_id, index)] = {
            'source_id': source_id,
            'doc_id': doc_id,
            'sentence_index': index,
            'sentence': text,
            'mentions_json': json.dumps(mentions or []),
        }

    async def stream_all_documents(self, batch_size: int, row_handler) -> int:
        rows = [
            {'source_id': d.source_id, 'doc_id': d.doc_id, 'status_id': int(d.status)}
            for d in self.documents.values()
        ]
        for row in rows:
            await row_handler(row)
        return len(rows)

    async def stream_all_sentences(self, batch_size: int, row_handler) -> int:
        rows = [self.sentences[k] for k in sorted(self.sentences)]
        for row in rows:
            await row_handler(row)
        return len(rows)


class StubAnalysisService(AnalysisService):

    def __init__(
        self,
        documents: Optional[List[DocumentRef]] = None,
        sentences: Optional[Dict[str, List[Sentence]]] = None,
        scoring: Optional[Callable[[ScoreRequest], ScoringResult]] = None
    ):
        self.documents = documents if documents is not None else []
        self.sentences = sentences or {}
        self.scoring = scoring or (lambda request: ScoringResult())
        self.not_accessible = set()
        self.fetch_error: Optional[Exception] = None
        self.discover_calls = []
        self.score_calls: List[ScoreRequest] = []

    async def discover_new_documents(self, from_date, to_date):
        self.discover_calls.append((from_date, to_date))
        return self.documents

    async def fetch_sentences(self, doc_id, source_id):
        if self.fetch_error:
            raise self.fetch_error
        if doc_id in self.not_accessible:
            raise DocumentNotAccessibleError(source_id, doc_id, 404)
        return self.sentences.get(doc_id, [])

    async def score_sentence(self, request):
        self.score_calls.append(request)
        return self.scoring(request)

    async def extract_entities(self, sentence):
        return list(sentence.mentions)


class _Acquire:

    def __init__(self, pool: 'FakePool'):
        self.pool = pool

    async def __aenter__(self):
        self.pool.acquired += 1
        self.pool.events.append('acquire')
        return self.pool.connection

    async def __aexit__(self, exc_type, exc, tb):
        self.pool.released += 1
        self.pool.events.append('release')
        return False


class _Transaction:

    def __init__(self, pool: 'FakePool'):
        self.pool = pool

    async def __aenter__(self):
        self.pool.events.append('begin')

    async def __aexit__(self, exc_type, exc, tb):
        self.pool.events.append('rollback' if exc_type else 'commit')
        return False


class FakeConnection:

    def __init__(self, pool: 'FakePool'):
        self.pool = pool

    async def fetch(self, query, *args):
        self.pool.calls.append(('fetch', query, args))
        return self.pool.fetch_handler(query, *args)

    async def fetchrow(self, query, *args):
        self.pool.calls.append(('fetchrow', query, args))
        rows = self.pool.fetch_handler(query, *args)
        return rows[0] if rows else None

    async def execute(self, query, *args):
        self.pool.calls.append(('execute', query, args))
        return self.pool.execute_result

    async def executemany(self, query, args):
        self.pool.calls.append(('executemany', query, list(args)))

    def transaction(self):
        return _Transaction(self.pool)


class FakePool:

    def __init__(self, fetch_handler=None, execute_result: str = "INSERT 0 1"):
        self.fetch_handler = fetch_handler or (lambda query, *args: [])
        self.execute_result = execute_result
        self.connection = FakeConnection(self)
        self.calls = []
        self.events = []
        self.acquired = 0
        self.released = 0

    def acquire(self):
        return _Acquire(self)

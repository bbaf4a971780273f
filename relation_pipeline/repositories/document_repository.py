"""
Document Repository - PostgreSQL storage for the pipeline

Tables (schema 'pipeline'):
- documents: one row per (source_id, doc_id) with processing status
- sentences: scored sentences with their mentions JSON
- entities:  deduplicated by external id
- relations: scored entity pairs per sentence and model version
- feedback:  free-form JSON feedback on extracted relations

Status writes use GREATEST(current, new) so no stage regresses a document.
Relation writes upsert on (sentence, service, model version, pair, relation)
so a retried scoring message lands exactly once.
"""
import json
import logging
from typing import Any, Awaitable, Callable, List, Optional, Union

import asyncpg

from relation_pipeline.models.document import Document, DocumentStatus
from relation_pipeline.models.envelope import DocumentRef, ScoreRequest
from relation_pipeline.models.scoring import ModelVersion, ScoringResult
from .batched_cursor import BatchedCursor

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE SCHEMA IF NOT EXISTS pipeline;

CREATE TABLE IF NOT EXISTS pipeline.documents (
    source_id INTEGER NOT NULL,
    doc_id TEXT NOT NULL,
    description TEXT,
    status_id SMALLINT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (source_id, doc_id)
);

CREATE TABLE IF NOT EXISTS pipeline.sentences (
    source_id INTEGER NOT NULL,
    doc_id TEXT NOT NULL,
    sentence_index INTEGER NOT NULL,
    sentence TEXT NOT NULL,
    mentions_json TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (source_id, doc_id, sentence_index)
);

CREATE TABLE IF NOT EXISTS pipeline.entities (
    id TEXT PRIMARY KEY,
    type_id INTEGER NOT NULL,
    name TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pipeline.relations (
    id BIGSERIAL PRIMARY KEY,
    source_id INTEGER NOT NULL,
    doc_id TEXT NOT NULL,
    sentence_index INTEGER NOT NULL,
    scoring_service_id TEXT NOT NULL,
    model_version TEXT NOT NULL,
    entity1_type_id INTEGER NOT NULL,
    entity1_id TEXT NOT NULL,
    entity2_type_id INTEGER NOT NULL,
    entity2_id TEXT NOT NULL,
    relation TEXT NOT NULL,
    score REAL NOT NULL,
    data_json TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (source_id, doc_id, sentence_index, scoring_service_id, model_version,
            entity1_id, entity2_id, relation)
);

CREATE INDEX IF NOT EXISTS relations_model_idx
    ON pipeline.relations (scoring_service_id, model_version);

CREATE TABLE IF NOT EXISTS pipeline.feedback (
    id BIGSERIAL PRIMARY KEY,
    data_json TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

STREAM_DOCUMENTS_SQL = """
    SELECT source_id, doc_id, status_id
    FROM pipeline.documents
    WHERE created_at <= $1
    ORDER BY source_id, doc_id
    OFFSET $2 LIMIT $3
"""

STREAM_SENTENCES_SQL = """
    SELECT source_id, doc_id, sentence_index, sentence, mentions_json
    FROM pipeline.sentences
    WHERE created_at <= $1
    ORDER BY source_id, doc_id, sentence_index
    OFFSET $2 LIMIT $3
"""

GRAPH_NODES_SQL = """
    SELECT e.id, e.type_id, e.name
    FROM pipeline.entities e
    WHERE EXISTS (
        SELECT 1 FROM pipeline.relations r
        WHERE r.scoring_service_id = $1 AND r.model_version = $2
          AND (r.entity1_id = e.id OR r.entity2_id = e.id)
    )
    ORDER BY e.id
"""

GRAPH_EDGES_SQL = """
    SELECT entity1_type_id, entity1_id, entity2_type_id, entity2_id, relation,
           COUNT(*) AS sentence_count, AVG(score) AS score
    FROM pipeline.relations
    WHERE scoring_service_id = $1 AND model_version = $2
    GROUP BY entity1_type_id, entity1_id, entity2_type_id, entity2_id, relation
    ORDER BY entity1_id, entity2_id, relation
"""

RowHandler = Callable[[Any], Awaitable[None]]
GraphRowHandler = Callable[[str, Any], Awaitable[None]]


class DocumentRepository:
    """
    Repository for documents, sentences and relations

    Every operation acquires its own connection from the pool and releases
    it on exit; bulk readers release between pages (see BatchedCursor).
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def ensure_schema(self):
        """Create tables if missing (idempotent)"""
        async with self.db_pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)

    # =========================================================================
    # DOCUMENTS
    # =========================================================================

    async def upsert_document(
        self,
        ref: DocumentRef,
        status: DocumentStatus,
        description: Optional[str] = None
    ) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO pipeline.documents (source_id, doc_id, description, status_id)
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (source_id, doc_id) DO UPDATE SET
                    description = COALESCE(EXCLUDED.description, pipeline.documents.description),
                    status_id = GREATEST(pipeline.documents.status_id, EXCLUDED.status_id),
                    updated_at = NOW()
            """, ref.source_id, ref.doc_id, description, int(status))

    async def update_document_status(self, ref: DocumentRef, status: DocumentStatus) -> bool:
        """
        Move a document forward to `status`

        Returns:
            False if the document does not exist
        """
        async with self.db_pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE pipeline.documents
                SET status_id = GREATEST(status_id, $3),
                    updated_at = NOW()
                WHERE source_id = $1 AND doc_id = $2
            """, ref.source_id, ref.doc_id, int(status))

        # asyncpg returns the command tag, e.g. "UPDATE 1"
        updated = result.split()[-1] != '0'
        if not updated:
            logger.warning(f"Status update to {status.name} matched no document {ref}")
        return updated

    async def get_document(self, ref: DocumentRef) -> Optional[Document]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT source_id, doc_id, description, status_id, created_at, updated_at
                FROM pipeline.documents
                WHERE source_id = $1 AND doc_id = $2
            """, ref.source_id, ref.doc_id)

        if not row:
            return None

        return Document(
            source_id=row['source_id'],
            doc_id=row['doc_id'],
            status=DocumentStatus(row['status_id']),
            description=row['description'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    async def filter_unprocessed(self, refs: List[DocumentRef]) -> List[DocumentRef]:
        """
        Keep only documents not yet known to the pipeline

        One round-trip for the whole batch; input order is preserved and
        duplicates are collapsed.
        """
        refs = list(dict.fromkeys(refs))
        if not refs:
            return []

        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT d.source_id, d.doc_id
                FROM unnest($1::int[], $2::text[]) WITH ORDINALITY AS d(source_id, doc_id, ord)
                WHERE NOT EXISTS (
                    SELECT 1 FROM pipeline.documents p
                    WHERE p.source_id = d.source_id AND p.doc_id = d.doc_id
                )
                ORDER BY d.ord
            """, [r.source_id for r in refs], [r.doc_id for r in refs])

        return [DocumentRef(source_id=row['source_id'], doc_id=row['doc_id']) for row in rows]

    # =========================================================================
    # SENTENCES / RELATIONS
    # =========================================================================

    async def upsert_sentence_and_relations(self, request: ScoreRequest, result: ScoringResult) -> None:
        """Persist a scored sentence, its entities and relations in one transaction"""
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("""
                    INSERT INTO pipeline.sentences
                        (source_id, doc_id, sentence_index, sentence, mentions_json)
                    VALUES ($1, $2, $3, $4, $5)
                    ON CONFLICT (source_id, doc_id, sentence_index) DO UPDATE SET
                        sentence = EXCLUDED.sentence,
                        mentions_json = EXCLUDED.mentions_json,
                        updated_at = NOW()
                """,
                    request.source_id,
                    request.doc_id,
                    request.sentence_index,
                    request.sentence,
                    json.dumps(request.mentions),
                )

                if result.entities:
                    await conn.executemany("""
                        INSERT INTO pipeline.entities (id, type_id, name)
                        VALUES ($1, $2, $3)
                        ON CONFLICT (id) DO NOTHING
                    """, [(e.id, e.type_id, e.name) for e in result.entities])

                if result.relations:
                    await conn.executemany("""
                        INSERT INTO pipeline.relations
                            (source_id, doc_id, sentence_index, scoring_service_id, model_version,
                             entity1_type_id, entity1_id, entity2_type_id, entity2_id,
                             relation, score, data_json)
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                        ON CONFLICT (source_id, doc_id, sentence_index, scoring_service_id,
                                     model_version, entity1_id, entity2_id, relation)
                        DO UPDATE SET score = EXCLUDED.score, data_json = EXCLUDED.data_json
                    """, [
                        (
                            request.source_id,
                            request.doc_id,
                            request.sentence_index,
                            r.scoring_service_id,
                            r.model_version,
                            r.entity1.type_id,
                            r.entity1.id,
                            r.entity2.type_id,
                            r.entity2.id,
                            r.relation,
                            r.score,
                            json.dumps(r.data) if r.data is not None else None,
                        )
                        for r in result.relations
                    ])

    # =========================================================================
    # BULK READERS
    # =========================================================================

    async def stream_all_documents(self, batch_size: int, row_handler: RowHandler) -> int:
        """Await row_handler(row) for every document; rows have source_id, doc_id, status_id"""
        cursor = BatchedCursor(self.db_pool, STREAM_DOCUMENTS_SQL, batch_size=batch_size)
        return await cursor.stream(row_handler)

    async def stream_all_sentences(self, batch_size: int, row_handler: RowHandler) -> int:
        """Await row_handler(row) for every stored sentence"""
        cursor = BatchedCursor(self.db_pool, STREAM_SENTENCES_SQL, batch_size=batch_size)
        return await cursor.stream(row_handler)

    # =========================================================================
    # GRAPH EXPORT / FEEDBACK
    # =========================================================================

    async def get_model_versions(self) -> List[ModelVersion]:
        """Every (scoring service, model version) pair with stored relations"""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT DISTINCT scoring_service_id, model_version
                FROM pipeline.relations
                ORDER BY scoring_service_id, model_version
            """)

        return [
            ModelVersion(scoring_service_id=row['scoring_service_id'], model_version=row['model_version'])
            for row in rows
        ]

    async def stream_graph(
        self,
        scoring_service_id: str,
        model_version: str,
        row_handler: GraphRowHandler
    ) -> int:
        """
        Export the relation graph of one model

        Awaits row_handler('nodes', row) for every entity that takes part in
        one of the model's relations, then row_handler('edges', row) for every
        (entity1, entity2, relation) edge with its sentence count and mean score.

        Returns:
            Number of rows handled
        """
        async with self.db_pool.acquire() as conn:
            nodes = await conn.fetch(GRAPH_NODES_SQL, scoring_service_id, model_version)
            edges = await conn.fetch(GRAPH_EDGES_SQL, scoring_service_id, model_version)

        for row in nodes:
            await row_handler('nodes', row)
        for row in edges:
            await row_handler('edges', row)

        logger.info(
            f"Exported graph {scoring_service_id}/{model_version}: "
            f"{len(nodes)} nodes, {len(edges)} edges"
        )
        return len(nodes) + len(edges)

    async def add_feedback(self, feedback: Union[str, dict, list]) -> None:
        """
        Store a feedback document

        Raises:
            ValueError: feedback is a string that is not valid JSON
        """
        if isinstance(feedback, str):
            json.loads(feedback)
            data_json = feedback
        else:
            data_json = json.dumps(feedback)

        async with self.db_pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO pipeline.feedback (data_json)
                VALUES ($1)
            """, data_json)

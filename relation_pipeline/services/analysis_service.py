"""
Analysis service port - the pipeline's view of the NLP services

Four operations:
- discover_new_documents: document ids published in a date window
- fetch_sentences:        a document's sentences with mention spans
- score_sentence:         entities + scored relations for one sentence
- extract_entities:       entity mentions of a raw sentence

HttpAnalysisService talks to the document service and to one or more
scoring services (configured as "ID::url;ID2::url2").
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from relation_pipeline.errors import (
    AnalysisFormatError,
    AnalysisServiceError,
    DocumentNotAccessibleError,
)
from relation_pipeline.models.envelope import DocumentRef, ScoreRequest
from relation_pipeline.models.scoring import (
    Relation,
    ScoredEntity,
    ScoringResult,
    Sentence,
)

logger = logging.getLogger(__name__)

NOT_ACCESSIBLE_STATUS_CODES = (404, 410)


class AnalysisService(ABC):
    """Interface consumed by the query, parser and scoring roles"""

    @abstractmethod
    async def discover_new_documents(self, from_date: datetime, to_date: datetime) -> Optional[List[DocumentRef]]:
        ...

    @abstractmethod
    async def fetch_sentences(self, doc_id: str, source_id: int) -> List[Sentence]:
        ...

    @abstractmethod
    async def score_sentence(self, request: ScoreRequest) -> ScoringResult:
        ...

    @abstractmethod
    async def extract_entities(self, sentence: Sentence) -> List[Dict[str, Any]]:
        ...

    async def close(self):
        pass


class HttpAnalysisService(AnalysisService):
    """
    HTTP implementation

    Endpoints:
        GET  {doc_service_url}/documents?from=YYYY-MM-DD&to=YYYY-MM-DD
        GET  {doc_service_url}/doc/{sourceId}/{docId}
        POST {scoring url}     (body: score request payload)
    """

    def __init__(
        self,
        doc_service_url: str,
        scoring_services: Dict[str, str],
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.doc_service_url = doc_service_url.rstrip('/')
        self.scoring_services = scoring_services
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def close(self):
        await self.client.aclose()

    async def _get_json(self, url: str, params: dict = None) -> Any:
        try:
            response = await self.client.get(url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            raise AnalysisServiceError(f"GET {url} failed: {e}") from e
        except ValueError as e:
            raise AnalysisServiceError(f"GET {url} returned invalid JSON: {e}") from e

    async def discover_new_documents(self, from_date: datetime, to_date: datetime) -> Optional[List[DocumentRef]]:
        logger.info(f"Querying documents from {from_date:%Y-%m-%d} to {to_date:%Y-%m-%d}")
        payload = await self._get_json(
            f"{self.doc_service_url}/documents",
            params={'from': f"{from_date:%Y-%m-%d}", 'to': f"{to_date:%Y-%m-%d}"},
        )
        if isinstance(payload, dict):
            payload = payload.get('documents')
        if not isinstance(payload, list):
            logger.warning(f"Document service returned {type(payload).__name__}, expected a list")
            return None

        refs = []
        for item in payload:
            try:
                refs.append(DocumentRef(source_id=int(item['sourceId']), doc_id=str(item['docId'])))
            except (KeyError, TypeError, ValueError):
                logger.warning(f"Skipping malformed document id: {item!r}")
        return refs

    async def fetch_sentences(self, doc_id: str, source_id: int) -> List[Sentence]:
        url = f"{self.doc_service_url}/doc/{source_id}/{doc_id}"
        try:
            response = await self.client.get(url)
        except httpx.HTTPError as e:
            raise AnalysisServiceError(f"GET {url} failed: {e}") from e

        if response.status_code in NOT_ACCESSIBLE_STATUS_CODES:
            raise DocumentNotAccessibleError(source_id, doc_id, response.status_code)

        try:
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            raise AnalysisServiceError(f"GET {url} failed: {e}") from e
        except ValueError as e:
            raise AnalysisServiceError(f"GET {url} returned invalid JSON: {e}") from e

        sentences = payload.get('sentences') if isinstance(payload, dict) else None
        if not isinstance(sentences, list):
            raise AnalysisServiceError(f"Document {doc_id} response has no sentences list")

        return [Sentence.from_dict(s) for s in sentences]

    async def score_sentence(self, request: ScoreRequest) -> ScoringResult:
        if not request.sentence or request.mentions is None:
            raise AnalysisFormatError("received data is not in the correct format")
        if not self.scoring_services:
            raise AnalysisServiceError("No scoring services configured")

        result = ScoringResult()
        for service_id, url in self.scoring_services.items():
            try:
                response = await self.client.post(url, json=request.to_data())
                response.raise_for_status()
                payload = response.json()
            except httpx.HTTPError as e:
                raise AnalysisServiceError(f"Scoring service {service_id} failed: {e}") from e
            except ValueError as e:
                raise AnalysisServiceError(f"Scoring service {service_id} returned invalid JSON: {e}") from e

            try:
                result.merge(ScoringResult(
                    entities=[ScoredEntity.from_dict(e) for e in payload.get('entities') or []],
                    relations=[
                        Relation.from_dict(r, default_service_id=service_id)
                        for r in payload.get('relations') or []
                    ],
                ))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                raise AnalysisServiceError(f"Scoring service {service_id} returned malformed result: {e}") from e

        return result

    async def extract_entities(self, sentence: Sentence) -> List[Dict[str, Any]]:
        # Mentions are already annotated by the document service
        return list(sentence.mentions)

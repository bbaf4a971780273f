"""
Domain Models - Storage-agnostic data structures

- Envelope / RequestType: queue wire unit
- DocumentRef, TriggerRequest, ScoreRequest: typed request payloads
- Document / DocumentStatus: document processing state
- Sentence, ScoredEntity, Relation, ScoringResult: analysis results
"""

from .envelope import (
    Envelope,
    RequestType,
    DocumentRef,
    TriggerRequest,
    ScoreRequest,
    trigger_envelope,
    get_document_envelope,
    score_envelope,
    last_item_envelope,
)
from .document import Document, DocumentStatus
from .scoring import Sentence, EntityRef, ScoredEntity, Relation, ScoringResult, ModelVersion

__all__ = [
    # Queue messages
    'Envelope',
    'RequestType',
    'DocumentRef',
    'TriggerRequest',
    'ScoreRequest',
    'trigger_envelope',
    'get_document_envelope',
    'score_envelope',
    'last_item_envelope',

    # Documents
    'Document',
    'DocumentStatus',

    # Analysis results
    'Sentence',
    'EntityRef',
    'ScoredEntity',
    'Relation',
    'ScoringResult',
    'ModelVersion',
]

"""
Message envelope and typed request records

Wire format (JSON, camelCase payload keys):
    {"requestType": "score", "data": {"sourceId": 1, "docId": "855", ...}}

The transport never validates `data`; each consuming role parses it into one
of the request records below, which raise MalformedMessageError on bad input.
"""
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from relation_pipeline.errors import MalformedMessageError
from relation_pipeline.utils.datetime_utils import parse_date_bound


class RequestType(str, Enum):
    """Closed set of request types exchanged between roles"""
    TRIGGER = "trigger"
    GET_DOCUMENT = "getDocument"
    SCORE = "score"
    LAST_ITEM_TO_SCORE = "lastItemToScore"
    RESCORE = "rescore"
    REPROCESS = "reprocess"


@dataclass
class Envelope:
    """
    The unit exchanged on every queue.

    `raw_request_type` keeps the original tag when it is not a known
    RequestType, so the receiving role can log it before dropping.
    """
    request_type: Optional[RequestType]
    data: Dict[str, Any] = field(default_factory=dict)
    raw_request_type: Optional[str] = None

    def to_json(self) -> str:
        return json.dumps({
            'requestType': self.request_type.value if self.request_type else self.raw_request_type,
            'data': self.data,
        })

    @classmethod
    def from_json(cls, body: str) -> 'Envelope':
        """
        Parse a queue message body.

        Unknown request types are kept (request_type=None) so routing can
        treat them as a single handled branch; only unparsable bodies raise.
        """
        try:
            payload = json.loads(body)
        except (TypeError, ValueError) as e:
            raise MalformedMessageError(f"Message body is not valid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise MalformedMessageError("Message body is not a JSON object")

        raw_type = payload.get('requestType')
        data = payload.get('data') or {}
        if not isinstance(data, dict):
            raise MalformedMessageError("Message data is not a JSON object")

        try:
            request_type = RequestType(raw_type)
        except ValueError:
            request_type = None

        return cls(request_type=request_type, data=data, raw_request_type=raw_type)

    @property
    def type_name(self) -> str:
        return self.request_type.value if self.request_type else str(self.raw_request_type)


def _require(data: Dict[str, Any], key: str) -> Any:
    value = data.get(key)
    if value is None or value == '':
        raise MalformedMessageError(f"Message data is missing '{key}'")
    return value


def _as_int(value: Any, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedMessageError(f"'{key}' must be an integer, got {value!r}")


@dataclass(frozen=True)
class DocumentRef:
    """(source_id, doc_id) - the document key used everywhere"""
    source_id: int
    doc_id: str

    def to_data(self) -> Dict[str, Any]:
        return {'sourceId': self.source_id, 'docId': self.doc_id}

    @classmethod
    def from_data(cls, data: Dict[str, Any]) -> 'DocumentRef':
        return cls(
            source_id=_as_int(_require(data, 'sourceId'), 'sourceId'),
            doc_id=str(_require(data, 'docId')),
        )


@dataclass
class TriggerRequest:
    """Optional explicit discovery window carried by a trigger message"""
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None

    def to_data(self) -> Dict[str, Any]:
        data = {}
        if self.from_date:
            data['from'] = self.from_date.isoformat()
        if self.to_date:
            data['to'] = self.to_date.isoformat()
        return data

    @classmethod
    def from_data(cls, data: Dict[str, Any]) -> 'TriggerRequest':
        try:
            return cls(
                from_date=parse_date_bound(data.get('from')),
                to_date=parse_date_bound(data.get('to')),
            )
        except ValueError as e:
            raise MalformedMessageError(f"Invalid trigger window: {e}") from e


@dataclass
class ScoreRequest:
    """One filtered sentence of a document, ready for scoring"""
    source_id: int
    doc_id: str
    sentence_index: int
    sentence: str
    mentions: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def document(self) -> DocumentRef:
        return DocumentRef(self.source_id, self.doc_id)

    def to_data(self) -> Dict[str, Any]:
        return {
            'sourceId': self.source_id,
            'docId': self.doc_id,
            'sentenceIndex': self.sentence_index,
            'sentence': self.sentence,
            'mentions': self.mentions,
        }

    @classmethod
    def from_data(cls, data: Dict[str, Any]) -> 'ScoreRequest':
        ref = DocumentRef.from_data(data)
        if data.get('sentenceIndex') is None:
            raise MalformedMessageError("Message data is missing 'sentenceIndex'")
        mentions = data.get('mentions')
        if not isinstance(mentions, list):
            raise MalformedMessageError("'mentions' must be a list")
        return cls(
            source_id=ref.source_id,
            doc_id=ref.doc_id,
            sentence_index=_as_int(data['sentenceIndex'], 'sentenceIndex'),
            sentence=str(_require(data, 'sentence')),
            mentions=mentions,
        )


def trigger_envelope(request: Optional[TriggerRequest] = None) -> Envelope:
    return Envelope(RequestType.TRIGGER, (request or TriggerRequest()).to_data())


def get_document_envelope(ref: DocumentRef) -> Envelope:
    return Envelope(RequestType.GET_DOCUMENT, ref.to_data())


def score_envelope(request: ScoreRequest) -> Envelope:
    return Envelope(RequestType.SCORE, request.to_data())


def last_item_envelope(ref: DocumentRef) -> Envelope:
    return Envelope(RequestType.LAST_ITEM_TO_SCORE, ref.to_data())

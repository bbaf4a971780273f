"""
Sentence and scoring models

Sentence: one sentence of a document plus its mention spans, as returned by
the analysis service (mentions are kept as plain dicts and stored verbatim).

ScoringResult: entities and scored relations for one sentence.

ModelVersion: one scoring model whose relations form an exportable graph.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Sentence:
    text: str
    mentions: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Sentence':
        # Document service uses 'sentence' for the text; accept 'text' too
        text = data.get('sentence')
        if text is None:
            text = data.get('text', '')
        return cls(text=text, mentions=list(data.get('mentions') or []))


@dataclass(frozen=True)
class EntityRef:
    type_id: int
    id: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EntityRef':
        return cls(type_id=int(data['typeId']), id=str(data['id']))


@dataclass
class ScoredEntity:
    """Entity found in a sentence; deduplicated by external id when stored"""
    type_id: int
    id: str
    name: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScoredEntity':
        return cls(type_id=int(data['typeId']), id=str(data['id']), name=data.get('name') or '')


@dataclass
class Relation:
    """One scored edge between two entities, attributed to a model version"""
    entity1: EntityRef
    entity2: EntityRef
    scoring_service_id: str
    model_version: str
    relation: str
    score: float
    data: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_service_id: Optional[str] = None) -> 'Relation':
        """
        Raises:
            KeyError: entities, score, model version, service id or relation type missing
        """
        # Older scorers send 'relation', newer ones 'relationType'
        relation = data.get('relationType')
        if relation is None:
            relation = data.get('relation')
        if relation is None or relation == '':
            raise KeyError('relationType')

        model_version = data.get('modelVersion')
        if model_version is None or model_version == '':
            raise KeyError('modelVersion')

        service_id = data.get('scoringServiceId') or default_service_id
        if not service_id:
            raise KeyError('scoringServiceId')

        return cls(
            entity1=EntityRef.from_dict(data['entity1']),
            entity2=EntityRef.from_dict(data['entity2']),
            scoring_service_id=str(service_id),
            model_version=str(model_version),
            relation=str(relation),
            score=float(data['score']),
            data=data.get('data'),
        )


@dataclass
class ScoringResult:
    entities: List[ScoredEntity] = field(default_factory=list)
    relations: List[Relation] = field(default_factory=list)

    @property
    def has_relations(self) -> bool:
        return bool(self.relations)

    def merge(self, other: 'ScoringResult') -> None:
        """Merge another service's result, keeping the first entity per id"""
        known = {e.id for e in self.entities}
        for entity in other.entities:
            if entity.id not in known:
                self.entities.append(entity)
                known.add(entity.id)
        self.relations.extend(other.relations)


@dataclass(frozen=True)
class ModelVersion:
    """A (scoring service, model version) pair that has stored relations"""
    scoring_service_id: str
    model_version: str

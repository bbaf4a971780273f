"""
Supported-entity filter for the parser role

Config string: "type[:required];type[:required]..."
    "gene:required;disease"  → only genes and diseases are kept, and a
                               sentence without any gene is dropped
An empty string disables filtering (every sentence passes).
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SupportedEntities:
    allowed: FrozenSet[str] = field(default_factory=frozenset)
    required: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def parse(cls, config: str) -> 'SupportedEntities':
        allowed, required = set(), set()
        for entry in (config or '').split(';'):
            entry = entry.strip()
            if not entry:
                continue
            parts = [p.strip() for p in entry.split(':')]
            entity_type = parts[0]
            if not entity_type:
                continue
            allowed.add(entity_type)
            if len(parts) > 1 and parts[1] == 'required':
                required.add(entity_type)
        return cls(allowed=frozenset(allowed), required=frozenset(required))

    @property
    def enabled(self) -> bool:
        return bool(self.allowed)

    def apply(self, entities: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], bool]:
        """
        Filter one sentence's entities

        Returns:
            (kept entities, whether the sentence passes)
        """
        if not self.enabled:
            return list(entities), True

        kept = [e for e in entities if e.get('type') in self.allowed]
        present = {e.get('type') for e in kept}
        missing = self.required - present
        return kept, not missing

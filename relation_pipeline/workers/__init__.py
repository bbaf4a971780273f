"""
Pipeline roles

trigger → query → parser → scoring
"""
from .trigger import TriggerRole
from .query_worker import QueryRole
from .parser_worker import ParserRole
from .scoring_worker import ScoringRole

ROLES = {
    'trigger': TriggerRole,
    'query': QueryRole,
    'parser': ParserRole,
    'scoring': ScoringRole,
}

__all__ = ['TriggerRole', 'QueryRole', 'ParserRole', 'ScoringRole', 'ROLES']

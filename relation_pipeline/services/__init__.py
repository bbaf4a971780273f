"""
Pipeline services: queue port, analysis port, role base and runner
"""
from .message_queue import MessageQueue, QueueMessage
from .analysis_service import AnalysisService, HttpAnalysisService
from .entity_filter import SupportedEntities
from .role_base import HandlerOutcome, PipelineRole
from .runner import Runner

__all__ = [
    'MessageQueue',
    'QueueMessage',
    'AnalysisService',
    'HttpAnalysisService',
    'SupportedEntities',
    'HandlerOutcome',
    'PipelineRole',
    'Runner',
]

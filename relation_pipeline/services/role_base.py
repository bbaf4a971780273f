"""
Base class for pipeline roles

A role declares:
- queue_in_name / queue_out_name: which queues the Runner must wire up
- handlers: closed map RequestType → coroutine returning HandlerOutcome

process_message() routes an envelope to its handler and turns exceptions
into outcomes:
- MalformedMessageError → SUCCESS (dropped, redelivery cannot fix it)
- any other exception   → RETRY (left in the queue for redelivery)
- unknown request type  → SUCCESS after logging

Roles never acknowledge messages themselves; that is the Runner's job.
"""
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

from relation_pipeline.errors import MalformedMessageError
from relation_pipeline.models.envelope import Envelope, RequestType

logger = logging.getLogger(__name__)


class HandlerOutcome(Enum):
    SUCCESS = "success"  # delete the message
    RETRY = "retry"      # leave it; redelivered after the visibility window


Handler = Callable[[Envelope], Awaitable[HandlerOutcome]]


class PipelineRole:
    """
    Override `handlers` (continuous roles) or `run` (scheduled roles)
    """

    name: str = "role"
    queue_in_name: Optional[str] = None
    queue_out_name: Optional[str] = None

    def __init__(self):
        self.queue_in = None
        self.queue_out = None

    @property
    def is_scheduled(self) -> bool:
        return False

    @property
    def handlers(self) -> Dict[RequestType, Handler]:
        return {}

    def bind_queues(self, queue_in, queue_out):
        """Called by the Runner once its queues are initialized"""
        self.queue_in = queue_in
        self.queue_out = queue_out

    async def run(self) -> HandlerOutcome:
        raise NotImplementedError(f"{self.__class__.__name__} is not a scheduled role")

    async def process_message(self, envelope: Envelope) -> HandlerOutcome:
        handler = self.handlers.get(envelope.request_type)
        if handler is None:
            logger.error(
                f"[{self.name}] Message type '{envelope.type_name}' should not appear in this queue, deleting..."
            )
            return HandlerOutcome.SUCCESS

        try:
            return await handler(envelope)
        except MalformedMessageError as e:
            logger.error(f"[{self.name}] Dropping malformed {envelope.type_name} message: {e} ({envelope.data})")
            return HandlerOutcome.SUCCESS
        except Exception as e:
            logger.error(f"[{self.name}] {envelope.type_name} handling failed, leaving for retry: {e}", exc_info=True)
            return HandlerOutcome.RETRY

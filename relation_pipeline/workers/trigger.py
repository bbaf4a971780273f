"""
TriggerRole - pipeline heartbeat

Invoked once per external schedule tick (cron, k8s CronJob, ...). Sends a
single trigger message to the query queue; the query role then discovers
documents published in its default lookback window.
"""
import logging
from typing import Optional

from relation_pipeline.config.settings import Settings
from relation_pipeline.models.envelope import TriggerRequest, trigger_envelope
from relation_pipeline.services.role_base import HandlerOutcome, PipelineRole

logger = logging.getLogger(__name__)


class TriggerRole(PipelineRole):

    name = "trigger"

    def __init__(self, settings: Settings, request: Optional[TriggerRequest] = None):
        super().__init__()
        self.queue_out_name = settings.queue_trigger_query
        self.request = request

    @property
    def is_scheduled(self) -> bool:
        return True

    async def run(self) -> HandlerOutcome:
        logger.info(f"Triggering a new process through queue {self.queue_out_name}")
        try:
            await self.queue_out.send_message(trigger_envelope(self.request))
        except Exception as e:
            logger.error(f"There was an error triggering a pipeline process: {e}", exc_info=True)
            return HandlerOutcome.RETRY

        logger.info("Triggered pipeline process successfully")
        return HandlerOutcome.SUCCESS

"""
Runner - drives one pipeline role

Two modes, picked from the role's declared capability:
- scheduled (role.is_scheduled, e.g. trigger): init output queue, run once
- continuous (query/parser/scoring): init queues, then poll forever

Continuous loop:
1. Dequeue one message (hidden for the visibility window)
2. Nothing there → idle for poll_interval (wakes early on stop)
3. Parse envelope, hand it to role.process_message
4. SUCCESS → delete; RETRY → leave it, the queue redelivers it later

The Runner is the only component that deletes messages. stop() is
cooperative: an in-flight handler always runs to completion.
"""
import asyncio
import logging
import signal
from typing import Callable, Optional

from relation_pipeline.config.settings import Settings
from relation_pipeline.errors import MalformedMessageError, QueueInitError
from relation_pipeline.models.envelope import Envelope
from relation_pipeline.services.message_queue import QueueMessage
from relation_pipeline.services.role_base import HandlerOutcome, PipelineRole

logger = logging.getLogger(__name__)

QueueFactory = Callable[[str], object]

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class Runner:

    def __init__(
        self,
        role: PipelineRole,
        settings: Settings,
        queue_in=None,
        queue_out=None,
        queue_factory: Optional[QueueFactory] = None,
        worker_name: Optional[str] = None,
        install_signal_handlers: bool = False
    ):
        self.role = role
        self.settings = settings
        self.queue_in = queue_in
        self.queue_out = queue_out
        self.queue_factory = queue_factory
        self.worker_name = worker_name or f"{role.name}-worker"
        self.poll_interval = settings.poll_interval_seconds
        self.install_signal_handlers = install_signal_handlers

        self._stop_event = asyncio.Event()
        self.jobs_processed = 0
        self.jobs_failed = 0
        self.jobs_dropped = 0

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    def stop(self):
        """Finish the current message, then leave the loop"""
        self._stop_event.set()

    # =========================================================================
    # QUEUE SETUP
    # =========================================================================

    def _make_queue(self, name: str):
        if self.queue_factory is None:
            raise QueueInitError(f"No queue factory to create queue {name}")
        logger.info(f"[{self.worker_name}] Initializing queue: {name}")
        return self.queue_factory(name)

    async def init_queues(self):
        """
        Create (unless injected) and initialize the role's queues

        Raises:
            QueueInitError: any queue failed to initialize
        """
        if self.queue_in is None and self.role.queue_in_name:
            self.queue_in = self._make_queue(self.role.queue_in_name)
        if self.queue_out is None and self.role.queue_out_name:
            self.queue_out = self._make_queue(self.role.queue_out_name)

        if self.role.is_scheduled and self.queue_out is None:
            raise QueueInitError(f"[{self.worker_name}] Scheduled role has no output queue")
        if not self.role.is_scheduled and self.queue_in is None:
            raise QueueInitError(f"[{self.worker_name}] Continuous role has no input queue")

        queues = [q for q in (self.queue_in, self.queue_out) if q is not None]
        try:
            await asyncio.gather(*(q.init() for q in queues))
        except QueueInitError:
            raise
        except Exception as e:
            raise QueueInitError(f"[{self.worker_name}] Error initializing queues: {e}") from e

        self.role.bind_queues(self.queue_in, self.queue_out)

    # =========================================================================
    # RUN
    # =========================================================================

    async def start(self) -> Optional[HandlerOutcome]:
        """
        Initialize queues, then run once (scheduled) or poll until stopped

        Returns:
            The role's outcome in scheduled mode, None in continuous mode
        """
        await self.init_queues()

        if self.role.is_scheduled:
            logger.info(f"[{self.worker_name}] Running scheduled action")
            return await self.role.run()

        if self.install_signal_handlers:
            self._setup_signal_handlers()

        logger.info(f"[{self.worker_name}] Started, listening on {self.queue_in.name}")

        try:
            while self.running:
                try:
                    outcome = await self.poll_once()
                except Exception as e:
                    logger.error(f"[{self.worker_name}] Worker loop error: {e}", exc_info=True)
                    outcome = None

                if outcome is None and self.running:
                    await self._idle()
        finally:
            if self.install_signal_handlers:
                self._remove_signal_handlers()

        logger.info(
            f"[{self.worker_name}] Shutting down. "
            f"Processed: {self.jobs_processed}, Failed: {self.jobs_failed}, Dropped: {self.jobs_dropped}"
        )
        return None

    async def poll_once(self) -> Optional[HandlerOutcome]:
        """
        One iteration of the loop

        Returns:
            Outcome of the handled message, None if the queue was empty
        """
        message = await self.queue_in.get_single_message()
        if message is None:
            return None

        try:
            envelope = Envelope.from_json(message.body)
        except MalformedMessageError as e:
            self.jobs_dropped += 1
            logger.error(f"[{self.worker_name}] Deleting unparsable message {message.message_id}: {e}")
            await self._delete(message)
            return HandlerOutcome.SUCCESS

        logger.debug(f"[{self.worker_name}] Received {envelope.type_name}: {envelope.data}")
        outcome = await self.role.process_message(envelope)

        if outcome is HandlerOutcome.SUCCESS:
            self.jobs_processed += 1
            await self._delete(message)
        else:
            self.jobs_failed += 1
            logger.warning(
                f"[{self.worker_name}] Leaving {envelope.type_name} message {message.message_id} "
                f"for redelivery (delivery #{message.dequeue_count})"
            )
        return outcome

    async def _delete(self, message: QueueMessage):
        try:
            deleted = await self.queue_in.delete_message(message)
        except Exception as e:
            logger.error(f"[{self.worker_name}] Failed to delete message {message.message_id}: {e}")
            return
        if not deleted:
            logger.warning(
                f"[{self.worker_name}] Visibility window of message {message.message_id} expired "
                f"before it was deleted; it will be delivered again"
            )

    async def _idle(self):
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    def _setup_signal_handlers(self):
        """Setup graceful shutdown on SIGTERM/SIGINT (handled on the event loop, wakes an idle poll)"""
        loop = asyncio.get_running_loop()

        def shutdown_handler(signum):
            logger.info(f"[{self.worker_name}] Received signal {signum}, shutting down...")
            self.stop()

        for signum in SHUTDOWN_SIGNALS:
            loop.add_signal_handler(signum, shutdown_handler, signum)

    def _remove_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for signum in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(signum)

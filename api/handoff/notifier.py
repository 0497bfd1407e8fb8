"""
Escalation Notifier for the Carrera Cars lead bot.

Manager notifications are queued and delivered by a background worker so
a slow or failing email provider never delays or fails a conversation turn.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from llm.prompt_templates import PromptTemplates
from ..channels.base import ChannelMessage
from ..channels.email import EmailRouter
from ..middleware.metrics import record_escalation_notification

logger = logging.getLogger(__name__)


@dataclass
class EscalationRequest:
    """One queued manager notification."""
    lead_name: str
    conversation_label: str
    created_at: datetime = field(default_factory=datetime.utcnow)


class EscalationNotifier:
    """
    Best-effort manager notification queue.

    ``notify_escalation`` only enqueues; the worker sends the email and
    logs failures. There is no delivery feedback to the caller.
    """

    def __init__(self, email_router: EmailRouter, manager_email: Optional[str], maxsize: int = 100):
        self.email_router = email_router
        self.manager_email = manager_email
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._worker: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if not self.running:
            self._worker = asyncio.get_running_loop().create_task(self._run())
            logger.info("Escalation notifier worker started")

    async def stop(self, timeout: float = 5.0) -> None:
        if not self.running:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Dropping {self._queue.qsize()} pending escalation notifications on shutdown")
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Escalation notifier worker stopped")

    def notify_escalation(self, lead_name: str, conversation_label: str) -> None:
        """Enqueue a notification; never blocks and never raises."""
        if not self.manager_email:
            logger.warning(f"MANAGER_EMAIL not set, skipping escalation notice for {lead_name}")
            return
        try:
            self._queue.put_nowait(EscalationRequest(lead_name, conversation_label))
        except asyncio.QueueFull:
            logger.error(f"Escalation queue full, dropping notice for {lead_name}")
            return
        try:
            self.start()
        except RuntimeError:
            logger.warning("No running event loop; escalation notice stays queued until startup")

    async def _run(self) -> None:
        while True:
            request = await self._queue.get()
            try:
                await self._deliver(request)
            except Exception as e:
                logger.error(f"Escalation notification crashed for {request.lead_name}: {e}")
            finally:
                self._queue.task_done()

    async def _deliver(self, request: EscalationRequest) -> bool:
        email = PromptTemplates.escalation_email(request.lead_name, request.conversation_label)
        result = await self.email_router.send(ChannelMessage(
            to=self.manager_email,
            content=email["body"],
            subject=email["subject"],
        ))
        record_escalation_notification(result.success)
        if result.success:
            logger.info(f"Escalation email sent for {request.lead_name}")
        else:
            logger.error(f"Escalation email failed for {request.lead_name}: {result.error}")
        return result.success

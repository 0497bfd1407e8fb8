"""
Webhook Intake base for the Carrera Cars lead bot.

Every delivery is written to the webhook log before it is parsed. The
delivery is then split into independent work items, each run in its own
database transaction, so one bad item never aborts its siblings and the
sender always gets an acknowledgement.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.repositories import WebhookLogRepository
from database.session import get_session_factory, session_scope
from funnel.state_machine import ConversationCompleted
from funnel.states import WebhookStatus
from ..middleware.metrics import record_webhook_item

logger = logging.getLogger(__name__)

SUBSCRIBE_MODE = "subscribe"

SUCCEEDED = "succeeded"
SKIPPED = "skipped"
FAILED = "failed"


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


@dataclass
class WorkItem:
    """One contact, message, status or lead-ad event inside a delivery."""
    kind: str
    payload: Dict[str, Any]
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchResult:
    """Per-delivery processing summary."""
    log_id: Optional[str] = None
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)
    ignored: bool = False

    def add(self, outcome: str) -> None:
        if outcome == SKIPPED:
            self.skipped += 1
        else:
            self.succeeded += 1

    @property
    def total(self) -> int:
        return self.succeeded + self.skipped + self.failed


class WebhookIntake(ABC):
    """
    Shared verification and log-then-process protocol.

    Subclasses declare the expected ``object`` literal, the accepted change
    fields, how a change value fans out into work items, and a handler per
    item kind named ``handle_<kind>``.
    """

    channel: str = ""
    event_type: str = ""
    expected_object: str = ""
    accepted_fields: frozenset = frozenset()

    def __init__(
        self,
        verify_token: str,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self.verify_token = verify_token
        self._session_factory = session_factory

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()

    def verify(self, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
        """Return the challenge for a valid subscription handshake, else None."""
        if mode == SUBSCRIBE_MODE and self.verify_token and token == self.verify_token and challenge is not None:
            logger.info(f"{self.channel} webhook verified")
            return challenge
        logger.warning(f"{self.channel} webhook verification failed (mode={mode!r})")
        return None

    async def receive(self, raw_payload: Union[str, bytes]) -> BatchResult:
        """Log the delivery, then process its items. Never raises."""
        if isinstance(raw_payload, bytes):
            raw_payload = raw_payload.decode("utf-8", errors="replace")

        result = BatchResult()
        try:
            async with session_scope(self.session_factory) as session:
                entry = await WebhookLogRepository(session).create(self.event_type, raw_payload)
                result.log_id = entry.id
        except Exception as e:
            logger.error(f"Could not write {self.event_type} webhook log: {e}")

        try:
            data = json.loads(raw_payload)
            if data.get("object") != self.expected_object:
                logger.info(f"Ignoring {self.channel} delivery for object {data.get('object')!r}")
                result.ignored = True
            else:
                await self._process_changes(data, result)
            await self._finish_log(result, WebhookStatus.PROCESSED, self._failure_summary(result))
        except Exception as e:
            logger.exception(f"{self.channel} webhook processing failed: {e}")
            await self._finish_log(result, WebhookStatus.ERROR, str(e))

        return result

    def iter_change_values(self, data: Dict[str, Any]) -> Iterator[Any]:
        """Walk entry[].changes[] and yield the value of each accepted change."""
        for entry in _as_list(data.get("entry")):
            if not isinstance(entry, dict):
                logger.warning(f"Skipping malformed {self.channel} entry: {entry!r}")
                continue
            for change in _as_list(entry.get("changes")):
                if not isinstance(change, dict):
                    logger.warning(f"Skipping malformed {self.channel} change: {change!r}")
                    continue
                if change.get("field") not in self.accepted_fields:
                    logger.debug(f"Skipping {self.channel} change field {change.get('field')!r}")
                    continue
                yield change.get("value")

    @abstractmethod
    def items_from_change(self, value: Dict[str, Any]) -> Iterator[WorkItem]:
        ...

    async def _process_changes(self, data: Dict[str, Any], result: BatchResult) -> None:
        """Fan each change out and run its items before reading the next change."""
        for value in self.iter_change_values(data):
            if value is None:
                continue
            try:
                if not isinstance(value, dict):
                    raise ValueError(f"change value is {type(value).__name__}, expected object")
                items = list(self.items_from_change(value))
            except Exception as e:
                self._record_failure(result, "change", e)
                continue
            for item in items:
                await self._process_item(item, result)

    async def _process_item(self, item: WorkItem, result: BatchResult) -> None:
        handler = getattr(self, f"handle_{item.kind}")
        try:
            async with session_scope(self.session_factory) as session:
                outcome = await handler(session, item)
            result.add(outcome)
            record_webhook_item(self.channel, outcome)
        except ConversationCompleted as e:
            logger.info(f"{self.channel} {item.kind} not answered: {e}")
            result.add(SUCCEEDED)
            record_webhook_item(self.channel, SUCCEEDED)
        except Exception as e:
            self._record_failure(result, item.kind, e)

    def _record_failure(self, result: BatchResult, kind: str, error: Exception) -> None:
        result.failed += 1
        result.errors.append(f"{kind}: {error}")
        record_webhook_item(self.channel, FAILED)
        logger.error(f"{self.channel} {kind} item failed: {error}", extra={"log_id": result.log_id})

    @staticmethod
    def _failure_summary(result: BatchResult) -> Optional[str]:
        if not result.failed:
            return None
        return f"{result.failed} of {result.total} items failed: " + "; ".join(result.errors)

    async def _finish_log(self, result: BatchResult, status: WebhookStatus, error: Optional[str]) -> None:
        if not result.log_id:
            return
        try:
            async with session_scope(self.session_factory) as session:
                await WebhookLogRepository(session).mark(result.log_id, status.value, error)
        except Exception as e:
            logger.error(f"Could not update webhook log {result.log_id}: {e}")

# authguard/app/security/audit_dispatch.py
"""
Fire-and-forget delivery of security events.

Deny and allow decisions never wait on the audit sink. Each event is written
from its own task, bounded by a timeout; failures are logged and dropped.
"""
import asyncio
import logging
from typing import Optional, Set

from authguard.app.schemas.security import SecurityEvent
from authguard.app.security.interfaces import AuditSink

logger = logging.getLogger(__name__)


class BackgroundAudit:
    def __init__(self, sink: Optional[AuditSink], timeout_seconds: float = 2.0):
        self.sink = sink
        self.timeout_seconds = timeout_seconds
        # Strong references; the event loop only keeps weak ones
        self._tasks: Set[asyncio.Task] = set()

    def emit(self, event: SecurityEvent) -> None:
        if self.sink is None:
            return
        task = asyncio.create_task(self._write(event), name=f"audit:{event.event_type}")
        self._tasks.add(task)
        task.add_done_callback(self._finished)

    async def _write(self, event: SecurityEvent) -> None:
        await asyncio.wait_for(self.sink.log_event(event), timeout=self.timeout_seconds)

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Failed to log security event %s: %r", task.get_name(), exc)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def wait_all(self) -> None:
        """Wait for every scheduled write; used on shutdown and in tests."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

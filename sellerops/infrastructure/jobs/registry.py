"""Job handler registry and the context passed to handlers.

A handler is ``async def handler(job, ctx) -> dict | None``. Cancellation
is cooperative: long handlers should call ``await ctx.raise_if_cancelled()``
between steps and must tolerate being abandoned mid-flight on timeout.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from sellerops.application.dtos import JobResult
from sellerops.application.interfaces.stores import IJobQueue
from sellerops.domain.exceptions import JobCancelledError, UnknownJobTypeError

JobHandler = Callable[[JobResult, "JobContext"], Awaitable[dict[str, Any] | None]]


class JobContext:
    """Per-attempt handle given to a handler."""

    def __init__(self, job: JobResult, queue: IJobQueue) -> None:
        self.job = job
        self.queue = queue
        self._abandoned = False

    @property
    def abandoned(self) -> bool:
        """True once the worker gave up on this attempt (timeout)."""
        return self._abandoned

    def abandon(self) -> None:
        self._abandoned = True

    async def is_cancelled(self) -> bool:
        return self._abandoned or await self.queue.is_cancelled(self.job.id)

    async def raise_if_cancelled(self) -> None:
        if await self.is_cancelled():
            raise JobCancelledError(self.job.id)

    async def log(self, message: str, **data: Any) -> None:
        """Append a timestamped entry to this job's log (attempt recorded)."""
        await self.queue.append_log(self.job.id, message, attempt=self.job.attempt, **data)

    async def enqueue(self, job_type: str, payload: dict[str, Any], **kwargs: Any) -> JobResult:
        """Enqueue a follow-up job correlated with this one."""
        kwargs.setdefault("correlation_id", self.job.correlation_id or f"job:{self.job.id}")
        return await self.queue.enqueue(job_type, payload, **kwargs)


class JobHandlerRegistry:
    """Maps job_type to a handler and its timeout. Built once at startup."""

    def __init__(
        self,
        default_timeout_seconds: float = 300.0,
        type_timeouts: Mapping[str, float] | None = None,
    ) -> None:
        self._handlers: dict[str, JobHandler] = {}
        self._timeouts: dict[str, float] = dict(type_timeouts or {})
        self._default_timeout = default_timeout_seconds

    def register(
        self, job_type: str, handler: JobHandler, timeout_seconds: float | None = None
    ) -> None:
        if job_type in self._handlers:
            raise ValueError(f"Handler already registered for {job_type}")
        self._handlers[job_type] = handler
        if timeout_seconds is not None:
            self._timeouts[job_type] = timeout_seconds

    def handler_for(self, job_type: str) -> JobHandler:
        handler = self._handlers.get(job_type)
        if handler is None:
            raise UnknownJobTypeError(job_type)
        return handler

    def timeout_for(self, job_type: str) -> float:
        """Per-type timeout, or the default for unknown types."""
        return self._timeouts.get(job_type, self._default_timeout)

    def job_types(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, job_type: object) -> bool:
        return job_type in self._handlers

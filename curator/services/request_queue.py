"""
Single-flight request scheduler for the generative backend.
"""

import asyncio
import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple


class SchedulerError(Exception):
    """Base exception for scheduler rejections"""
    pass


class DuplicateRequestError(SchedulerError):
    """Same caller and payload already queued or in flight"""
    pass


class QueueFullError(SchedulerError):
    pass


class RequestTimeoutError(SchedulerError):
    """Request expired while still waiting in the queue"""
    pass


@dataclass(eq=False)
class QueuedRequest:
    """A queued generation request with its payload and result future"""
    id: int
    caller_id: str
    payload: str
    future: asyncio.Future
    enqueued_at: datetime
    options: Dict[str, Any] = field(default_factory=dict)
    expiry_handle: Optional[asyncio.TimerHandle] = None

    @property
    def key(self) -> Tuple[str, str]:
        return self.caller_id, self.payload


class GenerationScheduler:
    """
    FIFO queue drained by a single worker.

    At most one handler call is in flight at any time, and consecutive
    dispatches are spaced at least ``min_interval`` seconds apart to stay
    inside the backend's external quota.
    """

    def __init__(self,
                 handler: Callable[[str, Dict[str, Any]], Awaitable[Any]],
                 min_interval: float = 10.0,
                 max_queue_size: int = 20,
                 request_timeout: Optional[float] = 90.0):
        self.handler = handler
        self.min_interval = min_interval
        self.max_queue_size = max_queue_size
        self.request_timeout = request_timeout
        self.queue: Deque[QueuedRequest] = deque()
        self.processing = False
        self.in_flight: Optional[QueuedRequest] = None
        self.last_dispatch: Optional[float] = None
        self._ids = itertools.count(1)
        self._worker: Optional[asyncio.Task] = None
        self.logger = logging.getLogger(__name__)

    def _is_pending(self, caller_id: str, payload: str) -> bool:
        key = (caller_id, payload)
        if self.in_flight is not None and self.in_flight.key == key:
            return True
        return any(r.key == key for r in self.queue)

    async def submit(self,
                     caller_id: str,
                     payload: str,
                     options: Optional[Dict[str, Any]] = None,
                     timeout: Optional[float] = None) -> Any:
        """
        Queue a request and wait for the handler's result.

        Raises DuplicateRequestError, QueueFullError or RequestTimeoutError
        without ever reaching the handler; handler exceptions propagate.
        """
        if self._is_pending(caller_id, payload):
            self.logger.warning(f"Duplicate request from {caller_id} rejected")
            raise DuplicateRequestError("Request already in progress")
        if len(self.queue) >= self.max_queue_size:
            raise QueueFullError(f"Queue is full ({self.max_queue_size} requests waiting)")

        loop = asyncio.get_running_loop()
        request = QueuedRequest(
            id=next(self._ids),
            caller_id=caller_id,
            payload=payload,
            future=loop.create_future(),
            enqueued_at=datetime.now(),
            options=dict(options or {}),
        )

        expiry = self.request_timeout if timeout is None else timeout
        if expiry is not None and expiry > 0:
            request.expiry_handle = loop.call_later(expiry, self._expire, request, expiry)

        self.queue.append(request)
        self.logger.info(
            f"Queued generation request #{request.id} for {caller_id} (position {len(self.queue)})"
        )
        self._ensure_worker()

        try:
            return await request.future
        except asyncio.CancelledError:
            self._discard(request)
            raise

    def _ensure_worker(self) -> None:
        # Flag is set before the task runs so near-simultaneous submits share one worker
        if not self.processing:
            self.processing = True
            self._worker = asyncio.create_task(self._process_queue())

    def _expire(self, request: QueuedRequest, timeout: float) -> None:
        if request in self.queue:
            self.queue.remove(request)
            if not request.future.done():
                request.future.set_exception(
                    RequestTimeoutError(f"Request #{request.id} timed out after {timeout:.1f}s in queue")
                )
            self.logger.warning(f"⏱️ Request #{request.id} from {request.caller_id} expired while queued")

    def _discard(self, request: QueuedRequest) -> None:
        if request.expiry_handle:
            request.expiry_handle.cancel()
        if request in self.queue:
            self.queue.remove(request)

    async def _process_queue(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while self.queue:
                if self.last_dispatch is not None:
                    wait_time = self.min_interval - (loop.time() - self.last_dispatch)
                    if wait_time > 0:
                        self.logger.info(f"Rate limiting: waiting {wait_time:.1f}s before next request")
                        await asyncio.sleep(wait_time)

                # Entries may have expired or been cancelled during the wait
                if not self.queue:
                    break
                request = self.queue.popleft()
                if request.expiry_handle:
                    request.expiry_handle.cancel()
                if request.future.done():
                    continue

                self.in_flight = request
                self.last_dispatch = loop.time()
                self.logger.info(f"Dispatching request #{request.id} for {request.caller_id}")
                try:
                    result = await self.handler(request.payload, request.options)
                except Exception as e:
                    self.logger.error(f"Request #{request.id} failed: {e}")
                    if not request.future.done():
                        request.future.set_exception(e)
                else:
                    if not request.future.done():
                        request.future.set_result(result)
                    self.logger.info(f"Completed request #{request.id} for {request.caller_id}")
                finally:
                    self.in_flight = None
        finally:
            self.processing = False
            self._worker = None

    def get_status(self) -> Dict[str, Any]:
        since_last = None
        if self.last_dispatch is not None:
            try:
                now = asyncio.get_running_loop().time()
            except RuntimeError:
                now = None
            if now is not None:
                since_last = round((now - self.last_dispatch) * 1000)
        return {
            "queue_length": len(self.queue),
            "processing": self.processing,
            "max_queue_size": self.max_queue_size,
            "min_interval_ms": round(self.min_interval * 1000),
            "time_since_last_request_ms": since_last,
        }

    def clear(self) -> int:
        """Fail every waiting request; the in-flight one is left alone."""
        cleared = 0
        while self.queue:
            request = self.queue.popleft()
            if request.expiry_handle:
                request.expiry_handle.cancel()
            if not request.future.done():
                request.future.set_exception(SchedulerError("Queue cleared"))
            cleared += 1
        if cleared:
            self.logger.info(f"Cleared {cleared} queued requests")
        return cleared

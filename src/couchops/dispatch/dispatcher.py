"""Operation queue with bounded concurrency, cancellation and deadlines.

Each submitted operation becomes a ``QueueEntry`` moving through
``pending -> in_flight -> completed | failed | cancelled``. Entries start in
submission order as slots free up; once running they finish in whatever
order the server answers. Within one operation, row callbacks run strictly
in response order and the completion callback runs exactly once, last.

The waiting queue, slot count and entry states are the only mutable state
shared between operations; they are guarded by a lock so that ``submit()``
and ``cancel()`` may be called from threads other than the event loop's.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import threading
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import httpx

from couchops.errors import (
    CouchError,
    OperationCancelled,
    OperationTimeout,
    TransportError,
    TransportErrorKind,
    ValidationError,
)
from couchops.models.operations import Operation
from couchops.models.results import Outcome, Result
from couchops.wire.request import RequestBuilder, RequestContext, WireRequest
from couchops.wire.response import ResponseParser, RowCallback, call_row_callback

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[Outcome], Awaitable[None] | None]


class OperationState(StrEnum):
    """Lifecycle of a submitted operation."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        """Whether no further transition is possible."""
        return self in (OperationState.COMPLETED, OperationState.FAILED, OperationState.CANCELLED)


@dataclass(eq=False)
class QueueEntry:
    """A submitted operation and its execution state. Owned by the dispatcher."""

    seq: int
    operation: Operation
    request: WireRequest
    future: asyncio.Future[Outcome]
    on_row: RowCallback | None = None
    on_complete: CompletionCallback | None = None
    deadline: float | None = None
    state: OperationState = OperationState.PENDING
    cancel_reason: TransportErrorKind | None = None
    rows_delivered: int = 0
    task: asyncio.Task[Outcome] | None = None
    timer: asyncio.TimerHandle | None = field(default=None, repr=False)

    @property
    def label(self) -> str:
        """Short description for log lines."""
        return f"#{self.seq} {self.operation.kind}"


class OperationHandle:
    """Caller-side view of a submitted operation."""

    def __init__(self, entry: QueueEntry, dispatcher: Dispatcher) -> None:
        """Wrap a queue entry; only the dispatcher creates handles."""
        self._entry = entry
        self._dispatcher = dispatcher

    def __repr__(self) -> str:
        return f"<OperationHandle {self._entry.label} {self._entry.state}>"

    def __await__(self) -> Any:
        return self.outcome().__await__()

    @property
    def operation(self) -> Operation:
        """The submitted operation."""
        return self._entry.operation

    @property
    def request(self) -> WireRequest:
        """The wire request built at submission."""
        return self._entry.request

    @property
    def state(self) -> OperationState:
        """Current lifecycle state."""
        return self._entry.state

    def done(self) -> bool:
        """Whether the completion callback has run and the outcome is available."""
        return self._entry.future.done()

    def cancel(self) -> bool:
        """Cancel the operation. Returns False if it had already finished."""
        return self._dispatcher.cancel(self._entry)

    async def outcome(self) -> Outcome:
        """Wait for the terminal outcome. Never raises the operation's error."""
        return await asyncio.shield(self._entry.future)

    async def result(self) -> Result:
        """Wait for the result, raising the operation's error if it failed."""
        return (await self.outcome()).unwrap()


class Dispatcher:
    """Runs submitted operations against one HTTP client."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        max_concurrency: int = 4,
        default_timeout: float | None = None,
        builder: RequestBuilder | None = None,
        parser: ResponseParser | None = None,
    ) -> None:
        """Initialize with a transport and the concurrency/timeout policy."""
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._http = http_client
        self._max_concurrency = max_concurrency
        self._default_timeout = default_timeout
        self._builder = builder or RequestBuilder()
        self._parser = parser or ResponseParser()
        self._lock = threading.Lock()
        self._waiting: deque[QueueEntry] = deque()
        self._in_flight: set[QueueEntry] = set()
        self._outstanding: set[QueueEntry] = set()
        self._background: set[asyncio.Task[None]] = set()
        self._seq = itertools.count(1)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._closed = False

    @property
    def max_concurrency(self) -> int:
        """Maximum number of operations in flight at once."""
        return self._max_concurrency

    @property
    def pending_count(self) -> int:
        """Operations waiting for a slot."""
        with self._lock:
            return len(self._waiting)

    @property
    def in_flight_count(self) -> int:
        """Operations currently holding a slot."""
        with self._lock:
            return len(self._in_flight)

    # -- submission --

    def submit(
        self,
        operation: Operation,
        context: RequestContext,
        *,
        on_row: RowCallback | None = None,
        on_complete: CompletionCallback | None = None,
        timeout: float | None = None,
    ) -> OperationHandle:
        """Validate, encode and enqueue an operation.

        Raises ``ValidationError`` synchronously; every other failure is
        reported through the outcome. ``timeout`` (seconds, measured from
        submission) overrides the dispatcher default.
        """
        request = self._builder.build(operation, context)
        loop = self._bind_loop()
        timeout = timeout if timeout is not None else self._default_timeout
        if timeout is not None and timeout <= 0:
            raise ValidationError("timeout must be positive")

        entry = QueueEntry(
            seq=next(self._seq),
            operation=operation,
            request=request,
            future=loop.create_future(),
            on_row=on_row,
            on_complete=on_complete,
            deadline=loop.time() + timeout if timeout is not None else None,
        )
        with self._lock:
            if self._closed:
                raise RuntimeError("dispatcher is closed")
            self._waiting.append(entry)
            self._outstanding.add(entry)
        logger.debug("Queued %s %s %s", entry.label, request.method, request.url)
        self._on_loop(self._arm, entry)
        return OperationHandle(entry, self)

    def _bind_loop(self) -> asyncio.AbstractEventLoop:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        with self._lock:
            if self._loop is None or self._loop.is_closed():
                if running is None:
                    raise RuntimeError(
                        "submit() outside an event loop needs a dispatcher already "
                        "bound to a running loop"
                    )
                self._loop = running
            elif running is not None and running is not self._loop:
                raise RuntimeError("dispatcher is bound to a different event loop")
            return self._loop

    def _on_loop(self, fn: Callable[..., None], *args: Any) -> None:
        """Run ``fn`` on the dispatcher's loop: now if already there, else thread-safely."""
        loop = self._loop
        assert loop is not None
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            fn(*args)
        else:
            loop.call_soon_threadsafe(fn, *args)

    def _arm(self, entry: QueueEntry) -> None:
        if entry.deadline is not None and not entry.state.terminal:
            loop = asyncio.get_running_loop()
            entry.timer = loop.call_at(entry.deadline, self._expire, entry)
        self._pump()

    def _pump(self) -> None:
        """Start waiting entries, oldest first, while slots are free."""
        started = []
        with self._lock:
            while self._waiting and len(self._in_flight) < self._max_concurrency:
                entry = self._waiting.popleft()
                self._transition(entry, OperationState.IN_FLIGHT)
                self._in_flight.add(entry)
                started.append(entry)
        for entry in started:
            self._spawn(self._run(entry), name=f"couchops-{entry.seq}")

    def _spawn(self, coro: Any, *, name: str) -> None:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _transition(self, entry: QueueEntry, state: OperationState) -> None:
        """Move an entry to a new state. Caller holds the lock."""
        if entry.state.terminal:
            raise RuntimeError(f"{entry.label} is already {entry.state}")
        entry.state = state

    # -- cancellation --

    def cancel(
        self, entry: QueueEntry, reason: TransportErrorKind = TransportErrorKind.CANCELLED
    ) -> bool:
        """Cancel a pending or in-flight entry. Returns False if already terminal."""
        with self._lock:
            if entry.state is OperationState.PENDING:
                self._waiting.remove(entry)
                entry.cancel_reason = reason
                self._transition(entry, OperationState.CANCELLED)
                was_pending = True
            elif entry.state is OperationState.IN_FLIGHT:
                if entry.cancel_reason is None:
                    entry.cancel_reason = reason
                was_pending = False
            else:
                return False
        logger.debug("Cancelling %s (%s)", entry.label, reason)
        if was_pending:
            self._on_loop(self._finish_pending, entry)
        else:
            self._on_loop(self._abort, entry)
        return True

    def _expire(self, entry: QueueEntry) -> None:
        self.cancel(entry, TransportErrorKind.TIMEOUT)

    def _abort(self, entry: QueueEntry) -> None:
        if entry.task is not None and not entry.task.done():
            entry.task.cancel()

    def _finish_pending(self, entry: QueueEntry) -> None:
        self._spawn(self._deliver(entry, _cancelled_outcome(entry)), name=f"couchops-{entry.seq}")

    # -- execution --

    async def _run(self, entry: QueueEntry) -> None:
        loop = asyncio.get_running_loop()
        # Execution runs in its own task so that cancelling it never cancels
        # the bookkeeping below.
        inner = loop.create_task(self._execute(entry), name=f"couchops-{entry.seq}-io")
        entry.task = inner
        if entry.cancel_reason is not None:
            inner.cancel()
        await asyncio.wait([inner])

        if inner.cancelled() or entry.cancel_reason is not None:
            if entry.cancel_reason is None:
                entry.cancel_reason = TransportErrorKind.CANCELLED
            outcome = _cancelled_outcome(entry)
        elif inner.exception() is not None:
            exc = inner.exception()
            logger.error("Unexpected failure running %s", entry.label, exc_info=exc)
            outcome = Outcome(error=exc, rows_delivered=entry.rows_delivered)
        else:
            outcome = inner.result()

        if entry.cancel_reason is not None:
            state = OperationState.CANCELLED
        elif outcome.error is None:
            state = OperationState.COMPLETED
        else:
            state = OperationState.FAILED
        with self._lock:
            self._transition(entry, state)
            self._in_flight.discard(entry)
        await self._deliver(entry, outcome)
        self._pump()

    async def _execute(self, entry: QueueEntry) -> Outcome:
        op = entry.operation
        wire = entry.request
        request = wire.to_httpx(self._http)
        logger.debug("Sending %s %s %s", entry.label, wire.method, wire.url)
        try:
            response = await self._http.send(request, stream=True)
        except httpx.TimeoutException as exc:
            return Outcome(error=OperationTimeout(f"{wire.method} {wire.url}: {exc}"))
        except httpx.HTTPError as exc:
            return Outcome(error=TransportError(f"{wire.method} {wire.url}: {exc}"))

        status = response.status_code
        try:
            if status >= 400:
                body = await response.aread()
                error = self._parser.error_for(op, status, body, method=wire.method, url=wire.url)
                return Outcome(error=error, status_code=status)

            if type(op).row_field is not None:
                return await self._stream(entry, response)

            body = await response.aread()
            try:
                result = self._parser.parse_body(op, status, body)
            except CouchError as exc:
                return Outcome(error=exc, status_code=status)
            logger.debug("Completed %s with %d", entry.label, status)
            return Outcome(result=result, status_code=status)
        except httpx.TimeoutException as exc:
            return Outcome(
                error=OperationTimeout(f"{wire.method} {wire.url}: {exc}"),
                status_code=status,
                rows_delivered=entry.rows_delivered,
            )
        except httpx.HTTPError as exc:
            return Outcome(
                error=TransportError(f"{wire.method} {wire.url}: {exc}"),
                status_code=status,
                rows_delivered=entry.rows_delivered,
            )
        finally:
            await response.aclose()

    async def _stream(self, entry: QueueEntry, response: httpx.Response) -> Outcome:
        status = response.status_code

        async def deliver(row: dict[str, Any]) -> None:
            if entry.cancel_reason is not None:
                raise asyncio.CancelledError
            entry.rows_delivered += 1
            if entry.on_row is not None:
                await call_row_callback(entry.on_row, row)

        try:
            rows = await self._parser.stream_rows(
                entry.operation,  # type: ignore[arg-type]
                response.aiter_bytes(),
                deliver,
            )
        except CouchError as exc:
            exc.status_code = status
            return Outcome(error=exc, status_code=status, rows_delivered=entry.rows_delivered)
        except httpx.HTTPError:
            raise
        except Exception as exc:
            # The caller's row callback raised: the operation ends with that error.
            logger.warning("Row callback for %s raised", entry.label, exc_info=True)
            return Outcome(error=exc, status_code=status, rows_delivered=entry.rows_delivered)

        logger.debug("Completed %s with %d rows", entry.label, entry.rows_delivered)
        result = rows.model_copy(update={"rows_delivered": entry.rows_delivered})
        return Outcome(
            result=result,
            status_code=status,
            rows_delivered=entry.rows_delivered,
            bookmark=result.bookmark,
        )

    async def _deliver(self, entry: QueueEntry, outcome: Outcome) -> None:
        """Fire the completion callback and resolve the handle, exactly once."""
        if entry.timer is not None:
            entry.timer.cancel()
        if entry.on_complete is not None:
            try:
                result = entry.on_complete(outcome)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning("Completion callback for %s raised", entry.label, exc_info=True)
        if not entry.future.done():
            entry.future.set_result(outcome)
        with self._lock:
            self._outstanding.discard(entry)

    # -- shutdown --

    async def join(self) -> None:
        """Wait until every submitted operation has delivered its outcome."""
        while True:
            with self._lock:
                futures = [entry.future for entry in self._outstanding]
            if not futures:
                return
            await asyncio.wait(futures)

    async def close(self) -> None:
        """Refuse new work, cancel everything outstanding, and wait for it to settle."""
        with self._lock:
            self._closed = True
            entries = list(self._outstanding)
        for entry in entries:
            self.cancel(entry)
        await self.join()


def _cancelled_outcome(entry: QueueEntry) -> Outcome:
    if entry.cancel_reason is TransportErrorKind.TIMEOUT:
        error: TransportError = OperationTimeout()
    else:
        error = OperationCancelled()
    return Outcome(error=error, rows_delivered=entry.rows_delivered)

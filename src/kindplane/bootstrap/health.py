"""Health convergence polling.

Controllers report progress asynchronously through status conditions. The
poller turns that into a wait-with-deadline: each tick fetches a resource's
conditions, derives a HealthSnapshot and evaluates a predicate against it.

Per-resource lifecycle::

    UNKNOWN -> PENDING -> HEALTHY | FAILED | TIMED_OUT | CANCELLED

Every wait honours a deadline and an optional ``asyncio.Event`` used as a
cancellation signal; both interrupt in-flight fetches as well as sleeps.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from enum import Enum

from ..errors import (
    AggregateConvergenceError,
    ConvergenceCancelledError,
    ConvergenceError,
    ConvergenceTimeoutError,
    KindplaneError,
    NotFoundError,
    TransientError,
    UnreachableError,
)
from ..models import Condition, HealthSnapshot, ResourceRef
from ..shared import get_logger
from .resources import ResourceClient

logger = get_logger(__name__)

Predicate = Callable[[HealthSnapshot], bool]
AttemptCallback = Callable[[ResourceRef, int, HealthSnapshot, str | None], None]

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_TIMEOUT = 300.0
DEFAULT_MAX_FAILURES = 5
DEFAULT_MAX_WORKERS = 4


class PollState(Enum):
    """Lifecycle of a single resource wait."""

    UNKNOWN = "unknown"
    PENDING = "pending"
    HEALTHY = "healthy"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self not in (PollState.UNKNOWN, PollState.PENDING)


def is_installed_and_healthy(snapshot: HealthSnapshot) -> bool:
    """Default predicate for packages: Installed and Healthy both True."""
    return snapshot.installed and snapshot.healthy


def condition_true(condition_type: str) -> Predicate:
    """Build a predicate holding when the given condition type is True."""

    def predicate(snapshot: HealthSnapshot) -> bool:
        return snapshot.is_true(condition_type)

    predicate.__name__ = f"condition_true({condition_type})"
    return predicate


class _Interrupted(Exception):
    """Internal signal: a fetch or sleep was cut short."""

    def __init__(self, cancelled: bool):
        self.cancelled = cancelled
        super().__init__("cancelled" if cancelled else "deadline")


class HealthConvergencePoller:
    """Poll resource conditions until a health predicate holds."""

    def __init__(
        self,
        client: ResourceClient,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = DEFAULT_TIMEOUT,
        max_consecutive_failures: int = DEFAULT_MAX_FAILURES,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        """Initialize poller.

        Args:
            client: Cluster API client used to read conditions.
            poll_interval: Default seconds between ticks.
            timeout: Default deadline in seconds for a single wait.
            max_consecutive_failures: Transient fetch errors tolerated in a
                row before a resource is declared unreachable.
            max_workers: Ceiling on concurrent polls in ``wait_all``.
        """
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.client = client
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.max_consecutive_failures = max_consecutive_failures
        self.max_workers = max_workers
        # State of each resource in the current wait; wait_all resets it
        self.states: dict[ResourceRef, PollState] = {}

    async def _race(
        self,
        awaitable,
        cancel_event: asyncio.Event | None,
        remaining: float,
    ):
        """Await ``awaitable`` unless cancellation or the deadline comes first."""
        task = asyncio.ensure_future(awaitable)
        waiters = {task}
        cancel_task = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(waiters, timeout=max(remaining, 0.0), return_when=asyncio.FIRST_COMPLETED)
        finally:
            if cancel_task is not None and not cancel_task.done():
                cancel_task.cancel()

        if task in done:
            return task.result()
        task.cancel()
        raise _Interrupted(cancelled=cancel_task is not None and cancel_task in done)

    async def _fetch(
        self,
        ref: ResourceRef,
        cancel_event: asyncio.Event | None,
        remaining: float,
    ) -> list[Condition]:
        return await self._race(asyncio.to_thread(self.client.conditions, ref), cancel_event, remaining)

    async def _sleep(self, seconds: float, cancel_event: asyncio.Event | None) -> None:
        """Sleep for ``seconds``; raise _Interrupted early only on cancellation."""
        if cancel_event is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise _Interrupted(cancelled=True)

    async def wait_until_healthy(
        self,
        ref: ResourceRef,
        predicate: Predicate = is_installed_and_healthy,
        poll_interval: float | None = None,
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
        on_attempt: AttemptCallback | None = None,
    ) -> HealthSnapshot:
        """Poll ``ref`` until ``predicate`` holds.

        A resource that does not exist yet counts as pending, not failed.

        Args:
            ref: Resource to watch.
            predicate: Health predicate evaluated on every snapshot.
            poll_interval: Seconds between ticks (defaults to the poller's).
            timeout: Deadline in seconds (defaults to the poller's).
            cancel_event: Set to abandon the wait promptly.
            on_attempt: Optional callback called with
                (ref, attempt, snapshot, error) after every tick.

        Returns:
            The snapshot that satisfied the predicate.

        Raises:
            ConvergenceTimeoutError: Deadline elapsed; carries the last snapshot.
            ConvergenceCancelledError: ``cancel_event`` was set.
            UnreachableError: Too many consecutive transient fetch errors.
            ConvergenceError: A fetch failed in a non-retryable way.
        """
        interval = poll_interval or self.poll_interval
        timeout = self.timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline_at = loop.time() + timeout

        snapshot = HealthSnapshot()
        attempt = 0
        failures = 0
        self.states[ref] = PollState.UNKNOWN

        try:
            while True:
                if cancel_event is not None and cancel_event.is_set():
                    raise _Interrupted(cancelled=True)

                attempt += 1
                error: str | None = None
                try:
                    conditions = await self._fetch(ref, cancel_event, deadline_at - loop.time())
                    snapshot = HealthSnapshot.from_conditions(conditions)
                    failures = 0
                except NotFoundError:
                    snapshot = HealthSnapshot()
                    failures = 0
                    error = "not found"
                except TransientError as e:
                    failures += 1
                    error = e.message
                    logger.warning(
                        "health_fetch_failed",
                        resource=str(ref),
                        attempt=attempt,
                        consecutive_failures=failures,
                        error=error,
                    )
                    if failures >= self.max_consecutive_failures:
                        self.states[ref] = PollState.FAILED
                        raise UnreachableError(ref, snapshot, attempt, last_error=error) from e
                except KindplaneError as e:
                    self.states[ref] = PollState.FAILED
                    raise ConvergenceError(f"failed to read conditions: {e.message}", ref, snapshot, attempt) from e

                self.states[ref] = PollState.PENDING
                if on_attempt:
                    on_attempt(ref, attempt, snapshot, error)

                if predicate(snapshot):
                    self.states[ref] = PollState.HEALTHY
                    logger.info("resource_healthy", resource=str(ref), attempts=attempt)
                    return snapshot

                remaining = deadline_at - loop.time()
                if remaining <= 0:
                    raise _Interrupted(cancelled=False)
                await self._sleep(min(interval, remaining), cancel_event)

        except _Interrupted as interrupted:
            if interrupted.cancelled:
                self.states[ref] = PollState.CANCELLED
                raise ConvergenceCancelledError(ref, snapshot, attempt) from None
            self.states[ref] = PollState.TIMED_OUT
            logger.warning("resource_timed_out", resource=str(ref), attempts=attempt)
            raise ConvergenceTimeoutError(ref, snapshot, attempt) from None
        except asyncio.CancelledError:
            self.states[ref] = PollState.CANCELLED
            raise

    async def wait_all(
        self,
        refs: Iterable[ResourceRef],
        predicate: Predicate = is_installed_and_healthy,
        poll_interval: float | None = None,
        timeout: float | None = None,
        cancel_event: asyncio.Event | None = None,
        on_attempt: AttemptCallback | None = None,
    ) -> dict[ResourceRef, HealthSnapshot]:
        """Wait for several resources concurrently and join.

        At most ``max_workers`` polls run at once. Every resource is waited
        on even when others fail. One deadline covers the whole join, so a
        resource queued behind the worker ceiling only gets the time left.
        ``states`` is reset at the start of each call.

        Returns:
            Healthy snapshot per resource.

        Raises:
            AggregateConvergenceError: Listing every per-resource failure.
        """
        refs = list(refs)
        self.states.clear()
        semaphore = asyncio.Semaphore(self.max_workers)
        loop = asyncio.get_running_loop()
        deadline_at = loop.time() + (self.timeout if timeout is None else timeout)

        async def worker(ref: ResourceRef) -> HealthSnapshot:
            async with semaphore:
                remaining = deadline_at - loop.time()
                if remaining <= 0:
                    self.states[ref] = PollState.TIMED_OUT
                    logger.warning("resource_timed_out", resource=str(ref), attempts=0)
                    raise ConvergenceTimeoutError(ref, HealthSnapshot(), 0)
                return await self.wait_until_healthy(
                    ref,
                    predicate=predicate,
                    poll_interval=poll_interval,
                    timeout=remaining,
                    cancel_event=cancel_event,
                    on_attempt=on_attempt,
                )

        results = await asyncio.gather(*(worker(ref) for ref in refs), return_exceptions=True)

        snapshots: dict[ResourceRef, HealthSnapshot] = {}
        failures: list[ConvergenceError] = []
        for ref, result in zip(refs, results):
            if isinstance(result, ConvergenceError):
                failures.append(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                snapshots[ref] = result

        if failures:
            raise AggregateConvergenceError(failures)
        return snapshots

    def wait_until_healthy_sync(self, ref: ResourceRef, **kwargs) -> HealthSnapshot:
        """Synchronous wrapper for wait_until_healthy."""
        return asyncio.run(self.wait_until_healthy(ref, **kwargs))

"""Resumable batch runner that keeps subscribed threads alive.

The runner walks the active keep-alive subscriptions in creation order, a
small batch at a time, and pings each subscribed thread. Progress is stored
in a singleton cursor row after every completed batch so a restarted process
resumes where the last completed batch ended.

Guarantees
----------
* **Single-flight**: at most one run per process. A second ``run_now`` while
  one is active returns ``RunResult(skipped=True)`` instead of queueing.
* **Resumable**: the cursor is written only after a whole batch finished, so a
  crash re-processes at most the batch that was in flight.
* **Paced**: items are pinged one after another with a delay after each, and
  full batches are followed by a longer pause, to stay under Discord's limits.
* **Cooperative abort**: ``request_abort`` is honoured at batch boundaries; the
  batch in flight always completes and records its cursor.

Per-item failures are counted and logged. Failures of the stores propagate
out of ``run_now`` untouched.
"""

import asyncio
import logging
import threading
import time
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from models import CursorState, Subscription, ThreadRef

logger = logging.getLogger(__name__)

PingFn = Callable[[ThreadRef], Awaitable[bool]]
SleepFn = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class KeepAliveConfig:
    batch_size: int = 5
    delay_between_items: float = 3.0  # seconds
    delay_between_batches: float = 10.0  # seconds
    # Start over from the first subscription once a previous run reached the end.
    wrap_around: bool = True

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.delay_between_items < 0 or self.delay_between_batches < 0:
            raise ValueError("keep-alive delays must not be negative")


@dataclass(frozen=True)
class BatchOutcome:
    success_count: int = 0
    failure_count: int = 0


@dataclass(frozen=True)
class RunResult:
    success_count: int = 0
    failure_count: int = 0
    processed: int = 0
    batches: int = 0
    aborted: bool = False
    skipped: bool = False

    def summary(self) -> str:
        """One line suitable for a chat reply or a log entry."""
        if self.skipped:
            return "A keep-alive run is already in progress, this request was skipped."
        text = (
            f"processed {self.processed} thread(s) in {self.batches} batch(es): "
            f"{self.success_count} success, {self.failure_count} failure(s)"
        )
        if self.aborted:
            return f"Keep-alive run aborted after it {text}."
        return f"Keep-alive run finished, {text}."


class SubscriptionSource(Protocol):
    async def list_active_after(self, cursor: Optional[int], limit: int) -> List[Subscription]:
        """Active subscriptions in creation order strictly after ``cursor``."""
        ...


class CursorStore(Protocol):
    async def read_state(self) -> CursorState:
        ...

    async def write(self, subscription_id: int) -> None:
        ...

    async def mark_exhausted(self) -> None:
        ...


class RunState:
    """The ``running`` / ``abort_requested`` pair behind one lock.

    The Flask health thread reads this concurrently with the event loop, so
    every access goes through the lock and starting a run is a single
    check-and-set.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._running = False
        self._abort_requested = False

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    @property
    def abort_requested(self) -> bool:
        with self._lock:
            return self._abort_requested

    def try_begin(self) -> bool:
        with self._lock:
            if self._running:
                return False
            self._running = True
            self._abort_requested = False
            return True

    def finish(self) -> None:
        with self._lock:
            self._running = False

    def request_abort(self) -> bool:
        with self._lock:
            if not self._running:
                return False
            self._abort_requested = True
            return True


class Pager:
    def __init__(self, source: SubscriptionSource) -> None:
        self._source = source

    async def next_batch(self, cursor: Optional[int], size: int) -> List[Subscription]:
        """Returns at most ``size`` active subscriptions after ``cursor``.

        A cursor pointing at a deactivated or deleted subscription is a plain
        position marker; the source skips past where it sorted.
        """
        if size < 1:
            raise ValueError(f"batch size must be at least 1, got {size}")
        batch = await self._source.list_active_after(cursor, size)
        return list(batch)[:size]


class Pacer:
    def __init__(self, config: KeepAliveConfig, sleep: SleepFn = asyncio.sleep) -> None:
        self._config = config
        self._sleep = sleep

    async def after_item(self) -> None:
        if self._config.delay_between_items > 0:
            await self._sleep(self._config.delay_between_items)

    async def between_batches(self) -> None:
        if self._config.delay_between_batches > 0:
            await self._sleep(self._config.delay_between_batches)


class BatchProcessor:
    def __init__(self, ping: PingFn, pacer: Pacer) -> None:
        self._ping = ping
        self._pacer = pacer

    async def process(self, batch: Sequence[Subscription]) -> BatchOutcome:
        success_count = 0
        failure_count = 0

        for subscription in batch:
            thread = subscription.thread
            logger.info("Processing: %s (id=%s)", thread.name or thread.thread_id, subscription.id)

            try:
                ok = await self._ping(thread)
            except Exception:
                logger.exception("Error processing thread %s", thread.thread_id)
                ok = False
            else:
                if not ok:
                    logger.warning("Keep-alive ping failed for thread %s", thread.thread_id)

            if ok:
                success_count += 1
            else:
                failure_count += 1

            # Respect rate limits, even after a failure
            await self._pacer.after_item()

        return BatchOutcome(success_count=success_count, failure_count=failure_count)


class KeepAliveRunner:
    """Coordinates keep-alive runs; one instance per bot process."""

    POLL_INTERVAL = 0.25  # seconds, used by wait_until_stopped

    def __init__(
        self,
        subscriptions: SubscriptionSource,
        cursors: CursorStore,
        ping: PingFn,
        *,
        config: Optional[KeepAliveConfig] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._subscriptions = subscriptions
        self._cursors = cursors
        self._ping = ping
        self._config = config or KeepAliveConfig()
        self._sleep = sleep
        self._state = RunState()

        self.last_result: Optional[RunResult] = None
        self.last_started_at: Optional[float] = None
        self.last_finished_at: Optional[float] = None

    @property
    def config(self) -> KeepAliveConfig:
        return self._config

    @property
    def running(self) -> bool:
        return self._state.running

    def status_snapshot(self) -> Dict[str, Any]:
        return {
            "running": self._state.running,
            "abort_requested": self._state.abort_requested,
            "last_started_at": self.last_started_at,
            "last_finished_at": self.last_finished_at,
            "last_result": asdict(self.last_result) if self.last_result else None,
        }

    async def run_now(self, config: Optional[KeepAliveConfig] = None) -> RunResult:
        if not self._state.try_begin():
            logger.warning("Keep-alive already running, skipping concurrent run")
            return RunResult(skipped=True)

        cfg = config or self._config
        self.last_started_at = time.time()
        logger.info(
            "Starting keep-alive run (batch_size=%d, item delay=%.1fs, batch delay=%.1fs)",
            cfg.batch_size,
            cfg.delay_between_items,
            cfg.delay_between_batches,
        )

        try:
            result = await self._run(cfg)
        except Exception:
            logger.exception("Critical error in keep-alive run")
            raise
        finally:
            self._state.finish()
            self.last_finished_at = time.time()

        self.last_result = result
        logger.info("%s", result.summary())
        return result

    def request_abort(self) -> None:
        """Ask the active run to stop at the next batch boundary."""
        if self._state.request_abort():
            logger.info("Abort requested for the running keep-alive job")

    async def wait_until_stopped(self, timeout: float = 15.0) -> bool:
        """Polls until no run is active or ``timeout`` seconds passed.

        Returns True when the runner is idle. False means the run did not
        stop in time, which is not an error.
        """
        deadline = time.monotonic() + timeout
        while self._state.running and time.monotonic() < deadline:
            await asyncio.sleep(self.POLL_INTERVAL)
        return not self._state.running

    async def _run(self, cfg: KeepAliveConfig) -> RunResult:
        state = await self._cursors.read_state()
        cursor = state.last_subscription_id
        if state.exhausted and cfg.wrap_around and cursor is not None:
            logger.info("Previous pass reached the end, starting again from the first subscription")
            cursor = None

        pager = Pager(self._subscriptions)
        pacer = Pacer(cfg, self._sleep)
        processor = BatchProcessor(self._ping, pacer)

        success_count = 0
        failure_count = 0
        processed = 0
        batches = 0
        aborted = False

        first_fetch = True
        while True:
            batch = await pager.next_batch(cursor, cfg.batch_size)
            if not batch and first_fetch and cursor is not None and cfg.wrap_around:
                # The previous run stopped on the last batch before it could mark the pass complete
                logger.info("Nothing left after subscription %s, starting again from the first subscription", cursor)
                cursor = None
                batch = await pager.next_batch(cursor, cfg.batch_size)
            first_fetch = False

            if not batch:
                await self._cursors.mark_exhausted()
                break

            outcome = await processor.process(batch)
            success_count += outcome.success_count
            failure_count += outcome.failure_count
            processed += len(batch)
            batches += 1

            # Only a completed batch moves the cursor
            cursor = batch[-1].id
            await self._cursors.write(cursor)

            if self._state.abort_requested:
                aborted = True
                break

            if len(batch) < cfg.batch_size:
                await self._cursors.mark_exhausted()
                break

            await pacer.between_batches()

            if self._state.abort_requested:
                aborted = True
                break

        if aborted:
            logger.info("Keep-alive run stopping on request at subscription %s", cursor)

        return RunResult(
            success_count=success_count,
            failure_count=failure_count,
            processed=processed,
            batches=batches,
            aborted=aborted,
        )

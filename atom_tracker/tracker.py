"""
Atom event tracker.

Accumulates records per stream and sends them in batches:
1. track() appends to the stream's queue and flushes it when the record
   count or serialized size reaches its limit
2. A timer thread flushes every stream every flush_interval_s
3. Each detached batch is sent on a worker thread; on 5xx a retry is
   scheduled with exponential backoff + jitter until the retry ceiling.
   Workers never sleep through a backoff, so a failing stream cannot
   hold up the others
4. stop() flushes what is left and waits for in-flight sends
"""
import dataclasses
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Callable, Optional
import structlog

from .config import Config, apply_overrides
from .exceptions import (
    InvalidArgumentError,
    RetryExhaustedError,
    TerminalTransportError,
    TrackerError,
    TrackerStoppedError,
    TransientTransportError,
)
from .transmission.backoff import Backoff
from .transmission.buffer import Batch, StreamBuffer, serialize_record, validate_track_args
from .transmission.circuit_breaker import is_circuit_open
from .transmission.http_client import AtomClient

logger = structlog.get_logger()

FlushCallback = Callable[[Optional[TrackerError], list["FlushResult"]], None]


@dataclass(frozen=True)
class FlushResult:
    """Outcome of one batch send."""

    stream: str
    error: Optional[TrackerError]
    data: Any
    status: Optional[int]
    records: int = 0
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(eq=False)
class _Delivery:
    """One detached batch on its way to Atom."""

    batch: Batch
    backoff: Backoff
    result: Future

    @property
    def attempts(self) -> int:
        return self.backoff.attempts + 1


class Tracker:
    """
    Buffers records per stream and delivers them to Atom.

    Thread-safe. Buffer mutation and dispatch happen under one lock;
    send attempts run on a thread pool, retries wait on timers.
    """

    def __init__(self, config: Optional[Config] = None, client=None, **overrides):
        """
        Initialize tracker and start the flush timer.

        Args:
            config: Tracker configuration (copied, defaults if None)
            client: Transport with put_events(stream, records, method)
            **overrides: Config field overrides
        """
        self.config = apply_overrides(
            dataclasses.replace(config) if config is not None else Config(),
            **overrides
        )
        self.client = client if client is not None else AtomClient(self.config)
        self.buffer = StreamBuffer(self.config.bulk_len, self.config.bulk_size_bytes)

        self._lock = threading.RLock()
        self._stopped = False
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.send_workers,
            thread_name_prefix="atom-send"
        )
        self._inflight: set[Future] = set()
        self._inflight_lock = threading.Lock()
        # Deliveries waiting for their retry timer, guarded by _retry_lock
        self._retries: dict[_Delivery, threading.Timer] = {}
        self._retry_lock = threading.Lock()
        self._timer_stop = threading.Event()
        self._abort = threading.Event()
        self._timer: Optional[threading.Thread] = None

        logger.info(
            "tracker_started",
            endpoint=self.config.endpoint,
            flush_interval_s=self.config.flush_interval_s,
            bulk_len=self.config.bulk_len,
            bulk_size_bytes=self.config.bulk_size_bytes
        )
        self._start_timer()

    def _start_timer(self):
        """Start background thread for periodic flushes."""
        if self._timer is not None:
            return

        def timer_worker():
            logger.debug("flush_timer_started", interval_s=self.config.flush_interval_s)
            while not self._timer_stop.wait(timeout=self.config.flush_interval_s):
                try:
                    self.flush()
                except TrackerStoppedError:
                    break
                except Exception as e:
                    logger.error("timer_flush_failed", error=str(e))
            logger.debug("flush_timer_stopped")

        self._timer = threading.Thread(
            target=timer_worker,
            daemon=True,
            name="atom-flush-timer"
        )
        self._timer.start()

    def track(self, stream: str, data: Any) -> None:
        """
        Buffer one record for a stream.

        Flushes the stream immediately when it reaches bulk_len records or
        bulk_size_bytes serialized bytes.

        Args:
            stream: Atom stream name
            data: Text or JSON-serializable value

        Raises:
            InvalidArgumentError: Empty stream or data
            SerializationError: Data has no text form
            TrackerStoppedError: Tracker already stopped
        """
        validate_track_args(stream, data)
        record = serialize_record(data)

        with self._lock:
            if self._stopped:
                raise TrackerStoppedError("Tracker is stopped", details={'stream': stream})
            batch = self.buffer.add(stream, record)
            futures = self._start([batch]) if batch is not None else []

        if futures:
            self._aggregate(futures, None)

    def flush(self, stream: Optional[str] = None, callback: Optional[FlushCallback] = None) -> Future:
        """
        Send buffered records now.

        Args:
            stream: Stream to flush, or None for every non-empty stream
            callback: Called once with (error, results) when all sends settle;
                error is the first failed result's error or None

        Raises:
            InvalidArgumentError: Stream given but empty or not a string

        Returns:
            Future resolving to the list of FlushResult, in dispatch order
        """
        if stream is not None and (not isinstance(stream, str) or not stream):
            raise InvalidArgumentError("Stream name must be a non-empty string")

        with self._lock:
            if self._stopped:
                raise TrackerStoppedError("Tracker is stopped")
            batches = self.buffer.detach(stream)
            if batches:
                logger.debug(
                    "flush_started",
                    streams=[b.stream for b in batches],
                    records=sum(len(b) for b in batches)
                )
            futures = self._start(batches)

        return self._aggregate(futures, callback)

    def _start(self, batches: list[Batch]) -> list[Future]:
        # Caller holds self._lock; completion wiring happens after release
        futures = []
        for batch in batches:
            delivery = _Delivery(batch, Backoff.from_config(self.config), Future())
            with self._inflight_lock:
                self._inflight.add(delivery.result)
            delivery.result.add_done_callback(self._discard_inflight)
            self._executor.submit(self._attempt, delivery)
            futures.append(delivery.result)
        return futures

    def _aggregate(self, futures: list[Future], callback: Optional[FlushCallback]) -> Future:
        aggregate: Future = Future()

        if not futures:
            self._complete(aggregate, [], callback)
            return aggregate

        remaining = len(futures)
        counter_lock = threading.Lock()

        def on_done(_):
            nonlocal remaining
            with counter_lock:
                remaining -= 1
                if remaining:
                    return
            self._complete(aggregate, [f.result() for f in futures], callback)

        for future in futures:
            future.add_done_callback(on_done)

        return aggregate

    def _discard_inflight(self, future: Future):
        with self._inflight_lock:
            self._inflight.discard(future)

    def _complete(self, aggregate: Future, results: list[FlushResult], callback: Optional[FlushCallback]):
        error = next((r.error for r in results if r.error is not None), None)

        if callback is not None:
            try:
                callback(error, results)
            except Exception as e:
                logger.error("flush_callback_failed", error=str(e))
        elif error is not None:
            logger.debug("flush_failed_without_callback", error=str(error))

        aggregate.set_result(results)

    def _attempt(self, delivery: _Delivery):
        """
        Make one send attempt for a batch.

        Resolves the delivery on success, terminal failure or exhausted
        backoff; otherwise schedules the next attempt. Always resends the
        same batch, never the live queue.
        """
        batch = delivery.batch
        attempts = delivery.attempts

        try:
            error, data, status = self.client.put_events(batch.stream, list(batch.records))
        except Exception as e:
            logger.error("send_unexpected_error", stream=batch.stream, error=str(e))
            failure = TerminalTransportError(f"Unexpected transport error: {e}", status=0)
            self._resolve(delivery, failure, None, 0)
            return

        if error is None:
            logger.debug(
                "batch_sent",
                stream=batch.stream,
                records=len(batch),
                status=status,
                attempts=attempts
            )
            self._resolve(delivery, None, data, status)
            return

        if status is None or status < 500:
            logger.warning(
                "batch_rejected",
                stream=batch.stream,
                records=len(batch),
                status=status,
                error=str(error)
            )
            failure = TerminalTransportError(str(error), status=status, body=error)
            self._resolve(delivery, failure, None, status)
            return

        last_error = TransientTransportError(str(error), status=status, body=error)

        if delivery.backoff.exhausted:
            logger.error(
                "batch_retry_exhausted",
                stream=batch.stream,
                records=len(batch),
                attempts=attempts,
                last_status=status
            )
            failure = RetryExhaustedError("Timeout - No response from server", last_error=last_error)
            self._resolve(delivery, failure, None, failure.status)
            return

        self._schedule_retry(delivery, status)

    def _schedule_retry(self, delivery: _Delivery, status: int):
        with self._retry_lock:
            if self._abort.is_set():
                self._resolve_stopped(delivery, status)
                return

            delay = delivery.backoff.next_delay()
            logger.warning(
                "batch_send_failed_retrying",
                stream=delivery.batch.stream,
                status=status,
                attempt=delivery.attempts - 1,
                delay_s=round(delay, 3)
            )
            timer = threading.Timer(delay, self._resubmit, args=(delivery,))
            timer.daemon = True
            self._retries[delivery] = timer
            timer.start()

    def _resubmit(self, delivery: _Delivery):
        with self._retry_lock:
            if self._retries.pop(delivery, None) is None:
                return  # settled by stop()
            self._executor.submit(self._attempt, delivery)

    def _resolve(self, delivery: _Delivery, error: Optional[TrackerError], data: Any, status: Optional[int]):
        delivery.result.set_result(FlushResult(
            delivery.batch.stream, error, data, status, len(delivery.batch), delivery.attempts
        ))

    def _resolve_stopped(self, delivery: _Delivery, last_status: Optional[int]):
        logger.warning("batch_retry_aborted", stream=delivery.batch.stream, records=len(delivery.batch))
        failure = TrackerStoppedError(
            "Tracker stopped while retrying",
            details={'stream': delivery.batch.stream, 'last_status': last_status}
        )
        self._resolve(delivery, failure, None, None)

    def pending(self, stream: Optional[str] = None) -> int:
        """Number of buffered, not yet detached records."""
        return self.buffer.pending(stream)

    def stats(self) -> dict[str, Any]:
        """Buffer statistics plus in-flight batch count and breaker state."""
        stats = self.buffer.stats()
        with self._inflight_lock:
            stats["inflight_batches"] = len(self._inflight)
        with self._retry_lock:
            stats["retrying_batches"] = len(self._retries)
        breaker = getattr(self.client, 'breaker', None)
        stats["circuit_open"] = is_circuit_open(breaker) if breaker is not None else None
        stats["stopped"] = self._stopped
        return stats

    def stop(self, timeout: Optional[float] = None):
        """
        Stop the tracker.

        Stops the timer, flushes remaining records, waits up to timeout
        seconds (None: no limit) for in-flight sends, then aborts any batch
        still waiting to retry. Safe to call more than once.

        Args:
            timeout: Seconds to wait for in-flight sends
        """
        with self._lock:
            if self._stopped:
                return
            logger.info("tracker_stopping")
            self._stopped = True
            self._timer_stop.set()
            futures = self._start(self.buffer.detach())

        self._aggregate(futures, None)

        if self._timer is not None and self._timer is not threading.current_thread():
            self._timer.join()

        with self._inflight_lock:
            inflight = list(self._inflight)

        _, not_done = wait(inflight, timeout=timeout)
        if not_done:
            logger.warning("stop_aborting_inflight", batches=len(not_done))

        with self._retry_lock:
            self._abort.set()
            waiting = list(self._retries.items())
            self._retries.clear()

        for delivery, timer in waiting:
            timer.cancel()
            self._resolve_stopped(delivery, None)

        self._executor.shutdown(wait=True)
        logger.info("tracker_stopped")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.stop()

"""
In-memory per-stream buffer.

Records are serialized to text when accumulated. Each stream has its own
queue; flushing detaches the queue and replaces it with an empty one, so a
detached batch is never touched again by track().
"""
import json
import threading
from dataclasses import dataclass
from typing import Any, Optional, Union
import structlog

from ..exceptions import InvalidArgumentError, SerializationError

logger = structlog.get_logger()

Record = Union[str, bytes, dict, list, tuple, int, float, bool]


def serialize_record(data: Record) -> str:
    """
    Convert one record to its wire text.

    Text passes through unchanged, bytes are decoded as UTF-8 and
    structured values are encoded as compact JSON.

    Args:
        data: Record supplied by the caller

    Raises:
        SerializationError: If the value has no text form

    Returns:
        Serialized record
    """
    if isinstance(data, str):
        return data

    if isinstance(data, (bytes, bytearray)):
        try:
            return bytes(data).decode('utf-8')
        except UnicodeDecodeError as e:
            raise SerializationError(
                "Invalid data - bytes are not valid UTF-8",
                details={'error': str(e)}
            ) from e

    try:
        return json.dumps(data, separators=(',', ':'), allow_nan=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(
            "Invalid data - can't be serialized",
            details={'type': type(data).__name__, 'error': str(e)}
        ) from e


def validate_track_args(stream: Any, data: Any):
    """
    Reject a missing/empty stream name or empty data.

    Raises:
        InvalidArgumentError: If either argument is empty
    """
    if not isinstance(stream, str) or not stream:
        raise InvalidArgumentError("Stream name and data are required parameters")

    if data is None:
        raise InvalidArgumentError("Stream name and data are required parameters")

    # Zero and False are valid values, empty containers are not
    if isinstance(data, (str, bytes, bytearray, dict, list, tuple)) and len(data) == 0:
        raise InvalidArgumentError("Stream name and data are required parameters")


def byte_count(records: list[str]) -> int:
    """UTF-8 size of the records joined with commas."""
    if not records:
        return 0
    return sum(len(r.encode('utf-8')) for r in records) + len(records) - 1


@dataclass(frozen=True)
class Batch:
    """Detached, immutable set of records for one send."""

    stream: str
    records: tuple[str, ...]
    size_bytes: int

    def __len__(self) -> int:
        return len(self.records)


class StreamQueue:
    """
    Ordered records for one stream.

    Keeps a running byte size so trigger checks do not re-encode the queue.
    """

    def __init__(self, stream: str):
        self.stream = stream
        self._records: list[str] = []
        self._size_bytes = 0

    def add(self, record: str) -> None:
        """Append a serialized record."""
        if self._records:
            self._size_bytes += 1  # separator
        self._size_bytes += len(record.encode('utf-8'))
        self._records.append(record)

    def freeze(self) -> Batch:
        """Snapshot the queue as an immutable batch."""
        return Batch(self.stream, tuple(self._records), self._size_bytes)

    @property
    def size_bytes(self) -> int:
        return self._size_bytes

    def __len__(self) -> int:
        return len(self._records)


class StreamBuffer:
    """
    Buffer table: stream name -> StreamQueue.

    All access goes through one lock. Queues are created on first use and
    never removed; detaching leaves an empty queue in place.
    """

    def __init__(self, bulk_len: int, bulk_size_bytes: int):
        """
        Initialize buffer.

        Args:
            bulk_len: Record count that triggers a flush
            bulk_size_bytes: Serialized size that triggers a flush
        """
        self.bulk_len = bulk_len
        self.bulk_size_bytes = bulk_size_bytes
        self._queues: dict[str, StreamQueue] = {}
        self._lock = threading.Lock()

    def add(self, stream: str, record: str) -> Optional[Batch]:
        """
        Append a record and check the stream's triggers.

        Args:
            stream: Target stream
            record: Serialized record

        Returns:
            The detached batch if a trigger fired, else None
        """
        with self._lock:
            queue = self._queues.get(stream)
            if queue is None:
                queue = self._queues[stream] = StreamQueue(stream)
            queue.add(record)

            if len(queue) >= self.bulk_len or queue.size_bytes >= self.bulk_size_bytes:
                logger.debug(
                    "flush_triggered",
                    stream=stream,
                    records=len(queue),
                    bytes=queue.size_bytes
                )
                return self._detach(stream)

        return None

    def detach(self, stream: Optional[str] = None) -> list[Batch]:
        """
        Detach non-empty queues.

        Every selected queue is swapped for an empty one before this
        returns, in a single critical section.

        Args:
            stream: Stream to detach, or None for all streams

        Returns:
            Detached batches, empty streams skipped
        """
        with self._lock:
            names = [stream] if stream is not None else list(self._queues)
            batches = []
            for name in names:
                queue = self._queues.get(name)
                if queue is not None and len(queue) >= 1:
                    batches.append(self._detach(name))
            return batches

    def _detach(self, stream: str) -> Batch:
        # Caller holds the lock
        batch = self._queues[stream].freeze()
        self._queues[stream] = StreamQueue(stream)
        return batch

    def pending(self, stream: Optional[str] = None) -> int:
        """Number of buffered records for one stream or all streams."""
        with self._lock:
            if stream is not None:
                queue = self._queues.get(stream)
                return len(queue) if queue else 0
            return sum(len(q) for q in self._queues.values())

    def stats(self) -> dict[str, Any]:
        """
        Get buffer statistics.

        Returns:
            Dict with stream count, total records and per-stream sizes
        """
        with self._lock:
            return {
                "streams": len(self._queues),
                "records": sum(len(q) for q in self._queues.values()),
                "per_stream": {
                    name: {"records": len(q), "bytes": q.size_bytes}
                    for name, q in self._queues.items()
                },
            }

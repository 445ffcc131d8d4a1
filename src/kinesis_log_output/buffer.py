from __future__ import annotations

import logging
from uuid import uuid4

from kinesis_log_output.errors import OversizedRecordError
from kinesis_log_output.models import Batch, LogRecord, WireRecord
from kinesis_log_output.partition_key import PartitionKeyResolver
from kinesis_log_output.serialization import safe_dumps, truncate

LOGGER = logging.getLogger(__name__)

MAX_RECORD_BYTES = 1_048_576


def encode_record(record: LogRecord, *, resolver: PartitionKeyResolver) -> WireRecord:
    wire = WireRecord(data=safe_dumps(record.data), partition_key=resolver.resolve(record))
    size = wire.record_size_bytes
    if size > MAX_RECORD_BYTES:
        raise OversizedRecordError(size=size, limit=MAX_RECORD_BYTES, prefix=truncate(wire.data))
    return wire


class StreamBuffer:
    """Pending records of one stream, closed into batches by count and bytes.

    A batch is closed before an append would exceed either limit. A lone
    record is always admitted, so a batch only exceeds ``max_bytes`` when it
    holds exactly one record.
    """

    def __init__(
        self,
        *,
        stream_name: str,
        max_records: int,
        max_bytes: int,
        resolver: PartitionKeyResolver,
    ) -> None:
        if max_records <= 0:
            raise ValueError("max_records must be > 0")
        if max_bytes <= 0:
            raise ValueError("max_bytes must be > 0")

        self._stream_name = stream_name
        self._max_records = max_records
        self._max_bytes = max_bytes
        self._resolver = resolver
        self._records: list[WireRecord] = []
        self._size_bytes = 0

    @property
    def pending_count(self) -> int:
        return len(self._records)

    @property
    def pending_bytes(self) -> int:
        return self._size_bytes

    def write(self, record: LogRecord) -> Batch | None:
        """Append ``record``; return the batch closed to make room, if any."""
        try:
            wire = encode_record(record, resolver=self._resolver)
        except OversizedRecordError as exc:
            LOGGER.error(
                "record_oversized_dropped",
                extra={
                    "stream_name": self._stream_name,
                    "origin": record.origin,
                    "record_size_bytes": exc.size,
                    "max_record_bytes": exc.limit,
                    "record_prefix": exc.prefix,
                },
            )
            return None

        size = wire.record_size_bytes
        closed: Batch | None = None
        if len(self._records) + 1 > self._max_records or (
            self._records and self._size_bytes + size > self._max_bytes
        ):
            closed = self.flush()

        self._records.append(wire)
        self._size_bytes += size
        return closed

    def flush(self) -> Batch | None:
        if not self._records:
            return None

        batch = Batch(
            batch_id=uuid4().hex,
            records=tuple(self._records),
            size_bytes=self._size_bytes,
        )
        self._records = []
        self._size_bytes = 0
        LOGGER.debug(
            "batch_closed",
            extra={
                "stream_name": self._stream_name,
                "batch_id": batch.batch_id,
                "batch_records": len(batch),
                "batch_bytes": batch.size_bytes,
            },
        )
        return batch

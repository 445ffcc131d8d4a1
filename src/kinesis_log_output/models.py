from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class LogRecord(BaseModel):
    """Single application log event and the source it came from."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    origin: str
    data: Any


class WireRecord(BaseModel):
    """Serialized record as submitted to Kinesis."""

    model_config = ConfigDict(frozen=True)

    data: str
    partition_key: str

    @property
    def record_size_bytes(self) -> int:
        # Kinesis counts the data blob plus the partition key against the record limit.
        return len(self.data.encode("utf-8")) + len(self.partition_key.encode("utf-8"))

    def to_request_entry(self) -> dict[str, Any]:
        return {"Data": self.data.encode("utf-8"), "PartitionKey": self.partition_key}


class Batch(BaseModel):
    model_config = ConfigDict(frozen=True)

    batch_id: str
    records: tuple[WireRecord, ...]
    size_bytes: int

    def __len__(self) -> int:
        return len(self.records)


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    ABANDONED = "abandoned"
    TRANSPORT_FAILED = "transport_failed"


class DeliveryReport(BaseModel):
    """Outcome of driving one batch through the retry engine."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    stream_name: str
    batch_id: str
    status: DeliveryStatus
    submissions: int
    delivered: int
    dropped: int
    error: Exception | None = None

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Sequence
from typing import Any, Protocol

import boto3

from kinesis_log_output.errors import ConfigurationError, PartialSubmissionFailure, TransportFailure
from kinesis_log_output.models import Batch, DeliveryReport, DeliveryStatus, WireRecord
from kinesis_log_output.serialization import truncate

LOGGER = logging.getLogger(__name__)

MAX_RETRIES_CEILING = 4


class KinesisClient(Protocol):
    def put_records(self, *, StreamName: str, Records: list[dict[str, Any]]) -> dict[str, Any]:
        ...


def create_kinesis_client(
    *,
    region_name: str,
    endpoint_url: str | None = None,
    aws_access_key_id: str | None = None,
    aws_secret_access_key: str | None = None,
) -> KinesisClient:
    options: dict[str, Any] = {"region_name": region_name}
    if endpoint_url:
        options["endpoint_url"] = endpoint_url
    if aws_access_key_id and aws_secret_access_key:
        options["aws_access_key_id"] = aws_access_key_id
        options["aws_secret_access_key"] = aws_secret_access_key

    return boto3.client("kinesis", **options)


class KinesisRetryEngine:
    """Delivers batches to one stream, resubmitting only failed records.

    A batch gets at most ``max_retries + 1`` submissions. A PutRecords call
    that raises is terminal for the batch; per-record failures are retried
    until they succeed or the budget is spent.
    """

    def __init__(
        self,
        *,
        client: KinesisClient,
        stream_name: str,
        max_retries: int,
        retry_base_delay_ms: int = 100,
        retry_max_delay_ms: int = 5000,
    ) -> None:
        if not stream_name:
            raise ConfigurationError("stream_name is required")
        if max_retries < 0 or max_retries > MAX_RETRIES_CEILING:
            raise ConfigurationError(
                f"max_retries must be between 0 and {MAX_RETRIES_CEILING}, got {max_retries}"
            )
        if retry_base_delay_ms < 0 or retry_max_delay_ms < 0:
            raise ConfigurationError("retry delays must be >= 0")

        self._client = client
        self._stream_name = stream_name
        self._max_retries = max_retries
        self._retry_base_s = retry_base_delay_ms / 1000.0
        self._retry_max_s = retry_max_delay_ms / 1000.0

    @property
    def max_retries(self) -> int:
        return self._max_retries

    async def publish(self, batch: Batch) -> DeliveryReport:
        LOGGER.info(
            "kinesis_batch_sending",
            extra={
                "stream_name": self._stream_name,
                "batch_id": batch.batch_id,
                "batch_records": len(batch),
                "batch_bytes": batch.size_bytes,
            },
        )

        pending: list[WireRecord] = list(batch.records)
        delivered = 0
        attempt = 0

        while True:
            try:
                returned = await self._put_records(pending)
            except TransportFailure as exc:
                LOGGER.error(
                    "kinesis_put_records_failed",
                    extra={
                        "stream_name": self._stream_name,
                        "batch_id": batch.batch_id,
                        "pending_count": len(pending),
                        "attempt": attempt,
                        "error_code": exc.error_code,
                        "error_message": exc.error_message,
                    },
                )
                return self._report(
                    batch,
                    status=DeliveryStatus.TRANSPORT_FAILED,
                    submissions=attempt + 1,
                    delivered=delivered,
                    dropped=len(pending),
                    error=exc,
                )

            failed: list[tuple[WireRecord, dict[str, Any]]] = [
                (record, result)
                for record, result in zip(pending, returned, strict=True)
                if result.get("ErrorCode")
            ]
            delivered += len(pending) - len(failed)

            if not failed:
                LOGGER.info(
                    "kinesis_batch_delivered",
                    extra={
                        "stream_name": self._stream_name,
                        "batch_id": batch.batch_id,
                        "attempts": attempt + 1,
                    },
                )
                return self._report(
                    batch,
                    status=DeliveryStatus.DELIVERED,
                    submissions=attempt + 1,
                    delivered=delivered,
                    dropped=0,
                )

            partial = PartialSubmissionFailure(
                failed=len(failed),
                submitted=len(pending),
                error_codes=frozenset(str(result["ErrorCode"]) for _, result in failed),
            )

            if attempt >= self._max_retries:
                for record, result in failed:
                    LOGGER.error(
                        "kinesis_record_abandoned",
                        extra={
                            "stream_name": self._stream_name,
                            "batch_id": batch.batch_id,
                            "attempt": attempt,
                            "error_code": result.get("ErrorCode"),
                            "error_message": result.get("ErrorMessage"),
                            "partition_key": record.partition_key,
                            "record": truncate(record.data),
                        },
                    )
                LOGGER.error(
                    "kinesis_partial_failure_retry_exhausted",
                    extra={
                        "stream_name": self._stream_name,
                        "batch_id": batch.batch_id,
                        "failed": len(failed),
                        "attempts": attempt + 1,
                    },
                )
                return self._report(
                    batch,
                    status=DeliveryStatus.ABANDONED,
                    submissions=attempt + 1,
                    delivered=delivered,
                    dropped=len(failed),
                    error=partial,
                )

            LOGGER.warning(
                "kinesis_partial_failure",
                extra={
                    "stream_name": self._stream_name,
                    "batch_id": batch.batch_id,
                    "failed": partial.failed,
                    "succeeded": partial.submitted - partial.failed,
                    "error_codes": sorted(partial.error_codes),
                    "attempt": attempt,
                },
            )
            delay = self._retry_delay(attempt)
            if delay > 0:
                await asyncio.sleep(delay)
            attempt += 1
            pending = [record for record, _ in failed]

    async def _put_records(self, records: Sequence[WireRecord]) -> list[dict[str, Any]]:
        try:
            response = await asyncio.to_thread(
                self._client.put_records,
                StreamName=self._stream_name,
                Records=[record.to_request_entry() for record in records],
            )
        except Exception as exc:
            error_code, error_message = _extract_exception_error(exc)
            raise TransportFailure(
                "PutRecords call failed",
                error_code=error_code,
                error_message=error_message,
            ) from exc

        returned = response.get("Records", [])
        if len(returned) != len(records):
            raise TransportFailure(
                "PutRecords returned mismatched result count "
                f"({len(returned)} != {len(records)})",
                error_message="mismatched result count",
            )
        return returned

    def _retry_delay(self, attempt: int) -> float:
        exponential = min(self._retry_max_s, self._retry_base_s * (2**attempt))
        return exponential * random.uniform(0.8, 1.2)

    def _report(
        self,
        batch: Batch,
        *,
        status: DeliveryStatus,
        submissions: int,
        delivered: int,
        dropped: int,
        error: Exception | None = None,
    ) -> DeliveryReport:
        return DeliveryReport(
            stream_name=self._stream_name,
            batch_id=batch.batch_id,
            status=status,
            submissions=submissions,
            delivered=delivered,
            dropped=dropped,
            error=error,
        )


def _extract_exception_error(exc: Exception) -> tuple[str | None, str | None]:
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        error = response.get("Error")
        if isinstance(error, dict):
            code = error.get("Code")
            message = error.get("Message")
            return (
                str(code) if code is not None else None,
                str(message) if message is not None else None,
            )

    return None, str(exc)

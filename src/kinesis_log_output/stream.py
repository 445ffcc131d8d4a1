from __future__ import annotations

import asyncio
import logging

from kinesis_log_output.buffer import StreamBuffer
from kinesis_log_output.kinesis import KinesisClient, KinesisRetryEngine
from kinesis_log_output.models import Batch, DeliveryReport, LogRecord
from kinesis_log_output.partition_key import PartitionKeyResolver
from kinesis_log_output.settings import StreamConfig

LOGGER = logging.getLogger(__name__)


class LogStream:
    """One named Kinesis destination: buffer, flush timer and retry engine.

    The buffer is only touched from the event loop thread, by ``write`` and
    by the timer's ``flush``. Closed batches are delivered in their own
    tasks so writes never wait on Kinesis.
    """

    def __init__(self, *, config: StreamConfig, client: KinesisClient) -> None:
        self._config = config
        self._engine = KinesisRetryEngine(
            client=client,
            stream_name=config.stream_name,
            max_retries=config.max_retries,
            retry_base_delay_ms=config.retry_base_delay_ms,
            retry_max_delay_ms=config.retry_max_delay_ms,
        )
        self._buffer = StreamBuffer(
            stream_name=config.stream_name,
            max_records=config.max_records,
            max_bytes=config.max_bytes,
            resolver=PartitionKeyResolver(
                stream_name=config.stream_name,
                partition_key=config.partition_key,
                partition_key_property=config.partition_key_property,
                origin_rules=config.origin_rules,
            ),
        )
        self._timer: asyncio.Task[None] | None = None
        self._deliveries: set[asyncio.Task[DeliveryReport]] = set()
        self._reports: list[DeliveryReport] = []
        self._stopped = False

    def __repr__(self) -> str:
        return f"LogStream(stream_name={self.name!r})"

    @property
    def name(self) -> str:
        return self._config.stream_name

    @property
    def config(self) -> StreamConfig:
        return self._config

    @property
    def buffer(self) -> StreamBuffer:
        return self._buffer

    @property
    def in_flight(self) -> int:
        return len(self._deliveries)

    def start(self) -> None:
        if self._stopped:
            raise RuntimeError(f"Stream {self.name} was stopped and cannot be restarted")
        if self._timer is not None or self._config.flush_interval_ms == 0:
            return

        self._timer = asyncio.get_running_loop().create_task(
            self._flush_periodically(self._config.flush_interval_ms / 1000.0),
            name=f"flush_timer:{self.name}",
        )

    def write(self, record: LogRecord) -> None:
        if self._stopped:
            LOGGER.warning(
                "stream_write_after_stop",
                extra={"stream_name": self.name, "origin": record.origin},
            )
            return

        batch = self._buffer.write(record)
        if batch is not None:
            self._dispatch(batch)

    def flush(self) -> None:
        batch = self._buffer.flush()
        if batch is not None:
            self._dispatch(batch)

    def stop(self, *, flush: bool = True) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        if flush and not self._stopped:
            if _loop_is_running():
                self.flush()
            else:
                LOGGER.warning(
                    "stream_stop_without_event_loop",
                    extra={"stream_name": self.name, "discarded": self._buffer.pending_count},
                )
        self._stopped = True

        LOGGER.info(
            "stream_stopped",
            extra={
                "stream_name": self.name,
                "in_flight": self.in_flight,
                "discarded": self._buffer.pending_count,
            },
        )

    async def drain(self) -> list[DeliveryReport]:
        """Wait for in-flight batches and return every report not yet drained."""
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)

        reports, self._reports = self._reports, []
        return reports

    def _dispatch(self, batch: Batch) -> None:
        task = asyncio.get_running_loop().create_task(
            self._engine.publish(batch),
            name=f"deliver:{self.name}:{batch.batch_id}",
        )
        self._deliveries.add(task)
        task.add_done_callback(self._on_delivered)

    def _on_delivered(self, task: asyncio.Task[DeliveryReport]) -> None:
        self._deliveries.discard(task)
        if task.cancelled():
            return

        exc = task.exception()
        if exc is not None:
            LOGGER.error(
                "kinesis_delivery_crashed",
                extra={"stream_name": self.name},
                exc_info=exc,
            )
            return
        self._reports.append(task.result())

    async def _flush_periodically(self, interval_s: float) -> None:
        while True:
            await asyncio.sleep(interval_s)
            self.flush()


def _loop_is_running() -> bool:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True

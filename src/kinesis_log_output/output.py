from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from kinesis_log_output.kinesis import KinesisClient
from kinesis_log_output.models import DeliveryReport, LogRecord
from kinesis_log_output.router import PatternRouter
from kinesis_log_output.settings import OutputConfig
from kinesis_log_output.stream import LogStream

LOGGER = logging.getLogger(__name__)


class KinesisLogOutput:
    """Routes log records to every configured stream whose patterns match."""

    def __init__(self, *, config: OutputConfig, client: KinesisClient) -> None:
        self._config = config
        self._router: PatternRouter[LogStream] = PatternRouter()
        self._streams = {
            stream_config.stream_name: LogStream(config=stream_config, client=client)
            for stream_config in config.streams
        }
        for route in config.routes:
            self._router.register(self._streams[route.stream_name], route.origin_patterns)
        self._accepting = False

    @property
    def router(self) -> PatternRouter[LogStream]:
        return self._router

    def stream(self, name: str) -> LogStream:
        return self._streams[name]

    def handle(self, record: LogRecord) -> None:
        if not self._accepting:
            LOGGER.debug("record_ignored_not_accepting", extra={"origin": record.origin})
            return

        streams = self._router.route(record.origin)
        if not streams:
            LOGGER.debug("record_unrouted", extra={"origin": record.origin})
            return

        for stream in streams:
            stream.write(record)

    def start(self) -> None:
        for stream in self._router.streams():
            stream.start()
        self._accepting = True
        LOGGER.info(
            "output_started",
            extra={"streams": sorted(stream.name for stream in self._router.streams())},
        )

    def stop(self, callback: Callable[[], None] | None = None) -> None:
        self._accepting = False
        for stream in self._router.streams():
            stream.stop(flush=self._config.flush_on_stop)
        LOGGER.info("output_stopped")

        if callback is not None:
            callback()

    async def wait_closed(self) -> list[DeliveryReport]:
        results = await asyncio.gather(*(stream.drain() for stream in self._router.streams()))
        return [report for reports in results for report in reports]

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, TextIO

from kinesis_log_output.errors import ConfigurationError
from kinesis_log_output.kinesis import create_kinesis_client
from kinesis_log_output.models import DeliveryStatus, LogRecord
from kinesis_log_output.output import KinesisLogOutput
from kinesis_log_output.settings import Settings, load_output_config

LOGGER = logging.getLogger(__name__)

DEFAULT_ORIGIN = "stdin"


def configure_logging() -> None:
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def parse_line(line: str, *, default_origin: str = DEFAULT_ORIGIN) -> LogRecord | None:
    """Turn one input line into a record.

    JSON objects with an ``origin`` key keep it and carry ``data`` (or the
    rest of the object); anything else is wrapped under ``default_origin``.
    """

    stripped = line.strip()
    if not stripped:
        return None

    try:
        parsed: Any = json.loads(stripped)
    except json.JSONDecodeError:
        return LogRecord(origin=default_origin, data={"message": stripped})

    if isinstance(parsed, dict) and isinstance(parsed.get("origin"), str):
        origin = parsed["origin"]
        if "data" in parsed:
            return LogRecord(origin=origin, data=parsed["data"])
        return LogRecord(origin=origin, data={k: v for k, v in parsed.items() if k != "origin"})

    return LogRecord(origin=default_origin, data=parsed)


async def run(*, config_path: Path | None = None, source: TextIO | None = None) -> int:
    settings = Settings()
    path = config_path or settings.log_output_config
    if path is None:
        raise ConfigurationError("An output configuration path is required (--config or LOG_OUTPUT_CONFIG)")

    config = load_output_config(path)
    client = create_kinesis_client(
        region_name=settings.aws_region,
        endpoint_url=settings.kinesis_endpoint_url,
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=settings.aws_secret_access_key,
    )
    output = KinesisLogOutput(config=config, client=client)
    stream = source or sys.stdin

    LOGGER.info(
        "service_start",
        extra={"streams": [stream_config.stream_name for stream_config in config.streams]},
    )
    output.start()
    try:
        while True:
            line = await asyncio.to_thread(stream.readline)
            if not line:
                break
            record = parse_line(line)
            if record is not None:
                output.handle(record)
    finally:
        output.stop(lambda: LOGGER.info("output_teardown_complete"))
        reports = await output.wait_closed()

    failed = [report for report in reports if report.status is not DeliveryStatus.DELIVERED]
    LOGGER.info(
        "service_stop",
        extra={"batches": len(reports), "batches_failed": len(failed)},
    )
    return 1 if failed else 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Ship JSON log lines from stdin to Kinesis streams.")
    parser.add_argument("--config", type=Path, default=None)
    args = parser.parse_args(argv)

    configure_logging()
    return asyncio.run(run(config_path=args.config))

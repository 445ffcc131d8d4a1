from __future__ import annotations

import asyncio
import json
from collections import defaultdict
from typing import Any

from kinesis_log_output.models import DeliveryStatus, LogRecord
from kinesis_log_output.output import KinesisLogOutput
from kinesis_log_output.settings import build_output_config


class _RecordingClient:
    def __init__(self) -> None:
        self.by_stream: dict[str, list[list[dict[str, Any]]]] = defaultdict(list)

    def put_records(self, *, StreamName: str, Records: list[dict[str, Any]]) -> dict[str, Any]:
        self.by_stream[StreamName].append([json.loads(entry["Data"]) for entry in Records])
        return {"FailedRecordCount": 0, "Records": [{"SequenceNumber": "1"} for _ in Records]}


def _output(client: _RecordingClient, routes: list[dict[str, Any]], **streams: dict[str, Any]) -> KinesisLogOutput:
    config = build_output_config(
        {
            "streams": [
                {"stream_name": name, "flush_interval_ms": 0, **options}
                for name, options in streams.items()
            ],
            "routes": routes,
        }
    )
    return KinesisLogOutput(config=config, client=client)


def test_record_matching_two_streams_is_batched_in_both() -> None:
    async def scenario() -> None:
        client = _RecordingClient()
        output = _output(
            client,
            [
                {"stream_name": "one", "origin_patterns": [".*"]},
                {"stream_name": "two", "origin_patterns": [".*"]},
            ],
            one={"max_records": 2},
            two={"max_records": 3},
        )
        output.start()

        for n in range(3):
            output.handle(LogRecord(origin="/var/log/app.log", data={"n": n}))
        output.stop()
        await output.wait_closed()

        # Batches are delivered concurrently, so compare them in write order.
        one = sorted(client.by_stream["one"], key=lambda batch: batch[0]["n"])
        assert one == [[{"n": 0}, {"n": 1}], [{"n": 2}]]
        assert client.by_stream["two"] == [[{"n": 0}, {"n": 1}, {"n": 2}]]

    asyncio.run(scenario())


def test_records_follow_origin_patterns() -> None:
    async def scenario() -> None:
        client = _RecordingClient()
        output = _output(
            client,
            [
                {"stream_name": "nginx", "origin_patterns": ["nginx"]},
                {"stream_name": "app", "origin_patterns": [r"app\.log$"]},
            ],
            nginx={},
            app={},
        )
        output.start()

        output.handle(LogRecord(origin="/var/log/nginx/access.log", data={"kind": "access"}))
        output.handle(LogRecord(origin="/srv/app.log", data={"kind": "app"}))
        output.handle(LogRecord(origin="/var/log/syslog", data={"kind": "unrouted"}))
        output.stop()
        await output.wait_closed()

        assert client.by_stream["nginx"] == [[{"kind": "access"}]]
        assert client.by_stream["app"] == [[{"kind": "app"}]]
        assert set(client.by_stream) == {"nginx", "app"}

    asyncio.run(scenario())


def test_records_outside_lifecycle_are_ignored() -> None:
    async def scenario() -> None:
        client = _RecordingClient()
        output = _output(client, [{"stream_name": "one", "origin_patterns": [".*"]}], one={})

        output.handle(LogRecord(origin="a", data={"n": "before"}))
        output.start()
        output.handle(LogRecord(origin="a", data={"n": "during"}))
        output.stop()
        output.handle(LogRecord(origin="a", data={"n": "after"}))
        await output.wait_closed()

        assert client.by_stream["one"] == [[{"n": "during"}]]

    asyncio.run(scenario())


def test_stop_invokes_callback_after_teardown() -> None:
    async def scenario() -> None:
        client = _RecordingClient()
        output = _output(
            client,
            [{"stream_name": "one", "origin_patterns": [".*"]}],
            one={"flush_interval_ms": 60_000},
        )
        output.start()
        output.handle(LogRecord(origin="a", data={"n": 1}))

        calls: list[int] = []
        output.stop(lambda: calls.append(output.stream("one").in_flight))

        assert calls == [1]
        reports = await output.wait_closed()
        assert [report.delivered for report in reports] == [1]

    asyncio.run(scenario())


def test_flush_on_stop_can_be_disabled() -> None:
    async def scenario() -> None:
        client = _RecordingClient()
        config = build_output_config(
            {
                "streams": [{"stream_name": "one", "flush_interval_ms": 0}],
                "routes": [{"stream_name": "one", "origin_patterns": [".*"]}],
                "flush_on_stop": False,
            }
        )
        output = KinesisLogOutput(config=config, client=client)
        output.start()
        output.handle(LogRecord(origin="a", data={"n": 1}))
        output.stop()
        await output.wait_closed()

        assert client.by_stream == {}

    asyncio.run(scenario())


class _FailingClient:
    def __init__(self) -> None:
        self.calls = 0

    def put_records(self, *, StreamName: str, Records: list[dict[str, Any]]) -> dict[str, Any]:
        self.calls += 1
        return {
            "FailedRecordCount": len(Records),
            "Records": [{"ErrorCode": "InternalFailure", "ErrorMessage": "x"} for _ in Records],
        }


def test_wait_closed_includes_batches_finished_before_stop() -> None:
    async def scenario() -> None:
        client = _FailingClient()
        config = build_output_config(
            {
                "streams": [{"stream_name": "one", "max_records": 1, "max_retries": 0, "flush_interval_ms": 0}],
                "routes": [{"stream_name": "one", "origin_patterns": [".*"]}],
            }
        )
        output = KinesisLogOutput(config=config, client=client)
        output.start()

        output.handle(LogRecord(origin="a", data={"n": 1}))
        output.handle(LogRecord(origin="a", data={"n": 2}))
        await asyncio.sleep(0.2)
        output.stop()
        reports = await output.wait_closed()

        assert client.calls == 2
        assert [report.status for report in reports] == [DeliveryStatus.ABANDONED] * 2

    asyncio.run(scenario())


def test_stop_outside_event_loop_still_runs_callback() -> None:
    client = _RecordingClient()
    output = _output(client, [{"stream_name": "one", "origin_patterns": [".*"]}], one={})
    output.start()
    output.handle(LogRecord(origin="a", data={"n": 1}))

    calls: list[str] = []
    output.stop(lambda: calls.append("done"))

    assert calls == ["done"]
    assert client.by_stream == {}

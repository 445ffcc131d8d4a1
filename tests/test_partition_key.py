from __future__ import annotations

import logging
import uuid

import pytest

from kinesis_log_output.models import LogRecord
from kinesis_log_output.partition_key import PartitionKeyResolver
from kinesis_log_output.settings import OriginRuleConfig


def _record(data: object, origin: str = "/var/log/app.log") -> LogRecord:
    return LogRecord(origin=origin, data=data)


def test_property_is_extracted_from_record() -> None:
    resolver = PartitionKeyResolver(stream_name="s", partition_key_property="user")

    assert resolver.resolve(_record({"user": "alice"})) == "alice"


def test_missing_property_resolves_to_undefined_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    resolver = PartitionKeyResolver(stream_name="s", partition_key_property="user")

    with caplog.at_level(logging.WARNING):
        key = resolver.resolve(_record({"other": 1}))

    assert key == "undefined"
    assert "partition_key_property_missing" in caplog.messages


def test_non_string_property_is_serialized() -> None:
    resolver = PartitionKeyResolver(stream_name="s", partition_key_property="id")

    assert resolver.resolve(_record({"id": 42})) == "42"
    assert resolver.resolve(_record({"id": {"a": [1, 2]}})) == '{"a":[1,2]}'
    assert resolver.resolve(_record({"id": None})) == "null"


def test_property_takes_precedence_over_static_key() -> None:
    resolver = PartitionKeyResolver(
        stream_name="s",
        partition_key="static",
        partition_key_property="user",
    )

    assert resolver.resolve(_record({"user": "bob"})) == "bob"


def test_static_key_is_used_verbatim() -> None:
    resolver = PartitionKeyResolver(stream_name="s", partition_key="static-key")

    assert resolver.resolve(_record({"user": "bob"})) == "static-key"


def test_empty_configuration_generates_random_uuid() -> None:
    resolver = PartitionKeyResolver(stream_name="s", partition_key="", partition_key_property="")

    keys = {resolver.resolve(_record({"n": n})) for n in range(50)}

    assert len(keys) == 50
    for key in keys:
        assert uuid.UUID(key).version == 4


def test_origin_rule_overrides_stream_defaults() -> None:
    resolver = PartitionKeyResolver(
        stream_name="s",
        partition_key="default",
        origin_rules=[
            OriginRuleConfig(pattern=r"nginx", partition_key_property="host"),
            OriginRuleConfig(pattern=r"\.audit$", partition_key="audit"),
        ],
    )

    assert resolver.resolve(_record({"host": "web-1"}, origin="/var/log/nginx/access.log")) == "web-1"
    assert resolver.resolve(_record({"host": "web-1"}, origin="/var/log/app.audit")) == "audit"
    assert resolver.resolve(_record({"host": "web-1"}, origin="/var/log/app.log")) == "default"


def test_first_matching_origin_rule_wins() -> None:
    resolver = PartitionKeyResolver(
        stream_name="s",
        origin_rules=[
            OriginRuleConfig(pattern=r"app", partition_key="first"),
            OriginRuleConfig(pattern=r"app\.log", partition_key="second"),
        ],
    )

    assert resolver.resolve(_record({}, origin="app.log")) == "first"


def test_resolution_is_deterministic_and_non_empty() -> None:
    resolver = PartitionKeyResolver(stream_name="s", partition_key_property="user")
    record = _record({"user": ""})

    first = resolver.resolve(record)

    assert first
    assert first == resolver.resolve(record)


def test_long_keys_are_hashed() -> None:
    resolver = PartitionKeyResolver(stream_name="s", partition_key_property="user")

    key = resolver.resolve(_record({"user": "x" * 300}))

    assert len(key) == 64


def test_attribute_lookup_for_non_mapping_data() -> None:
    class Event:
        user = "carol"

    resolver = PartitionKeyResolver(stream_name="s", partition_key_property="user")

    assert resolver.resolve(_record(Event())) == "carol"

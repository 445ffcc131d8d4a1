from __future__ import annotations

import hashlib
import logging
import re
from collections.abc import Callable, Mapping, Sequence
from typing import Any, Protocol
from uuid import uuid4

from kinesis_log_output.models import LogRecord
from kinesis_log_output.serialization import safe_dumps, truncate

LOGGER = logging.getLogger(__name__)

PARTITION_KEY_MAX_LEN = 256
MISSING_PROPERTY_KEY = "undefined"

_MISSING = object()

PartitionKeyStrategy = Callable[[LogRecord], str | None]


class OriginRule(Protocol):
    pattern: str
    partition_key: str | None
    partition_key_property: str | None


class PartitionKeyResolver:
    """Resolves the partition key of a record, first matching strategy wins.

    Origin-specific rules are consulted before the stream-wide strategies;
    each rule carries its own property/static/random chain.
    """

    def __init__(
        self,
        *,
        stream_name: str,
        partition_key: str | None = None,
        partition_key_property: str | None = None,
        origin_rules: Sequence[OriginRule] = (),
    ) -> None:
        self._stream_name = stream_name
        self._origin_rules = [
            (re.compile(rule.pattern), self._build_chain(rule.partition_key, rule.partition_key_property))
            for rule in origin_rules
        ]
        self._default_chain = self._build_chain(partition_key, partition_key_property)

    def resolve(self, record: LogRecord) -> str:
        chain = self._default_chain
        for pattern, rule_chain in self._origin_rules:
            if pattern.search(record.origin):
                chain = rule_chain
                break

        for strategy in chain:
            key = strategy(record)
            if key is not None:
                return _normalize_partition_key(key)

        raise RuntimeError("Partition key chain ended without a key")

    def _build_chain(
        self,
        partition_key: str | None,
        partition_key_property: str | None,
    ) -> list[PartitionKeyStrategy]:
        chain: list[PartitionKeyStrategy] = []
        if partition_key_property:
            chain.append(_PropertyStrategy(partition_key_property, stream_name=self._stream_name))
        if partition_key:
            chain.append(_StaticStrategy(partition_key))
        chain.append(_random_key)
        return chain


class _PropertyStrategy:
    def __init__(self, name: str, *, stream_name: str) -> None:
        self._name = name
        self._stream_name = stream_name

    def __call__(self, record: LogRecord) -> str:
        value = _lookup(record.data, self._name)
        if value is _MISSING:
            LOGGER.warning(
                "partition_key_property_missing",
                extra={
                    "stream_name": self._stream_name,
                    "partition_key_property": self._name,
                    "origin": record.origin,
                },
            )
            return MISSING_PROPERTY_KEY

        if not isinstance(value, str):
            serialized = safe_dumps(value)
            LOGGER.warning(
                "partition_key_not_string",
                extra={
                    "stream_name": self._stream_name,
                    "partition_key_property": self._name,
                    "partition_key": truncate(serialized),
                },
            )
            return serialized

        return value


class _StaticStrategy:
    def __init__(self, key: str) -> None:
        self._key = key

    def __call__(self, record: LogRecord) -> str:
        return self._key


def _random_key(record: LogRecord) -> str:
    return str(uuid4())


def _lookup(data: Any, name: str) -> Any:
    if isinstance(data, Mapping):
        return data.get(name, _MISSING)
    return getattr(data, name, _MISSING)


def _normalize_partition_key(candidate: str) -> str:
    if not candidate:
        return MISSING_PROPERTY_KEY

    if len(candidate) <= PARTITION_KEY_MAX_LEN:
        return candidate

    return hashlib.sha256(candidate.encode("utf-8")).hexdigest()

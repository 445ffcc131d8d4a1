from __future__ import annotations

import re
from collections.abc import Hashable, Iterable
from typing import Generic, TypeVar

from kinesis_log_output.errors import ConfigurationError

StreamT = TypeVar("StreamT", bound=Hashable)


class PatternRouter(Generic[StreamT]):
    """Maps origin identifiers to the streams whose patterns match them.

    Lookups are memoized per origin. Patterns are fixed once the output is
    configured, so the cache only grows; registering more patterns resets it.
    """

    def __init__(self) -> None:
        self._patterns: dict[StreamT, dict[str, re.Pattern[str]]] = {}
        self._cache: dict[str, frozenset[StreamT]] = {}

    def register(self, stream: StreamT, patterns: Iterable[str]) -> None:
        compiled = self._patterns.setdefault(stream, {})
        for pattern in patterns:
            if pattern in compiled:
                continue
            try:
                compiled[pattern] = re.compile(pattern)
            except re.error as exc:
                raise ConfigurationError(f"Invalid origin pattern {pattern!r}: {exc}") from exc

        self._cache.clear()

    def route(self, origin: str) -> frozenset[StreamT]:
        cached = self._cache.get(origin)
        if cached is not None:
            return cached

        matched = frozenset(
            stream
            for stream, compiled in self._patterns.items()
            if any(pattern.search(origin) for pattern in compiled.values())
        )
        # setdefault keeps the first result if a concurrent lookup raced us.
        return self._cache.setdefault(origin, matched)

    def streams(self) -> set[StreamT]:
        return set(self._patterns)

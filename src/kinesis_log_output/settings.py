from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from kinesis_log_output.errors import ConfigurationError
from kinesis_log_output.kinesis import MAX_RETRIES_CEILING

LOGGER = logging.getLogger(__name__)

MAX_BATCH_RECORDS = 500
MAX_BATCH_BYTES = 5 * 1024 * 1024
DEFAULT_MAX_RETRIES = 3
DEFAULT_FLUSH_INTERVAL_MS = 60_000


class StrictConfigModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


def _validate_pattern(value: str) -> str:
    try:
        re.compile(value)
    except re.error as exc:
        raise ValueError(f"invalid regular expression {value!r}: {exc}") from exc
    return value


class OriginRuleConfig(StrictConfigModel):
    """Partition key rule applied to records whose origin matches ``pattern``."""

    pattern: str
    partition_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("partition_key", "partitionKey"),
    )
    partition_key_property: str | None = Field(
        default=None,
        validation_alias=AliasChoices("partition_key_property", "partitionKeyProperty"),
    )

    @field_validator("pattern")
    @classmethod
    def _compile_pattern(cls, value: str) -> str:
        return _validate_pattern(value)


class StreamConfig(StrictConfigModel):
    stream_name: str = Field(validation_alias=AliasChoices("stream_name", "streamName"))
    max_records: int = Field(
        default=MAX_BATCH_RECORDS,
        validation_alias=AliasChoices("max_records", "maxRecords"),
    )
    max_bytes: int = Field(
        default=MAX_BATCH_BYTES,
        validation_alias=AliasChoices("max_bytes", "maxBytes"),
    )
    max_retries: int = Field(
        default=DEFAULT_MAX_RETRIES,
        validation_alias=AliasChoices("max_retries", "maxRetries"),
    )
    flush_interval_ms: int = Field(
        default=DEFAULT_FLUSH_INTERVAL_MS,
        validation_alias=AliasChoices("flush_interval_ms", "msFlushRate"),
    )
    partition_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("partition_key", "partitionKey"),
    )
    partition_key_property: str | None = Field(
        default=None,
        validation_alias=AliasChoices("partition_key_property", "partitionKeyProperty"),
    )
    origin_rules: tuple[OriginRuleConfig, ...] = Field(
        default=(),
        validation_alias=AliasChoices("origin_rules", "originRules"),
    )
    retry_base_delay_ms: int = Field(default=100, ge=0)
    retry_max_delay_ms: int = Field(default=5000, ge=0)

    @field_validator("stream_name")
    @classmethod
    def _require_stream_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("stream_name must be a non-empty string")
        return value

    @field_validator("max_records")
    @classmethod
    def _clamp_max_records(cls, value: int) -> int:
        if value <= 0 or value > MAX_BATCH_RECORDS:
            LOGGER.warning(
                "max_records_out_of_range",
                extra={"max_records": value, "default": MAX_BATCH_RECORDS},
            )
            return MAX_BATCH_RECORDS
        return value

    @field_validator("max_bytes")
    @classmethod
    def _clamp_max_bytes(cls, value: int) -> int:
        if value <= 0 or value > MAX_BATCH_BYTES:
            LOGGER.warning(
                "max_bytes_out_of_range",
                extra={"max_bytes": value, "default": MAX_BATCH_BYTES},
            )
            return MAX_BATCH_BYTES
        return value

    @field_validator("max_retries")
    @classmethod
    def _validate_max_retries(cls, value: int) -> int:
        if value < 0 or value > MAX_RETRIES_CEILING:
            raise ValueError(f"max_retries must be between 0 and {MAX_RETRIES_CEILING}")
        return value

    @field_validator("flush_interval_ms")
    @classmethod
    def _clamp_flush_interval(cls, value: int) -> int:
        if value < 0:
            LOGGER.warning(
                "flush_interval_out_of_range",
                extra={"flush_interval_ms": value, "default": DEFAULT_FLUSH_INTERVAL_MS},
            )
            return DEFAULT_FLUSH_INTERVAL_MS
        return value


class RouteConfig(StrictConfigModel):
    stream_name: str = Field(validation_alias=AliasChoices("stream_name", "streamName"))
    origin_patterns: tuple[str, ...] = Field(
        min_length=1,
        validation_alias=AliasChoices("origin_patterns", "originPatterns"),
    )

    @field_validator("origin_patterns")
    @classmethod
    def _compile_patterns(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(_validate_pattern(pattern) for pattern in value)


class OutputConfig(StrictConfigModel):
    streams: tuple[StreamConfig, ...] = Field(min_length=1)
    routes: tuple[RouteConfig, ...] = ()
    flush_on_stop: bool = Field(
        default=True,
        validation_alias=AliasChoices("flush_on_stop", "flushOnStop"),
    )

    @model_validator(mode="after")
    def _validate_routes(self) -> OutputConfig:
        names = [stream.stream_name for stream in self.streams]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate stream names: {', '.join(duplicates)}")

        known = set(names)
        for route in self.routes:
            if route.stream_name not in known:
                raise ValueError(f"route refers to unknown stream {route.stream_name!r}")
        return self


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False)

    aws_region: str = Field(alias="AWS_REGION")
    kinesis_endpoint_url: str | None = Field(default=None, alias="KINESIS_ENDPOINT_URL")
    aws_access_key_id: str | None = Field(default=None, alias="AWS_ACCESS_KEY_ID")
    aws_secret_access_key: str | None = Field(default=None, alias="AWS_SECRET_ACCESS_KEY")
    log_output_config: Path | None = Field(default=None, alias="LOG_OUTPUT_CONFIG")


def build_stream_config(options: Mapping[str, Any]) -> StreamConfig:
    """Validate raw stream options, raising ``ConfigurationError`` on any problem.

    Use this (or ``build_output_config``) rather than instantiating the models
    directly, which surfaces pydantic ``ValidationError`` instead.
    """
    try:
        return StreamConfig.model_validate(dict(options))
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid stream configuration: {exc}") from exc


def build_output_config(options: Mapping[str, Any]) -> OutputConfig:
    try:
        return OutputConfig.model_validate(dict(options))
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid output configuration: {exc}") from exc


def load_output_config(path: Path) -> OutputConfig:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Unable to read output configuration {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError(f"Output configuration {path} must be a mapping")
    return build_output_config(raw)

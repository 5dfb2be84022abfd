from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Any, Literal, Protocol

import structlog

TELEMETRY_LOGGER_NAME = "tubefeed.telemetry"

TelemetryValue = bool | int | float | str | None

_REDACTED = "[redacted]"
_SENSITIVE_ATTRIBUTE_TOKENS: tuple[str, ...] = (
    "api_key",
    "authorization",
    "key_value",
    "secret",
    "token",
)
# Google API keys and `key=` query parameters leak through URLs and upstream error text.
_GOOGLE_API_KEY_PATTERN = re.compile(r"AIza[0-9A-Za-z_\-]{20,}")
_KEY_QUERY_PARAM_PATTERN = re.compile(r"([?&]key=)[^&\s]+")
_MAX_STRING_LENGTH = 160


class TelemetrySink(Protocol):
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        ...


class NoOpTelemetrySink:
    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        _ = (event_name, attributes)


class StructuredLogTelemetrySink:
    """Writes each event as one structured record on the telemetry logger."""

    def __init__(self, logger_name: str = TELEMETRY_LOGGER_NAME) -> None:
        self._logger = structlog.get_logger(logger_name)

    def emit(self, *, event_name: str, attributes: Mapping[str, Any]) -> None:
        self._logger.info("telemetry", telemetry_event=event_name, **dict(attributes))


@dataclass(frozen=True)
class TelemetryClient:
    """
    Emits small, flat, redacted events.

    `bind()` returns a client that adds fixed attributes (for example the
    fetch run id) to every event; explicit attributes passed to `emit()` win
    over bound ones.
    """

    enabled: bool
    sink: TelemetrySink
    context: Mapping[str, TelemetryValue] = field(default_factory=lambda: {})

    @classmethod
    def disabled(cls) -> TelemetryClient:
        return cls(enabled=False, sink=NoOpTelemetrySink())

    def bind(self, **attributes: Any) -> TelemetryClient:
        return replace(self, context={**self.context, **sanitize_attributes(attributes)})

    def emit(self, event_name: str, **attributes: Any) -> None:
        if not self.enabled:
            return
        self.sink.emit(
            event_name=event_name,
            attributes={**self.context, **sanitize_attributes(attributes)},
        )


def build_telemetry_client(*, enabled: bool, sink: Literal["none", "log"]) -> TelemetryClient:
    if not enabled or sink == "none":
        return TelemetryClient.disabled()
    if sink == "log":
        return TelemetryClient(enabled=True, sink=StructuredLogTelemetrySink())

    logging.getLogger(TELEMETRY_LOGGER_NAME).warning(
        "unsupported telemetry sink requested; disabling telemetry sink=%s",
        sink,
    )
    return TelemetryClient.disabled()


def sanitize_attributes(attributes: Mapping[str, Any]) -> dict[str, TelemetryValue]:
    sanitized: dict[str, TelemetryValue] = {}
    for raw_key, raw_value in attributes.items():
        key = str(raw_key).strip().lower()
        if not key:
            continue
        if any(token in key for token in _SENSITIVE_ATTRIBUTE_TOKENS):
            sanitized[key] = _REDACTED
        else:
            sanitized[key] = _sanitize_value(raw_value)
    return sanitized


def scrub_credentials(text: str) -> str:
    scrubbed = _KEY_QUERY_PARAM_PATTERN.sub(rf"\1{_REDACTED}", text)
    return _GOOGLE_API_KEY_PATTERN.sub(_REDACTED, scrubbed)


def _sanitize_value(value: Any) -> TelemetryValue:
    if value is None or isinstance(value, bool | int | float):
        return value
    if isinstance(value, str):
        compact = scrub_credentials(" ".join(value.split()))
        if len(compact) > _MAX_STRING_LENGTH:
            return f"{compact[:_MAX_STRING_LENGTH]}..."
        return compact
    return type(value).__name__

"""Registry events and counters.

Every service gets an :class:`Observability` bound to its component name
(``intake``, ``aggregator``, ``lifecycle``, ``moderation``, ``search``).
Events such as ``report.submitted`` or ``entity.consistency_violation`` go to
the ``scamreg.events`` logger, as one JSON object per line when
``observability.structured_logging`` is on. Counters such as
``entity.version_conflict`` are always kept in process (see
:func:`counter_value`) and are also sent to StatsD when
``observability.statsd_host`` is set.
"""

from __future__ import annotations

import json
import logging
import socket
import threading
import time
from collections import Counter
from contextlib import contextmanager
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, FrozenSet, Iterator, Mapping, Optional, Tuple

from scamreg.settings import Settings, get_settings

_LOGGER = logging.getLogger("scamreg.events")
_SINKS_LOCK = threading.Lock()
_SHARED_SINKS: "Optional[_Sinks]" = None

TagSet = FrozenSet[Tuple[str, str]]


class Observability:
    """Component-scoped event log and counters."""

    def __init__(
        self,
        *,
        settings: Settings,
        component: str | None = None,
        counters: "InMemoryCounters | None" = None,
        statsd: "StatsdSink | None" = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.settings = settings
        self.component = component or "core"
        self._logger = logger or _LOGGER
        self._structured_logging = bool(settings.observability.structured_logging)
        self._counters = counters
        self._statsd = statsd

    def emit_event(self, event: str, **fields: Any) -> None:
        """Log a domain event with its identifiers (report, entity, task, actor)."""

        payload = {
            "event": event,
            "service": self.settings.observability.service_name,
            "component": self.component,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        payload.update({key: _jsonable(value) for key, value in fields.items() if value is not None})
        if self._structured_logging:
            self._logger.info(json.dumps(payload, sort_keys=True))
        else:
            details = " ".join(f"{key}={payload[key]}" for key in sorted(fields) if key in payload)
            self._logger.info("%s [%s] %s", event, self.component, details)

    def increment(self, metric: str, *, value: float = 1.0, tags: Mapping[str, Any] | None = None) -> None:
        """Add ``value`` to ``metric``; the component is always part of the tags."""

        tag_set = self._tag_set(tags)
        if self._counters is not None:
            self._counters.add(metric, tag_set, value)
        if self._statsd is not None:
            self._statsd.send(metric, value, "c", tag_set)

    @contextmanager
    def timed(self, metric: str, *, tags: Mapping[str, Any] | None = None) -> Iterator[None]:
        """Send the duration of the block to StatsD as a ``ms`` timing."""

        started = time.perf_counter()
        try:
            yield
        finally:
            if self._statsd is not None:
                elapsed_ms = (time.perf_counter() - started) * 1000.0
                self._statsd.send(metric, elapsed_ms, "ms", self._tag_set(tags))

    def _tag_set(self, tags: Mapping[str, Any] | None) -> TagSet:
        merged = {"component": self.component}
        for key, value in (tags or {}).items():
            if value is not None:
                merged[str(key)] = str(_jsonable(value))
        return frozenset(merged.items())


class InMemoryCounters:
    """Thread-safe counter totals keyed by metric name and tag set."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._values: Counter = Counter()

    def add(self, metric: str, tags: TagSet, value: float) -> None:
        with self._lock:
            self._values[(metric, tags)] += value

    def value(self, metric: str, **tags: str) -> float:
        wanted = set(tags.items())
        with self._lock:
            return sum(
                total for (name, tag_set), total in self._values.items() if name == metric and wanted <= tag_set
            )


class StatsdSink:
    """Fire-and-forget StatsD datagrams in the DogStatsD tag dialect."""

    def __init__(self, *, host: str, port: int, prefix: str) -> None:
        self.prefix = prefix
        self._address = (host, port)
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)

    def send(self, metric: str, value: float, metric_type: str, tags: TagSet) -> None:
        line = statsd_line(metric, value, metric_type, tags, prefix=self.prefix)
        try:
            self._socket.sendto(line.encode("utf-8"), self._address)
        except OSError:
            _LOGGER.debug("StatsD send failed metric=%s", metric, exc_info=True)


def statsd_line(metric: str, value: float, metric_type: str, tags: TagSet = frozenset(), *, prefix: str = "") -> str:
    """Format one StatsD datagram, e.g. ``scamreg.entity.linked:1|c|#component:aggregator``."""

    name = f"{prefix}.{metric}" if prefix else metric
    number = f"{value:.3f}".rstrip("0").rstrip(".") or "0"
    line = f"{name}:{number}|{metric_type}"
    if tags:
        line += "|#" + ",".join(f"{key}:{val}" for key, val in sorted(tags))
    return line


class _Sinks:
    def __init__(self, counters: InMemoryCounters, statsd: Optional[StatsdSink]) -> None:
        self.counters = counters
        self.statsd = statsd


def get_observability(*, component: str | None = None, settings: Settings | None = None) -> Observability:
    """Return an :class:`Observability` for ``component`` sharing the process-wide sinks."""

    resolved = settings or get_settings()
    sinks = _shared_sinks(resolved)
    return Observability(
        settings=resolved, component=component, counters=sinks.counters, statsd=sinks.statsd, logger=_LOGGER
    )


def counter_value(metric: str, **tags: str) -> float:
    """Total of ``metric`` across every component, narrowed to series carrying ``tags``."""

    with _SINKS_LOCK:
        sinks = _SHARED_SINKS
    return sinks.counters.value(metric, **tags) if sinks is not None else 0.0


def reset_observability_cache() -> None:
    """Drop the shared sinks so counters restart from zero (used in tests)."""

    global _SHARED_SINKS
    with _SINKS_LOCK:
        _SHARED_SINKS = None


def _shared_sinks(settings: Settings) -> _Sinks:
    global _SHARED_SINKS
    with _SINKS_LOCK:
        if _SHARED_SINKS is None:
            host = settings.observability.statsd_host
            statsd = (
                StatsdSink(
                    host=host,
                    port=settings.observability.statsd_port,
                    prefix=settings.observability.statsd_prefix,
                )
                if host
                else None
            )
            _SHARED_SINKS = _Sinks(InMemoryCounters(), statsd)
        return _SHARED_SINKS


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Mapping):
        return {str(key): _jsonable(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_jsonable(item) for item in value]
        return sorted(items, key=str) if isinstance(value, (set, frozenset)) else items
    return str(value)


__all__ = [
    "InMemoryCounters",
    "Observability",
    "StatsdSink",
    "counter_value",
    "get_observability",
    "reset_observability_cache",
    "statsd_line",
]

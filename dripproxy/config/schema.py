"""Dataclasses for top-level application config."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
VALID_LOG_SINKS = {"stdout", "file"}
VALID_JITTER_KINDS = {"global", "seeded", "sequence"}


@dataclass(slots=True)
class JitterConfig:
    kind: str = "global"
    seed: int = 0
    values: list[int] = field(default_factory=list)
    cycle: bool = True


@dataclass(slots=True)
class ProxyConfig:
    chunk_size: int = 8
    jitter_range: int = 0
    release_interval_ms: int = 10
    jitter: JitterConfig = field(default_factory=JitterConfig)

    def build_jitter_source(self) -> Any:
        from dripproxy.tarpit.jitter import SeededJitterSource, SequenceJitterSource

        if self.jitter.kind == "seeded":
            return SeededJitterSource(self.jitter.seed)
        if self.jitter.kind == "sequence":
            return SequenceJitterSource(self.jitter.values, cycle=self.jitter.cycle)
        return None

    def build_proxy(self, source: Any, **kwargs: Any) -> Any:
        from dripproxy.tarpit.proxy import DelayingProxyStream

        return DelayingProxyStream(
            source,
            chunk_size=self.chunk_size,
            jitter_range=self.jitter_range,
            release_interval_ms=self.release_interval_ms,
            jitter_source=self.build_jitter_source(),
            **kwargs,
        )


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    sink: str = "stdout"
    file_path: str | None = None
    service_name: str = "dripproxy"


@dataclass(slots=True)
class AppConfig:
    environment: str
    proxy: ProxyConfig
    logging: LoggingConfig


def _parse_int(raw: Any, *, field_name: str) -> int:
    if isinstance(raw, bool):
        raise ValueError(f"'{field_name}' must be an integer")
    try:
        return int(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"'{field_name}' must be an integer") from exc


def _parse_jitter(raw: Any) -> JitterConfig:
    if not isinstance(raw, dict):
        raise ValueError("'proxy.jitter' must be an object")
    kind = str(raw.get("kind", "global")).strip().lower()
    if kind not in VALID_JITTER_KINDS:
        raise ValueError(f"invalid proxy.jitter kind '{kind}'")
    values_raw = raw.get("values", [])
    if not isinstance(values_raw, list):
        raise ValueError("'proxy.jitter.values' must be a list")
    values = [_parse_int(item, field_name="proxy.jitter.values") for item in values_raw]
    if any(value < 0 for value in values):
        raise ValueError("proxy.jitter.values must be non-negative")
    if kind == "sequence" and not values:
        raise ValueError("proxy.jitter.values must not be empty for the sequence kind")
    return JitterConfig(
        kind=kind,
        seed=_parse_int(raw.get("seed", 0), field_name="proxy.jitter.seed"),
        values=values,
        cycle=bool(raw.get("cycle", True)),
    )


def parse_config(data: dict[str, Any]) -> AppConfig:
    environment = str(data.get("environment", "development"))

    proxy_raw = data.get("proxy", {})
    if not isinstance(proxy_raw, dict):
        raise ValueError("'proxy' must be an object")
    chunk_size = _parse_int(proxy_raw.get("chunk_size", 8), field_name="proxy.chunk_size")
    if chunk_size <= 0:
        raise ValueError("proxy chunk_size must be greater than zero")
    jitter_range = _parse_int(proxy_raw.get("jitter_range", 0), field_name="proxy.jitter_range")
    if jitter_range < 0:
        raise ValueError("proxy jitter_range must be greater than or equal to zero")
    if jitter_range >= chunk_size:
        raise ValueError("proxy jitter_range must be less than chunk_size")
    release_interval_ms = _parse_int(
        proxy_raw.get("release_interval_ms", 10), field_name="proxy.release_interval_ms"
    )
    if release_interval_ms <= 0:
        raise ValueError("proxy release_interval_ms must be greater than zero")
    proxy_config = ProxyConfig(
        chunk_size=chunk_size,
        jitter_range=jitter_range,
        release_interval_ms=release_interval_ms,
        jitter=_parse_jitter(proxy_raw.get("jitter", {})),
    )

    logging_raw = data.get("logging", {})
    if not isinstance(logging_raw, dict):
        raise ValueError("'logging' must be an object")
    level = str(logging_raw.get("level", "INFO")).upper()
    if level not in VALID_LOG_LEVELS:
        raise ValueError(f"invalid log level '{level}'")
    sink = str(logging_raw.get("sink", "stdout")).lower()
    if sink not in VALID_LOG_SINKS:
        raise ValueError(f"invalid log sink '{sink}'")
    logging_config = LoggingConfig(
        level=level,
        sink=sink,
        file_path=logging_raw.get("file_path"),
        service_name=str(logging_raw.get("service_name", "dripproxy")),
    )

    return AppConfig(
        environment=environment,
        proxy=proxy_config,
        logging=logging_config,
    )

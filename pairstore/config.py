"""Storage node configuration loaded from YAML."""

import re
from dataclasses import dataclass, field, fields
from datetime import timedelta
from typing import Any, Mapping, get_args, get_origin

import yaml


class ConfigError(ValueError):
    """Raised when configuration cannot be read, parsed or validated."""


_UNIT_NS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_COMPONENT = re.compile(r"(\d*)(?:\.(\d*))?(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(value: Any) -> timedelta:
    """Parse a duration such as "10s", "1h30m" or "250ms"."""
    if isinstance(value, timedelta):
        return value
    if not isinstance(value, str):
        raise ConfigError(f"invalid duration {value!r}")
    text = value
    sign = 1
    if text and text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text:
        raise ConfigError(f"invalid duration {value!r}")

    total_ns = 0
    pos = 0
    while pos < len(text):
        match = _COMPONENT.match(text, pos)
        if match is None or not (match.group(1) or match.group(2)):
            raise ConfigError(f"invalid duration {value!r}")
        whole, frac, unit = match.groups()
        scale = _UNIT_NS[unit]
        total_ns += int(whole or "0") * scale
        if frac:
            total_ns += int(frac) * scale // 10 ** len(frac)
        pos = match.end()
    return timedelta(microseconds=sign * total_ns / 1000)


@dataclass
class ServerConfig:
    node_id: str = ""
    host: str = ""
    port: int = 0
    max_connections: int = 0
    read_timeout: timedelta = timedelta(0)
    write_timeout: timedelta = timedelta(0)
    shutdown_timeout: timedelta = timedelta(0)


@dataclass
class StorageConfig:
    data_dir: str = ""
    commit_log_dir: str = ""
    sstable_dir: str = ""
    max_disk_usage: float = 0.0


@dataclass
class CommitLogSettings:
    segment_size: int = 0
    max_age: timedelta = timedelta(0)
    sync_writes: bool = False
    buffer_size: int = 0


@dataclass
class MemTableSettings:
    max_size: int = 0
    flush_threshold: int = 0
    num_mem_tables: int = 0


@dataclass
class SSTableSettings:
    l0_size: int = 0
    l1_size: int = 0
    l2_size: int = 0
    level_multiplier: int = 0
    bloom_filter_fp: float = 0.0
    block_size: int = 0
    index_interval: int = 0


@dataclass
class CacheSettings:
    max_size: int = 0
    frequency_weight: float = 0.0
    recency_weight: float = 0.0
    adaptive_window: timedelta = timedelta(0)


@dataclass
class CompactionSettings:
    l0_trigger: int = 0
    workers: int = 0
    throttle: int = 0


@dataclass
class GossipConfig:
    enabled: bool = False
    bind_port: int = 0
    seed_nodes: list[str] = field(default_factory=list)
    gossip_interval: timedelta = timedelta(0)
    probe_timeout: timedelta = timedelta(0)
    probe_interval: timedelta = timedelta(0)


@dataclass
class MetricsConfig:
    enabled: bool = False
    port: int = 0
    path: str = ""


@dataclass
class LoggingConfig:
    level: str = ""
    format: str = ""


def _convert(name: str, hint: Any, raw: Any) -> Any:
    if hint is timedelta:
        try:
            return parse_duration(raw)
        except ConfigError as exc:
            raise ConfigError(f"{name}: {exc}") from exc
    if hint is bool:
        if isinstance(raw, bool):
            return raw
    elif hint is int:
        if isinstance(raw, int) and not isinstance(raw, bool):
            return raw
        if isinstance(raw, float) and raw.is_integer():
            return int(raw)
    elif hint is float:
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return float(raw)
    elif hint is str:
        if isinstance(raw, str):
            return raw
        if isinstance(raw, bool):
            return "true" if raw else "false"
        if isinstance(raw, (int, float)):
            return str(raw)
    elif get_origin(hint) is list:
        if isinstance(raw, list):
            (item_hint,) = get_args(hint)
            return [_convert(name, item_hint, item) for item in raw]
    raise ConfigError(f"{name}: cannot use {raw!r} as {getattr(hint, '__name__', hint)}")


def _build_section(section_cls: type, raw: Any, section: str) -> Any:
    if raw is None:
        return section_cls()
    if not isinstance(raw, Mapping):
        raise ConfigError(f"{section}: expected a mapping")
    values = {
        f.name: _convert(f"{section}.{f.name}", f.type, raw[f.name])
        for f in fields(section_cls)
        if raw.get(f.name) is not None
    }
    return section_cls(**values)


@dataclass
class Config:
    """Complete storage node configuration."""

    server: ServerConfig = field(default_factory=ServerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    commit_log: CommitLogSettings = field(default_factory=CommitLogSettings)
    mem_table: MemTableSettings = field(default_factory=MemTableSettings)
    sstable: SSTableSettings = field(default_factory=SSTableSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    compaction: CompactionSettings = field(default_factory=CompactionSettings)
    gossip: GossipConfig = field(default_factory=GossipConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Any) -> "Config":
        """Build a configuration from a parsed YAML mapping; unknown keys are ignored."""
        if data is None:
            return cls()
        if not isinstance(data, Mapping):
            raise ConfigError("configuration must be a mapping")
        return cls(
            **{f.name: _build_section(f.type, data.get(f.name), f.name) for f in fields(cls)}
        )

    def apply_defaults(self) -> None:
        """Fill in default values for settings left unset."""
        server = self.server
        if not server.host:
            server.host = "0.0.0.0"
        if server.port == 0:
            server.port = 50052
        if server.max_connections == 0:
            server.max_connections = 1000
        if not server.read_timeout:
            server.read_timeout = timedelta(seconds=10)
        if not server.write_timeout:
            server.write_timeout = timedelta(seconds=10)
        if not server.shutdown_timeout:
            server.shutdown_timeout = timedelta(seconds=30)

        storage = self.storage
        if not storage.data_dir:
            storage.data_dir = "/var/lib/pairdb"
        if not storage.commit_log_dir:
            storage.commit_log_dir = storage.data_dir + "/commitlog"
        if not storage.sstable_dir:
            storage.sstable_dir = storage.data_dir + "/sstables"
        if storage.max_disk_usage == 0:
            storage.max_disk_usage = 0.9

        if self.mem_table.max_size == 0:
            self.mem_table.max_size = 67108864
        if self.mem_table.flush_threshold == 0:
            self.mem_table.flush_threshold = 60000000

        if self.cache.frequency_weight == 0:
            self.cache.frequency_weight = 0.5
        if self.cache.recency_weight == 0:
            self.cache.recency_weight = 0.5

    def validate(self) -> None:
        """Raise ConfigError if a required setting is missing or out of range."""
        if not self.server.node_id:
            raise ConfigError("server.node_id is required")
        if not 1 <= self.server.port <= 65535:
            raise ConfigError("server.port must be between 1 and 65535")
        if not 0 <= self.storage.max_disk_usage <= 1:
            raise ConfigError("storage.max_disk_usage must be between 0 and 1")


def load_config(file_path: Any) -> Config:
    """Read, default and validate a YAML configuration file."""
    try:
        with open(file_path, "r", encoding="utf-8") as stream:
            text = stream.read()
    except OSError as exc:
        raise ConfigError(f"failed to read config file: {exc}") from exc

    try:
        config = Config.from_dict(yaml.safe_load(text))
    except (yaml.YAMLError, ConfigError) as exc:
        raise ConfigError(f"failed to parse config file: {exc}") from exc

    config.apply_defaults()
    try:
        config.validate()
    except ConfigError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc
    return config
"""Gateway configuration: TOML loading, validation and defaults."""

from __future__ import annotations

import logging
import os
import re
import tomllib
from dataclasses import dataclass, field
from typing import Any, Callable

from .netutil import get_host_by_name, get_local_ip_address, is_file, is_valid_ipv4

__all__ = [
    "ConfigError",
    "LimitConfig",
    "CustomerConfig",
    "WorkerConfig",
    "MetricsConfig",
    "Config",
    "parse_config",
    "load_config",
    "default_on_open",
    "default_on_close",
    "TEXT_MESSAGE",
    "BINARY_MESSAGE",
]

_logger = logging.getLogger(__name__)

TEXT_MESSAGE = 1
BINARY_MESSAGE = 2

IO_MOD_NON_BLOCKING = 0
IO_MOD_BLOCKING = 1
IO_MOD_MIXED = 2
DEFAULT_IO_MOD = IO_MOD_NON_BLOCKING
DEFAULT_MAX_BLOCKING_ONLINE = 10000

HUFFMAN_ONLY = -2
BEST_COMPRESSION = 9

_UINT32_MAX = 0xFFFFFFFF


class ConfigError(ValueError):
    """Raised when the configuration cannot be read or is invalid."""


@dataclass
class LimitConfig:
    """Per-second rate limits; 0 disables the limiter."""

    on_open: int = 0
    on_message: int = 0


@dataclass
class CustomerConfig:
    """Client-facing websocket server settings. Durations are in seconds."""

    listen_address: str = ""
    handle_pattern: str = ""
    allow_origin: list[str] = field(default_factory=list)
    read_deadline: float = 0.0
    send_deadline: float = 0.0
    max_online_num: int = 0
    io_mod: int = 0
    max_blocking_online: int = 0
    receive_pack_limit: int = 0
    send_message_type: int = 0
    callback_script_file: str = ""
    tls_cert: str = ""
    tls_key: str = ""
    heartbeat_message: bytes = b""
    compression_level: int = 0


@dataclass
class WorkerConfig:
    """Business-facing TCP server settings. Durations are in seconds."""

    listen_address: str = ""
    read_deadline: float = 0.0
    send_deadline: float = 0.0
    receive_pack_limit: int = 0
    read_buffer_size: int = 0
    send_chan_cap: int = 0
    send_chan_deadline: float = 0.0
    heartbeat_message: bytes = b""


@dataclass
class MetricsConfig:
    """Which metric items are collected."""

    item: list[int] = field(default_factory=list)


@dataclass
class Config:
    """The whole gateway configuration."""

    log_level: str = ""
    log_file: str = ""
    shutdown_wait_time: float = 0.0
    pprof_listen_address: str = ""
    limit: LimitConfig = field(default_factory=LimitConfig)
    customer: CustomerConfig = field(default_factory=CustomerConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    root_path: str = ""

    def get_log_file(self) -> str:
        """Return the log file path, resolving relative paths against the root path."""
        if not self.log_file:
            return ""
        if self.log_file.startswith("/") or self.log_file[1:2] == ":":
            return self.log_file
        return os.path.join(self.root_path, self.log_file)

    def get_log_level(self) -> int:
        """Return the ``logging`` level for the configured name; error by default."""
        return {
            "debug": logging.DEBUG,
            "info": logging.INFO,
            "warn": logging.WARNING,
            "error": logging.ERROR,
        }.get(self.log_level, logging.ERROR)


# --- value converters -------------------------------------------------------

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+\.?\d*|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def _parse_duration(text: str) -> float:
    body = text
    sign = 1.0
    if body[:1] in "+-" and body:
        sign = -1.0 if body[0] == "-" else 1.0
        body = body[1:]
    if body == "0":
        return 0.0
    if not body:
        raise ValueError(f"invalid duration {text!r}")
    total = 0.0
    pos = 0
    while pos < len(body):
        match = _DURATION_PART.match(body, pos)
        if match is None:
            raise ValueError(f"invalid duration {text!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    return sign * total


def _str(value: Any, key: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{key} must be a string")
    return value


def _int(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _uint32(value: Any, key: str) -> int:
    number = _int(value, key)
    if not 0 <= number <= _UINT32_MAX:
        raise ConfigError(f"{key} is out of range")
    return number


def _duration(value: Any, key: str) -> float:
    if isinstance(value, str):
        try:
            return _parse_duration(value)
        except ValueError as exc:
            raise ConfigError(f"{key}: {exc}") from exc
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{key} must be a duration")
    return value / 1e9


def _bytes(value: Any, key: str) -> bytes:
    return _str(value, key).encode("utf-8")


def _str_list(value: Any, key: str) -> list[str]:
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be an array")
    return [_str(item, key) for item in value]


def _int_list(value: Any, key: str) -> list[int]:
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be an array")
    return [_int(item, key) for item in value]


def _table(value: Any, key: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"{key} must be a table")
    return value


_Spec = dict[str, tuple[str, Callable[[Any, str], Any]]]

_ROOT_SPEC: _Spec = {
    "log_level": ("LogLevel", _str),
    "log_file": ("LogFile", _str),
    "shutdown_wait_time": ("ShutdownWaitTime", _duration),
    "pprof_listen_address": ("PprofListenAddress", _str),
}
_LIMIT_SPEC: _Spec = {
    "on_open": ("OnOpen", _int),
    "on_message": ("OnMessage", _int),
}
_CUSTOMER_SPEC: _Spec = {
    "listen_address": ("ListenAddress", _str),
    "handle_pattern": ("HandlePattern", _str),
    "allow_origin": ("AllowOrigin", _str_list),
    "read_deadline": ("ReadDeadline", _duration),
    "send_deadline": ("SendDeadline", _duration),
    "max_online_num": ("MaxOnlineNum", _int),
    "io_mod": ("IOMod", _int),
    "max_blocking_online": ("MaxBlockingOnline", _int),
    "receive_pack_limit": ("ReceivePackLimit", _int),
    "send_message_type": ("SendMessageType", _int),
    "callback_script_file": ("CallbackScriptFile", _str),
    "tls_cert": ("TLSCert", _str),
    "tls_key": ("TLSKey", _str),
    "heartbeat_message": ("HeartbeatMessage", _bytes),
    "compression_level": ("CompressionLevel", _int),
}
_WORKER_SPEC: _Spec = {
    "listen_address": ("ListenAddress", _str),
    "read_deadline": ("ReadDeadline", _duration),
    "send_deadline": ("SendDeadline", _duration),
    "receive_pack_limit": ("ReceivePackLimit", _uint32),
    "read_buffer_size": ("ReadBufferSize", _int),
    "send_chan_cap": ("SendChanCap", _int),
    "send_chan_deadline": ("SendChanDeadline", _duration),
    "heartbeat_message": ("HeartbeatMessage", _bytes),
}
_METRICS_SPEC: _Spec = {
    "item": ("Item", _int_list),
}


def _lower_keys(table: dict[str, Any]) -> dict[str, Any]:
    return {key.lower(): value for key, value in table.items()}


def _fill(target: Any, table: dict[str, Any], spec: _Spec, prefix: str) -> None:
    lowered = _lower_keys(table)
    for attr, (key, convert) in spec.items():
        if key.lower() in lowered:
            setattr(target, attr, convert(lowered[key.lower()], prefix + key))


def _section(root: dict[str, Any], name: str) -> dict[str, Any]:
    value = _lower_keys(root).get(name.lower())
    return {} if value is None else _table(value, name)


# --- address handling -------------------------------------------------------


def _split_host_port(address: str) -> tuple[str, str]:
    if address.startswith("["):
        end = address.find("]")
        if end < 0:
            raise ConfigError(f"address {address}: missing ']'")
        host, rest = address[1:end], address[end + 1 :]
        if not rest.startswith(":"):
            raise ConfigError(f"address {address}: missing port")
        port = rest[1:]
    else:
        index = address.rfind(":")
        if index < 0:
            raise ConfigError(f"address {address}: missing port")
        host, port = address[:index], address[index + 1 :]
        if ":" in host:
            raise ConfigError(f"address {address}: too many colons")
    if "[" in host or "]" in host or "[" in port or "]" in port:
        raise ConfigError(f"address {address}: unexpected bracket")
    return host, port


def _join_host_port(host: str, port: str) -> str:
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def _resolve_worker_address(address: str) -> str:
    host, port = _split_host_port(address)
    if not is_valid_ipv4(host):
        ipv4 = get_host_by_name(host)
        if ipv4 == host:
            raise ConfigError(f"Worker.ListenAddress: convert {host} to ipv4 failed")
        return _join_host_port(ipv4, port)
    if host == "0.0.0.0":
        ipv4 = get_local_ip_address()
        if not ipv4:
            raise ConfigError("Worker.ListenAddress: not allowed to configure 0.0.0.0")
        return _join_host_port(ipv4, port)
    return address


def _file_is_exist(path: str) -> bool:
    try:
        return not os.path.isdir(path) if os.stat(path) else False
    except FileNotFoundError:
        return False
    except OSError:
        return True


# --- validation -------------------------------------------------------------


def _apply_defaults(config: Config) -> None:
    customer = config.customer
    worker = config.worker
    if customer.max_online_num <= 0:
        customer.max_online_num = 10 * 10000
    if customer.io_mod not in (IO_MOD_NON_BLOCKING, IO_MOD_BLOCKING, IO_MOD_MIXED):
        customer.io_mod = DEFAULT_IO_MOD
    if customer.max_blocking_online <= 0:
        customer.max_blocking_online = DEFAULT_MAX_BLOCKING_ONLINE
    if customer.receive_pack_limit <= 0:
        customer.receive_pack_limit = 2097152
    if customer.send_message_type == 0:
        customer.send_message_type = TEXT_MESSAGE
    elif customer.send_message_type not in (TEXT_MESSAGE, BINARY_MESSAGE):
        raise ConfigError(
            f"Customer.SendMessageType must be in [{TEXT_MESSAGE},{BINARY_MESSAGE}]"
        )
    if customer.read_deadline <= 0:
        customer.read_deadline = 120.0
    if customer.send_deadline <= 0:
        customer.send_deadline = 1.0
    if not customer.handle_pattern:
        customer.handle_pattern = "/"
    if customer.callback_script_file:
        try:
            ok = is_file(customer.callback_script_file)
        except OSError:
            ok = False
        if not ok:
            raise ConfigError("Customer.CallbackScriptFile is not a file")
    if not customer.heartbeat_message:
        raise ConfigError("Customer.HeartbeatMessage is required")
    if not HUFFMAN_ONLY <= customer.compression_level <= BEST_COMPRESSION:
        raise ConfigError("Customer.CompressionLevel is invalid")
    if worker.read_deadline <= 0:
        worker.read_deadline = 120.0
    if worker.send_deadline <= 0:
        worker.send_deadline = 10.0
    if worker.receive_pack_limit == 0:
        worker.receive_pack_limit = 1024 * 1024 * 2
    if worker.read_buffer_size <= 0:
        worker.read_buffer_size = 4 * 1024
    if worker.send_chan_cap <= 0:
        worker.send_chan_cap = 1024
    worker.listen_address = _resolve_worker_address(worker.listen_address)
    if not worker.heartbeat_message:
        raise ConfigError("Worker.HeartbeatMessage is required")
    if customer.tls_key and not _file_is_exist(customer.tls_key):
        customer.tls_key = os.path.join(config.root_path, "configs/" + customer.tls_key)
    if customer.tls_cert and not _file_is_exist(customer.tls_cert):
        customer.tls_cert = os.path.join(config.root_path, "configs/" + customer.tls_cert)


def parse_config(text: str, root_path: str) -> Config:
    """Parse TOML ``text`` into a validated :class:`Config` with defaults applied."""
    try:
        root = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"parse config failed: {exc}") from exc
    config = Config(root_path=str(root_path))
    _fill(config, root, _ROOT_SPEC, "")
    _fill(config.limit, _section(root, "Limit"), _LIMIT_SPEC, "Limit.")
    _fill(config.customer, _section(root, "Customer"), _CUSTOMER_SPEC, "Customer.")
    _fill(config.worker, _section(root, "Worker"), _WORKER_SPEC, "Worker.")
    _fill(config.metrics, _section(root, "Metrics"), _METRICS_SPEC, "Metrics.")
    _apply_defaults(config)
    return config


def load_config(path: str | os.PathLike, root_path: str | None = None) -> Config:
    """Read and parse the configuration file at ``path``."""
    try:
        with open(path, encoding="utf-8") as handle:
            text = handle.read()
    except OSError as exc:
        raise ConfigError(f"read config failed: {exc}") from exc
    return parse_config(text, os.getcwd() if root_path is None else root_path)


def default_on_open(
    uniq_id: str,
    message_type: int,
    raw_query: str,
    sub_protocols: list[str] | None,
    x_forwarded_for: str,
    x_real_ip: str,
    remote_addr: str,
) -> tuple[bytes | None, bool]:
    """Connection-open hook: echo the uniq id to simplex clients, never close."""
    if "simplex=yes" in raw_query:
        return uniq_id.encode("utf-8"), False
    return None, False


def default_on_close(
    uniq_id: str, customer_id: str, session: str, topics: list[str]
) -> None:
    """Connection-close hook: records the closed connection at debug level."""
    _logger.debug(
        "customer connection closed uniq_id=%s customer_id=%s topics=%s",
        uniq_id,
        customer_id,
        ",".join(topics),
    )
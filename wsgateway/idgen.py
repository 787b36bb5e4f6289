"""Generators for client uniq ids and business connection ids."""

from __future__ import annotations

import ipaddress
import secrets
import struct
import threading
import time
from typing import Callable, NamedTuple

__all__ = [
    "UniqIdGenerator",
    "UniqIdParts",
    "address_template",
    "new_conn_id",
    "decode_uniq_id",
]

_UINT32_MASK = 0xFFFFFFFF
_UNIQ_ID_BYTES = 14


class UniqIdParts(NamedTuple):
    """The fields packed into a uniq id."""

    ip: str
    port: int
    timestamp: int
    incr_id: int


def _split_host_port(address: str) -> tuple[str, str]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"address {address!r}: missing port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, port


def _ip_bytes(host: str) -> bytes:
    try:
        ip = ipaddress.ip_address(host)
    except ValueError as exc:
        raise ValueError(f"invalid ip address {host!r}") from exc
    return ip.packed[-4:]


def _port_number(port: str) -> int:
    try:
        return int(port) & 0xFFFF
    except ValueError:
        return 0


def _endpoint(address: str) -> bytes:
    host, port = _split_host_port(address)
    return _ip_bytes(host) + struct.pack(">H", _port_number(port))


def address_template(listen_address: str) -> bytes:
    """Return the 6-byte big-endian ``ipv4 + port`` prefix of ``listen_address``."""
    return _endpoint(listen_address)


class UniqIdGenerator:
    """Produces 28-hex-digit ids: listen ip, port, unix time and a counter."""

    def __init__(
        self,
        listen_address: str,
        counter: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._template = address_template(listen_address)
        self._counter = (
            secrets.randbits(32) if counter is None else counter & _UINT32_MASK
        )
        self._clock = clock
        self._lock = threading.Lock()

    def new(self) -> str:
        """Return a new uniq id."""
        with self._lock:
            self._counter = (self._counter + 1) & _UINT32_MASK
            incr = self._counter
        stamp = int(self._clock()) & _UINT32_MASK
        return (self._template + struct.pack(">II", stamp, incr)).hex()


def new_conn_id(listen_address: str, remote_address: str) -> str:
    """Return a 32-hex-digit id for a business connection from ``remote_address``."""
    stamp = int(time.time()) & _UINT32_MASK
    raw = address_template(listen_address) + _endpoint(remote_address)
    return (raw + struct.pack(">I", stamp)).hex()


def decode_uniq_id(uniq_id: str) -> UniqIdParts:
    """Unpack a uniq id into its ip, port, timestamp and counter."""
    try:
        raw = bytes.fromhex(uniq_id)
    except ValueError as exc:
        raise ValueError(f"uniq id {uniq_id!r} is not hex") from exc
    if len(raw) != _UNIQ_ID_BYTES:
        raise ValueError(f"uniq id {uniq_id!r} must be {_UNIQ_ID_BYTES} bytes")
    port, stamp, incr = struct.unpack(">HII", raw[4:])
    return UniqIdParts(str(ipaddress.IPv4Address(raw[:4])), port, stamp, incr)
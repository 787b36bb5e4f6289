"""Small network and filesystem helpers used by the gateway."""

from __future__ import annotations

import ipaddress
import os
import socket

__all__ = [
    "parse_sub_protocols",
    "get_host_by_name",
    "is_valid_ipv4",
    "get_local_ip_address",
    "is_file",
]

_BROADCAST = ipaddress.IPv4Address("255.255.255.255")
# Documentation-only address: a UDP "connect" to it sends nothing but picks a route.
_PROBE_ADDRESS = ("192.0.2.1", 9)


def parse_sub_protocols(header: str | None) -> list[str] | None:
    """Split a Sec-WebSocket-Protocol header value into trimmed sub-protocols."""
    value = (header or "").strip()
    if not value:
        return None
    return [part.strip() for part in value.split(",")]


def _as_ipv4(text: str) -> ipaddress.IPv4Address | None:
    try:
        ip = ipaddress.ip_address(text)
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv4Address):
        return ip
    return ip.ipv4_mapped


def _is_global_unicast(ip: ipaddress.IPv4Address) -> bool:
    return not (
        ip == _BROADCAST
        or ip.is_unspecified
        or ip.is_loopback
        or ip.is_multicast
        or ip.is_link_local
    )


def get_host_by_name(name: str) -> str:
    """Resolve ``name`` to an IPv4 address; return ``name`` unchanged on failure.

    A global unicast address is preferred over a loopback one; an unspecified
    address resolves to ``127.0.0.1``.
    """
    if not name:
        return name
    try:
        infos = socket.getaddrinfo(name, None)
    except (OSError, UnicodeError):
        return name
    global_addr = loopback = unspecified = name
    for info in infos:
        ip = _as_ipv4(str(info[4][0]).split("%", 1)[0])
        if ip is None:
            continue
        if _is_global_unicast(ip):
            global_addr = str(ip)
        if ip.is_loopback:
            loopback = str(ip)
        if ip.is_unspecified:
            unspecified = "127.0.0.1"
    if global_addr != name:
        return global_addr
    if loopback != name:
        return loopback
    return unspecified


def is_valid_ipv4(ip: str) -> bool:
    """Return True if ``ip`` is an IPv4 address (or an IPv4-mapped IPv6 one)."""
    return _as_ipv4(ip) is not None


def _candidate_addresses():
    try:
        yield from socket.gethostbyname_ex(socket.gethostname())[2]
    except OSError:
        pass
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(_PROBE_ADDRESS)
            yield sock.getsockname()[0]
    except OSError:
        pass


def get_local_ip_address() -> str:
    """Return the first local IPv4 address that is neither loopback nor link-local."""
    for address in _candidate_addresses():
        ip = _as_ipv4(address)
        if ip is None or ip.is_loopback or ip.is_link_local:
            continue
        return str(ip)
    return ""


def is_file(filename: str | os.PathLike) -> bool:
    """Return True if ``filename`` exists and is not a directory.

    A missing file gives False; any other stat failure is raised.
    """
    try:
        st = os.stat(filename)
    except FileNotFoundError:
        return False
    return not os.path.isdir(filename) if st is None else not _is_dir_mode(st.st_mode)


def _is_dir_mode(mode: int) -> bool:
    import stat

    return stat.S_ISDIR(mode)
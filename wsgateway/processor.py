"""Framed TCP link between the gateway and one business process.

Every frame is a 4-byte big-endian length followed by that many bytes: a
4-byte big-endian command number and the command's payload.
"""

from __future__ import annotations

import logging
import queue
import socket
import struct
import threading
from typing import Any, BinaryIO, Callable

from .config import WorkerConfig
from .idgen import new_conn_id
from .metrics import Item, MetricsRegistry
from .workers import Shutter, WorkerManager

__all__ = ["FrameError", "ConnProcessor", "encode_frame", "read_frame", "CmdCallback"]

log = logging.getLogger(__name__)

_HEADER = struct.Struct(">I")
_CMD = struct.Struct(">I")
_UINT32_MASK = 0xFFFFFFFF
_RECEIVE_CAPACITY = 64
_CLOSE = object()

CmdCallback = Callable[[bytes, "ConnProcessor"], None]


class FrameError(Exception):
    """Raised when a frame is truncated or larger than allowed."""


def encode_frame(cmd: int, payload: bytes | None = None) -> bytes:
    """Return the wire frame carrying ``cmd`` and ``payload``."""
    body = _CMD.pack(int(cmd) & _UINT32_MASK) + (bytes(payload) if payload else b"")
    return _HEADER.pack(len(body)) + body


def _read_exact(reader: BinaryIO, size: int) -> bytes:
    chunks: list[bytes] = []
    remaining = size
    while remaining:
        chunk = reader.read(remaining)
        if not chunk:
            raise FrameError(
                f"connection closed after {size - remaining} of {size} bytes"
            )
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_frame(reader: BinaryIO, limit: int) -> bytes:
    """Read one frame from ``reader`` and return its body (command + payload).

    Raises :class:`FrameError` if the stream ends early or the announced
    length exceeds ``limit``.
    """
    (length,) = _HEADER.unpack(_read_exact(reader, _HEADER.size))
    if length > limit:
        raise FrameError(f"pack size {length} exceeds the limit of {limit}")
    return _read_exact(reader, length)


def _format_address(address: Any) -> str:
    if isinstance(address, tuple) and len(address) >= 2:
        host, port = str(address[0]), address[1]
        return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"
    if isinstance(address, bytes):
        return address.decode("utf-8", "replace")
    return str(address or "")


def _timeout(seconds: float) -> float | None:
    return seconds if seconds > 0 else None


def _describe(frame: bytes) -> str:
    if len(frame) >= 8:
        (cmd,) = _CMD.unpack_from(frame, 4)
        return f"cmd={cmd} size={len(frame)}"
    return f"size={len(frame)}"


class ConnProcessor:
    """Reads commands from, and writes frames to, one business connection.

    Run :meth:`loop_send`, :meth:`loop_receive` and at least one
    :meth:`loop_cmd` in their own threads.
    """

    def __init__(
        self,
        conn: Any,
        config: WorkerConfig,
        *,
        conn_id: str | None = None,
        manager: WorkerManager | None = None,
        shutter: Shutter | None = None,
        metrics: MetricsRegistry | None = None,
        shutting_down: threading.Event | None = None,
    ) -> None:
        self._conn = conn
        self._config = config
        try:
            peer = conn.getpeername()
        except OSError:
            peer = ""
        self.remote_addr = _format_address(peer)
        self.conn_id = (
            conn_id
            if conn_id is not None
            else new_conn_id(config.listen_address, self.remote_addr)
        )
        self.events = 0
        self._manager = manager
        self._shutter = shutter
        self._metrics = metrics
        self._shutting_down = shutting_down
        self._send_queue: queue.Queue[Any] = queue.Queue(
            maxsize=max(1, config.send_chan_cap)
        )
        self._receive_queue: queue.Queue[Any] = queue.Queue()
        self._receive_slots = threading.Semaphore(_RECEIVE_CAPACITY)
        self._callbacks: dict[int, CmdCallback] = {}
        self._closed = False
        self._close_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def register_cmd(self, cmd: int, callback: CmdCallback) -> None:
        """Route frames carrying ``cmd`` to ``callback(payload, processor)``."""
        self._callbacks[int(cmd)] = callback

    def _mark_failed(self) -> None:
        if self._metrics is not None:
            self._metrics.mark(Item.WORKER_TO_BUSINESS_FAILED_COUNT, 1)

    @staticmethod
    def _stop_queue(target: queue.Queue[Any]) -> None:
        while True:
            try:
                while True:
                    target.get_nowait()
            except queue.Empty:
                pass
            try:
                target.put_nowait(_CLOSE)
                return
            except queue.Full:
                continue

    def force_close(self) -> None:
        """Close the connection once, dropping any frames still queued."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        if self._manager is not None:
            self._manager.delete(self.conn_id)
        stopping = self._shutting_down is not None and self._shutting_down.is_set()
        if self._shutter is not None and not stopping:
            self._shutter.delete(self)
        self._stop_queue(self._send_queue)
        try:
            self._conn.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self._conn.close()
        except OSError:
            pass

    def send(self, payload: bytes | None, cmd: int) -> int:
        """Queue a frame for the business; return its size, or 0 if dropped."""
        if self._closed:
            return 0
        frame = encode_frame(cmd, payload)
        deadline = self._config.send_chan_deadline
        try:
            if deadline == 0 or not self._send_queue.full():
                self._send_queue.put(frame)
            else:
                self._send_queue.put(frame, timeout=max(deadline, 0.0))
        except queue.Full:
            self._mark_failed()
            log.error(
                "Worker send to business failed and discard message: "
                "send to blocking channel timeout (%s, connId=%s, events=%d)",
                _describe(frame),
                self.conn_id,
                self.events,
            )
            return 0
        return len(frame)

    def loop_send(self) -> None:
        """Write queued frames to the connection until it is closed."""
        try:
            while (frame := self._send_queue.get()) is not _CLOSE:
                if not self._closed:
                    self._write(frame)
        except Exception:
            log.exception("Worker send loop failed (connId=%s)", self.conn_id)
        finally:
            log.debug("Worker send loop is closed (connId=%s)", self.conn_id)

    def _write(self, frame: bytes) -> None:
        view = memoryview(frame)
        written = 0
        while written < len(frame):
            try:
                self._conn.settimeout(_timeout(self._config.send_deadline))
            except OSError as exc:
                self.force_close()
                log.error(
                    "Worker set write deadline failed: %s (%s, connId=%s)",
                    exc,
                    _describe(frame),
                    self.conn_id,
                )
                return
            try:
                written += self._conn.send(view[written:])
            except TimeoutError as exc:
                self._mark_failed()
                if written == 0:
                    log.error(
                        "Worker send to business failed and discard message: %s "
                        "(%s, connId=%s)",
                        exc,
                        _describe(frame),
                        self.conn_id,
                    )
                    return
                self._force_close_after_write_error(exc, frame)
                return
            except OSError as exc:
                self._mark_failed()
                self._force_close_after_write_error(exc, frame)
                return

    def _force_close_after_write_error(self, exc: Exception, frame: bytes) -> None:
        self.force_close()
        log.error(
            "Worker send to business failed and force close conn: %s (%s, connId=%s)",
            exc,
            _describe(frame),
            self.conn_id,
        )

    def _enqueue_received(self, body: bytes) -> bool:
        while not self._receive_slots.acquire(timeout=0.1):
            if self._closed:
                return False
        self._receive_queue.put(body)
        return True

    def loop_receive(self) -> None:
        """Read frames from the business and hand them to :meth:`loop_cmd`."""
        limit = self._config.receive_pack_limit
        heartbeat = self._config.heartbeat_message
        reader = None
        try:
            reader = self._conn.makefile(
                "rb", buffering=max(1, self._config.read_buffer_size)
            )
            while not self._closed:
                self._conn.settimeout(_timeout(self._config.read_deadline))
                body = read_frame(reader, limit)
                if body == heartbeat:
                    continue
                if not self._enqueue_received(body):
                    break
        except FrameError as exc:
            if not self._closed:
                log.error("Worker receive failed: %s (connId=%s)", exc, self.conn_id)
        except OSError as exc:
            log.debug("Worker receive stopped: %s (connId=%s)", exc, self.conn_id)
        finally:
            if reader is not None:
                try:
                    reader.close()
                except OSError:
                    pass
            self._receive_queue.put(_CLOSE)
            self.force_close()
            log.debug("Worker receive loop is closed (connId=%s)", self.conn_id)

    def loop_cmd(self) -> None:
        """Dispatch received frames to their registered callbacks.

        An unknown command closes the connection.
        """
        while True:
            data = self._receive_queue.get()
            if data is _CLOSE:
                self._receive_queue.put(_CLOSE)
                break
            self._receive_slots.release()
            callback = None
            cmd = None
            if len(data) > 3:
                (cmd,) = _CMD.unpack_from(data)
                callback = self._callbacks.get(cmd)
            if callback is None:
                log.error(
                    "Unknown cmd %s (connId=%s, events=%d, dataHex=%s)",
                    cmd,
                    self.conn_id,
                    self.events,
                    bytes(data).hex(),
                )
                self.force_close()
                return
            try:
                callback(data[4:], self)
            except Exception:
                log.exception(
                    "Worker cmd %s failed (connId=%s, events=%d)",
                    cmd,
                    self.conn_id,
                    self.events,
                )
        log.debug("Worker cmd loop is closed (connId=%s)", self.conn_id)
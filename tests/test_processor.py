import io
import socket
import struct
import threading

import pytest

from wsgateway.config import WorkerConfig
from wsgateway.idgen import address_template
from wsgateway.metrics import Item, MetricsRegistry
from wsgateway.processor import ConnProcessor, FrameError, encode_frame, read_frame
from wsgateway.workers import Event, Shutter, WorkerManager


def make_config(**overrides):
    values = dict(
        listen_address="127.0.0.1:6061",
        read_deadline=5.0,
        send_deadline=5.0,
        receive_pack_limit=1024,
        read_buffer_size=4096,
        send_chan_cap=4,
        send_chan_deadline=0.0,
        heartbeat_message=b"ping",
    )
    values.update(overrides)
    return WorkerConfig(**values)


@pytest.fixture
def pair():
    left, right = socket.socketpair()
    right.settimeout(5)
    yield left, right
    left.close()
    right.close()


def recv_exact(sock, size):
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def start(target):
    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    return thread


def test_encode_frame_wire_bytes():
    assert encode_frame(1, b"abc") == b"\x00\x00\x00\x07\x00\x00\x00\x01abc"
    assert encode_frame(5) == b"\x00\x00\x00\x04\x00\x00\x00\x05"


def test_read_frame_round_trip():
    stream = io.BytesIO(encode_frame(9, b"payload") + encode_frame(2))
    assert read_frame(stream, 1024) == struct.pack(">I", 9) + b"payload"
    assert read_frame(stream, 1024) == struct.pack(">I", 2)


def test_read_frame_rejects_oversize():
    stream = io.BytesIO(encode_frame(9, b"x" * 50))
    with pytest.raises(FrameError):
        read_frame(stream, 10)


def test_read_frame_truncated_and_empty():
    with pytest.raises(FrameError):
        read_frame(io.BytesIO(encode_frame(9, b"payload")[:-2]), 1024)
    with pytest.raises(FrameError):
        read_frame(io.BytesIO(b""), 1024)


def test_conn_id_built_from_addresses():
    class Peer:
        def getpeername(self):
            return ("10.0.0.2", 5000)

    proc = ConnProcessor(Peer(), make_config())
    assert proc.remote_addr == "10.0.0.2:5000"
    prefix = (address_template("127.0.0.1:6061") + address_template("10.0.0.2:5000")).hex()
    assert proc.conn_id.startswith(prefix)
    assert len(proc.conn_id) == len(prefix) + 8


def test_send_is_written_to_peer(pair):
    left, right = pair
    proc = ConnProcessor(left, make_config(), conn_id="c1")
    sender = start(proc.loop_send)
    size = proc.send(b"hello", 7)
    assert size == len(encode_frame(7, b"hello"))
    assert recv_exact(right, size) == encode_frame(7, b"hello")
    proc.force_close()
    sender.join(5)
    assert not sender.is_alive()
    assert proc.closed


def test_send_after_close_is_dropped(pair):
    left, _ = pair
    proc = ConnProcessor(left, make_config(), conn_id="c1")
    proc.force_close()
    assert proc.send(b"late", 3) == 0


def test_send_to_full_queue_times_out(pair):
    left, _ = pair
    metrics = MetricsRegistry([Item.WORKER_TO_BUSINESS_FAILED_COUNT])
    config = make_config(send_chan_cap=1, send_chan_deadline=0.05)
    proc = ConnProcessor(left, config, conn_id="c1", metrics=metrics)
    assert proc.send(b"a", 1) > 0
    assert proc.send(b"b", 1) == 0
    report = metrics.report()
    assert report[int(Item.WORKER_TO_BUSINESS_FAILED_COUNT)].count == 1


def test_received_commands_are_dispatched(pair):
    left, right = pair
    proc = ConnProcessor(left, make_config(), conn_id="c1")
    got = []
    done = threading.Event()

    def on_cmd(data, processor):
        got.append((data, processor.conn_id))
        if len(got) == 2:
            done.set()

    proc.register_cmd(3, on_cmd)
    receiver = start(proc.loop_receive)
    worker = start(proc.loop_cmd)
    heartbeat = struct.pack(">I", len(b"ping")) + b"ping"
    right.sendall(encode_frame(3, b"one") + heartbeat + encode_frame(3, b"two"))
    assert done.wait(5)
    assert got == [(b"one", "c1"), (b"two", "c1")]
    right.close()
    receiver.join(5)
    worker.join(5)
    assert not receiver.is_alive() and not worker.is_alive()
    assert proc.closed


def test_unknown_cmd_closes_and_unregisters(pair):
    left, right = pair
    manager = WorkerManager()
    proc = ConnProcessor(left, make_config(), conn_id="c1", manager=manager)
    proc.events = Event.ON_MESSAGE
    manager.set(proc)
    assert manager.get(Event.ON_MESSAGE) is proc
    receiver = start(proc.loop_receive)
    worker = start(proc.loop_cmd)
    right.sendall(encode_frame(99, b"?"))
    worker.join(5)
    receiver.join(5)
    assert not worker.is_alive() and not receiver.is_alive()
    assert proc.closed
    assert manager.get(Event.ON_MESSAGE) is None


def test_oversize_frame_closes_connection(pair):
    left, right = pair
    proc = ConnProcessor(left, make_config(receive_pack_limit=8), conn_id="c1")
    receiver = start(proc.loop_receive)
    right.sendall(struct.pack(">I", 100))
    receiver.join(5)
    assert not receiver.is_alive()
    assert proc.closed
    assert right.recv(1) == b""


def test_force_close_leaves_shutter(pair):
    left, _ = pair
    shutter = Shutter()
    proc = ConnProcessor(left, make_config(), conn_id="c1", shutter=shutter)
    shutter.add(proc)
    proc.force_close()
    assert shutter.close_all() == 0


def test_force_close_during_shutdown_keeps_shutter(pair):
    left, _ = pair
    shutter = Shutter()
    stopping = threading.Event()
    stopping.set()
    proc = ConnProcessor(
        left, make_config(), conn_id="c1", shutter=shutter, shutting_down=stopping
    )
    shutter.add(proc)
    proc.force_close()
    assert shutter.close_all() == 1
    assert proc.closed
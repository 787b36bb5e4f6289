import time

import pytest

from wsgateway.idgen import (
    UniqIdGenerator,
    address_template,
    decode_uniq_id,
    new_conn_id,
)


def test_address_template_packs_ip_and_port():
    assert address_template("127.0.0.1:6061") == bytes([127, 0, 0, 1]) + (6061).to_bytes(2, "big")


def test_address_template_rejects_hostname():
    with pytest.raises(ValueError):
        address_template("localhost:6061")


def test_address_template_requires_port():
    with pytest.raises(ValueError):
        address_template("127.0.0.1")


def test_decode_documented_example():
    parts = decode_uniq_id("7f00000117ad6621e43b8baa1b9a")
    assert parts.ip == "127.0.0.1"
    assert parts.port == 0x17AD
    assert parts.timestamp == 0x6621E43B
    assert parts.incr_id == 0x8BAA1B9A


def test_generator_round_trip():
    gen = UniqIdGenerator("10.1.2.3:6061", counter=41, clock=lambda: 1700000000)
    uniq_id = gen.new()
    assert len(uniq_id) == 28
    parts = decode_uniq_id(uniq_id)
    assert parts.ip == "10.1.2.3"
    assert parts.port == 6061
    assert parts.timestamp == 1700000000
    assert parts.incr_id == 42


def test_generator_counter_increments_and_ids_differ():
    gen = UniqIdGenerator("127.0.0.1:6061")
    first, second = gen.new(), gen.new()
    assert first != second
    assert decode_uniq_id(second).incr_id == (decode_uniq_id(first).incr_id + 1) % 2**32


def test_generator_counter_wraps_at_uint32():
    gen = UniqIdGenerator("127.0.0.1:6061", counter=2**32 - 1)
    assert decode_uniq_id(gen.new()).incr_id == 0


def test_decode_rejects_bad_input():
    with pytest.raises(ValueError):
        decode_uniq_id("abcd")
    with pytest.raises(ValueError):
        decode_uniq_id("zz" * 14)


def test_new_conn_id_layout():
    before = int(time.time())
    conn_id = new_conn_id("127.0.0.1:6061", "192.168.0.7:50000")
    after = int(time.time())
    raw = bytes.fromhex(conn_id)
    assert len(raw) == 16
    assert raw[:6] == address_template("127.0.0.1:6061")
    assert raw[6:12] == address_template("192.168.0.7:50000")
    assert before <= int.from_bytes(raw[12:], "big") <= after


def test_new_conn_id_invalid_remote():
    with pytest.raises(ValueError):
        new_conn_id("127.0.0.1:6061", "not-an-address")
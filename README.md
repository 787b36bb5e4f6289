# wsgateway

The state-keeping core of a WebSocket push gateway. Client connections are
kept on one side; business processes talk to the gateway on the other side
over a length-prefixed TCP protocol. The package depends on nothing outside
the standard library.

## What is in it

| Module | What it holds |
| --- | --- |
| `wsgateway.config` | `Config` and its sections, `parse_config`, `load_config`, `ConfigError`, and the hooks `default_on_open` / `default_on_close` |
| `wsgateway.connections` | `ConnectionManager`: client connections by `uniq_id`, spread over 8 shards chosen by `shard_index` |
| `wsgateway.session` | `Info`: a connection's session string, customer id and subscribed topics |
| `wsgateway.binder` | `Binder`: one customer id to many connections, each connection to at most one customer |
| `wsgateway.topics` | `TopicRegistry`: topic to subscriber relations |
| `wsgateway.limit` | `RateLimiter` (token bucket), `NilLimiter`, `LimitManager` for the open and message events |
| `wsgateway.metrics` | `Item`, `Meter` with count and 1/5/15-minute rates, `NilMeter`, `Status`, `MetricsRegistry` |
| `wsgateway.workers` | `Event`, `WorkerCollect` / `WorkerManager` (business connections per event, picked round-robin), `Shutter` |
| `wsgateway.idgen` | `UniqIdGenerator`, `decode_uniq_id`, `new_conn_id`, `address_template` |
| `wsgateway.processor` | `ConnProcessor`, `encode_frame`, `read_frame`, `FrameError` |
| `wsgateway.delivery` | `Gateway`: the registries above plus `write_message` and `session_of`; `ClientConnection` protocol |
| `wsgateway.session_commands` | session updates, subscriptions, topic deletion and connection queries |
| `wsgateway.casting` | single-cast, multicast, broadcast, the bulk variants and topic publishing |

## Configuration

`parse_config(text, root_path)` reads a TOML string and `load_config(path,
root_path=None)` reads a file (the root path defaults to the current
directory). Both fill in defaults and check the values. Key names are
matched without regard to case. Durations may be Go-style strings such as
`"120s"` or `"1m30s"`, or integers counting nanoseconds; they are stored as
seconds. A missing heartbeat message, a compression level outside `-2..9`,
a send message type other than 1 (text) or 2 (binary), or a worker listen
address that cannot be turned into an IPv4 address raises `ConfigError`.

```python
from wsgateway.config import ConfigError, parse_config

text = """
LogLevel = "info"

[Customer]
ListenAddress = "127.0.0.1:6060"
HeartbeatMessage = "~3yPvmnz~"

[Worker]
ListenAddress = "127.0.0.1:6061"
HeartbeatMessage = "~3yPvmnz~"
"""

try:
    config = parse_config(text, root_path="/srv/gateway")
except ConfigError as exc:
    print("bad configuration:", exc)
else:
    config.customer.read_deadline   # 120.0 (default)
    config.worker.send_chan_cap     # 1024 (default)
    config.get_log_level()          # logging.INFO
```

## Binding customers to connections

```python
from wsgateway.binder import Binder

binder = Binder()
binder.set("conn-a", "customer-1")
binder.set("conn-b", "customer-1")

sorted(binder.get_uniq_ids_by_customer_id("customer-1"))  # ['conn-a', 'conn-b']
len(binder)                                               # 1 customer

binder.del_uniq_id("conn-a")
binder.del_uniq_id("conn-b")
len(binder)                                               # 0
```

## Topic subscriptions

```python
from wsgateway.topics import TopicRegistry

topics = TopicRegistry()
topics.set_many(["news", "sports"], "conn-a")
topics.set_many(["news"], "conn-b")

topics.count(["news", "sports"])     # {'news': 2, 'sports': 1}
topics.del_many(["news"], "conn-a")
```

When the last subscriber leaves a topic, the topic is removed.

## Commands

The command functions take a `Gateway` and plain Python arguments. A client
connection is any object with a `session` attribute (an `Info`) and the
methods `set_write_deadline(deadline)`, `write_message(message_type, data)`
and `close()`. `Gateway.write_message` closes a connection whose write
fails and returns False.

```python
from wsgateway.casting import topic_publish
from wsgateway.config import parse_config
from wsgateway.delivery import Gateway
from wsgateway.session import Info
from wsgateway.session_commands import topic_subscribe


class Conn:
    def __init__(self, uniq_id):
        self.session = Info(uniq_id)
        self.sent = []

    def set_write_deadline(self, deadline):
        pass

    def write_message(self, message_type, data):
        self.sent.append(data)

    def close(self):
        pass


gateway = Gateway(config)          # config from parse_config above
conn = Conn("conn-a")
gateway.connections.set("conn-a", conn)

topic_subscribe(gateway, "conn-a", ["news"])
topic_publish(gateway, ["news"], b"hello")
conn.sent                          # [b'hello']
```

`topic_publish` sends once per topic, so a connection subscribed to several
of the given topics gets the data several times; `topic_delete` with data
sends it to each affected connection only once.

## Wire protocol

Each message between the gateway and a business process is one frame: a
4-byte big-endian length, then a 4-byte big-endian command number and the
payload. The length counts the command and the payload, not itself.
`encode_frame(cmd, payload)` builds a frame; `read_frame(reader, limit)`
reads one and returns the command plus payload. A truncated or oversized
frame raises `FrameError`.

`ConnProcessor` wraps one business socket: `send` queues frames,
`loop_send`, `loop_receive` and `loop_cmd` are meant to run in their own
threads, and `register_cmd` routes a command number to a callback. An
unknown command closes the connection.

## What the package does not do

- It does not run servers. There is no WebSocket server accepting clients
  and no TCP listener accepting business connections; the caller supplies
  connections and sockets and runs the `ConnProcessor` loops.
- It does not decode command payloads. The callbacks given to
  `register_cmd` receive raw bytes, and nothing maps command numbers to
  the functions in `session_commands` and `casting`.
- `default_on_open` and `default_on_close` are plain functions; nothing in
  the package calls them, and no callback scripts are loaded.
- There is no command-line program and no logging setup beyond the
  standard `logging` calls the modules make.

## Running the tests

```
pip install -e .[test]
pytest
```
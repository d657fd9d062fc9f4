# netlabs

A collection of small asyncio network services:

| Service | Transport | Server command | Client command |
|---|---|---|---|
| Minimal DNS resolver (A records only) | UDP | `netlabs-dns-server` | `netlabs-dns-client` |
| Timestamped log collector | TCP, line based | `netlabs-log-server` | `netlabs-log-client` |
| Remote calculator | TCP, 4-byte length prefix + JSON | `netlabs-calc-server` | `netlabs-calc-client` |
| Chat room | WebSocket | `netlabs-chat-server` | none (see below) |

Every command accepts `--host` and `--port` (clients: the server to reach) and
stops on Ctrl+C. Python 3.11 or newer is required.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## DNS

`netlabs-dns-server` answers A queries on `127.0.0.1:8053` from a small built-in
table (`exemple.com`, `www.exemple.com`, `test.local`, `serveur.esgi`) with a TTL
of 300 seconds. Unknown names get the NXDOMAIN response code (3), other query
types the "not implemented" code (4). Packets that cannot be parsed are ignored.
The table can be replaced by passing a mapping to `netlabs.dns_server.DnsServer`.

`netlabs-dns-client` (options `--server HOST:PORT`, default `127.0.0.1:8053`, and
`--timeout SECONDS`, default 5) first resolves a few test names, then reads domain
names from standard input until `quit`, `exit` or end of input. The same work is
available from `netlabs.dns_client.DnsClient.resolve`, which returns the dotted
IPv4 address or `None`.

The wire format lives in `netlabs.dns`:

```python
from netlabs.dns import DnsMessage

query = DnsMessage.query(0x1234, "exemple.com", 1)
packet = query.to_bytes()
parsed = DnsMessage.from_bytes(packet)
assert parsed.questions[0].qname == "exemple.com"
```

Truncated headers, names or questions raise `netlabs.dns.DnsError`; truncated
answer records are dropped.

## Log collector

`netlabs-log-server` listens on `127.0.0.1:8080` and appends every non-empty line
it receives to `logs/server.log` (change it with `--log-file`; the directory must
already exist), prefixed with a UTC timestamp such as
`[2025-01-31 12:00:00 UTC]`. Many clients may write at once; each entry is
written whole.

`netlabs-log-client` connects, sends a burst of ten numbered messages, then
forwards each line typed on standard input until end of input. Every line is
tagged with the client's local port, e.g. `[Client:53122] hello`.

## Remote calculator

`netlabs-calc-server` listens on `127.0.0.1:8081`. Each message is a JSON
document preceded by its length as a big-endian 32-bit integer. A client first
opens a session with a session id that is not already in use, then may request:

- `addition`, `soustraction`, `multiplication`, `division`, `puissance` (two operands;
  short forms `add`, `sub`, `mul`, `div`, `pow`)
- `racine`, `factorielle` (up to 170), `fibonacci` (up to 78) (one operand;
  short forms `sqrt`, `fact`, `fib`)
- `info`, `stats`, `ping`

`netlabs-calc-client` takes the session id from `--session-id` or asks for one
(an empty answer gives a generated `client_…` id; at most 50 bytes), connects and
offers a `calc>` prompt accepting the commands above; `quit` ends the session.

The protocol is available as a library in `netlabs.calc_protocol`:

```python
from netlabs.calc_protocol import CalcRequest, MathOperation, compute

print(compute(CalcRequest(MathOperation.ADDITION, 5.0, 3.0)))  # 8.0
```

`compute` raises `ValueError` for impossible calculations (division by zero, a
missing second operand, a negative square root, out-of-range factorial or
Fibonacci). `ProtocolMessage.from_bytes` and `ProtocolMessage.from_json` raise
`netlabs.calc_protocol.ProtocolError` for data that is not a valid message.

## Chat room

`netlabs-chat-server` serves a WebSocket chat on `ws://127.0.0.1:9001`. A client
must first send a connection message carrying a user name (non-empty, at most 50
bytes, no spaces, not already connected). After that, chat text is broadcast to
the other users, binary file messages are relayed, and text starting with `/` is
treated as a command: `/help`, `/users`, `/stats`, `/ping`, `/quit`. Replies to
commands are sent as notifications to every connected user.

Messages are JSON objects built with `netlabs.ws_protocol.WsMessage`; binary
messages travel in binary frames, all others in text frames:

```python
from netlabs.ws_protocol import WsMessage

msg = WsMessage.chat("alice", "hello")
assert WsMessage.from_json(msg.to_json()).content == "hello"
```

`netlabs.ws_protocol.validate_username` raises `ValueError` for a name the server
would refuse.

## What is not included

There is no chat client command. To talk to `netlabs-chat-server`, use any
WebSocket client and send frames produced by `WsMessage.to_frame()`, starting
with `WsMessage.connection(name)`.
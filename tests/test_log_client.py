import asyncio
import io
import re
import time

import pytest

from netlabs.log_client import LogClient
from netlabs.log_server import LogServer


async def _collecting_server():
    lines = []
    peers = []
    done = asyncio.Event()

    async def handler(reader, writer):
        peers.append(writer.get_extra_info("peername")[1])
        async for raw in reader:
            lines.append(raw.decode("utf-8"))
        writer.close()
        done.set()

    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, port, lines, peers, done


@pytest.mark.asyncio
async def test_send_message_format_and_port():
    server, port, lines, peers, done = await _collecting_server()
    async with server:
        client = await LogClient.connect("127.0.0.1", port)
        await client.send_message("bonjour")
        await client.close()
        await asyncio.wait_for(done.wait(), 5)
    assert peers == [client.port]
    assert lines == [f"[Client:{client.port}] bonjour\n"]


@pytest.mark.asyncio
async def test_send_burst_messages():
    server, port, lines, _, done = await _collecting_server()
    async with server:
        client = await LogClient.connect("127.0.0.1", port)
        await client.send_burst(3, time.monotonic(), 0.001)
        await client.close()
        await asyncio.wait_for(done.wait(), 5)
    pattern = re.compile(rf"^\[Client:{client.port}\] Message rapide (\d+) - \d+ms\n$")
    assert [int(pattern.match(line).group(1)) for line in lines] == [1, 2, 3]


@pytest.mark.asyncio
async def test_interactive_sends_stripped_lines():
    server, port, lines, _, done = await _collecting_server()
    async with server:
        client = await LogClient.connect("127.0.0.1", port)
        await client.interactive(io.StringIO("  hello \nworld\n"))
        await client.close()
        await asyncio.wait_for(done.wait(), 5)
    prefix = f"[Client:{client.port}] "
    assert lines == [prefix + "hello\n", prefix + "world\n"]


async def _concurrent_client(client_id, port, start_time):
    async with await LogClient.connect("127.0.0.1", port) as client:
        for msg_id in range(1, 6):
            elapsed = int((time.monotonic() - start_time) * 1000)
            await client.send_message(
                f"TestClient{client_id} Message concurrent {msg_id} - {elapsed}ms"
            )
            await asyncio.sleep(0.005)
        await asyncio.sleep(0.1)
        return client.port


@pytest.mark.asyncio
async def test_ten_concurrent_clients_are_all_logged(tmp_path):
    log = tmp_path / "server.log"
    log_server = LogServer(log)
    finished = 0
    all_done = asyncio.Event()

    async def handler(reader, writer):
        nonlocal finished
        await log_server.handle_client(reader, writer)
        finished += 1
        if finished == 10:
            all_done.set()

    server = await asyncio.start_server(handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    start = time.monotonic()
    async with server:
        ports = await asyncio.gather(
            *(_concurrent_client(cid, port, start) for cid in range(1, 11))
        )
        await asyncio.wait_for(all_done.wait(), 10)

    entry = re.compile(
        r"^\[\d{4}-\d\d-\d\d \d\d:\d\d:\d\d UTC\] \[Client:(\d+)\] "
        r"TestClient(\d+) Message concurrent (\d) - \d+ms$"
    )
    lines = log.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 50
    per_client = {}
    for line in lines:
        match = entry.match(line)
        assert match is not None
        client_port, client_id, msg_id = int(match.group(1)), int(match.group(2)), int(match.group(3))
        assert client_port == ports[client_id - 1]
        per_client.setdefault(client_id, []).append(msg_id)
    assert sorted(per_client) == list(range(1, 11))
    for msg_ids in per_client.values():
        assert msg_ids == [1, 2, 3, 4, 5]
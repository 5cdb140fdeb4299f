import asyncio
import uuid

import pytest

from ferrolink.agent import Agent, FileTransferState, collect_system_metrics, main
from ferrolink.protocol import (
    ChunkReceived,
    CompleteFileTransfer,
    FileChunk,
    FileTransferComplete,
    FileTransferReady,
    GetSystemMetrics,
    Ping,
    Pong,
    StartFileTransfer,
    SystemMetricsReport,
    encode_message,
)


def _start(transfer_id, filename, size, chunk_size):
    return StartFileTransfer(transfer_id, filename, size, chunk_size)


@pytest.mark.asyncio
async def test_ping_answers_pong(tmp_path):
    agent = Agent(str(tmp_path))
    assert await agent.handle_message(Ping()) == [Pong()]


@pytest.mark.asyncio
async def test_unexpected_message_gets_no_reply(tmp_path):
    agent = Agent(str(tmp_path))
    assert await agent.handle_message(Pong()) == []


@pytest.mark.asyncio
async def test_metrics_request_returns_report(tmp_path):
    agent = Agent(str(tmp_path))
    responses = await agent.handle_message(GetSystemMetrics())
    assert len(responses) == 1
    report = responses[0]
    assert isinstance(report, SystemMetricsReport)
    memory = report.metrics.memory
    assert memory.available_bytes == memory.total_bytes - memory.used_bytes


def test_collect_system_metrics_invariants():
    metrics = collect_system_metrics()
    assert metrics.memory.total_bytes >= metrics.memory.used_bytes
    for disk in metrics.disks:
        assert disk.used_bytes + disk.available_bytes == disk.total_bytes
        assert 0.0 <= disk.usage_percent <= 100.0


def test_transfer_state_assembles_in_order():
    state = FileTransferState.start(_start(uuid.uuid4(), "f.bin", 5, 2))
    assert state.expected_chunks == 3
    state.add_chunk(2, b"e")
    state.add_chunk(0, b"ab")
    assert not state.is_complete
    assert state.assemble() is None
    state.add_chunk(1, b"cd")
    assert state.is_complete
    assert state.assemble() == b"abcde"


@pytest.mark.asyncio
async def test_full_transfer_writes_file(tmp_path):
    upload = tmp_path / "uploads"
    agent = Agent(str(upload))
    tid = uuid.uuid4()
    payload = b"hello world"
    assert await agent.handle_message(_start(tid, "greeting.txt", len(payload), 4)) == [
        FileTransferReady(tid)
    ]
    chunks = [payload[i : i + 4] for i in range(0, len(payload), 4)]
    for number, chunk in enumerate(chunks[:-1]):
        responses = await agent.handle_message(FileChunk(tid, number, chunk, False))
        assert responses == [ChunkReceived(tid, number)]
    last = len(chunks) - 1
    responses = await agent.handle_message(FileChunk(tid, last, chunks[-1], True))
    assert responses == [ChunkReceived(tid, last), FileTransferComplete(tid, True, None)]
    assert (upload / "greeting.txt").read_bytes() == payload
    assert tid not in agent.transfers


@pytest.mark.asyncio
async def test_out_of_order_chunks_are_reassembled(tmp_path):
    agent = Agent(str(tmp_path))
    tid = uuid.uuid4()
    await agent.handle_message(_start(tid, "data.bin", 6, 2))
    await agent.handle_message(FileChunk(tid, 2, b"56", True))
    await agent.handle_message(FileChunk(tid, 0, b"12", False))
    responses = await agent.handle_message(FileChunk(tid, 1, b"34", False))
    assert responses[-1] == FileTransferComplete(tid, True, None)
    assert (tmp_path / "data.bin").read_bytes() == b"123456"


@pytest.mark.asyncio
async def test_chunk_for_unknown_transfer_is_ignored(tmp_path):
    agent = Agent(str(tmp_path))
    assert await agent.handle_message(FileChunk(uuid.uuid4(), 0, b"x", True)) == []


@pytest.mark.asyncio
async def test_complete_for_unknown_transfer_is_ignored(tmp_path):
    agent = Agent(str(tmp_path))
    assert await agent.handle_message(CompleteFileTransfer(uuid.uuid4())) == []


@pytest.mark.asyncio
async def test_complete_with_missing_chunks_drops_transfer(tmp_path):
    agent = Agent(str(tmp_path))
    tid = uuid.uuid4()
    await agent.handle_message(_start(tid, "part.bin", 10, 4))
    await agent.handle_message(FileChunk(tid, 0, b"abcd", False))
    assert await agent.handle_message(CompleteFileTransfer(tid)) == []
    assert tid not in agent.transfers
    assert not (tmp_path / "part.bin").exists()
    assert await agent.handle_message(FileChunk(tid, 1, b"efgh", False)) == []


@pytest.mark.asyncio
async def test_explicit_complete_of_empty_file(tmp_path):
    agent = Agent(str(tmp_path))
    tid = uuid.uuid4()
    await agent.handle_message(_start(tid, "empty.txt", 0, 8))
    assert await agent.handle_message(CompleteFileTransfer(tid)) == [
        FileTransferComplete(tid, True, None)
    ]
    assert (tmp_path / "empty.txt").read_bytes() == b""


@pytest.mark.asyncio
async def test_write_failure_is_reported(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_bytes(b"")
    agent = Agent(str(blocker))
    tid = uuid.uuid4()
    await agent.handle_message(_start(tid, "f.txt", 1, 1))
    responses = await agent.handle_message(FileChunk(tid, 0, b"z", True))
    result = responses[-1]
    assert isinstance(result, FileTransferComplete)
    assert result.success is False
    assert result.error.startswith("Failed to write file:")


@pytest.mark.asyncio
async def test_zero_chunk_size_is_rejected(tmp_path):
    agent = Agent(str(tmp_path))
    assert await agent.handle_message(_start(uuid.uuid4(), "f", 10, 0)) == []
    assert agent.transfers == {}


@pytest.mark.asyncio
async def test_handle_client_over_socket(tmp_path):
    agent = Agent(str(tmp_path))
    server = await asyncio.start_server(agent.handle_client, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    async with server:
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        writer.write(b"\n")
        writer.write(b"not json\n")
        writer.write(b'"Pong"\n')
        writer.write(encode_message(Ping()).encode() + b"\n")
        await writer.drain()
        line = await asyncio.wait_for(reader.readline(), timeout=5)
        assert line == b'"Pong"\n'
        writer.close()
        await writer.wait_closed()


def test_main_rejects_bad_port():
    with pytest.raises(SystemExit) as excinfo:
        main(["--port", "notanumber"])
    assert excinfo.value.code == 2
"""Command-line client: pings the agent, shows its metrics and uploads files."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import os
import sys
import uuid
from collections.abc import AsyncIterator
from pathlib import Path

from ferrolink.protocol import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    ChunkReceived,
    FileChunk,
    FileTransferComplete,
    FileTransferReady,
    GetSystemMetrics,
    Message,
    Ping,
    Pong,
    ProtocolError,
    StartFileTransfer,
    SystemMetrics,
    SystemMetricsReport,
    decode_message,
    encode_message,
    expected_chunk_count,
)

DEFAULT_CHUNK_SIZE = 8192

_U32_MAX = 2**32 - 1
_GIB = 1024.0 * 1024.0 * 1024.0
_LINE_LIMIT = 64 * 1024 * 1024


class TransferError(Exception):
    """Raised when the agent answers a file transfer out of protocol."""


def _warn(text: str) -> None:
    print(text, file=sys.stderr, flush=True)


def _address(host: str, port: int) -> str:
    return f"{host}:{port}"


@contextlib.asynccontextmanager
async def _connect(
    host: str, port: int
) -> AsyncIterator[tuple[asyncio.StreamReader, asyncio.StreamWriter]]:
    reader, writer = await asyncio.open_connection(host, port, limit=_LINE_LIMIT)
    try:
        yield reader, writer
    finally:
        writer.close()
        with contextlib.suppress(OSError):
            await writer.wait_closed()


async def _send(writer: asyncio.StreamWriter, message: Message) -> None:
    writer.write(encode_message(message).encode("utf-8") + b"\n")
    await writer.drain()


async def _receive(reader: asyncio.StreamReader) -> Message:
    line = await reader.readline()
    return decode_message(line.strip())


def split_chunks(data: bytes, chunk_size: int) -> list[bytes]:
    """Cut data into consecutive pieces of chunk_size bytes; the last may be shorter."""
    expected_chunk_count(len(data), chunk_size)
    return [bytes(data[start : start + chunk_size]) for start in range(0, len(data), chunk_size)]


def format_system_metrics(metrics: SystemMetrics) -> str:
    """Render a metrics snapshot the way the monitor command prints it."""
    memory = metrics.memory
    lines = [
        "",
        "System Metrics",
        "─" * 50,
        f"CPU Usage: {metrics.cpu_usage_percent:.1f}%",
        f"Memory: {memory.used_bytes / _GIB:.1f} GB / {memory.total_bytes / _GIB:.1f} GB "
        f"({memory.usage_percent:.1f}%)",
    ]
    if metrics.disks:
        lines.append("")
        lines.append("Disk Usage:")
        lines.extend(
            f"   {disk.name} ({disk.mount_point}): "
            f"{disk.used_bytes / _GIB:.1f} GB / {disk.total_bytes / _GIB:.1f} GB "
            f"({disk.usage_percent:.1f}%)"
            for disk in metrics.disks
        )
    lines.append("")
    return "\n".join(lines)


async def ping_agent(host: str, port: int) -> bool:
    """Send a ping and report whether the agent answered with a pong."""
    print(f"Connecting to agent at {_address(host, port)}")
    async with _connect(host, port) as (reader, writer):
        print("Sending ping...")
        await _send(writer, Ping())
        try:
            response = await _receive(reader)
        except ProtocolError as exc:
            _warn(f"Failed to parse response: {exc}")
            return False
    if isinstance(response, Pong):
        print("Received pong! Agent is responding.")
        return True
    print(f"Unexpected response: {response!r}")
    return False


async def fetch_system_metrics(host: str, port: int) -> SystemMetrics | None:
    """Request a metrics snapshot, print it and return it (None if none came back)."""
    print(f"Connecting to agent at {_address(host, port)}")
    async with _connect(host, port) as (reader, writer):
        print("Requesting system metrics...")
        await _send(writer, GetSystemMetrics())
        try:
            response = await _receive(reader)
        except ProtocolError as exc:
            _warn(f"Failed to parse response: {exc}")
            return None
    if isinstance(response, SystemMetricsReport):
        print(format_system_metrics(response.metrics))
        return response.metrics
    print(f"Unexpected response: {response!r}")
    return None


async def send_file(
    host: str, port: int, path: str | os.PathLike[str], chunk_size: int = DEFAULT_CHUNK_SIZE
) -> FileTransferComplete:
    """Upload a file in chunks and return the agent's final verdict."""
    if not 0 < chunk_size <= _U32_MAX:
        raise ValueError(f"chunk_size must be between 1 and {_U32_MAX}")
    print(f"Connecting to agent at {_address(host, port)}")

    file_path = Path(path)
    file_size = file_path.stat().st_size
    filename = file_path.name
    if not filename:
        raise TransferError("Invalid filename")

    print(f"Preparing to send file: {filename} ({file_size} bytes)")

    async with _connect(host, port) as (reader, writer):
        transfer_id = uuid.uuid4()

        print("Starting file transfer...")
        await _send(
            writer,
            StartFileTransfer(
                transfer_id=transfer_id,
                filename=filename,
                total_size=file_size,
                chunk_size=chunk_size,
            ),
        )

        response = await _receive(reader)
        if not isinstance(response, FileTransferReady):
            raise TransferError(f"Unexpected response: {response!r}")
        if response.transfer_id != transfer_id:
            raise TransferError("Transfer ID mismatch")
        print("Agent ready to receive file")

        chunks = split_chunks(await asyncio.to_thread(file_path.read_bytes), chunk_size)
        total_chunks = len(chunks)
        print(f"Sending {total_chunks} chunks...")

        for chunk_number, chunk_data in enumerate(chunks):
            await _send(
                writer,
                FileChunk(
                    transfer_id=transfer_id,
                    chunk_number=chunk_number,
                    data=chunk_data,
                    is_last_chunk=chunk_number == total_chunks - 1,
                ),
            )
            ack = await _receive(reader)
            if not isinstance(ack, ChunkReceived):
                raise TransferError(f"Unexpected chunk response: {ack!r}")
            if ack.transfer_id != transfer_id or ack.chunk_number != chunk_number:
                raise TransferError("Chunk acknowledgment mismatch")
            print(f"\rProgress: {chunk_number + 1}/{total_chunks} chunks sent", end="", flush=True)

        print()

        outcome = await _receive(reader)
        if not isinstance(outcome, FileTransferComplete):
            raise TransferError(f"Unexpected completion response: {outcome!r}")
        if outcome.transfer_id != transfer_id:
            raise TransferError("Transfer completion ID mismatch")

    if outcome.success:
        print("File transfer completed successfully!")
        print(f"File saved as: {filename}")
    else:
        print("File transfer failed!")
        if outcome.error is not None:
            print(f"Error: {outcome.error}")
    return outcome


def _chunk_size(text: str) -> int:
    value = int(text)
    if not 0 < value <= _U32_MAX:
        raise argparse.ArgumentTypeError(f"chunk size must be between 1 and {_U32_MAX}")
    return value


def _port(text: str) -> int:
    value = int(text)
    if not 0 <= value <= 65535:
        raise argparse.ArgumentTypeError(f"invalid port: {value}")
    return value


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ferrolink-client",
        description="FerroLink Client - Remote desktop monitoring and control",
    )
    parser.add_argument("-H", "--host", default=DEFAULT_HOST)
    parser.add_argument("-p", "--port", type=_port, default=DEFAULT_PORT)
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("ping", help="Test connection to the agent")
    commands.add_parser("monitor", help="Get current system metrics")
    send = commands.add_parser("send-file", help="Send a file to the agent")
    send.add_argument("file", help="Path to the file to send")
    send.add_argument(
        "--chunk-size",
        type=_chunk_size,
        default=DEFAULT_CHUNK_SIZE,
        help=f"Chunk size in bytes (default: {DEFAULT_CHUNK_SIZE})",
    )
    return parser


async def _run(args: argparse.Namespace) -> None:
    match args.command:
        case "ping":
            await ping_agent(args.host, args.port)
        case "monitor":
            await fetch_system_metrics(args.host, args.port)
        case "send-file":
            await send_file(args.host, args.port, args.file, args.chunk_size)


def main(argv: list[str] | None = None) -> int:
    """Run the client from the command line."""
    args = _build_parser().parse_args(argv)
    try:
        asyncio.run(_run(args))
    except (OSError, ValueError, TransferError) as exc:
        _warn(f"Error: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
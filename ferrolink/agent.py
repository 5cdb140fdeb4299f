"""Monitoring agent: answers pings, reports system metrics and receives files."""

from __future__ import annotations

import argparse
import asyncio
import math
import os
import sys
import uuid
from dataclasses import dataclass, field

import psutil

from ferrolink.protocol import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    ChunkReceived,
    CompleteFileTransfer,
    DiskInfo,
    FileChunk,
    FileTransferComplete,
    FileTransferReady,
    GetSystemMetrics,
    MemoryInfo,
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

# File chunks travel as JSON arrays of numbers, so lines can be long.
_LINE_LIMIT = 64 * 1024 * 1024


def _log(text: str) -> None:
    print(text, flush=True)


def _warn(text: str) -> None:
    print(text, file=sys.stderr, flush=True)


@dataclass
class FileTransferState:
    """Chunks received so far for one upload."""

    filename: str
    total_size: int
    chunk_size: int
    expected_chunks: int
    received_chunks: dict[int, bytes] = field(default_factory=dict)

    @classmethod
    def start(cls, message: StartFileTransfer) -> FileTransferState:
        return cls(
            filename=message.filename,
            total_size=message.total_size,
            chunk_size=message.chunk_size,
            expected_chunks=expected_chunk_count(message.total_size, message.chunk_size),
        )

    def add_chunk(self, chunk_number: int, data: bytes) -> None:
        self.received_chunks[chunk_number] = data

    @property
    def is_complete(self) -> bool:
        return len(self.received_chunks) == self.expected_chunks

    def assemble(self) -> bytes | None:
        """Join chunks 0..expected_chunks in order, or None if one is missing."""
        parts = []
        for number in range(self.expected_chunks):
            chunk = self.received_chunks.get(number)
            if chunk is None:
                return None
            parts.append(chunk)
        return b"".join(parts)


def collect_system_metrics() -> SystemMetrics:
    """Take a snapshot of CPU, memory and disk usage of this machine."""
    per_cpu = psutil.cpu_percent(interval=None, percpu=True)
    cpu_usage = sum(per_cpu) / len(per_cpu) if per_cpu else math.nan

    vm = psutil.virtual_memory()
    total_memory = int(vm.total)
    used_memory = int(vm.used)
    memory = MemoryInfo(
        total_bytes=total_memory,
        used_bytes=used_memory,
        available_bytes=max(total_memory - used_memory, 0),
        usage_percent=used_memory / total_memory * 100.0 if total_memory else math.nan,
    )

    disks = []
    for partition in psutil.disk_partitions(all=False):
        try:
            usage = psutil.disk_usage(partition.mountpoint)
        except (OSError, psutil.Error):
            continue
        total_space = int(usage.total)
        available_space = int(usage.free)
        used_space = max(total_space - available_space, 0)
        disks.append(
            DiskInfo(
                name=partition.device,
                mount_point=partition.mountpoint,
                total_bytes=total_space,
                used_bytes=used_space,
                available_bytes=available_space,
                usage_percent=used_space / total_space * 100.0 if total_space > 0 else 0.0,
            )
        )

    return SystemMetrics(cpu_usage_percent=cpu_usage, memory=memory, disks=disks)


class Agent:
    """Protocol handler shared by all client connections."""

    def __init__(self, upload_dir: str) -> None:
        self.upload_dir = upload_dir
        self.transfers: dict[uuid.UUID, FileTransferState] = {}

    async def handle_message(self, message: Message) -> list[Message]:
        """Process one message and return the responses to send, in order."""
        match message:
            case Ping():
                _log("Received ping")
                return [Pong()]
            case GetSystemMetrics():
                _log("Received system metrics request")
                try:
                    metrics = await asyncio.to_thread(collect_system_metrics)
                except (OSError, psutil.Error) as exc:
                    _warn(f"Failed to collect system metrics: {exc}")
                    return []
                return [SystemMetricsReport(metrics)]
            case StartFileTransfer() | FileChunk() | CompleteFileTransfer():
                try:
                    return await self._handle_file_transfer(message)
                except ValueError as exc:
                    _warn(f"Failed to handle file transfer: {exc}")
                    return []
            case _:
                _log(f"Received unexpected message: {message!r}")
                return []

    async def _handle_file_transfer(self, message: Message) -> list[Message]:
        match message:
            case StartFileTransfer(transfer_id=transfer_id, filename=filename):
                _log(f"Starting file transfer: {filename} ({message.total_size} bytes)")
                state = FileTransferState.start(message)
                self.transfers[transfer_id] = state
                _log(
                    f"File transfer ready: {filename} "
                    f"(expecting {state.expected_chunks} chunks)"
                )
                return [FileTransferReady(transfer_id)]

            case FileChunk(transfer_id=transfer_id, chunk_number=chunk_number, data=data):
                _log(f"Received chunk {chunk_number} for transfer {transfer_id}")
                state = self.transfers.get(transfer_id)
                if state is None:
                    _warn(f"Received chunk for unknown transfer: {transfer_id}")
                    return []
                state.add_chunk(chunk_number, data)
                responses: list[Message] = [ChunkReceived(transfer_id, chunk_number)]
                if state.is_complete:
                    responses.extend(await self._complete(transfer_id, state.filename))
                return responses

            case CompleteFileTransfer(transfer_id=transfer_id):
                _log(f"Completing file transfer: {transfer_id}")
                state = self.transfers.get(transfer_id)
                if state is None:
                    _warn(f"Received complete request for unknown transfer: {transfer_id}")
                    return []
                return await self._complete(transfer_id, state.filename)

        _warn(f"Unexpected message in file transfer handler: {message!r}")
        return []

    async def _complete(self, transfer_id: uuid.UUID, filename: str) -> list[Message]:
        state = self.transfers.pop(transfer_id, None)
        if state is None:
            _warn(f"Transfer state not found for: {transfer_id}")
            success, error = False, "Transfer state not found"
        else:
            file_data = state.assemble()
            if file_data is None:
                # Missing chunks: the transfer is dropped without a reply.
                return []
            success, error = await asyncio.to_thread(
                self._write_file, state.filename, file_data
            )

        if success:
            _log(f"File transfer completed successfully: {filename}")
        else:
            _log(f"File transfer failed: {filename}")
        return [FileTransferComplete(transfer_id, success, error)]

    def _write_file(self, filename: str, data: bytes) -> tuple[bool, str | None]:
        try:
            os.makedirs(self.upload_dir, exist_ok=True)
        except OSError:
            pass
        file_path = f"{self.upload_dir}/{filename}"
        try:
            with open(file_path, "wb") as handle:
                handle.write(data)
        except OSError as exc:
            _warn(f"Failed to write file {filename}: {exc}")
            return False, f"Failed to write file: {exc}"
        _log(f"Successfully wrote file: {file_path} ({len(data)} bytes)")
        return True, None

    async def handle_client(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        """Serve one connection until the peer closes it."""
        try:
            while True:
                raw = await reader.readline()
                if not raw:
                    break
                line = raw.strip()
                if not line:
                    continue
                try:
                    message = decode_message(line)
                except ProtocolError as exc:
                    _warn(f"Failed to parse message: {exc}")
                    continue
                for response in await self.handle_message(message):
                    writer.write(encode_message(response).encode("utf-8") + b"\n")
                    await writer.drain()
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass

    async def _on_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        peer = writer.get_extra_info("peername")
        peer_addr = f"{peer[0]}:{peer[1]}" if isinstance(peer, tuple) else str(peer)
        _log(f"New client connected: {peer_addr}")
        try:
            await self.handle_client(reader, writer)
        except Exception as exc:  # one bad connection must not stop the agent
            _warn(f"Error handling client {peer_addr}: {exc}")
        _log(f"Client {peer_addr} disconnected")

    async def serve(self, host: str, port: int) -> None:
        """Listen on host:port and serve clients until cancelled."""
        server = await asyncio.start_server(
            self._on_connection, host, port, limit=_LINE_LIMIT
        )
        _log(f"Agent listening on {host}:{port}")
        async with server:
            await server.serve_forever()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ferrolink-agent",
        description="FerroLink Agent - Remote desktop monitoring and control server",
    )
    parser.add_argument("-H", "--host", default=DEFAULT_HOST)
    parser.add_argument("-p", "--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("-u", "--upload-dir", default="uploads")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the agent from the command line."""
    args = _build_parser().parse_args(argv)
    if not 0 <= args.port <= 65535:
        _build_parser().error(f"invalid port: {args.port}")
    _log(f"Starting agent on {args.host}:{args.port}")
    _log(f"Upload directory: {args.upload_dir}")
    agent = Agent(args.upload_dir)
    try:
        asyncio.run(agent.serve(args.host, args.port))
    except KeyboardInterrupt:
        return 0
    except OSError as exc:
        _warn(f"Error: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
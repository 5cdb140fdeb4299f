# ferrolink

ferrolink has two parts. An **agent** runs on the machine you want to watch. A **client** connects to the agent over TCP. The two exchange messages as newline-delimited JSON. With the client you can:

- check that an agent is reachable (ping/pong),
- fetch a snapshot of CPU, memory and disk usage,
- upload a file to the agent in acknowledged chunks.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Running the agent

```
ferrolink-agent --host 127.0.0.1 --port 8080 --upload-dir uploads
```

Every option has a default:

| Option | Short | Default |
|---|---|---|
| `--host` | `-H` | `127.0.0.1` |
| `--port` | `-p` | `8080` |
| `--upload-dir` | `-u` | `uploads` |

The agent serves any number of clients at once. All clients share one table of running transfers. An uploaded file is written to the upload directory under the file name the client sent. The agent creates that directory if it does not exist.

CPU usage is measured as the average over all cores since the previous measurement. For this reason the first metrics request after the agent starts usually reports 0.0%.

## Using the client

The client takes the same `--host`/`-H` and `--port`/`-p` options, followed by a subcommand.

Check that the agent responds:

```
ferrolink-client ping
```

Show current system metrics:

```
ferrolink-client monitor
```

```
System Metrics
──────────────────────────────────────────────────
CPU Usage: 12.3%
Memory: 5.2 GB / 15.5 GB (33.6%)

Disk Usage:
   /dev/nvme0n1p2 (/): 120.4 GB / 467.3 GB (25.8%)
```

Send a file (default chunk size 8192 bytes):

```
ferrolink-client send-file report.pdf --chunk-size 16384
```

The client sends one chunk at a time and waits for the agent to acknowledge it. It prints its progress as it goes. Once the last chunk is acknowledged, the agent writes the file and replies with the outcome, and the client reports whether the file was stored. On a connection or protocol error the client prints `Error: ...` and exits with status 1.

## Using it as a library

The protocol types live in `ferrolink.protocol`. Each message is a dataclass: `Ping`, `Pong`, `GetSystemMetrics`, `SystemMetricsReport`, `StartFileTransfer`, `FileTransferReady`, `FileChunk`, `ChunkReceived`, `CompleteFileTransfer` and `FileTransferComplete`.

```python
from ferrolink.protocol import Ping, encode_message, decode_message

line = encode_message(Ping())   # '"Ping"'
message = decode_message(line)  # Ping()
```

`decode_message` raises `ProtocolError` on invalid input. `expected_chunk_count(total_size, chunk_size)` returns the number of chunks needed for a transfer.

`ferrolink.client` provides these coroutines:

- `ping_agent(host, port)` returns `True` when a pong comes back.
- `fetch_system_metrics(host, port)` returns a `SystemMetrics` or `None`.
- `send_file(host, port, path, chunk_size)` returns the agent's `FileTransferComplete`. It raises `TransferError` if the agent replies out of protocol.

The module also provides `split_chunks` and `format_system_metrics`.

`ferrolink.agent` provides `collect_system_metrics()` and the `Agent` class:

- `Agent(upload_dir).serve(host, port)` listens until it is cancelled.
- `Agent.handle_message(message)` returns the list of responses to a single message.
- `Agent.handle_client(reader, writer)` serves one asyncio stream pair.

## What it does not do

- There is no authentication and no encryption. Anyone who can reach the port can query metrics and upload files.
- The agent does not check uploaded file names. A file with the same name overwrites an existing one.
- Files can only be sent to the agent. Nothing can be fetched from it. Apart from uploads, it offers no remote control.
- An empty file produces zero chunks. The agent never sends a completion reply for it, so `send-file` keeps waiting.
- If a transfer ends with chunks missing, it is dropped without a reply.
from __future__ import annotations

import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path

from .client import PeerClient
from .constants import BUFFER_SIZE, DEFAULT_TIMEOUT_S, MAX_PORT_ATTEMPTS, START_PORT
from .errors import TransferError
from .executor import CommandExecutor
from .index import ServerRoot
from .listener import ConnectionListener
from .ports import PortRange


@dataclass(frozen=True, slots=True)
class BenchmarkResult:
    bytes_transferred: int
    upload_s: float
    download_s: float
    upload_mbps: float
    download_mbps: float


def _mbps(nbytes: int, seconds: float) -> float:
    return (nbytes * 8 / 1_000_000) / max(0.001, seconds)


def run_benchmark(
    *,
    size_bytes: int,
    start_port: int = START_PORT,
    attempts: int = MAX_PORT_ATTEMPTS,
    buffer_size: int = BUFFER_SIZE,
    timeout: float | None = DEFAULT_TIMEOUT_S,
) -> BenchmarkResult:
    """Store then retrieve ``size_bytes`` over loopback against a throwaway server root."""
    payload = os.urandom(size_bytes)
    ports = PortRange(start_port, attempts)

    with tempfile.TemporaryDirectory() as tmp:
        tmp_path = Path(tmp)
        root = ServerRoot.ensure(tmp_path / "root")
        executor = CommandExecutor(root, buffer_size=buffer_size, timeout=timeout)
        listener = ConnectionListener(executor, ports, host="127.0.0.1")
        if listener.start() is None:
            raise TransferError("benchmark listener could not bind a port")

        try:
            client = PeerClient("127.0.0.1", ports, timeout=timeout, buffer_size=buffer_size)
            src = tmp_path / "bench.bin"
            src.write_bytes(payload)

            t0 = time.perf_counter()
            sent = client.store(src)
            upload_s = time.perf_counter() - t0
            if not sent.ok:
                raise TransferError(sent.reason)

            out = tmp_path / "bench.out"
            t0 = time.perf_counter()
            got = client.retrieve(src.name, out)
            download_s = time.perf_counter() - t0
            if not got.ok:
                raise TransferError(got.reason)

            assert out.read_bytes() == payload
        finally:
            listener.stop()

    return BenchmarkResult(
        bytes_transferred=size_bytes,
        upload_s=upload_s,
        download_s=download_s,
        upload_mbps=_mbps(size_bytes, upload_s),
        download_mbps=_mbps(size_bytes, download_s),
    )

from __future__ import annotations

import logging
import os
import socket
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from .codec import Command, Relocate, Remove, Retrieve, Store, encode_command, read_size
from .constants import BUFFER_SIZE, DEFAULT_HOST, DEFAULT_TIMEOUT_S
from .errors import TransferError
from .executor import TransferOutcome
from .ports import PortRange, connect_first

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PeerClient:
    """Initiating peer. Each request scans for the listener and uses a fresh connection.

    There is no status byte on the wire: after sending, the client half-closes
    and waits for the listener to close its side, so a successful outcome
    means the listener finished handling the command, not that the command
    succeeded (a failed MOVE or DELETE looks the same as a good one).
    """

    host: str = DEFAULT_HOST
    ports: PortRange = field(default_factory=PortRange)
    timeout: float | None = DEFAULT_TIMEOUT_S
    buffer_size: int = BUFFER_SIZE

    def connect(self) -> socket.socket:
        return connect_first(self.host, self.ports, self.timeout)

    def store(self, path: str | os.PathLike[str], name: str | None = None) -> TransferOutcome:
        path = Path(path)
        command = Store(name or path.name)
        sent = 0
        try:
            header = encode_command(command)
            with open(path, "rb") as f, self.connect() as sock:
                sock.sendall(header)
                for chunk in iter(lambda: f.read(self.buffer_size), b""):
                    sock.sendall(chunk)
                    sent += len(chunk)
                self._finish(sock)
        except (TransferError, OSError, ValueError) as exc:
            return self._failed(command, exc)
        logger.info("file sent: %s (%d bytes)", command.name, sent)
        return TransferOutcome.success(f"sent {sent} bytes", changed=True, nbytes=sent)

    def retrieve(self, name: str, save_path: str | os.PathLike[str]) -> TransferOutcome:
        command = Retrieve(name)
        save_path = Path(save_path)
        received = 0
        opened = False
        try:
            header = encode_command(command)
            with self.connect() as sock, sock.makefile("rb") as rfile:
                sock.sendall(header)
                sock.shutdown(socket.SHUT_WR)
                size = read_size(rfile)
                with open(save_path, "wb") as out:
                    opened = True
                    while received < size:
                        chunk = rfile.read(min(self.buffer_size, size - received))
                        if not chunk:
                            raise OSError(f"connection closed after {received} of {size} bytes")
                        out.write(chunk)
                        received += len(chunk)
        except (TransferError, OSError, ValueError) as exc:
            if opened:
                save_path.unlink(missing_ok=True)
            return self._failed(command, exc)
        logger.info("file downloaded: %s -> %s (%d bytes)", name, save_path, received)
        return TransferOutcome.success(f"received {received} bytes", nbytes=received)

    def relocate(self, source_path: str | os.PathLike[str], target_dir: str | os.PathLike[str]) -> TransferOutcome:
        return self._send(Relocate(os.fspath(source_path), os.fspath(target_dir)))

    def remove(self, name: str) -> TransferOutcome:
        return self._send(Remove(name))

    def in_background(
        self,
        method: Callable[..., TransferOutcome],
        *args: Any,
        on_done: Callable[[TransferOutcome], Any] | None = None,
    ) -> threading.Thread:
        """Run a request on a daemon thread so the caller (usually a UI) is never blocked."""

        def runner() -> None:
            outcome = method(*args)
            if on_done is not None:
                on_done(outcome)

        t = threading.Thread(target=runner, name=f"request-{getattr(method, '__name__', 'call')}", daemon=True)
        t.start()
        return t

    def _send(self, command: Command) -> TransferOutcome:
        try:
            header = encode_command(command)
            with self.connect() as sock:
                sock.sendall(header)
                self._finish(sock)
        except (TransferError, OSError, ValueError) as exc:
            return self._failed(command, exc)
        logger.info("%s sent: %s", command.tag.value, " -> ".join(command.arguments()))
        return TransferOutcome.success("request delivered", changed=True)

    def _finish(self, sock: socket.socket) -> None:
        # wait for the listener to close its side; anything it sends is ignored
        sock.shutdown(socket.SHUT_WR)
        while sock.recv(self.buffer_size):
            pass

    def _failed(self, command: Command, exc: Exception) -> TransferOutcome:
        verb = "send" if isinstance(command, Store) else "receive" if isinstance(command, Retrieve) else "deliver"
        logger.warning("unable to %s %s %s: %s", verb, command.tag.value, command.arguments()[0], exc)
        return TransferOutcome.failure(f"unable to {verb}: {exc}")

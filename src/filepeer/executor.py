from __future__ import annotations

import errno
import logging
import os
import shutil
import socket
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Callable

from .codec import Command, Relocate, Remove, Retrieve, Store, encode_size, read_command
from .constants import BUFFER_SIZE
from .errors import DecodeError, NotFoundError, PathEscapeError, TransferError
from .index import ServerRoot, find_file

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TransferOutcome:
    ok: bool
    reason: str
    changed: bool = False
    nbytes: int = 0

    @classmethod
    def success(cls, reason: str, *, changed: bool = False, nbytes: int = 0) -> "TransferOutcome":
        return cls(True, reason, changed=changed, nbytes=nbytes)

    @classmethod
    def failure(cls, reason: str) -> "TransferOutcome":
        return cls(False, reason)


class ChangeNotifier:
    """Fire-and-forget delivery of "the server directory changed".

    Each call runs the callback on its own daemon thread, so callers never
    block on it and concurrent handlers may trigger overlapping refreshes.
    """

    def __init__(self, callback: Callable[[], Any] | None = None):
        self.callback = callback

    def __call__(self) -> None:
        if self.callback is None:
            return
        threading.Thread(target=self._deliver, name="notify-changed", daemon=True).start()

    def _deliver(self) -> None:
        try:
            self.callback()
        except Exception:
            logger.exception("change notification failed")


class CommandExecutor:
    def __init__(
        self,
        root: ServerRoot,
        notify_changed: Callable[[], Any] | None = None,
        *,
        confine_paths: bool = True,
        buffer_size: int = BUFFER_SIZE,
        timeout: float | None = None,
    ):
        self.root = root
        self.notify = ChangeNotifier(notify_changed)
        self.confine_paths = confine_paths
        self.buffer_size = buffer_size
        self.timeout = timeout

    def handle(self, conn: socket.socket, peer: Any = None) -> TransferOutcome:
        """Run one decode -> execute exchange on an accepted connection, then close it."""
        if self.timeout is not None:
            conn.settimeout(self.timeout)
        with conn, conn.makefile("rb") as rfile, conn.makefile("wb") as wfile:
            try:
                command = read_command(rfile)
            except DecodeError as exc:
                logger.warning("dropping connection from %s: %s", peer, exc)
                return TransferOutcome.failure(str(exc))
            except OSError as exc:
                logger.warning("connection from %s failed before a command arrived: %s", peer, exc)
                return TransferOutcome.failure(f"I/O error: {exc}")
            logger.debug("%s from %s", command, peer)
            return self.execute(command, rfile, wfile)

    def execute(self, command: Command, rfile: BinaryIO, wfile: BinaryIO) -> TransferOutcome:
        try:
            if isinstance(command, Store):
                outcome = self._store(command.name, rfile)
            elif isinstance(command, Retrieve):
                outcome = self._retrieve(command.name, wfile)
            elif isinstance(command, Relocate):
                outcome = self._relocate(command.source_path, command.target_dir)
            elif isinstance(command, Remove):
                outcome = self._remove(command.name)
            else:
                raise TypeError(f"not a command: {command!r}")
        except TransferError as exc:
            outcome = TransferOutcome.failure(str(exc))
        except OSError as exc:
            outcome = TransferOutcome.failure(f"I/O error: {exc}")
        except ValueError as exc:
            outcome = TransferOutcome.failure(f"invalid request: {exc}")

        if outcome.ok:
            logger.info("%s %s: %s", command.tag.value, command.arguments()[0], outcome.reason)
        else:
            logger.warning("%s %s failed: %s", command.tag.value, command.arguments()[0], outcome.reason)
        if outcome.changed:
            self.notify()
        return outcome

    def _store(self, name: str, rfile: BinaryIO) -> TransferOutcome:
        target = self.root.store_target(name) if self.confine_paths else self.root.resolve(name)
        received = 0
        out = open(target, "wb")
        try:
            with out:
                for chunk in iter(lambda: rfile.read(self.buffer_size), b""):
                    out.write(chunk)
                    received += len(chunk)
        except OSError:
            target.unlink(missing_ok=True)
            raise
        return TransferOutcome.success(f"stored {received} bytes", changed=True, nbytes=received)

    def _lookup(self, name: str) -> Path:
        path = find_file(self.root.path, name)
        if path is None:
            raise NotFoundError(f"file not found: {name}")
        return path

    def _retrieve(self, name: str, wfile: BinaryIO) -> TransferOutcome:
        path = self._lookup(name)
        if self.confine_paths and not self.root.contains(path):
            raise PathEscapeError(f"{path} links outside {self.root.path}")

        with open(path, "rb") as f:
            size = path.stat().st_size
            wfile.write(encode_size(size))
            remaining = size
            while remaining > 0:
                chunk = f.read(min(self.buffer_size, remaining))
                if not chunk:
                    raise OSError(f"{path} shrank while sending: {remaining} bytes short")
                wfile.write(chunk)
                remaining -= len(chunk)
        wfile.flush()
        return TransferOutcome.success(f"sent {size} bytes", nbytes=size)

    def _relocate(self, source_path: str, target_dir: str) -> TransferOutcome:
        if self.confine_paths:
            source = self.root.confine(source_path)
            target = self.root.confine(target_dir)
        else:
            source = self.root.resolve(source_path)
            target = self.root.resolve(target_dir)

        if not source.exists():
            raise NotFoundError(f"file not found: {source}")
        if not target.is_dir():
            raise NotFoundError(f"target directory not found: {target}")

        destination = target / source.name
        if destination.resolve() == source.resolve():
            return TransferOutcome.success(f"already in {target}")
        try:
            os.replace(source, destination)
        except OSError as exc:
            if exc.errno != errno.EXDEV or destination.is_dir():
                raise
            shutil.move(str(source), str(destination))
        return TransferOutcome.success(f"moved to {destination}", changed=True)

    def _remove(self, name: str) -> TransferOutcome:
        path = self._lookup(name)
        path.unlink()
        return TransferOutcome.success(f"deleted {path}", changed=True)

from __future__ import annotations

import enum
import logging
import socket
import threading
from typing import Any

from .constants import ACCEPT_POLL_S, BIND_HOST, LISTEN_BACKLOG
from .errors import BindExhaustedError
from .executor import CommandExecutor
from .ports import PortRange, bind_first

logger = logging.getLogger(__name__)


class ListenerState(enum.Enum):
    SCANNING = "scanning"
    BOUND = "bound"
    ACCEPTING = "accepting"
    FAILED = "failed"
    STOPPED = "stopped"


class ConnectionListener:
    """Accepts connections on the first free port and runs one handler thread per connection.

    ``start()`` scans the port range; if no port can be bound the listener
    ends in ``FAILED`` and offers no service, but nothing is raised so the
    hosting process can keep running. Once accepting, a failed ``accept()``
    is logged and the loop carries on.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        ports: PortRange | None = None,
        host: str = BIND_HOST,
        backlog: int = LISTEN_BACKLOG,
    ):
        self.executor = executor
        self.ports = ports or PortRange()
        self.host = host
        self.backlog = backlog
        self.state = ListenerState.SCANNING
        self.port: int | None = None
        self._sock: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None

    def start(self) -> int | None:
        if self.state is not ListenerState.SCANNING:
            raise RuntimeError(f"listener already started (state={self.state.value})")
        try:
            self._sock, self.port = bind_first(self.host, self.ports, self.backlog)
        except BindExhaustedError as exc:
            self.state = ListenerState.FAILED
            logger.error("unable to start listener: %s", exc)
            return None
        self.state = ListenerState.BOUND

        self._sock.settimeout(ACCEPT_POLL_S)
        self.state = ListenerState.ACCEPTING
        self._accept_thread = threading.Thread(target=self._accept_loop, name=f"accept-{self.port}", daemon=True)
        self._accept_thread.start()
        return self.port

    def _accept_loop(self) -> None:
        sock = self._sock
        if sock is None:
            return
        while self.state is ListenerState.ACCEPTING:
            try:
                conn, addr = sock.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if self.state is not ListenerState.ACCEPTING or sock.fileno() == -1:
                    break
                logger.warning("accept failed: %s", exc)
                continue
            threading.Thread(target=self._handle, args=(conn, addr), name=f"conn-{addr[0]}:{addr[1]}", daemon=True).start()

    def _handle(self, conn: socket.socket, addr: Any) -> None:
        try:
            self.executor.handle(conn, addr)
        except OSError as exc:
            logger.warning("connection from %s ended with an error: %s", addr, exc)

    def stop(self) -> None:
        if self.state is ListenerState.ACCEPTING:
            self.state = ListenerState.STOPPED
        if self._sock is None:
            return
        self._sock.close()
        if self._accept_thread is not None and self._accept_thread is not threading.current_thread():
            self._accept_thread.join()
        logger.info("listener on port %s stopped", self.port)

    def serve_forever(self) -> None:
        if self.state is ListenerState.SCANNING:
            self.start()
        if self._accept_thread is None:
            return
        try:
            while self._accept_thread.is_alive():
                self._accept_thread.join(ACCEPT_POLL_S)
        finally:
            self.stop()

    def __enter__(self) -> "ConnectionListener":
        if self.state is ListenerState.SCANNING:
            self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

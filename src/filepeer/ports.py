from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from typing import Iterator, List, Tuple

from .constants import LISTEN_BACKLOG, MAX_PORT_ATTEMPTS, START_PORT
from .errors import BindExhaustedError, ConnectExhaustedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PortRange:
    """``[start, start + attempts)``, scanned in ascending order by both peers."""

    start: int = START_PORT
    attempts: int = MAX_PORT_ATTEMPTS

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError(f"attempts must be positive, got {self.attempts}")
        if self.start < 1 or self.stop - 1 > 65535:
            raise ValueError(f"port range {self.start}..{self.stop - 1} is outside 1..65535")

    @property
    def stop(self) -> int:
        return self.start + self.attempts

    def __iter__(self) -> Iterator[int]:
        return iter(range(self.start, self.stop))

    def __len__(self) -> int:
        return self.attempts

    def __contains__(self, port: object) -> bool:
        return isinstance(port, int) and self.start <= port < self.stop


def bind_first(
    host: str,
    ports: PortRange,
    backlog: int = LISTEN_BACKLOG,
) -> Tuple[socket.socket, int]:
    for port in ports:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
            sock.listen(backlog)
        except OSError as exc:
            sock.close()
            logger.debug("port %d is busy: %s", port, exc)
            continue
        logger.info("listening on %s:%d", host, port)
        return sock, port
    raise BindExhaustedError(f"all ports {ports.start}..{ports.stop - 1} are busy")


def resolve_addresses(host: str) -> List[Tuple[int, str]]:
    """(family, address) pairs for ``host`` in resolver order, duplicates dropped."""
    try:
        infos = socket.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    except socket.gaierror as exc:
        raise ConnectExhaustedError(f"unable to resolve hostname {host}: {exc}") from exc

    seen = []
    for family, _, _, _, sockaddr in infos:
        pair = (family, sockaddr[0])
        if pair not in seen:
            seen.append(pair)
    return seen


def connect_first(host: str, ports: PortRange, timeout: float | None = None) -> socket.socket:
    """Connect to the first reachable (address, port), addresses outermost."""
    for family, address in resolve_addresses(host):
        for port in ports:
            sock = socket.socket(family, socket.SOCK_STREAM)
            sock.settimeout(timeout)
            try:
                sock.connect((address, port))
            except OSError as exc:
                sock.close()
                logger.debug("failed to connect to %s on port %d: %s", address, port, exc)
                continue
            logger.debug("connected to %s:%d", address, port)
            return sock
    raise ConnectExhaustedError(f"no listener reachable at {host} on ports {ports.start}..{ports.stop - 1}")

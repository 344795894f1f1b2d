from __future__ import annotations

import random
import socket
import threading

import pytest

from filepeer.executor import CommandExecutor
from filepeer.index import ServerRoot
from filepeer.listener import ConnectionListener
from filepeer.client import PeerClient
from filepeer.ports import PortRange


def _free_start(count: int) -> int:
    for _ in range(50):
        start = random.randint(20000, 60000 - count)
        socks = []
        ok = True
        try:
            for port in range(start, start + count):
                s = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
                socks.append(s)
                s.bind(("0.0.0.0", port))
        except OSError:
            ok = False
        finally:
            for s in socks:
                s.close()
        if ok:
            return start
    pytest.skip(f"no run of {count} free ports found")


class ChangeRecorder:
    def __init__(self):
        self.count = 0
        self.lock = threading.Lock()
        self.event = threading.Event()

    def __call__(self):
        with self.lock:
            self.count += 1
        self.event.set()


@pytest.fixture
def free_ports():
    def factory(count: int = 20) -> PortRange:
        return PortRange(_free_start(count), count)

    return factory


@pytest.fixture
def port_range(free_ports):
    return free_ports(20)


@pytest.fixture
def server_root(tmp_path):
    return ServerRoot.ensure(tmp_path / "server_directory")


@pytest.fixture
def changes():
    return ChangeRecorder()


@pytest.fixture
def listener(server_root, port_range, changes):
    executor = CommandExecutor(server_root, changes, timeout=5.0)
    lst = ConnectionListener(executor, port_range, host="127.0.0.1")
    assert lst.start() is not None
    yield lst
    lst.stop()


@pytest.fixture
def client(port_range):
    return PeerClient("127.0.0.1", port_range, timeout=5.0)

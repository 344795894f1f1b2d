from __future__ import annotations

import errno
import os
import socket
import threading
from contextlib import ExitStack

from filepeer import listener as listener_module
from filepeer.client import PeerClient
from filepeer.codec import Retrieve, encode_command, encode_string, read_size
from filepeer.executor import CommandExecutor
from filepeer.listener import ConnectionListener, ListenerState


def test_round_trip(listener, client, tmp_path):
    data = os.urandom(100_000)
    src = tmp_path / "payload.bin"
    src.write_bytes(data)

    sent = client.store(src)
    assert sent.ok
    assert sent.nbytes == len(data)

    out = tmp_path / "copy.bin"
    got = client.retrieve("payload.bin", out)
    assert got.ok
    assert got.nbytes == len(data)
    assert out.read_bytes() == data


def test_store_under_other_name(listener, client, server_root, tmp_path):
    src = tmp_path / "local.txt"
    src.write_text("renamed")
    assert client.store(src, "remote.txt").ok
    assert (server_root.path / "remote.txt").read_text() == "renamed"


def test_declared_size_matches_bytes(listener, client, tmp_path):
    src = tmp_path / "a.txt"
    src.write_bytes(b"0123456789" * 1000)
    assert client.store(src).ok

    with socket.create_connection(("127.0.0.1", listener.port), timeout=5) as sock, sock.makefile("rb") as rfile:
        sock.sendall(encode_command(Retrieve("a.txt")))
        size = read_size(rfile)
        body = rfile.read()
    assert size == len(body) == 10_000


def test_empty_file(listener, client, tmp_path):
    src = tmp_path / "empty.txt"
    src.write_bytes(b"")
    assert client.store(src).ok
    out = tmp_path / "empty.out"
    assert client.retrieve("empty.txt", out).ok
    assert out.read_bytes() == b""


def test_download_not_found(listener, client, tmp_path):
    out = tmp_path / "never.txt"
    outcome = client.retrieve("ghost.txt", out)
    assert not outcome.ok
    assert outcome.reason.startswith("unable to receive")
    assert not out.exists()


def test_move_and_delete(listener, client, server_root, changes, tmp_path):
    src = tmp_path / "m.txt"
    src.write_text("m")
    assert client.store(src).ok
    sub = server_root.path / "sub"
    sub.mkdir()

    assert client.relocate(server_root.path / "m.txt", sub).ok
    assert (sub / "m.txt").read_text() == "m"
    assert client.remove("m.txt").ok
    assert not (sub / "m.txt").exists()
    assert changes.event.wait(2)


def test_concurrent_stores(listener, client, server_root, tmp_path):
    n = 10
    outcomes = []
    lock = threading.Lock()

    def done(outcome):
        with lock:
            outcomes.append(outcome)

    threads = []
    for i in range(n):
        src = tmp_path / f"file{i}.bin"
        src.write_bytes(bytes([i]) * (5000 + i))
        threads.append(client.in_background(client.store, src, on_done=done))
    for t in threads:
        t.join(10)

    assert len(outcomes) == n
    assert all(o.ok for o in outcomes)
    for i in range(n):
        assert (server_root.path / f"file{i}.bin").read_bytes() == bytes([i]) * (5000 + i)


def test_malformed_tag_keeps_listener_healthy(listener, client, tmp_path):
    with socket.create_connection(("127.0.0.1", listener.port), timeout=5) as sock:
        sock.sendall(encode_string("FOO") + encode_string("x"))
        sock.shutdown(socket.SHUT_WR)
        assert sock.recv(16) == b""

    src = tmp_path / "after.txt"
    src.write_text("still here")
    assert client.store(src).ok
    assert listener.state is ListenerState.ACCEPTING


def test_both_sides_land_on_first_free_port(free_ports, server_root, tmp_path):
    ports = free_ports(12)
    with ExitStack() as stack:
        for port in list(ports)[:10]:
            s = stack.enter_context(socket.socket(socket.AF_INET, socket.SOCK_STREAM))
            s.bind(("127.0.0.1", port))

        listener = stack.enter_context(ConnectionListener(CommandExecutor(server_root), ports, host="127.0.0.1"))
        assert listener.port == ports.start + 10

        client = PeerClient("127.0.0.1", ports, timeout=5.0)
        with client.connect() as sock:
            assert sock.getpeername()[1] == ports.start + 10

        src = tmp_path / "landed.txt"
        src.write_text("ok")
        assert client.store(src).ok
        assert (server_root.path / "landed.txt").exists()


def test_stopped_listener_refuses(listener, client, tmp_path):
    listener.stop()
    assert listener.state is ListenerState.STOPPED
    src = tmp_path / "late.txt"
    src.write_text("late")
    outcome = client.store(src)
    assert not outcome.ok
    assert outcome.reason.startswith("unable to send")


def test_download_into_directory_fails_cleanly(listener, client, tmp_path):
    src = tmp_path / "f.txt"
    src.write_text("f")
    assert client.store(src).ok
    outdir = tmp_path / "outdir"
    outdir.mkdir()

    outcome = client.retrieve("f.txt", outdir)
    assert not outcome.ok
    assert outdir.is_dir()


def test_oversized_name_reported_to_background_caller(client):
    done = []
    t = client.in_background(client.remove, "x" * 0x10000, on_done=done.append)
    t.join(5)
    assert len(done) == 1
    assert not done[0].ok


class FailFirstAccept:
    def __init__(self, sock):
        self.sock = sock
        self.failures = 0

    def accept(self):
        if self.failures == 0:
            self.failures += 1
            raise OSError(errno.EMFILE, "too many open files")
        return self.sock.accept()

    def __getattr__(self, name):
        return getattr(self.sock, name)


def test_failed_accept_keeps_listening(monkeypatch, server_root, port_range, client, tmp_path):
    wrapped = []
    real_bind_first = listener_module.bind_first

    def bind_first(host, ports, backlog):
        sock, port = real_bind_first(host, ports, backlog)
        wrapped.append(FailFirstAccept(sock))
        return wrapped[0], port

    monkeypatch.setattr(listener_module, "bind_first", bind_first)
    with ConnectionListener(CommandExecutor(server_root), port_range, host="127.0.0.1") as lst:
        src = tmp_path / "after-failure.txt"
        src.write_text("ok")
        assert client.store(src).ok
        assert wrapped[0].failures == 1
        assert lst.state is ListenerState.ACCEPTING

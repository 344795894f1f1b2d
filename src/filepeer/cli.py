from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict
from typing import Any, Dict

from .bench import run_benchmark
from .client import PeerClient
from .constants import BIND_HOST, BUFFER_SIZE, DEFAULT_HOST, DEFAULT_TIMEOUT_S, MAX_PORT_ATTEMPTS, SERVER_ROOT, START_PORT
from .executor import CommandExecutor, TransferOutcome
from .index import ServerRoot, list_entries
from .listener import ConnectionListener, ListenerState
from .ports import PortRange

logger = logging.getLogger("filepeer")


def _emit(args: argparse.Namespace, payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2) if args.json else payload)


def _ports(args: argparse.Namespace) -> PortRange:
    return PortRange(args.start_port, args.attempts)


def _client(args: argparse.Namespace) -> PeerClient:
    return PeerClient(args.host, _ports(args), timeout=args.timeout or None, buffer_size=args.buffer_size)


def _report(args: argparse.Namespace, role: str, outcome: TransferOutcome) -> int:
    _emit(args, {"role": role, "ok": outcome.ok, "reason": outcome.reason, "bytes": outcome.nbytes})
    return 0 if outcome.ok else 1


def cmd_serve(args: argparse.Namespace) -> int:
    root = ServerRoot.ensure(args.root)

    def refresh() -> None:
        logger.info("server directory %s: %s", root.path, ", ".join(list_entries(root.path)) or "(empty)")

    executor = CommandExecutor(
        root,
        refresh,
        confine_paths=not args.allow_escape,
        buffer_size=args.buffer_size,
        timeout=args.timeout or None,
    )
    listener = ConnectionListener(executor, _ports(args), host=args.bind_host)
    if listener.start() is None:
        _emit(args, {"role": "listener", "state": listener.state.value})
        return 2

    _emit(args, {"role": "listener", "state": listener.state.value, "port": listener.port, "root": str(root.path)})
    refresh()
    try:
        listener.serve_forever()
    except KeyboardInterrupt:
        logger.info("interrupted; shutting down")
    return 0 if listener.state is ListenerState.STOPPED else 1


def cmd_upload(args: argparse.Namespace) -> int:
    return _report(args, "upload", _client(args).store(args.file, args.name))


def cmd_download(args: argparse.Namespace) -> int:
    return _report(args, "download", _client(args).retrieve(args.name, args.out or args.name))


def cmd_move(args: argparse.Namespace) -> int:
    return _report(args, "move", _client(args).relocate(args.source, args.target_dir))


def cmd_delete(args: argparse.Namespace) -> int:
    return _report(args, "delete", _client(args).remove(args.name))


def cmd_bench(args: argparse.Namespace) -> int:
    r = run_benchmark(
        size_bytes=args.size_bytes,
        start_port=args.start_port,
        attempts=args.attempts,
        buffer_size=args.buffer_size,
        timeout=args.timeout or None,
    )
    _emit(args, {"role": "bench", **asdict(r)})
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="filepeer", description="Peer-to-peer file transfer over TCP.")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    def add_common(x: argparse.ArgumentParser) -> None:
        x.add_argument("--start-port", type=int, default=START_PORT)
        x.add_argument("--attempts", type=int, default=MAX_PORT_ATTEMPTS, help="number of ports to scan")
        x.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT_S, help="socket timeout in seconds, 0 for none")
        x.add_argument("--buffer-size", type=int, default=BUFFER_SIZE)
        x.add_argument("--json", action="store_true")

    def add_client(x: argparse.ArgumentParser) -> None:
        add_common(x)
        x.add_argument("--host", default=DEFAULT_HOST)

    serve = sub.add_parser("serve", help="run the listener over a server directory")
    add_common(serve)
    serve.add_argument("--root", default=SERVER_ROOT)
    serve.add_argument("--bind-host", default=BIND_HOST)
    serve.add_argument("--allow-escape", action="store_true", help="accept names and paths outside --root")
    serve.set_defaults(func=cmd_serve)

    upload = sub.add_parser("upload", help="store a local file on the listener")
    add_client(upload)
    upload.add_argument("file")
    upload.add_argument("--name", default=None, help="name to store under (defaults to the file's base name)")
    upload.set_defaults(func=cmd_upload)

    download = sub.add_parser("download", help="retrieve a file by name")
    add_client(download)
    download.add_argument("name")
    download.add_argument("--out", default=None)
    download.set_defaults(func=cmd_download)

    move = sub.add_parser("move", help="move a file into another directory on the listener")
    add_client(move)
    move.add_argument("source", help="path of the file on the listener")
    move.add_argument("target_dir")
    move.set_defaults(func=cmd_move)

    delete = sub.add_parser("delete", help="delete a file by name")
    add_client(delete)
    delete.add_argument("name")
    delete.set_defaults(func=cmd_delete)

    bench = sub.add_parser("bench", help="loopback store/retrieve benchmark")
    add_common(bench)
    bench.add_argument("--size-bytes", type=int, default=5_000_000)
    bench.set_defaults(func=cmd_bench)

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(asctime)s [%(levelname)s] %(message)s")
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())

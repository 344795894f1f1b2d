"""filepeer: file transfer between two peers over plain TCP.

One peer listens on the first free port of a shared range and serves a
single directory tree; the other scans the same range and sends one of four
commands per connection (UPLOAD, DOWNLOAD, MOVE, DELETE). Commands are
length-prefixed UTF-8 strings; uploads stream until the sender half-closes,
downloads are answered with an 8-byte size and the file bytes.
"""

from .client import PeerClient
from .executor import CommandExecutor, TransferOutcome
from .index import ServerRoot, find_file
from .listener import ConnectionListener, ListenerState
from .ports import PortRange

__all__ = [
    "CommandExecutor",
    "ConnectionListener",
    "ListenerState",
    "PeerClient",
    "PortRange",
    "ServerRoot",
    "TransferOutcome",
    "find_file",
]

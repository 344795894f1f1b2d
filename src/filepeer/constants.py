from __future__ import annotations

START_PORT = 5000
MAX_PORT_ATTEMPTS = 100

DEFAULT_HOST = "localhost"
BIND_HOST = "0.0.0.0"

BUFFER_SIZE = 4096
DEFAULT_TIMEOUT_S = 30.0
ACCEPT_POLL_S = 0.5
LISTEN_BACKLOG = 50

SERVER_ROOT = "server_directory"

STRING_LEN_FORMAT = "!H"  # byte count of the UTF-8 text that follows
SIZE_FORMAT = "!q"  # DOWNLOAD response header
MAX_STRING_BYTES = 0xFFFF

UPLOAD = "UPLOAD"
DOWNLOAD = "DOWNLOAD"
MOVE = "MOVE"
DELETE = "DELETE"

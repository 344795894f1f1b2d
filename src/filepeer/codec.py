from __future__ import annotations

import enum
import struct
from dataclasses import dataclass
from typing import BinaryIO, ClassVar, Tuple, Union

from .constants import DELETE, DOWNLOAD, MAX_STRING_BYTES, MOVE, SIZE_FORMAT, STRING_LEN_FORMAT, UPLOAD
from .errors import DecodeError

_STRING_LEN = struct.Struct(STRING_LEN_FORMAT)
_SIZE = struct.Struct(SIZE_FORMAT)


class CommandTag(str, enum.Enum):
    UPLOAD = UPLOAD
    DOWNLOAD = DOWNLOAD
    MOVE = MOVE
    DELETE = DELETE


@dataclass(frozen=True, slots=True)
class Store:
    name: str
    tag: ClassVar[CommandTag] = CommandTag.UPLOAD

    def arguments(self) -> Tuple[str, ...]:
        return (self.name,)


@dataclass(frozen=True, slots=True)
class Retrieve:
    name: str
    tag: ClassVar[CommandTag] = CommandTag.DOWNLOAD

    def arguments(self) -> Tuple[str, ...]:
        return (self.name,)


@dataclass(frozen=True, slots=True)
class Relocate:
    source_path: str
    target_dir: str
    tag: ClassVar[CommandTag] = CommandTag.MOVE

    def arguments(self) -> Tuple[str, ...]:
        return (self.source_path, self.target_dir)


@dataclass(frozen=True, slots=True)
class Remove:
    name: str
    tag: ClassVar[CommandTag] = CommandTag.DELETE

    def arguments(self) -> Tuple[str, ...]:
        return (self.name,)


Command = Union[Store, Retrieve, Relocate, Remove]


def encode_string(text: str) -> bytes:
    raw = text.encode("utf-8")
    if len(raw) > MAX_STRING_BYTES:
        raise ValueError(f"string too long: {len(raw)} bytes")
    return _STRING_LEN.pack(len(raw)) + raw


def encode_command(command: Command) -> bytes:
    """Frame a command header. Store's payload is written separately by the caller."""
    return b"".join(encode_string(part) for part in (command.tag.value, *command.arguments()))


def encode_size(size: int) -> bytes:
    return _SIZE.pack(size)


def read_exact(stream: BinaryIO, n: int) -> bytes:
    chunks = []
    remaining = n
    while remaining > 0:
        chunk = stream.read(remaining)
        if not chunk:
            raise DecodeError(f"truncated stream: expected {n} bytes, got {n - remaining}")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def decode_string(stream: BinaryIO) -> str:
    (length,) = _STRING_LEN.unpack(read_exact(stream, _STRING_LEN.size))
    raw = read_exact(stream, length)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecodeError(f"invalid UTF-8 string: {exc}") from exc


def read_command(stream: BinaryIO) -> Command:
    # every command has at least two strings; read both before judging the tag
    tag = decode_string(stream)
    name = decode_string(stream)
    try:
        kind = CommandTag(tag)
    except ValueError:
        raise DecodeError(f"unknown command: {tag!r}") from None

    if kind is CommandTag.UPLOAD:
        return Store(name)
    if kind is CommandTag.DOWNLOAD:
        return Retrieve(name)
    if kind is CommandTag.MOVE:
        return Relocate(name, decode_string(stream))
    return Remove(name)


def read_size(stream: BinaryIO) -> int:
    (size,) = _SIZE.unpack(read_exact(stream, _SIZE.size))
    if size < 0:
        raise DecodeError(f"negative file size: {size}")
    return size

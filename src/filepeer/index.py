from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Union

from .errors import PathEscapeError

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


def find_file(root: PathLike, name: str) -> Path | None:
    """Depth-first search of ``root`` for a regular file whose base name is ``name``.

    Siblings are visited in directory-listing order, so when several
    subdirectories hold the same name any one of them may win. Directories
    are never returned and symlinked directories are not descended.
    """
    try:
        entries = list(os.scandir(root))
    except (FileNotFoundError, NotADirectoryError):
        return None
    except OSError as exc:
        logger.warning("cannot list %s: %s", root, exc)
        return None

    for entry in entries:
        if entry.is_dir(follow_symlinks=False):
            found = find_file(entry.path, name)
            if found is not None:
                return found
        elif entry.name == name and entry.is_file():
            return Path(entry.path)
    return None


def list_entries(directory: PathLike) -> List[str]:
    names = []
    for entry in os.scandir(directory):
        names.append(entry.name + "/" if entry.is_dir() else entry.name)
    return sorted(names)


class ServerRoot:
    """The directory all name-based commands are scoped to."""

    def __init__(self, path: PathLike):
        self.path = Path(path).resolve()

    @classmethod
    def ensure(cls, path: PathLike) -> "ServerRoot":
        root = Path(path)
        if not root.is_dir():
            root.mkdir(parents=True, exist_ok=True)
            logger.info("created server directory %s", root.resolve())
        return cls(root)

    def __repr__(self) -> str:
        return f"ServerRoot({str(self.path)!r})"

    def contains(self, candidate: PathLike) -> bool:
        resolved = Path(candidate).resolve()
        return resolved == self.path or self.path in resolved.parents

    def confine(self, candidate: PathLike) -> Path:
        path = self.resolve(candidate)
        if not self.contains(path):
            raise PathEscapeError(f"{candidate} is outside {self.path}")
        return path

    def resolve(self, candidate: PathLike) -> Path:
        # relative paths are taken against the root, absolute ones as given
        if "\x00" in os.fspath(candidate):
            raise PathEscapeError(f"NUL byte in path: {os.fspath(candidate)!r}")
        return self.path / candidate

    def store_target(self, name: str) -> Path:
        if not name or name in (".", "..") or "\x00" in name or "/" in name or (os.altsep and os.altsep in name) or os.sep in name:
            raise PathEscapeError(f"invalid file name for store: {name!r}")
        return self.path / name

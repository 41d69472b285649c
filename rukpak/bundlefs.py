"""Read-only file trees holding bundle content."""

from __future__ import annotations

import errno
import os
import posixpath
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Iterator, Mapping

from .api import Bundle


def _clean(path: str) -> str:
    if path in ("", "."):
        return "."
    if path.startswith("/"):
        raise ValueError(f"invalid path {path!r}: must be relative")
    cleaned = posixpath.normpath(path)
    if cleaned == ".." or cleaned.startswith("../"):
        raise ValueError(f"invalid path {path!r}: escapes the root")
    return cleaned


def _parent(path: str) -> str:
    return posixpath.dirname(path) or "."


def _not_found(path: str) -> FileNotFoundError:
    return FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), path)


class BundleFS(ABC):
    """A tree of files addressed by slash-separated relative paths."""

    @abstractmethod
    def read_bytes(self, path: str) -> bytes:
        """Return the content of a file."""

    @abstractmethod
    def list_dir(self, path: str) -> list[str]:
        """Return the sorted names of a directory's entries."""

    @abstractmethod
    def is_dir(self, path: str) -> bool:
        """Tell whether the path names an existing directory."""

    def walk(self, top: str = ".") -> Iterator[tuple[str, bool]]:
        """Yield (path, is_dir) for everything below top, depth first in name order."""
        top = _clean(top)
        for name in self.list_dir(top):
            path = name if top == "." else f"{top}/{name}"
            directory = self.is_dir(path)
            yield path, directory
            if directory:
                yield from self.walk(path)


BundleHandler = Callable[[BundleFS, Bundle], BundleFS]
"""Turns unpacked bundle content into the content that is stored."""


class MemoryFS(BundleFS):
    """A file tree held in memory; parent directories are implied by file paths."""

    def __init__(self, files: Mapping[str, bytes | str] | None = None, dirs: tuple[str, ...] | list[str] = ()):
        self._files: dict[str, bytes] = {}
        self._dirs: set[str] = {"."}
        for path, data in (files or {}).items():
            cleaned = _clean(path)
            if cleaned == ".":
                raise ValueError("the root cannot be a file")
            self._files[cleaned] = data.encode() if isinstance(data, str) else bytes(data)
            self._add_parents(cleaned)
        for path in dirs:
            cleaned = _clean(path)
            self._dirs.add(cleaned)
            self._add_parents(cleaned)
        clash = self._dirs & self._files.keys()
        if clash:
            raise ValueError(f"paths used both as file and directory: {sorted(clash)}")

    def _add_parents(self, path: str) -> None:
        parent = _parent(path)
        while parent not in self._dirs:
            self._dirs.add(parent)
            parent = _parent(parent)

    def read_bytes(self, path: str) -> bytes:
        cleaned = _clean(path)
        if cleaned in self._dirs:
            raise IsADirectoryError(errno.EISDIR, os.strerror(errno.EISDIR), path)
        try:
            return self._files[cleaned]
        except KeyError:
            raise _not_found(path) from None

    def list_dir(self, path: str) -> list[str]:
        cleaned = _clean(path)
        if cleaned in self._files:
            raise NotADirectoryError(errno.ENOTDIR, os.strerror(errno.ENOTDIR), path)
        if cleaned not in self._dirs:
            raise _not_found(path)
        entries = (p for p in (*self._files, *self._dirs) if p != "." and _parent(p) == cleaned)
        return sorted({posixpath.basename(p) for p in entries})

    def is_dir(self, path: str) -> bool:
        return _clean(path) in self._dirs


class DirectoryFS(BundleFS):
    """A file tree rooted at a directory on disk."""

    def __init__(self, root: str | os.PathLike[str]):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        cleaned = _clean(path)
        return self.root if cleaned == "." else self.root.joinpath(*cleaned.split("/"))

    def read_bytes(self, path: str) -> bytes:
        target = self._resolve(path)
        if target.is_dir():
            raise IsADirectoryError(errno.EISDIR, os.strerror(errno.EISDIR), path)
        return target.read_bytes()

    def list_dir(self, path: str) -> list[str]:
        return sorted(os.listdir(self._resolve(path)))

    def is_dir(self, path: str) -> bool:
        return self._resolve(path).is_dir()
"""Handle-tree storage primitives for the sandboxed backend.

A handle tree has no path addressing: a directory handle only knows its own
name and can hand out child handles by name. ``SandboxFilesystem`` layers
virtual paths on top. Two implementations ship: ``LocalDirectoryHandle``
(a granted directory on disk) and ``MemoryDirectoryHandle`` (in-process).
"""

from __future__ import annotations

import asyncio
import os
import shutil
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from panex.fs.errors import BackendUnavailable, FsError, NameConflict, NotFound, PermissionDenied, translate_os_errors

HandleKind = Literal["file", "directory"]

CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True, slots=True)
class FileInfo:
    size: int
    last_modified: int  # milliseconds since the epoch


class Writable(ABC):
    """Write stream returned by ``FileHandle.create_writable``; truncates on open."""

    @abstractmethod
    async def write(self, data: bytes) -> None: ...

    @abstractmethod
    async def close(self) -> None: ...

    async def __aenter__(self) -> "Writable":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()


class Handle(ABC):
    kind: HandleKind
    name: str

    @property
    def supports_move(self) -> bool:
        return False

    async def move(self, new_name: str) -> None:
        raise BackendUnavailable(f"{type(self).__name__} cannot rename in place")


class FileHandle(Handle):
    kind: HandleKind = "file"

    @abstractmethod
    async def get_file(self) -> FileInfo: ...

    @abstractmethod
    def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]: ...

    @abstractmethod
    async def create_writable(self) -> Writable: ...

    async def read_bytes(self) -> bytes:
        parts = [chunk async for chunk in self.iter_chunks()]
        return b"".join(parts)


class DirectoryHandle(Handle):
    kind: HandleKind = "directory"

    @abstractmethod
    def entries(self) -> AsyncIterator[tuple[str, Handle]]: ...

    @abstractmethod
    async def get_directory_handle(self, name: str, *, create: bool = False) -> "DirectoryHandle": ...

    @abstractmethod
    async def get_file_handle(self, name: str, *, create: bool = False) -> FileHandle: ...

    @abstractmethod
    async def remove_entry(self, name: str, *, recursive: bool = False) -> None: ...

    async def get_child(self, name: str) -> Handle:
        """Child by name, whichever kind it is."""
        async for child_name, child in self.entries():
            if child_name == name:
                return child
        raise NotFound(f'"{name}" not found in "{self.name}"')

    async def has_child(self, name: str) -> bool:
        try:
            await self.get_child(name)
        except NotFound:
            return False
        return True


def _now_ms() -> int:
    return int(time.time() * 1000)


def _validate_name(name: str) -> None:
    if not name or name in {".", ".."} or "/" in name or "\\" in name:
        raise FsError(f"Invalid entry name: {name!r}")


# -- local disk ---------------------------------------------------------------


class _LocalWritable(Writable):
    def __init__(self, path: Path) -> None:
        self.path = path
        self._stream = None

    async def _open(self) -> None:
        with translate_os_errors(str(self.path)):
            self._stream = await asyncio.to_thread(self.path.open, "wb")

    async def write(self, data: bytes) -> None:
        assert self._stream is not None
        with translate_os_errors(str(self.path)):
            await asyncio.to_thread(self._stream.write, data)

    async def close(self) -> None:
        if self._stream is None:
            return
        stream, self._stream = self._stream, None
        await asyncio.to_thread(stream.close)


class LocalFileHandle(FileHandle):
    def __init__(self, path: Path) -> None:
        self.path = path
        self.name = path.name

    @property
    def supports_move(self) -> bool:
        return True

    async def get_file(self) -> FileInfo:
        with translate_os_errors(str(self.path)):
            stat = await asyncio.to_thread(self.path.stat)
        return FileInfo(size=stat.st_size, last_modified=int(stat.st_mtime * 1000))

    async def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
        with translate_os_errors(str(self.path)):
            stream = await asyncio.to_thread(self.path.open, "rb")
            try:
                while True:
                    chunk = await asyncio.to_thread(stream.read, chunk_size)
                    if not chunk:
                        break
                    yield chunk
            finally:
                stream.close()

    async def create_writable(self) -> Writable:
        writable = _LocalWritable(self.path)
        await writable._open()  # noqa: SLF001
        return writable

    async def move(self, new_name: str) -> None:
        self.path = await _local_rename(self.path, new_name)
        self.name = new_name


class LocalDirectoryHandle(DirectoryHandle):
    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.name = self.path.name or str(self.path)

    @property
    def supports_move(self) -> bool:
        return True

    async def entries(self) -> AsyncIterator[tuple[str, Handle]]:
        def scan() -> list[tuple[str, bool]]:
            with os.scandir(self.path) as it:
                return sorted((item.name, item.is_dir()) for item in it)

        with translate_os_errors(str(self.path)):
            listing = await asyncio.to_thread(scan)
        for name, is_dir in listing:
            child = self.path / name
            yield name, LocalDirectoryHandle(child) if is_dir else LocalFileHandle(child)

    async def get_child(self, name: str) -> Handle:
        _validate_name(name)
        child = self.path / name
        if await asyncio.to_thread(child.is_dir):
            return LocalDirectoryHandle(child)
        if await asyncio.to_thread(child.exists):
            return LocalFileHandle(child)
        raise NotFound(f"Path does not exist: {child}", path=str(child))

    async def get_directory_handle(self, name: str, *, create: bool = False) -> DirectoryHandle:
        _validate_name(name)
        child = self.path / name
        with translate_os_errors(str(child)):
            if await asyncio.to_thread(child.is_dir):
                return LocalDirectoryHandle(child)
            if await asyncio.to_thread(child.exists):
                raise NotFound(f"Not a directory: {child}", path=str(child))
            if not create:
                raise NotFound(f"Path does not exist: {child}", path=str(child))
            await asyncio.to_thread(child.mkdir)
        return LocalDirectoryHandle(child)

    async def get_file_handle(self, name: str, *, create: bool = False) -> FileHandle:
        _validate_name(name)
        child = self.path / name
        with translate_os_errors(str(child)):
            if await asyncio.to_thread(child.is_dir):
                raise NotFound(f"Not a file: {child}", path=str(child))
            if not await asyncio.to_thread(child.exists):
                if not create:
                    raise NotFound(f"Path does not exist: {child}", path=str(child))
                await asyncio.to_thread(child.touch)
        return LocalFileHandle(child)

    async def remove_entry(self, name: str, *, recursive: bool = False) -> None:
        _validate_name(name)
        child = self.path / name

        def remove() -> None:
            if child.is_dir() and not child.is_symlink():
                if recursive:
                    shutil.rmtree(child)
                else:
                    child.rmdir()
            else:
                child.unlink()

        with translate_os_errors(str(child)):
            await asyncio.to_thread(remove)

    async def move(self, new_name: str) -> None:
        self.path = await _local_rename(self.path, new_name)
        self.name = new_name


async def _local_rename(path: Path, new_name: str) -> Path:
    _validate_name(new_name)
    target = path.with_name(new_name)
    with translate_os_errors(str(path)):
        if await asyncio.to_thread(target.exists):
            raise NameConflict(f"A file named '{new_name}' already exists", path=str(target))
        await asyncio.to_thread(path.rename, target)
    return target


# -- in memory ----------------------------------------------------------------


class _MemoryWritable(Writable):
    def __init__(self, handle: "MemoryFileHandle") -> None:
        self.handle = handle
        self._buffer = bytearray()

    async def write(self, data: bytes) -> None:
        self._buffer.extend(data)

    async def close(self) -> None:
        self.handle.data = bytes(self._buffer)
        self.handle.last_modified = _now_ms()


class MemoryFileHandle(FileHandle):
    def __init__(
        self,
        name: str,
        data: bytes = b"",
        *,
        parent: "MemoryDirectoryHandle | None" = None,
        readable: bool = True,
    ) -> None:
        self.name = name
        self.data = data
        self.parent = parent
        self.readable = readable
        self.last_modified = _now_ms()

    @property
    def supports_move(self) -> bool:
        return self.parent is not None and self.parent.native_move

    def _check_readable(self) -> None:
        if not self.readable:
            raise PermissionDenied(f'Cannot read "{self.name}"', path=self.name)

    async def get_file(self) -> FileInfo:
        self._check_readable()
        return FileInfo(size=len(self.data), last_modified=self.last_modified)

    async def iter_chunks(self, chunk_size: int = CHUNK_SIZE) -> AsyncIterator[bytes]:
        self._check_readable()
        for offset in range(0, len(self.data), chunk_size):
            yield self.data[offset : offset + chunk_size]

    async def create_writable(self) -> Writable:
        return _MemoryWritable(self)

    async def move(self, new_name: str) -> None:
        if self.parent is None or not self.parent.native_move:
            await super().move(new_name)
            return
        self.parent._rename_child(self.name, new_name)  # noqa: SLF001


class MemoryDirectoryHandle(DirectoryHandle):
    """In-process handle tree; ``native_move=False`` mimics stores without rename."""

    def __init__(
        self,
        name: str,
        *,
        parent: "MemoryDirectoryHandle | None" = None,
        native_move: bool = True,
    ) -> None:
        self.name = name
        self.parent = parent
        self.native_move = native_move
        self.children: dict[str, MemoryFileHandle | MemoryDirectoryHandle] = {}

    @property
    def supports_move(self) -> bool:
        return self.parent is not None and self.native_move

    async def entries(self) -> AsyncIterator[tuple[str, Handle]]:
        for name, child in list(self.children.items()):
            yield name, child

    async def get_child(self, name: str) -> Handle:
        child = self.children.get(name)
        if child is None:
            raise NotFound(f'"{name}" not found in "{self.name}"', path=name)
        return child

    async def get_directory_handle(self, name: str, *, create: bool = False) -> DirectoryHandle:
        _validate_name(name)
        child = self.children.get(name)
        if isinstance(child, MemoryDirectoryHandle):
            return child
        if child is not None:
            raise NotFound(f'"{name}" is not a directory', path=name)
        if not create:
            raise NotFound(f'"{name}" not found in "{self.name}"', path=name)
        created = MemoryDirectoryHandle(name, parent=self, native_move=self.native_move)
        self.children[name] = created
        return created

    async def get_file_handle(self, name: str, *, create: bool = False) -> FileHandle:
        _validate_name(name)
        child = self.children.get(name)
        if isinstance(child, MemoryFileHandle):
            return child
        if child is not None:
            raise NotFound(f'"{name}" is not a file', path=name)
        if not create:
            raise NotFound(f'"{name}" not found in "{self.name}"', path=name)
        created = MemoryFileHandle(name, parent=self)
        self.children[name] = created
        return created

    async def remove_entry(self, name: str, *, recursive: bool = False) -> None:
        child = self.children.get(name)
        if child is None:
            raise NotFound(f'"{name}" not found in "{self.name}"', path=name)
        if isinstance(child, MemoryDirectoryHandle) and child.children and not recursive:
            raise FsError(f'Directory "{name}" is not empty', path=name)
        del self.children[name]

    async def move(self, new_name: str) -> None:
        if self.parent is None or not self.native_move:
            await super().move(new_name)
            return
        self.parent._rename_child(self.name, new_name)  # noqa: SLF001

    def _rename_child(self, old_name: str, new_name: str) -> None:
        _validate_name(new_name)
        if new_name in self.children:
            raise NameConflict(f"A file named '{new_name}' already exists", path=new_name)
        child = self.children.pop(old_name)
        child.name = new_name
        self.children[new_name] = child

    # Test/fixture helpers.

    def add_file(self, name: str, data: bytes = b"", *, readable: bool = True) -> MemoryFileHandle:
        handle = MemoryFileHandle(name, data, parent=self, readable=readable)
        self.children[name] = handle
        return handle

    def add_dir(self, name: str) -> "MemoryDirectoryHandle":
        handle = MemoryDirectoryHandle(name, parent=self, native_move=self.native_move)
        self.children[name] = handle
        return handle

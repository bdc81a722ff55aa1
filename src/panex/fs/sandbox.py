"""Sandboxed backend: one user-granted directory handle behind virtual paths.

Virtual paths look like ``/<root name>/sub/dir``. Directory handles resolved
along the way are memoized in ``handle_cache`` keyed by their virtual path;
the cache is only a memo, the handle tree owns the real objects.
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import Awaitable, Callable

import click

from panex.fs.entries import FileEntry, is_within, join_path, split_path
from panex.fs.errors import BackendUnavailable, Cancelled, FsError, NameConflict, NotFound
from panex.fs.handles import DirectoryHandle, FileHandle, Handle
from panex.paths import export_root
from panex.runtime_logging import get_runtime_logger

RootPicker = Callable[[], Awaitable[DirectoryHandle | None]]
Opener = Callable[[str], object]

DEFAULT_EXPORT_TTL_S = 60.0


class SandboxFilesystem:
    name = "sandbox"

    def __init__(
        self,
        picker: RootPicker,
        *,
        opener: Opener | None = None,
        export_ttl_s: float = DEFAULT_EXPORT_TTL_S,
        export_dir: Path | None = None,
    ) -> None:
        self.picker = picker
        self.opener = opener or click.launch
        self.export_ttl_s = export_ttl_s
        self.export_dir = export_dir
        self.handle_cache: dict[str, DirectoryHandle] = {}
        self._root: DirectoryHandle | None = None
        self._root_path = ""
        self._exports: set[Path] = set()
        self.logger = get_runtime_logger().bind(backend=self.name)

    # -- root ---------------------------------------------------------------

    @property
    def root_path(self) -> str:
        return self._root_path

    @property
    def granted(self) -> bool:
        return self._root is not None

    async def _pick_root(self) -> DirectoryHandle:
        self.logger.info("sandbox.root.prompt")
        handle = await self.picker()
        if handle is None:
            self.logger.info("sandbox.root.declined")
            raise Cancelled("No folder was granted")
        self._root = handle
        self._root_path = "/" + handle.name
        self.handle_cache[self._root_path] = handle
        self.logger.info("sandbox.root.granted", root_path=self._root_path)
        return handle

    async def ensure_root(self) -> DirectoryHandle:
        if self._root is not None:
            return self._root
        return await self._pick_root()

    # -- path resolution ----------------------------------------------------

    async def resolve_dir(self, path: str) -> DirectoryHandle:
        cached = self.handle_cache.get(path)
        if cached is not None:
            self.logger.debug("sandbox.resolve.cache_hit", path=path)
            return cached

        root = await self.ensure_root()
        root_path = self._root_path
        if path == root_path:
            return root
        if not is_within(path, root_path):
            raise NotFound(f"Outside of the granted folder: {path}", path=path)

        segments = [segment for segment in path[len(root_path) + 1 :].split("/") if segment]
        current = root
        current_path = root_path
        for segment in segments:
            current_path = join_path(current_path, segment)
            hit = self.handle_cache.get(current_path)
            if hit is not None:
                current = hit
                continue
            current = await current.get_directory_handle(segment)
            self.handle_cache[current_path] = current
        self.logger.debug("sandbox.resolve.walked", path=path, depth=len(segments))
        return current

    async def _resolve_child(self, path: str) -> tuple[DirectoryHandle, str, Handle]:
        parent_path, name = split_path(path)
        parent = await self.resolve_dir(parent_path)
        return parent, name, await parent.get_child(name)

    def _purge(self, path: str) -> None:
        stale = [key for key in self.handle_cache if is_within(key, path)]
        for key in stale:
            del self.handle_cache[key]
        if stale:
            self.logger.debug("sandbox.cache.purged", path=path, count=len(stale))

    # -- listing ------------------------------------------------------------

    async def read_dir(self, path: str) -> list[FileEntry]:
        directory = await self.resolve_dir(path)
        entries: list[FileEntry] = []
        async for name, handle in directory.entries():
            child_path = join_path(path, name)
            if isinstance(handle, FileHandle):
                try:
                    info = await handle.get_file()
                except FsError:
                    entries.append(FileEntry(name=name, path=child_path, is_dir=False))
                    continue
                entries.append(
                    FileEntry(
                        name=name,
                        path=child_path,
                        is_dir=False,
                        size=info.size,
                        modified=info.last_modified,
                    )
                )
            elif isinstance(handle, DirectoryHandle):
                entries.append(FileEntry(name=name, path=child_path, is_dir=True))
                self.handle_cache[child_path] = handle

        entries.sort(key=lambda entry: (not entry.is_dir, entry.name.casefold()))
        return entries

    async def get_home_dir(self) -> str:
        await self.ensure_root()
        return self._root_path

    async def get_parent_dir(self, path: str) -> str:
        await self.ensure_root()
        root_path = self._root_path
        if path == root_path or len(path) <= len(root_path):
            return root_path
        parent, _ = split_path(path)
        return parent

    # -- open ---------------------------------------------------------------

    async def open_entry(self, path: str) -> None:
        _, name, handle = await self._resolve_child(path)
        if not isinstance(handle, FileHandle):
            return

        export_dir = Path(tempfile.mkdtemp(prefix="open-", dir=self.export_dir or export_root()))
        target = export_dir / name
        data = await handle.read_bytes()
        await asyncio.to_thread(target.write_bytes, data)
        self._exports.add(export_dir)
        self.opener(str(target))
        asyncio.get_running_loop().call_later(self.export_ttl_s, self._discard_export, export_dir)
        self.logger.info("sandbox.open.exported", path=path, export=str(target), ttl_s=self.export_ttl_s)

    def _discard_export(self, export_dir: Path) -> None:
        self._exports.discard(export_dir)
        shutil.rmtree(export_dir, ignore_errors=True)

    async def open_in_terminal(self, path: str) -> None:  # noqa: ARG002
        raise BackendUnavailable("Open in Terminal is not available for a sandboxed folder")

    # -- mutations ----------------------------------------------------------

    async def rename_entry(self, path: str, new_name: str) -> None:
        parent, name, handle = await self._resolve_child(path)
        parent_path, _ = split_path(path)
        if await parent.has_child(new_name):
            raise NameConflict(f"A file named '{new_name}' already exists", path=join_path(parent_path, new_name))

        if handle.supports_move:
            try:
                await handle.move(new_name)
            except NameConflict:
                raise
            except FsError as exc:
                self.logger.warning("sandbox.rename.move_failed", path=path, error=str(exc))
            else:
                self._rekey(path, join_path(parent_path, new_name), handle)
                self.logger.debug("sandbox.rename.moved", path=path, new_name=new_name)
                return

        if not isinstance(handle, FileHandle):
            raise FsError(f'Cannot rename "{name}" to "{new_name}"', path=path)

        # Copy then delete; a failure before the delete leaves both names in place.
        data = await handle.read_bytes()
        created = await parent.get_file_handle(new_name, create=True)
        async with await created.create_writable() as writable:
            await writable.write(data)
        await parent.remove_entry(name)
        self.logger.debug("sandbox.rename.copied", path=path, new_name=new_name)

    def _rekey(self, old_path: str, new_path: str, handle: Handle) -> None:
        self._purge(old_path)
        if isinstance(handle, DirectoryHandle):
            self.handle_cache[new_path] = handle

    async def delete_entry(self, path: str, permanent: bool = False) -> None:  # noqa: ARG002
        if path == self._root_path:
            raise FsError("The granted folder itself cannot be deleted", path=path)
        parent_path, name = split_path(path)
        parent = await self.resolve_dir(parent_path)
        await parent.remove_entry(name, recursive=True)
        self._purge(path)
        self.logger.debug("sandbox.delete", path=path)

    async def copy_entry(self, source: str, dest_dir: str, new_name: str | None = None) -> str:
        if is_within(dest_dir, source):
            raise FsError("Cannot copy a folder into itself", path=source)
        _, name, handle = await self._resolve_child(source)
        dest_parent = await self.resolve_dir(dest_dir)
        target_name = new_name or name
        if join_path(dest_dir, target_name) == source:
            raise NameConflict(f"'{target_name}' would be copied onto itself", path=source)
        if await dest_parent.has_child(target_name):
            raise NameConflict(f"A file named '{target_name}' already exists", path=join_path(dest_dir, target_name))

        if isinstance(handle, FileHandle):
            await _copy_file(handle, dest_parent, target_name)
        elif isinstance(handle, DirectoryHandle):
            await _copy_dir(handle, dest_parent, target_name)
        dest_path = join_path(dest_dir, target_name)
        self.logger.debug("sandbox.copy", source=source, dest=dest_path)
        return dest_path

    async def move_entry(self, source: str, dest_dir: str, new_name: str | None = None) -> str:
        parent_path, name = split_path(source)
        if parent_path == dest_dir and (new_name is None or new_name == name):
            return source
        # No cross-directory move primitive: copy, then delete the source.
        dest_path = await self.copy_entry(source, dest_dir, new_name)
        await self.delete_entry(source)
        return dest_path

    async def create_file(self, dir_path: str, name: str) -> None:
        directory = await self.resolve_dir(dir_path)
        if await directory.has_child(name):
            raise NameConflict(f"A file named '{name}' already exists", path=join_path(dir_path, name))
        await directory.get_file_handle(name, create=True)

    async def create_folder(self, dir_path: str, name: str) -> None:
        directory = await self.resolve_dir(dir_path)
        if await directory.has_child(name):
            raise NameConflict(f"A folder named '{name}' already exists", path=join_path(dir_path, name))
        created = await directory.get_directory_handle(name, create=True)
        self.handle_cache[join_path(dir_path, name)] = created

    # -- sizes --------------------------------------------------------------

    async def get_dir_size(self, path: str) -> int:
        directory = await self.resolve_dir(path)
        return await self._walk_size(directory)

    async def _walk_size(self, directory: DirectoryHandle) -> int:
        total = 0
        async for _, child in directory.entries():
            if isinstance(child, FileHandle):
                total += await self._best_effort_size(child)
            elif isinstance(child, DirectoryHandle):
                total += await self._walk_size(child)
        return total

    async def _best_effort_size(self, handle: FileHandle) -> int:
        """Size of one file, or 0 when it cannot be read."""
        try:
            return (await handle.get_file()).size
        except FsError as exc:
            self.logger.debug("sandbox.size.skipped", name=handle.name, error=str(exc))
            return 0

    async def close(self) -> None:
        for export_dir in list(self._exports):
            self._discard_export(export_dir)


async def _copy_file(handle: FileHandle, dest_parent: DirectoryHandle, name: str) -> None:
    created = await dest_parent.get_file_handle(name, create=True)
    async with await created.create_writable() as writable:
        async for chunk in handle.iter_chunks():
            await writable.write(chunk)


async def _copy_dir(source: DirectoryHandle, dest_parent: DirectoryHandle, name: str) -> None:
    mirror = await dest_parent.get_directory_handle(name, create=True)
    children = [item async for item in source.entries()]
    for child_name, child in children:
        if isinstance(child, FileHandle):
            await _copy_file(child, mirror, child_name)
        elif isinstance(child, DirectoryHandle):
            await _copy_dir(child, mirror, child_name)

"""Native OS filesystem operations and the stdio JSON-RPC server exposing them.

``panex bridge-serve`` runs ``serve_stdio``; ``BridgeFilesystem`` spawns it
and forwards every call by method name.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Any, Callable

import click
from send2trash import send2trash

from panex.fs.entries import FileEntry, is_within
from panex.fs.errors import FsError, NameConflict, NotFound, from_os_error, to_rpc_failure, translate_os_errors
from panex.protocol.jsonrpc import JsonRpcConnection, Params, Sender
from panex.runtime_logging import get_runtime_logger

LINUX_TERMINALS = ("x-terminal-emulator", "gnome-terminal", "konsole", "xterm")


def disk_size(stat: os.stat_result) -> int:
    """Allocated bytes on Unix, logical length elsewhere."""
    blocks = getattr(stat, "st_blocks", None)
    if blocks is None:
        return stat.st_size
    return blocks * 512


def read_directory(path: str) -> list[FileEntry]:
    directory = Path(path)
    with translate_os_errors(path):
        if not directory.is_dir():
            raise NotFound(f"Not a directory: {path}", path=path)
        entries: list[FileEntry] = []
        with os.scandir(directory) as it:
            for item in it:
                try:
                    stat = item.stat()
                except OSError:
                    # Dangling link: describe the link itself.
                    stat = item.stat(follow_symlinks=False)
                is_dir = item.is_dir()
                entries.append(
                    FileEntry(
                        name=item.name,
                        path=str(directory / item.name),
                        is_dir=is_dir,
                        size=disk_size(stat),
                        modified=int(stat.st_mtime * 1000),
                    )
                )
    entries.sort(key=lambda entry: (not entry.is_dir, entry.name.lower()))
    return entries


def home_dir() -> str:
    return str(Path.home())


def parent_dir(path: str) -> str:
    return str(Path(path).parent)


def open_entry(path: str) -> None:
    if not Path(path).exists():
        raise NotFound(f"Path does not exist: {path}", path=path)
    click.launch(path)


def rename_entry(path: str, new_name: str) -> None:
    source = Path(path)
    with translate_os_errors(path):
        if not source.exists():
            raise NotFound(f"Path does not exist: {path}", path=path)
        dest = source.with_name(new_name)
        if dest.exists():
            raise NameConflict(f"A file named '{new_name}' already exists", path=str(dest))
        source.rename(dest)


def delete_entry(path: str, permanent: bool = False) -> None:
    target = Path(path)
    with translate_os_errors(path):
        if not target.exists() and not target.is_symlink():
            raise NotFound(f"Path does not exist: {path}", path=path)
        if not permanent:
            send2trash(str(target))
        elif target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        else:
            target.unlink()


def _destination(source: str, dest_dir: str, new_name: str | None) -> tuple[Path, Path]:
    src = Path(source)
    if not src.exists():
        raise NotFound(f"Source does not exist: {source}", path=source)
    dest = Path(dest_dir)
    if not dest.is_dir():
        raise NotFound(f"Destination is not a directory: {dest_dir}", path=dest_dir)
    return src, dest / (new_name or src.name)


def _refuse_existing(dest_path: Path) -> None:
    if dest_path.exists() or dest_path.is_symlink():
        raise NameConflict(f"A file named '{dest_path.name}' already exists", path=str(dest_path))


def copy_entry(source: str, dest_dir: str, new_name: str | None = None) -> str:
    with translate_os_errors(source):
        src, dest_path = _destination(source, dest_dir, new_name)
        if dest_path == src:
            raise NameConflict(f"'{src.name}' would be copied onto itself", path=source)
        _refuse_existing(dest_path)
        if src.is_dir():
            if is_within(str(dest_path), str(src)):
                raise FsError("Cannot copy a folder into itself", path=source)
            shutil.copytree(src, dest_path, symlinks=True)
        else:
            shutil.copy2(src, dest_path)
    return str(dest_path)


def move_entry(source: str, dest_dir: str, new_name: str | None = None) -> str:
    with translate_os_errors(source):
        src, dest_path = _destination(source, dest_dir, new_name)
        if dest_path == src:
            return source
        _refuse_existing(dest_path)
        try:
            src.rename(dest_path)
            return str(dest_path)
        except OSError:
            # Cross-volume: copy then delete.
            pass
        copy_entry(source, dest_dir, new_name)
        if src.is_dir():
            shutil.rmtree(src)
        else:
            src.unlink()
    return str(dest_path)


def dir_size(path: str) -> int:
    root = Path(path)
    if not root.is_dir():
        raise NotFound(f"Not a directory: {path}", path=path)

    def walk(directory: Path) -> int:
        total = 0
        try:
            items = list(os.scandir(directory))
        except OSError:
            return 0
        for item in items:
            try:
                if item.is_dir(follow_symlinks=False):
                    total += walk(Path(item.path))
                else:
                    total += disk_size(item.stat(follow_symlinks=False))
            except OSError:
                continue
        return total

    return walk(root)


def create_file(directory: str, name: str) -> None:
    path = Path(directory) / name
    with translate_os_errors(str(path)):
        if path.exists():
            raise NameConflict(f"A file named '{name}' already exists", path=str(path))
        path.touch(exist_ok=False)


def create_folder(directory: str, name: str) -> None:
    path = Path(directory) / name
    with translate_os_errors(str(path)):
        if path.exists():
            raise NameConflict(f"A folder named '{name}' already exists", path=str(path))
        path.mkdir()


def open_in_terminal(path: str) -> None:
    directory = Path(path)
    if not directory.is_dir():
        raise NotFound(f"Not a directory: {path}", path=path)

    if sys.platform == "darwin":
        app = "iTerm" if Path("/Applications/iTerm.app").exists() else "Terminal"
        subprocess.Popen(["open", "-a", app, path])
        return
    if sys.platform == "win32":
        subprocess.Popen(["cmd", "/C", "start", "cmd"], cwd=path)
        return

    for terminal in LINUX_TERMINALS:
        argv = [terminal, "--working-directory", path] if terminal == "gnome-terminal" else [terminal]
        try:
            subprocess.Popen(argv, cwd=path)
            return
        except OSError:
            continue
    raise FsError("No supported terminal emulator found", path=path)


# -- server -------------------------------------------------------------------


def _str(params: dict[str, Any], key: str) -> str:
    value = params.get(key)
    if not isinstance(value, str):
        raise FsError(f"Missing string parameter: {key}")
    return value


def _opt_str(params: dict[str, Any], key: str) -> str | None:
    value = params.get(key)
    return value if isinstance(value, str) and value else None


NATIVE_METHODS: dict[str, Callable[[dict[str, Any]], Any]] = {
    "read_dir": lambda p: [entry.to_payload() for entry in read_directory(_str(p, "path"))],
    "get_home_dir": lambda p: home_dir(),
    "get_parent_dir": lambda p: parent_dir(_str(p, "path")),
    "open_entry": lambda p: open_entry(_str(p, "path")),
    "rename_entry": lambda p: rename_entry(_str(p, "path"), _str(p, "newName")),
    "delete_entry": lambda p: delete_entry(_str(p, "path"), bool(p.get("permanent", False))),
    "copy_entry": lambda p: copy_entry(_str(p, "source"), _str(p, "destDir"), _opt_str(p, "newName")),
    "move_entry": lambda p: move_entry(_str(p, "source"), _str(p, "destDir"), _opt_str(p, "newName")),
    "calculate_dir_size": lambda p: dir_size(_str(p, "path")),
    "create_file": lambda p: create_file(_str(p, "dir"), _str(p, "name")),
    "create_folder": lambda p: create_folder(_str(p, "dir"), _str(p, "name")),
    "open_in_terminal": lambda p: open_in_terminal(_str(p, "path")),
}


class NativeBridgeServer:
    """Serves ``NATIVE_METHODS`` over a JSON-RPC connection."""

    def __init__(self, sender: Sender) -> None:
        self.connection = JsonRpcConnection(sender)
        self.logger = get_runtime_logger().bind(component="bridge-server")
        for name, fn in NATIVE_METHODS.items():
            self.connection.register_method(name, self._handler(name, fn))

    def _handler(self, name: str, fn: Callable[[dict[str, Any]], Any]):  # noqa: ANN202
        async def handle(params: Params) -> Any:
            payload = params if isinstance(params, dict) else {}
            self.logger.debug("bridge_server.call", method=name)
            try:
                return await asyncio.to_thread(fn, payload)
            except FsError as exc:
                self.logger.debug("bridge_server.failed", method=name, error=exc.message, code=exc.code)
                raise to_rpc_failure(exc) from exc
            except OSError as exc:
                raise to_rpc_failure(from_os_error(exc)) from exc

        return handle


async def serve_stdio() -> None:
    """Serve native operations on stdin/stdout until stdin closes."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=2**24)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    out = sys.stdout.buffer
    write_lock = asyncio.Lock()

    async def sender(line: str) -> None:
        async with write_lock:
            out.write(line.encode("utf-8") + b"\n")
            out.flush()

    server = NativeBridgeServer(sender)
    server.logger.info("bridge_server.started", pid=os.getpid())
    inflight: set[asyncio.Task[None]] = set()
    while True:
        line = await reader.readline()
        if not line:
            break
        task = asyncio.create_task(server.connection.feed(line.decode("utf-8", errors="replace")))
        inflight.add(task)
        task.add_done_callback(inflight.discard)
    if inflight:
        await asyncio.gather(*inflight, return_exceptions=True)
    server.logger.info("bridge_server.stopped")

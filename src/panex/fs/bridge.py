"""Bridge backend: forwards every filesystem call to a native helper process.

The helper speaks JSON-RPC 2.0 over stdio (``panex bridge-serve`` by default).
No state is kept here beyond the connection; correctness is the helper's job.
"""

from __future__ import annotations

import asyncio
import collections
import contextlib
import shlex
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable

from panex.fs.entries import FileEntry
from panex.fs.errors import BackendUnavailable, from_rpc_failure
from panex.protocol.jsonrpc import JsonRpcConnection, JsonRpcFailure
from panex.runtime_logging import get_runtime_logger

STDERR_TAIL_LINES = 20


def default_bridge_command() -> str:
    return f"{shlex.quote(sys.executable)} -m panex bridge-serve"


def bridge_method(name: str) -> Callable[[Callable[..., dict[str, Any]]], Callable[..., Awaitable[Any]]]:
    """Turn a method returning the parameter bag into a forwarded RPC call."""

    def decorator(fn: Callable[..., dict[str, Any]]) -> Callable[..., Awaitable[Any]]:
        async def wrapper(self: "BridgeFilesystem", *args: Any, **kwargs: Any) -> Any:
            return await self._call(name, fn(self, *args, **kwargs))

        wrapper.__name__ = fn.__name__
        wrapper.__doc__ = fn.__doc__
        return wrapper

    return decorator


class BridgeFilesystem:
    name = "bridge"

    def __init__(self, command: str | None = None, *, cwd: Path | None = None) -> None:
        self.command = command or default_bridge_command()
        self.cwd = cwd
        self.process: asyncio.subprocess.Process | None = None
        self.connection: JsonRpcConnection | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._stderr_tail: collections.deque[str] = collections.deque(maxlen=STDERR_TAIL_LINES)
        self._start_lock = asyncio.Lock()
        self.logger = get_runtime_logger().bind(backend=self.name)

    # -- process lifecycle ----------------------------------------------------

    async def start(self) -> None:
        async with self._start_lock:
            if self.process is not None and self.process.returncode is None:
                return
            argv = shlex.split(self.command)
            self.logger.info("bridge.start", command=self.command)
            try:
                self.process = await asyncio.create_subprocess_exec(
                    *argv,
                    cwd=str(self.cwd) if self.cwd else None,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    limit=2**24,
                )
            except OSError as exc:
                self.logger.error("bridge.start.failed", command=self.command, error=str(exc))
                raise BackendUnavailable(f"Cannot start native bridge `{self.command}`: {exc}") from exc

            async def sender(line: str) -> None:
                assert self.process is not None
                assert self.process.stdin is not None
                self.process.stdin.write(line.encode("utf-8") + b"\n")
                await self.process.stdin.drain()

            self.connection = JsonRpcConnection(sender)
            self._reader_task = asyncio.create_task(self._read_stdout_loop())
            self._stderr_task = asyncio.create_task(self._read_stderr_loop())
            self.logger.debug("bridge.started", pid=self.process.pid)

    async def close(self) -> None:
        self.logger.info("bridge.stop")
        if self.connection is not None:
            self.connection.shutdown()

        for task in (self._reader_task, self._stderr_task):
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._reader_task = None
        self._stderr_task = None

        if self.process is not None and self.process.returncode is None:
            if self.process.stdin is not None:
                self.process.stdin.close()
            self.process.terminate()
            with contextlib.suppress(ProcessLookupError, asyncio.TimeoutError):
                await asyncio.wait_for(self.process.wait(), timeout=2)
        self.process = None
        self.connection = None
        self.logger.debug("bridge.stopped")

    def _exit_error(self) -> BackendUnavailable:
        code = self.process.returncode if self.process is not None else None
        tail = "".join(self._stderr_tail).strip()
        message = f"Native bridge exited with code {code}"
        if tail:
            message = f"{message}: {tail}"
        return BackendUnavailable(message)

    async def _call(self, method: str, params: dict[str, Any]) -> Any:
        if self.process is None:
            await self.start()
        assert self.process is not None
        if self.process.returncode is not None or self.connection is None:
            raise self._exit_error()
        self.logger.debug("bridge.rpc.call", method=method)
        try:
            return await self.connection.call(method, params)
        except JsonRpcFailure as exc:
            self.logger.debug("bridge.rpc.failed", method=method, code=exc.code, error=exc.message)
            raise from_rpc_failure(exc) from exc

    async def _read_stdout_loop(self) -> None:
        assert self.process is not None
        assert self.process.stdout is not None
        while True:
            line = await self.process.stdout.readline()
            if not line:
                break
            if self.connection is None:
                continue
            await self.connection.feed(line.decode("utf-8", errors="replace"))

        await self.process.wait()
        self.logger.warning("bridge.stdout.closed", returncode=self.process.returncode)
        if self.connection is not None:
            self.connection.fail_pending(self._exit_error())

    async def _read_stderr_loop(self) -> None:
        assert self.process is not None
        assert self.process.stderr is not None
        while True:
            line = await self.process.stderr.readline()
            if not line:
                break
            self._stderr_tail.append(line.decode("utf-8", errors="replace"))

    # -- forwarded contract ---------------------------------------------------

    async def read_dir(self, path: str) -> list[FileEntry]:
        payload = await self._call("read_dir", {"path": path})
        return [FileEntry.from_payload(item) for item in payload or []]

    async def get_dir_size(self, path: str) -> int:
        return int(await self._call("calculate_dir_size", {"path": path}) or 0)

    async def copy_entry(self, source: str, dest_dir: str, new_name: str | None = None) -> str:
        return str(await self._call("copy_entry", {"source": source, "destDir": dest_dir, "newName": new_name}))

    async def move_entry(self, source: str, dest_dir: str, new_name: str | None = None) -> str:
        return str(await self._call("move_entry", {"source": source, "destDir": dest_dir, "newName": new_name}))

    @bridge_method("get_home_dir")
    def get_home_dir(self) -> dict[str, Any]:
        return {}

    @bridge_method("get_parent_dir")
    def get_parent_dir(self, path: str) -> dict[str, Any]:
        return {"path": path}

    @bridge_method("open_entry")
    def open_entry(self, path: str) -> dict[str, Any]:
        return {"path": path}

    @bridge_method("rename_entry")
    def rename_entry(self, path: str, new_name: str) -> dict[str, Any]:
        return {"path": path, "newName": new_name}

    @bridge_method("delete_entry")
    def delete_entry(self, path: str, permanent: bool = False) -> dict[str, Any]:
        return {"path": path, "permanent": permanent}

    @bridge_method("create_file")
    def create_file(self, dir_path: str, name: str) -> dict[str, Any]:
        return {"dir": dir_path, "name": name}

    @bridge_method("create_folder")
    def create_folder(self, dir_path: str, name: str) -> dict[str, Any]:
        return {"dir": dir_path, "name": name}

    @bridge_method("open_in_terminal")
    def open_in_terminal(self, path: str) -> dict[str, Any]:
        return {"path": path}

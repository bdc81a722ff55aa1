from __future__ import annotations

import asyncio
import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock

from panex.app import PanexApp
from panex.config.store import SettingsStore
from panex.fs.errors import (
    FsError,
    NameConflict,
    NotFound,
    PartialFailure,
    from_os_error,
    from_rpc_failure,
    to_rpc_failure,
)
from panex.fs.handles import MemoryDirectoryHandle
from panex.fs.sandbox import SandboxFilesystem
from panex.protocol.jsonrpc import JsonRpcConnection, JsonRpcFailure


class SettingsStoreTests(unittest.TestCase):
    def test_load_save_update_roundtrip(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "settings.json"
            store = SettingsStore(path)

            settings = store.load()
            self.assertTrue(path.exists())
            self.assertEqual(settings.schema_version, 1)
            self.assertEqual(settings.sizes.concurrency, 2)
            self.assertEqual(settings.layout.min_panes, 2)

            updated = store.update("view.show_hidden", True)
            self.assertTrue(updated.view.show_hidden)

            reloaded = store.load()
            self.assertTrue(reloaded.view.show_hidden)

    def test_unknown_key_is_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = SettingsStore(Path(tmp) / "settings.json")
            with self.assertRaises(KeyError):
                store.update("view.colour", "red")
            with self.assertRaises(KeyError):
                store.update("view.show_hidden.deeper", True)

    def test_corrupt_file_is_backed_up(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "settings.json"
            path.write_text("{not json", encoding="utf-8")

            settings = SettingsStore(path).load()

            self.assertEqual(settings.view.sort_field, "name")
            self.assertEqual((Path(tmp) / "settings.corrupt.json").read_text(encoding="utf-8"), "{not json")
            self.assertEqual(json.loads(path.read_text(encoding="utf-8"))["schema_version"], 1)


class JsonRpcTests(unittest.IsolatedAsyncioTestCase):
    async def test_call_and_response(self) -> None:
        outbound: list[str] = []

        async def sender(line: str) -> None:
            outbound.append(line)

        conn = JsonRpcConnection(sender)

        async def resolve() -> None:
            await asyncio.sleep(0)
            request = json.loads(outbound[0])
            await conn.feed(
                json.dumps(
                    {
                        "jsonrpc": "2.0",
                        "id": request["id"],
                        "result": {"ok": True},
                    }
                )
            )

        task = asyncio.create_task(resolve())
        result = await conn.call("read_dir", {"path": "/tmp"})
        await task

        self.assertEqual(result, {"ok": True})
        self.assertEqual(conn.pending_count, 0)

    async def test_error_response_and_peer_loss(self) -> None:
        outbound: list[str] = []

        async def sender(line: str) -> None:
            outbound.append(line)

        conn = JsonRpcConnection(sender)
        first = asyncio.create_task(conn.call("rename_entry", {"path": "/a", "newName": "b"}))
        second = asyncio.create_task(conn.call("get_home_dir"))
        await asyncio.sleep(0)

        request = json.loads(outbound[0])
        await conn.feed(
            json.dumps({"jsonrpc": "2.0", "id": request["id"], "error": {"code": -32009, "message": "exists"}})
        )
        with self.assertRaises(JsonRpcFailure) as caught:
            await first
        self.assertEqual(caught.exception.code, -32009)

        conn.fail_pending(ConnectionError("gone"))
        with self.assertRaises(ConnectionError):
            await second

    async def test_garbage_lines_are_ignored(self) -> None:
        conn = JsonRpcConnection(AsyncMock())
        await conn.feed("")
        await conn.feed("not json")
        await conn.feed("[1, 2]")
        self.assertEqual(conn.pending_count, 0)


class ErrorMappingTests(unittest.TestCase):
    def test_codes_survive_rpc(self) -> None:
        failure = to_rpc_failure(NameConflict("exists", path="/r/a"))
        self.assertEqual(failure.code, -32009)
        restored = from_rpc_failure(failure)
        self.assertIsInstance(restored, NameConflict)
        self.assertEqual(restored.path, "/r/a")

        self.assertIsInstance(from_rpc_failure(JsonRpcFailure(code=-32012, message="some")), PartialFailure)
        generic = from_rpc_failure(JsonRpcFailure(code=-1, message="odd"))
        self.assertIs(type(generic), FsError)

    def test_os_errors_are_typed(self) -> None:
        self.assertIsInstance(from_os_error(FileNotFoundError(2, "No such file", "/x")), NotFound)
        self.assertIsInstance(from_os_error(FileExistsError(17, "File exists", "/x")), NameConflict)
        self.assertEqual(from_os_error(FileNotFoundError(2, "No such file", "/x")).path, "/x")


class PanexAppBootstrapTests(unittest.TestCase):
    def test_injected_filesystem_skips_backend_selection(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            store = SettingsStore(Path(tmp) / "settings.json")
            store.update("sizes.concurrency", 3)
            fs = SandboxFilesystem(AsyncMock(return_value=MemoryDirectoryHandle("root")))

            app = PanexApp(fs=fs, settings_store=store, log_level="off")

        self.assertIs(app.workspace.fs, fs)
        self.assertEqual(app.context.scheduler.concurrency, 3)
        self.assertEqual(app.workspace.panes, {})


if __name__ == "__main__":
    unittest.main()

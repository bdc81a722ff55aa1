from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

from panex.fs.errors import BackendUnavailable, Cancelled, FsError, NameConflict, NotFound
from panex.fs.handles import LocalDirectoryHandle, MemoryDirectoryHandle
from panex.fs.sandbox import SandboxFilesystem


def build_root(*, native_move: bool = True) -> MemoryDirectoryHandle:
    root = MemoryDirectoryHandle("root", native_move=native_move)
    root.add_file("a.txt", b"alpha")
    docs = root.add_dir("docs")
    docs.add_file("readme.md", b"hello")
    nested = docs.add_dir("nested")
    nested.add_file("deep.bin", b"x" * 10)
    return root


class SandboxFilesystemTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.root = build_root()
        self.picker = AsyncMock(return_value=self.root)
        self.opener = MagicMock()
        self.tmp = tempfile.TemporaryDirectory()
        self.fs = SandboxFilesystem(self.picker, opener=self.opener, export_dir=Path(self.tmp.name))

    async def asyncTearDown(self) -> None:
        await self.fs.close()
        self.tmp.cleanup()

    async def test_root_is_requested_once(self) -> None:
        self.assertEqual(await self.fs.get_home_dir(), "/root")
        await self.fs.read_dir("/root/docs")
        self.picker.assert_awaited_once()
        self.assertTrue(self.fs.granted)

    async def test_declined_picker_raises_cancelled_and_asks_again(self) -> None:
        picker = AsyncMock(side_effect=[None, self.root])
        fs = SandboxFilesystem(picker)
        with self.assertRaises(Cancelled):
            await fs.read_dir("/root")
        self.assertFalse(fs.granted)
        entries = await fs.read_dir("/root")
        self.assertEqual([entry.name for entry in entries], ["docs", "a.txt"])
        self.assertEqual(picker.await_count, 2)

    async def test_read_dir_lists_directories_first_with_sizes(self) -> None:
        entries = await self.fs.read_dir("/root/docs")
        self.assertEqual([(entry.name, entry.is_dir) for entry in entries], [("nested", True), ("readme.md", False)])
        self.assertEqual(entries[1].size, 5)
        self.assertEqual(entries[1].path, "/root/docs/readme.md")

    async def test_resolve_memoizes_every_segment(self) -> None:
        await self.fs.resolve_dir("/root/docs/nested")
        self.assertIn("/root/docs", self.fs.handle_cache)
        self.assertIn("/root/docs/nested", self.fs.handle_cache)

        with patch.object(self.root, "get_directory_handle") as walk:
            await self.fs.resolve_dir("/root/docs/nested")
        walk.assert_not_called()

    async def test_resolve_outside_root_is_not_found(self) -> None:
        await self.fs.ensure_root()
        with self.assertRaises(NotFound):
            await self.fs.resolve_dir("/elsewhere")
        with self.assertRaises(NotFound):
            await self.fs.resolve_dir("/root/missing")

    async def test_parent_of_root_is_root(self) -> None:
        self.assertEqual(await self.fs.get_parent_dir("/root"), "/root")
        self.assertEqual(await self.fs.get_parent_dir("/root/docs/nested"), "/root/docs")

    async def test_rename_directory_rekeys_cache(self) -> None:
        await self.fs.resolve_dir("/root/docs/nested")
        await self.fs.rename_entry("/root/docs", "papers")

        self.assertNotIn("/root/docs", self.fs.handle_cache)
        self.assertNotIn("/root/docs/nested", self.fs.handle_cache)
        names = [entry.name for entry in await self.fs.read_dir("/root/papers/nested")]
        self.assertEqual(names, ["deep.bin"])

    async def test_rename_refuses_existing_name(self) -> None:
        with self.assertRaises(NameConflict):
            await self.fs.rename_entry("/root/a.txt", "docs")

    async def test_rename_without_native_move_copies_file(self) -> None:
        root = build_root(native_move=False)
        fs = SandboxFilesystem(AsyncMock(return_value=root))
        await fs.rename_entry("/root/a.txt", "b.txt")
        self.assertEqual(sorted(root.children), ["b.txt", "docs"])
        self.assertEqual(root.children["b.txt"].data, b"alpha")  # type: ignore[union-attr]

        with self.assertRaises(FsError):
            await fs.rename_entry("/root/docs", "papers")

    async def test_rename_fallback_failure_leaves_both_names(self) -> None:
        root = build_root(native_move=False)
        fs = SandboxFilesystem(AsyncMock(return_value=root))
        with patch.object(root, "remove_entry", AsyncMock(side_effect=FsError("locked"))):
            with self.assertRaises(FsError):
                await fs.rename_entry("/root/a.txt", "b.txt")
        self.assertIn("a.txt", root.children)
        self.assertIn("b.txt", root.children)

    async def test_delete_purges_cached_subtree(self) -> None:
        await self.fs.resolve_dir("/root/docs/nested")
        await self.fs.delete_entry("/root/docs")
        self.assertEqual(set(self.fs.handle_cache), {"/root"})
        self.assertEqual([entry.name for entry in await self.fs.read_dir("/root")], ["a.txt"])

        with self.assertRaises(FsError):
            await self.fs.delete_entry("/root")

    async def test_copy_directory_mirrors_tree(self) -> None:
        await self.fs.create_folder("/root", "backup")
        new_path = await self.fs.copy_entry("/root/docs", "/root/backup")
        self.assertEqual(new_path, "/root/backup/docs")
        self.assertEqual(await self.fs.get_dir_size("/root/backup"), 15)
        self.assertEqual(await self.fs.get_dir_size("/root/docs"), 15)

    async def test_copy_with_new_name_and_guards(self) -> None:
        self.assertEqual(await self.fs.copy_entry("/root/a.txt", "/root", "a (2).txt"), "/root/a (2).txt")
        with self.assertRaises(NameConflict):
            await self.fs.copy_entry("/root/a.txt", "/root")
        with self.assertRaises(FsError):
            await self.fs.copy_entry("/root/docs", "/root/docs/nested")

    async def test_move_is_copy_then_delete(self) -> None:
        new_path = await self.fs.move_entry("/root/a.txt", "/root/docs")
        self.assertEqual(new_path, "/root/docs/a.txt")
        self.assertNotIn("a.txt", self.root.children)
        self.assertEqual(await self.fs.move_entry("/root/docs/a.txt", "/root/docs"), "/root/docs/a.txt")

    async def test_create_refuses_existing_names(self) -> None:
        await self.fs.create_file("/root", "new.txt")
        with self.assertRaises(NameConflict):
            await self.fs.create_file("/root", "new.txt")
        with self.assertRaises(NameConflict):
            await self.fs.create_folder("/root", "docs")

    async def test_unreadable_files_count_as_zero(self) -> None:
        docs = self.root.children["docs"]
        assert isinstance(docs, MemoryDirectoryHandle)
        docs.add_file("secret", b"x" * 100, readable=False)
        self.assertEqual(await self.fs.get_dir_size("/root/docs"), 15)
        listed = {entry.name: entry.size for entry in await self.fs.read_dir("/root/docs")}
        self.assertEqual(listed["secret"], 0)

    async def test_open_exports_file_and_skips_directories(self) -> None:
        await self.fs.open_entry("/root/a.txt")
        self.opener.assert_called_once()
        exported = Path(self.opener.call_args.args[0])
        self.assertEqual(exported.read_bytes(), b"alpha")

        await self.fs.open_entry("/root/docs")
        self.opener.assert_called_once()

        await self.fs.close()
        self.assertFalse(exported.exists())

    async def test_open_in_terminal_is_unavailable(self) -> None:
        with self.assertRaises(BackendUnavailable):
            await self.fs.open_in_terminal("/root")


class LocalHandleSandboxTests(unittest.IsolatedAsyncioTestCase):
    async def test_sandbox_over_real_directory(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            base = Path(tmp) / "granted"
            (base / "sub").mkdir(parents=True)
            (base / "sub" / "file.txt").write_text("12345", encoding="utf-8")

            fs = SandboxFilesystem(AsyncMock(return_value=LocalDirectoryHandle(base)))
            self.assertEqual(await fs.get_home_dir(), "/granted")
            self.assertEqual(await fs.get_dir_size("/granted"), 5)

            await fs.rename_entry("/granted/sub/file.txt", "renamed.txt")
            self.assertTrue((base / "sub" / "renamed.txt").exists())

            await fs.copy_entry("/granted/sub", "/granted", "copy")
            self.assertEqual((base / "copy" / "renamed.txt").read_text(encoding="utf-8"), "12345")

            await fs.delete_entry("/granted/sub")
            self.assertFalse((base / "sub").exists())


if __name__ == "__main__":
    unittest.main()

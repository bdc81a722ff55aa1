from __future__ import annotations

import unittest
from unittest.mock import AsyncMock, patch

from panex.context import AppContext
from panex.fs.entries import FileEntry
from panex.fs.errors import FsError, NotFound, PartialFailure, PermissionDenied
from panex.fs.handles import MemoryDirectoryHandle, MemoryFileHandle
from panex.fs.sandbox import SandboxFilesystem
from panex.layout.tree import Split
from panex.pane.state import Modifiers
from panex.workspace import DragPayload, Workspace


def build_root() -> MemoryDirectoryHandle:
    root = MemoryDirectoryHandle("root")
    root.add_file("a.txt", b"alpha")
    docs = root.add_dir("docs")
    docs.add_file("readme.md", b"hello")
    docs.add_dir("nested").add_file("deep.bin", b"x" * 10)
    return root


def names(workspace: Workspace, pane_id: str) -> list[str]:
    return [entry.name for entry in workspace.pane(pane_id).entries]


def resolver_returning(choice: str) -> AsyncMock:
    return AsyncMock(return_value=choice)


class WorkspaceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.root = build_root()
        self.fs = SandboxFilesystem(AsyncMock(return_value=self.root))
        self.changes: list[str | None] = []
        self.workspace = Workspace(AppContext(self.fs), on_change=self.changes.append)
        await self.workspace.start()

    async def asyncTearDown(self) -> None:
        await self.workspace.context.scheduler.wait_idle()
        await self.workspace.context.close()

    def entry(self, pane_id: str, name: str) -> FileEntry:
        found = next((item for item in self.workspace.pane(pane_id).entries if item.name == name), None)
        assert found is not None, name
        return found

    @property
    def docs(self) -> MemoryDirectoryHandle:
        docs = self.root.children["docs"]
        assert isinstance(docs, MemoryDirectoryHandle)
        return docs

    async def test_start_opens_minimum_panes_at_home(self) -> None:
        self.assertEqual(self.workspace.pane_ids(), ["pane-1", "pane-2"])
        self.assertIsInstance(self.workspace.layout, Split)
        self.assertEqual(self.workspace.active_pane_id, "pane-1")
        for pane_id in self.workspace.pane_ids():
            self.assertEqual(self.workspace.pane(pane_id).current_path, "/root")
            self.assertEqual(names(self.workspace, pane_id), ["docs", "a.txt"])
        self.assertIn(None, self.changes)

    async def test_split_and_close_respect_minimum(self) -> None:
        new_id = await self.workspace.split_pane("pane-1", "horizontal")
        self.assertEqual(self.workspace.pane_ids(), ["pane-1", new_id, "pane-2"])
        self.assertEqual(self.workspace.active_pane_id, new_id)
        self.assertEqual(self.workspace.pane(new_id).current_path, "/root")

        self.assertTrue(self.workspace.close_pane(new_id))
        self.assertNotIn(new_id, self.workspace.panes)
        self.assertIn(self.workspace.active_pane_id, {"pane-1", "pane-2"})
        self.assertFalse(self.workspace.close_pane("pane-1"))
        self.assertEqual(len(self.workspace.panes), 2)

    async def test_focus_next_and_resize(self) -> None:
        self.assertEqual(self.workspace.focus_next(), "pane-2")
        self.assertEqual(self.workspace.focus_next(), "pane-1")
        self.assertEqual(self.workspace.focus_next(-1), "pane-2")

        self.assertTrue(self.workspace.resize("pane-1", 0.95))
        assert isinstance(self.workspace.layout, Split)
        self.assertEqual(self.workspace.layout.ratio, 0.9)

    async def test_click_clears_selection_in_other_panes(self) -> None:
        self.workspace.click("pane-1", self.entry("pane-1", "a.txt"))
        self.workspace.click("pane-2", self.entry("pane-2", "docs"))
        self.assertEqual(self.workspace.pane("pane-1").selected_paths, frozenset())
        self.assertEqual(self.workspace.pane("pane-2").selected_paths, {"/root/docs"})
        self.assertEqual(self.workspace.active_pane_id, "pane-2")

        self.workspace.click("pane-2", self.entry("pane-2", "a.txt"), Modifiers(toggle=True))
        self.assertEqual(len(self.workspace.targets("pane-2")), 2)

    async def test_directory_sizes_resolve_in_background(self) -> None:
        await self.workspace.context.scheduler.wait_idle()
        self.assertEqual(self.workspace.size_of(self.entry("pane-1", "docs")), 15)
        self.assertEqual(self.workspace.size_of(self.entry("pane-1", "a.txt")), 5)

    async def test_keep_both_copy_shows_in_every_pane(self) -> None:
        self.workspace.click("pane-1", self.entry("pane-1", "a.txt"))
        self.assertEqual(self.workspace.copy_to_clipboard("pane-1"), 1)
        resolver = resolver_returning("keep-both")

        report = await self.workspace.paste("pane-2", resolver)

        resolver.assert_awaited_once()
        self.assertEqual(report.succeeded, ["/root/a (2).txt"])
        for pane_id in ("pane-1", "pane-2"):
            self.assertIn("a (2).txt", names(self.workspace, pane_id))
            self.assertIn("a.txt", names(self.workspace, pane_id))
        self.assertIsNotNone(self.workspace.context.clipboard)

    async def test_replace_overwrites_existing_entry(self) -> None:
        self.docs.add_file("a.txt", b"old")
        await self.workspace.navigate_into("pane-2", self.entry("pane-2", "docs"))
        payload = DragPayload(entries=(self.entry("pane-1", "a.txt"),), source_pane_id="pane-1")

        report = await self.workspace.drop("pane-2", payload, copy=True, resolver=resolver_returning("replace"))

        self.assertEqual(report.succeeded, ["/root/docs/a.txt"])
        replaced = self.docs.children["a.txt"]
        assert isinstance(replaced, MemoryFileHandle)
        self.assertEqual(replaced.data, b"alpha")
        self.assertIn("a.txt", self.root.children)

    async def test_keep_both_move_renames_and_removes_source(self) -> None:
        self.docs.add_file("a.txt", b"old")
        await self.workspace.navigate_into("pane-2", self.entry("pane-2", "docs"))
        payload = DragPayload(entries=(self.entry("pane-1", "a.txt"),), source_pane_id="pane-1")

        report = await self.workspace.drop("pane-2", payload, copy=False, resolver=resolver_returning("keep-both"))

        self.assertEqual(report.succeeded, ["/root/docs/a (2).txt"])
        self.assertNotIn("a.txt", self.root.children)
        kept = self.docs.children["a.txt"]
        assert isinstance(kept, MemoryFileHandle)
        self.assertEqual(kept.data, b"old")
        self.assertEqual(names(self.workspace, "pane-1"), ["docs"])
        self.assertIn("a (2).txt", names(self.workspace, "pane-2"))

    async def test_replace_refuses_folder_containing_the_source(self) -> None:
        outer = self.root.add_dir("x")
        outer.add_dir("x").add_file("keep.txt", b"k")
        await self.workspace.navigate_to("pane-2", "/root/x")
        payload = DragPayload(entries=(self.entry("pane-2", "x"),), source_pane_id="pane-2")
        resolver = resolver_returning("replace")

        with self.assertRaises(FsError):
            await self.workspace.drop("pane-1", payload, copy=False, resolver=resolver)

        resolver.assert_awaited_once()
        inner = outer.children["x"]
        assert isinstance(inner, MemoryDirectoryHandle)
        self.assertIn("keep.txt", inner.children)
        self.assertIs(self.root.children["x"], outer)

    async def test_failed_size_is_not_walked_on_every_cursor_move(self) -> None:
        await self.workspace.context.scheduler.wait_idle()
        denied = AsyncMock(side_effect=PermissionDenied("Permission denied: /root/docs", path="/root/docs"))
        with patch.object(self.fs, "get_dir_size", denied):
            workspace = Workspace(AppContext(self.fs))
            await workspace.start()
            scheduler = workspace.context.scheduler
            await scheduler.wait_idle()
            for _ in range(3):
                workspace.move_cursor("pane-1", 1)
                workspace.move_cursor("pane-1", -1)
            await scheduler.wait_idle()
            self.assertEqual(denied.await_count, 1)
            self.assertIsNone(workspace.size_of(self.entry("pane-1", "docs")))

            await workspace.reload("pane-1")
            await scheduler.wait_idle()
            self.assertEqual(denied.await_count, 2)

    async def test_cancel_stops_the_whole_batch(self) -> None:
        resolver = resolver_returning("cancel")
        chosen = [self.entry("pane-1", "a.txt"), self.entry("pane-1", "docs")]
        report = await self.workspace.transfer(chosen, "/root", move=False, resolver=resolver)
        self.assertTrue(report.cancelled)
        self.assertEqual(report.succeeded, [])
        resolver.assert_awaited_once()
        self.assertEqual(names(self.workspace, "pane-1"), ["docs", "a.txt"])

    async def test_cut_and_paste_moves_and_clears_clipboard(self) -> None:
        self.workspace.click("pane-1", self.entry("pane-1", "a.txt"))
        self.workspace.copy_to_clipboard("pane-1", cut=True)
        await self.workspace.navigate_into("pane-2", self.entry("pane-2", "docs"))

        report = await self.workspace.paste("pane-2", resolver_returning("cancel"))

        self.assertEqual(report.succeeded, ["/root/docs/a.txt"])
        self.assertIsNone(self.workspace.context.clipboard)
        self.assertEqual(names(self.workspace, "pane-1"), ["docs"])
        self.assertIn("a.txt", names(self.workspace, "pane-2"))

    async def test_move_into_same_directory_is_skipped(self) -> None:
        chosen = [self.entry("pane-1", "a.txt")]
        resolver = resolver_returning("replace")
        report = await self.workspace.transfer(chosen, "/root", move=True, resolver=resolver)
        self.assertEqual(report.skipped, ["/root/a.txt"])
        resolver.assert_not_awaited()

    async def test_drop_on_source_pane_is_noop(self) -> None:
        payload = DragPayload(entries=(self.entry("pane-1", "a.txt"),), source_pane_id="pane-1")
        resolver = resolver_returning("keep-both")
        report = await self.workspace.drop("pane-1", payload, copy=True, resolver=resolver)
        self.assertEqual(report.succeeded, [])
        resolver.assert_not_awaited()
        self.assertEqual(names(self.workspace, "pane-1"), ["docs", "a.txt"])

    async def test_delete_reports_partial_failure(self) -> None:
        original = self.fs.delete_entry

        async def flaky(path: str, permanent: bool = False) -> None:
            if path == "/root/docs":
                raise PermissionDenied(f"Permission denied: {path}", path=path)
            await original(path, permanent)

        chosen = [self.entry("pane-1", "a.txt"), self.entry("pane-1", "docs")]
        with patch.object(self.fs, "delete_entry", side_effect=flaky):
            with self.assertRaises(PartialFailure) as caught:
                await self.workspace.delete("pane-1", chosen)

        self.assertEqual(caught.exception.succeeded, ["/root/a.txt"])
        self.assertEqual(caught.exception.failed_paths, ["/root/docs"])
        self.assertEqual(names(self.workspace, "pane-1"), ["docs"])

    async def test_single_failure_keeps_its_type(self) -> None:
        ghost = FileEntry(name="ghost", path="/root/ghost", is_dir=False)
        with self.assertRaises(NotFound):
            await self.workspace.delete("pane-1", [ghost])

    async def test_rename_refreshes_every_pane(self) -> None:
        new_path = await self.workspace.rename("pane-1", self.entry("pane-1", "a.txt"), "b.txt")
        self.assertEqual(new_path, "/root/b.txt")
        for pane_id in ("pane-1", "pane-2"):
            self.assertEqual(names(self.workspace, pane_id), ["docs", "b.txt"])

    async def test_create_entries_in_expanded_folder(self) -> None:
        await self.workspace.toggle_expand("pane-1", self.entry("pane-1", "docs"))
        created = await self.workspace.create_folder("pane-1", "fresh", "/root/docs")
        self.assertEqual(created, "/root/docs/fresh")
        children = [entry.name for entry in self.workspace.pane("pane-1").children_cache["/root/docs"]]
        self.assertEqual(children, ["fresh", "nested", "readme.md"])

    async def test_pane_falls_back_home_when_folder_vanishes(self) -> None:
        await self.workspace.navigate_into("pane-2", self.entry("pane-2", "docs"))
        await self.workspace.delete("pane-1", [self.entry("pane-1", "docs")])
        self.assertEqual(self.workspace.pane("pane-2").current_path, "/root")
        self.assertEqual(names(self.workspace, "pane-2"), ["a.txt"])

    async def test_open_directory_navigates(self) -> None:
        await self.workspace.open_entry("pane-1", self.entry("pane-1", "docs"))
        self.assertEqual(self.workspace.pane("pane-1").current_path, "/root/docs")
        await self.workspace.navigate_up("pane-1")
        self.assertEqual(self.workspace.pane("pane-1").current_path, "/root")


if __name__ == "__main__":
    unittest.main()

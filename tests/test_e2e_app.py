from __future__ import annotations

import tempfile
import unittest
import warnings
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

from textual.widgets import Button, Input

from panex.app import PanexApp
from panex.config.store import SettingsStore
from panex.fs.handles import MemoryDirectoryHandle
from panex.fs.sandbox import SandboxFilesystem
from panex.screens.modals import ConfirmModal, TextPromptModal
from panex.widgets.pane_view import PaneView

warnings.filterwarnings("ignore", category=ResourceWarning)
warnings.filterwarnings("ignore", category=DeprecationWarning, module=r"pathspec.*")


def build_root() -> MemoryDirectoryHandle:
    root = MemoryDirectoryHandle("root")
    root.add_file("a.txt", b"alpha")
    root.add_file("b.txt", b"beta")
    docs = root.add_dir("docs")
    docs.add_file("readme.md", b"hello")
    return root


class PanexAppE2ETests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.root = build_root()
        self.store = SettingsStore(Path(self.tmp.name) / "settings.json")

    async def asyncTearDown(self) -> None:
        self.tmp.cleanup()

    def _make_app(self, **kwargs: Any) -> PanexApp:
        fs = SandboxFilesystem(AsyncMock(return_value=self.root))
        return PanexApp(fs=fs, settings_store=self.store, log_level="off", **kwargs)

    async def _started(self, app: PanexApp, pilot) -> None:  # noqa: ANN001
        for _ in range(40):
            if len(app.query(PaneView)) == len(app.workspace.panes) and all(
                state.current_path for state in app.workspace.panes.values()
            ):
                break
            await pilot.pause(0.05)
        await pilot.pause(0.1)

    async def test_mounts_two_panes_at_home(self) -> None:
        app = self._make_app()
        async with app.run_test() as pilot:
            await self._started(app, pilot)
            views = list(app.query(PaneView))
            self.assertEqual([view.pane_id for view in views], ["pane-1", "pane-2"])
            self.assertEqual(app.workspace.pane("pane-1").current_path, "/root")
            self.assertTrue(views[0].has_class("-active"))

    async def test_keyboard_cursor_and_pane_switch(self) -> None:
        app = self._make_app()
        async with app.run_test() as pilot:
            await self._started(app, pilot)
            await pilot.press("down")
            await pilot.pause(0.05)
            focused = app.workspace.pane("pane-1").focused_entry()
            assert focused is not None
            self.assertEqual(focused.name, "a.txt")

            await pilot.press("tab")
            await pilot.pause(0.05)
            self.assertEqual(app.workspace.active_pane_id, "pane-2")

    async def test_split_and_close_rebuild_layout(self) -> None:
        app = self._make_app()
        async with app.run_test() as pilot:
            await self._started(app, pilot)
            await pilot.press("vertical_line")
            await pilot.pause(0.2)
            self.assertEqual(len(app.query(PaneView)), 3)

            await pilot.press("ctrl+w")
            await pilot.pause(0.2)
            self.assertEqual(len(app.query(PaneView)), 2)

            await pilot.press("ctrl+w")
            await pilot.pause(0.2)
            self.assertEqual(len(app.query(PaneView)), 2)

    async def test_enter_opens_directory(self) -> None:
        app = self._make_app()
        async with app.run_test() as pilot:
            await self._started(app, pilot)
            await pilot.press("enter")
            await pilot.pause(0.2)
            self.assertEqual(app.workspace.pane("pane-1").current_path, "/root/docs")

            await pilot.press("backspace")
            await pilot.pause(0.2)
            self.assertEqual(app.workspace.pane("pane-1").current_path, "/root")

    async def test_create_folder_through_prompt(self) -> None:
        app = self._make_app()
        async with app.run_test() as pilot:
            await self._started(app, pilot)
            await pilot.press("N")
            await pilot.pause(0.1)
            self.assertIsInstance(app.screen, TextPromptModal)
            prompt = app.screen.query_one(Input)
            prompt.value = "fresh"
            await pilot.press("enter")
            await pilot.pause(0.2)

            self.assertIn("fresh", self.root.children)
            names = [entry.name for entry in app.workspace.pane("pane-2").entries]
            self.assertIn("fresh", names)

    async def test_delete_asks_for_confirmation(self) -> None:
        app = self._make_app()
        async with app.run_test() as pilot:
            await self._started(app, pilot)
            await pilot.press("down")
            await pilot.press("delete")
            await pilot.pause(0.1)
            self.assertIsInstance(app.screen, ConfirmModal)
            app.screen.query_one("#cancel", Button).press()
            await pilot.pause(0.1)
            self.assertIn("a.txt", self.root.children)

            await pilot.press("delete")
            await pilot.pause(0.1)
            app.screen.query_one("#confirm", Button).press()
            await pilot.pause(0.2)
            self.assertNotIn("a.txt", self.root.children)

    async def test_toggle_hidden_persists_setting(self) -> None:
        app = self._make_app()
        async with app.run_test() as pilot:
            await self._started(app, pilot)
            await pilot.press("full_stop")
            await pilot.pause(0.05)
        self.assertTrue(self.store.load().view.show_hidden)

    async def test_reverse_sort_persists_and_reorders(self) -> None:
        app = self._make_app()
        async with app.run_test() as pilot:
            await self._started(app, pilot)
            await pilot.press("S")
            await pilot.pause(0.1)
            names = [entry.name for entry in app.workspace.pane("pane-1").entries]
            self.assertEqual(names, ["docs", "b.txt", "a.txt"])
        self.assertEqual(self.store.load().view.sort_direction, "desc")


if __name__ == "__main__":
    unittest.main()

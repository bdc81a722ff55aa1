"""panex Textual application shell."""

from __future__ import annotations

from pathlib import Path
from typing import Awaitable

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal, Vertical
from textual.css.query import NoMatches
from textual.widget import Widget
from textual.widgets import Footer, Header, Input

from panex.config.models import BackendKind, SplitDirection
from panex.config.store import SettingsStore
from panex.context import AppContext
from panex.fs.backend import VirtualFilesystem, select_backend
from panex.fs.entries import FileEntry
from panex.fs.errors import Cancelled, FsError, PartialFailure
from panex.fs.handles import LocalDirectoryHandle
from panex.layout.tree import Leaf, LayoutNode
from panex.messages import PaneFocused, RowClicked
from panex.runtime_logging import configure_runtime_logging
from panex.screens.modals import ConfirmModal, ConflictModal, RootPickerModal, TextPromptModal
from panex.widgets.pane_view import PaneView
from panex.workspace import ConflictChoice, Workspace


class PanexApp(App[None]):
    TITLE = "panex"
    SUB_TITLE = "multi-pane file browser"

    BINDINGS = [
        Binding("up", "cursor(-1)", "Up", show=False),
        Binding("down", "cursor(1)", "Down", show=False),
        Binding("shift+up", "cursor(-1, True)", show=False),
        Binding("shift+down", "cursor(1, True)", show=False),
        Binding("enter", "activate", "Open"),
        Binding("backspace", "go_up", "Up Dir"),
        Binding("tilde", "go_home", "Home", show=False),
        Binding("right", "expand", show=False),
        Binding("left", "collapse", show=False),
        Binding("tab", "next_pane", "Next Pane", priority=True),
        Binding("ctrl+a", "select_all", show=False),
        Binding("escape", "clear_selection", show=False),
        Binding("ctrl+c", "clipboard(False)", "Copy", priority=True),
        Binding("ctrl+x", "clipboard(True)", "Cut"),
        Binding("ctrl+v", "paste", "Paste"),
        Binding("f2", "rename", "Rename"),
        Binding("delete", "delete", "Delete"),
        Binding("n", "create('file')", "New File", show=False),
        Binding("N", "create('folder')", "New Folder", show=False),
        Binding("vertical_line", "split('vertical')", "Split Right"),
        Binding("minus", "split('horizontal')", "Split Down"),
        Binding("ctrl+w", "close_pane", "Close Pane"),
        Binding("slash", "search", "Search"),
        Binding("full_stop", "toggle_hidden", "Hidden"),
        Binding("s", "cycle_sort", "Sort"),
        Binding("S", "toggle_sort_direction", "Reverse", show=False),
        Binding("ctrl+t", "open_terminal", show=False),
        Binding("ctrl+q", "quit", "Quit"),
    ]

    CSS = """
    Screen {
        layout: vertical;
    }

    #layout {
        height: 1fr;
    }

    #search {
        dock: bottom;
    }

    .hidden {
        display: none;
    }
    """

    def __init__(
        self,
        *,
        start_path: str | None = None,
        backend: BackendKind | None = None,
        sandbox_root: Path | None = None,
        fs: VirtualFilesystem | None = None,
        settings_store: SettingsStore | None = None,
        log_level: str | None = None,
        log_file: str | Path | None = None,
    ) -> None:
        self.start_path = start_path
        self.logger = configure_runtime_logging(level=log_level, log_file=log_file)
        self.settings_store = settings_store or SettingsStore()
        self.settings = self.settings_store.load()
        if backend is not None:
            self.settings.backend.kind = backend
        if sandbox_root is not None:
            self.settings.backend.sandbox_root = str(sandbox_root)

        if fs is None:
            fs = select_backend(self.settings.backend, picker=self._pick_root, export_ttl_s=self.settings.files.open_cleanup_delay_s)
        self.context = AppContext(fs=fs, settings=self.settings, logger=self.logger)
        self.workspace = Workspace(self.context, on_change=self._on_workspace_change)
        self.logger.info("app.initialized", backend=fs.name, start_path=start_path)
        super().__init__()

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Container(id="layout")
        yield Input(placeholder="search", id="search", classes="hidden")
        yield Footer()

    async def on_mount(self) -> None:
        self.theme = self.settings.appearance.theme
        self.logger.info("app.mounted", theme=self.theme)
        self._run(self._start(), "start")

    async def _start(self) -> None:
        try:
            await self.workspace.start(self.start_path)
        finally:
            await self._rebuild_layout()

    async def action_quit(self) -> None:
        self.settings_store.save(self.settings)
        self.logger.info("app.exit")
        await self.context.close()
        self.exit()

    # -- workers and errors ---------------------------------------------------

    def _run(self, work: Awaitable[object], name: str) -> None:
        self.run_worker(self._guard(work, name), group="fs", exit_on_error=False)

    async def _guard(self, work: Awaitable[object], name: str) -> None:
        try:
            await work
        except Cancelled as exc:
            self.notify(exc.message, severity="warning")
            self.logger.info("app.action.cancelled", action=name)
        except PartialFailure as exc:
            detail = "\n".join(f"{path}: {error.message}" for path, error in exc.failures[:5])
            self.notify(f"{exc.message}\n{detail}", severity="error", timeout=8)
            self.logger.warning("app.action.partial", action=name, failed=exc.failed_paths)
        except FsError as exc:
            self.notify(exc.message, severity="error")
            self.logger.warning("app.action.failed", action=name, code=exc.code, error=exc.message)

    async def _pick_root(self) -> LocalDirectoryHandle | None:
        answer = await self.push_screen_wait(RootPickerModal(Path.cwd()))
        if not answer:
            return None
        root = Path(answer).expanduser()
        if not root.is_dir():
            raise Cancelled(f"Not a folder: {root}")
        return LocalDirectoryHandle(root)

    async def _resolve_conflict(self, entry: FileEntry, dest_dir: str) -> ConflictChoice:
        return await self.push_screen_wait(ConflictModal(entry.name, dest_dir))

    # -- rendering ------------------------------------------------------------

    def _on_workspace_change(self, pane_id: str | None) -> None:
        if pane_id is None:
            for view in self.query(PaneView):
                view.sync()
            return
        try:
            self.query_one(f"#view-{pane_id}", PaneView).sync()
        except NoMatches:
            return

    async def _rebuild_layout(self) -> None:
        container = self.query_one("#layout", Container)
        await container.remove_children()
        if self.workspace.layout is not None:
            await container.mount(self._build_node(self.workspace.layout))
        self._focus_active()

    def _build_node(self, node: LayoutNode) -> Widget:
        if isinstance(node, Leaf):
            return PaneView(self.workspace, node.pane_id)
        first = self._build_node(node.first)
        second = self._build_node(node.second)
        share = round(node.ratio * 100)
        if node.direction == "vertical":
            first.styles.width = f"{share}fr"
            second.styles.width = f"{100 - share}fr"
            return Horizontal(first, second)
        first.styles.height = f"{share}fr"
        second.styles.height = f"{100 - share}fr"
        return Vertical(first, second)

    def _focus_active(self) -> None:
        pane_id = self.workspace.active_pane_id
        if pane_id is None:
            return
        try:
            self.query_one(f"#view-{pane_id}", PaneView).focus()
        except NoMatches:
            return
        self._on_workspace_change(None)

    @property
    def pane_id(self) -> str:
        assert self.workspace.active_pane_id is not None
        return self.workspace.active_pane_id

    # -- messages -------------------------------------------------------------

    def on_pane_focused(self, message: PaneFocused) -> None:
        self.workspace.focus_pane(message.pane_id)

    def on_row_clicked(self, message: RowClicked) -> None:
        rows = self.workspace.pane(message.pane_id).display_list()
        if not 0 <= message.index < len(rows):
            return
        entry = rows[message.index].entry
        self.workspace.click(message.pane_id, entry, message.modifiers)
        if message.double:
            self._run(self.workspace.open_entry(message.pane_id, entry), "open")

    def on_input_changed(self, event: Input.Changed) -> None:
        if event.input.id == "search":
            self.workspace.set_search(self.pane_id, event.value)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id == "search":
            event.input.add_class("hidden")
            self._focus_active()

    # -- actions --------------------------------------------------------------

    def action_cursor(self, delta: int, extend: bool = False) -> None:
        self.workspace.move_cursor(self.pane_id, delta, extend)

    def action_activate(self) -> None:
        entry = self.workspace.active_pane.focused_entry()
        if entry is not None:
            self._run(self.workspace.open_entry(self.pane_id, entry), "open")

    def action_go_up(self) -> None:
        self._run(self.workspace.navigate_up(self.pane_id), "navigate_up")

    def action_go_home(self) -> None:
        self._run(self.workspace.navigate_home(self.pane_id), "navigate_home")

    def action_expand(self) -> None:
        entry = self.workspace.active_pane.focused_entry()
        if entry is not None and entry.is_dir and entry.path not in self.workspace.active_pane.expanded_paths:
            self._run(self.workspace.toggle_expand(self.pane_id, entry), "expand")

    def action_collapse(self) -> None:
        entry = self.workspace.active_pane.focused_entry()
        if entry is not None and entry.path in self.workspace.active_pane.expanded_paths:
            self._run(self.workspace.toggle_expand(self.pane_id, entry), "collapse")

    def action_next_pane(self) -> None:
        self.workspace.focus_next()
        self._focus_active()

    def action_select_all(self) -> None:
        self.workspace.select_all(self.pane_id)

    def action_clear_selection(self) -> None:
        self.workspace.clear_selection(self.pane_id)

    def action_clipboard(self, cut: bool) -> None:
        count = self.workspace.copy_to_clipboard(self.pane_id, cut=cut)
        if count:
            self.notify(f"{'Cut' if cut else 'Copied'} {count} item(s)")

    def action_paste(self) -> None:
        self._run(self._paste(), "paste")

    async def _paste(self) -> None:
        report = await self.workspace.paste(self.pane_id, self._resolve_conflict)
        if report.cancelled:
            self.notify("Paste cancelled", severity="warning")
        elif report.succeeded:
            self.notify(f"Pasted {len(report.succeeded)} item(s)")

    def action_rename(self) -> None:
        self._run(self._rename(), "rename")

    async def _rename(self) -> None:
        entry = self.workspace.active_pane.focused_entry()
        if entry is None:
            return
        pane_id = self.pane_id
        new_name = await self.push_screen_wait(TextPromptModal("Rename", value=entry.name))
        if new_name and new_name != entry.name:
            await self.workspace.rename(pane_id, entry, new_name)

    def action_delete(self) -> None:
        self._run(self._delete(), "delete")

    async def _delete(self) -> None:
        pane_id = self.pane_id
        targets = self.workspace.targets(pane_id)
        if not targets:
            return
        permanent = self.settings.files.delete_permanently
        verb = "Delete permanently" if permanent else "Move to trash"
        listing = "\n".join(entry.name for entry in targets[:10])
        if await self.push_screen_wait(ConfirmModal(f"{verb}: {len(targets)} item(s)?", listing)):
            await self.workspace.delete(pane_id, targets, permanent)

    def action_create(self, kind: str) -> None:
        self._run(self._create(kind), f"create_{kind}")

    async def _create(self, kind: str) -> None:
        pane_id = self.pane_id
        name = await self.push_screen_wait(TextPromptModal(f"New {kind}", placeholder="name"))
        if not name:
            return
        if kind == "folder":
            await self.workspace.create_folder(pane_id, name)
        else:
            await self.workspace.create_file(pane_id, name)

    def action_split(self, direction: SplitDirection) -> None:
        self._run(self._split(direction), "split")

    async def _split(self, direction: SplitDirection) -> None:
        await self.workspace.split_pane(self.pane_id, direction)
        await self._rebuild_layout()

    async def action_close_pane(self) -> None:
        if not self.workspace.close_pane(self.pane_id):
            self.notify(f"At least {self.workspace.min_panes} panes stay open", severity="warning")
            return
        await self._rebuild_layout()

    def action_search(self) -> None:
        search = self.query_one("#search", Input)
        search.value = self.workspace.active_pane.search_query
        search.remove_class("hidden")
        search.focus()

    def action_toggle_hidden(self) -> None:
        self.settings.view.show_hidden = not self.settings.view.show_hidden
        self.settings_store.save(self.settings)
        self.workspace.set_view(self.context.view_options())

    def action_cycle_sort(self) -> None:
        self.settings.view.sort_field = self.context.view_options().next_sort_field()
        self.settings_store.save(self.settings)
        self.workspace.set_view(self.context.view_options())
        self.notify(f"Sorted by {self.settings.view.sort_field}")

    def action_toggle_sort_direction(self) -> None:
        view = self.settings.view
        view.sort_direction = "asc" if view.sort_direction == "desc" else "desc"
        self.settings_store.save(self.settings)
        self.workspace.set_view(self.context.view_options())
        self.notify("Descending" if view.sort_direction == "desc" else "Ascending")

    def action_open_terminal(self) -> None:
        self._run(self.workspace.open_in_terminal(self.pane_id), "open_terminal")

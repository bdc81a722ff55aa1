"""One browsing pane: a header line plus a scrolled window over the display list."""

from __future__ import annotations

from datetime import datetime

from rich.filesize import decimal
from rich.text import Text
from textual import events
from textual.widget import Widget

from panex.messages import PaneFocused, RowClicked
from panex.pane.display import DisplayRow
from panex.pane.state import Modifiers, PaneState
from panex.workspace import Workspace


def format_row(row: DisplayRow, state: PaneState, size: int | None, width: int) -> Text:
    entry = row.entry
    if entry.is_dir:
        marker = "▾ " if entry.path in state.expanded_paths else "▸ "
    else:
        marker = "  "
    name = "  " * row.depth + marker + entry.name + ("/" if entry.is_dir else "")
    size_text = "…" if size is None else decimal(size)
    modified = datetime.fromtimestamp(entry.modified / 1000).strftime("%Y-%m-%d %H:%M") if entry.modified else ""
    meta = f"{size_text:>10}  {modified:16}"
    room = max(width - len(meta) - 1, 8)
    if len(name) > room:
        name = name[: room - 1] + "…"

    style = "bold" if entry.is_dir else ""
    line = Text(f"{name:<{room}} {meta}", style=style, no_wrap=True, overflow="ellipsis")
    if entry.path in state.selected_paths:
        line.stylize("reverse")
    return line


class PaneView(Widget, can_focus=True):
    DEFAULT_CSS = """
    PaneView {
        height: 1fr;
        width: 1fr;
        border: round $surface-lighten-2;
        padding: 0 1;
    }

    PaneView.-active {
        border: round $accent;
    }
    """

    def __init__(self, workspace: Workspace, pane_id: str) -> None:
        self.workspace = workspace
        self.pane_id = pane_id
        self._offset = 0
        super().__init__(id=f"view-{pane_id}")

    @property
    def state(self) -> PaneState | None:
        return self.workspace.panes.get(self.pane_id)

    def _visible_rows(self) -> int:
        return max(self.content_size.height - 1, 1)

    def _scroll_to_focus(self, total: int, focus: int) -> None:
        height = self._visible_rows()
        if focus < self._offset:
            self._offset = focus
        elif focus >= self._offset + height:
            self._offset = focus - height + 1
        self._offset = max(0, min(self._offset, max(total - height, 0)))

    def render(self) -> Text:
        state = self.state
        if state is None:
            return Text("")
        width = max(self.content_size.width, 20)

        header = Text(state.current_path or "…", style="bold underline", no_wrap=True, overflow="ellipsis")
        if state.search_query:
            header.append(f"  /{state.search_query}", style="italic")

        rows = state.display_list()
        self._scroll_to_focus(len(rows), max(state.focus_index, 0))
        lines = [header]
        for index in range(self._offset, min(len(rows), self._offset + self._visible_rows())):
            row = rows[index]
            line = format_row(row, state, self.workspace.size_of(row.entry), width)
            if index == state.focus_index and self.workspace.active_pane_id == self.pane_id:
                line.stylize("underline")
            lines.append(line)
        if not rows:
            lines.append(Text("(empty)", style="dim italic"))
        return Text("\n").join(lines)

    def sync(self) -> None:
        self.set_class(self.workspace.active_pane_id == self.pane_id, "-active")
        self.refresh()

    def on_focus(self, _event: events.Focus) -> None:
        self.post_message(PaneFocused(pane_id=self.pane_id))

    def on_click(self, event: events.Click) -> None:
        offset = event.get_content_offset(self)
        if offset is None or offset.y < 1:
            return
        index = self._offset + offset.y - 1
        modifiers = Modifiers(shift=event.shift, toggle=event.ctrl or event.meta)
        self.post_message(RowClicked(pane_id=self.pane_id, index=index, modifiers=modifiers, double=event.chain >= 2))

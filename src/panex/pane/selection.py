"""Selection and cursor transitions; every index refers to the display list."""

from __future__ import annotations

from dataclasses import replace

from panex.fs.entries import FileEntry
from panex.pane.display import index_of
from panex.pane.state import Modifiers, PaneState


def select(state: PaneState, entry: FileEntry, modifiers: Modifiers = Modifiers()) -> PaneState:
    rows = state.display_list()
    index = index_of(rows, entry.path)
    if index < 0:
        return state

    if modifiers.shift and state.last_clicked_path is not None:
        anchor = index_of(rows, state.last_clicked_path)
        if anchor >= 0:
            low, high = sorted((anchor, index))
            selected = frozenset(row.entry.path for row in rows[low : high + 1])
            return replace(state, selected_paths=selected, focus_index=index)

    if modifiers.toggle:
        selected = state.selected_paths ^ {entry.path}
        return replace(state, selected_paths=selected, last_clicked_path=entry.path, focus_index=index)

    return replace(
        state,
        selected_paths=frozenset({entry.path}),
        last_clicked_path=entry.path,
        focus_index=index,
    )


def move_cursor(state: PaneState, delta: int, extend: bool = False) -> PaneState:
    rows = state.display_list()
    if not rows:
        return replace(state, focus_index=-1)
    start = state.focus_index if state.focus_index >= 0 else (-1 if delta > 0 else len(rows))
    index = min(max(start + delta, 0), len(rows) - 1)
    path = rows[index].entry.path
    if extend:
        anchor = state.last_clicked_path or path
        return replace(state, selected_paths=state.selected_paths | {path}, last_clicked_path=anchor, focus_index=index)
    return replace(state, selected_paths=frozenset({path}), last_clicked_path=path, focus_index=index)


def select_all(state: PaneState) -> PaneState:
    return replace(state, selected_paths=frozenset(row.entry.path for row in state.display_list()))


def clear_selection(state: PaneState) -> PaneState:
    return replace(state, selected_paths=frozenset(), last_clicked_path=None)


def focus_path(state: PaneState, path: str) -> PaneState:
    index = index_of(state.display_list(), path)
    if index < 0:
        return state
    return replace(state, focus_index=index)

"""Per-pane browsing state and its transitions.

Transitions never mutate: each returns a new ``PaneState`` and leaves the old
one untouched when the backend call behind it fails.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from typing import Mapping

from panex.fs.backend import VirtualFilesystem
from panex.fs.entries import DirectorySnapshot, FileEntry, is_within
from panex.fs.errors import FsError
from panex.pane.display import DisplayRow, build_display_list, index_of
from panex.pane.pipeline import ViewOptions, apply_pipeline
from panex.runtime_logging import get_runtime_logger


@dataclass(frozen=True, slots=True)
class Modifiers:
    shift: bool = False
    toggle: bool = False  # meta on macOS, ctrl elsewhere


@dataclass(frozen=True, slots=True)
class PaneState:
    id: str
    current_path: str = ""
    listing: DirectorySnapshot | None = None
    entries: tuple[FileEntry, ...] = ()
    selected_paths: frozenset[str] = frozenset()
    last_clicked_path: str | None = None
    expanded_paths: frozenset[str] = frozenset()
    children_cache: Mapping[str, tuple[FileEntry, ...]] = field(default_factory=dict)
    raw_children: Mapping[str, DirectorySnapshot] = field(default_factory=dict)
    focus_index: int = -1
    search_query: str = ""
    view: ViewOptions = field(default_factory=ViewOptions)

    def display_list(self) -> list[DisplayRow]:
        return build_display_list(self.entries, self.expanded_paths, self.children_cache)

    def focused_entry(self) -> FileEntry | None:
        rows = self.display_list()
        if 0 <= self.focus_index < len(rows):
            return rows[self.focus_index].entry
        return None

    def selected_entries(self) -> list[FileEntry]:
        return [row.entry for row in self.display_list() if row.entry.path in self.selected_paths]

    def parent_dir_of(self, path: str) -> str:
        """Directory listing ``path`` in this pane: an expanded folder or the current one."""
        for directory, children in self.children_cache.items():
            if any(child.path == path for child in children):
                return directory
        return self.current_path


def create_pane(pane_id: str, view: ViewOptions | None = None) -> PaneState:
    return PaneState(id=pane_id, view=view or ViewOptions())


def take_snapshot(path: str, entries: list[FileEntry]) -> DirectorySnapshot:
    return DirectorySnapshot(path=path, entries=tuple(entries))


async def load_directory(state: PaneState, fs: VirtualFilesystem, path: str | None = None) -> PaneState:
    target = state.current_path if path is None else path
    listing = take_snapshot(target, await fs.read_dir(target))
    entries = apply_pipeline(listing.entries, state.view, state.search_query)
    get_runtime_logger().debug("pane.loaded", pane_id=state.id, path=target, count=len(entries))
    return replace(
        state,
        current_path=target,
        listing=listing,
        entries=entries,
        selected_paths=frozenset(),
        last_clicked_path=None,
        expanded_paths=frozenset(),
        children_cache={},
        raw_children={},
        focus_index=0 if entries else -1,
    )


async def navigate_into(state: PaneState, fs: VirtualFilesystem, entry: FileEntry) -> PaneState:
    if not entry.is_dir:
        return state
    return await load_directory(replace(state, search_query=""), fs, entry.path)


async def navigate_up(state: PaneState, fs: VirtualFilesystem) -> PaneState:
    parent = await fs.get_parent_dir(state.current_path)
    return await load_directory(replace(state, search_query=""), fs, parent)


async def navigate_home(state: PaneState, fs: VirtualFilesystem) -> PaneState:
    home = await fs.get_home_dir()
    return await load_directory(replace(state, search_query=""), fs, home)


async def navigate_to(state: PaneState, fs: VirtualFilesystem, path: str) -> PaneState:
    return await load_directory(replace(state, search_query=""), fs, path)


async def reload(state: PaneState, fs: VirtualFilesystem) -> PaneState:
    """Re-list the current folder and every expanded one, keeping what survives."""
    expanded = sorted(state.expanded_paths)
    listing_result, *child_results = await asyncio.gather(
        fs.read_dir(state.current_path),
        *(fs.read_dir(path) for path in expanded),
        return_exceptions=True,
    )
    if isinstance(listing_result, BaseException):
        raise listing_result

    raw_children: dict[str, DirectorySnapshot] = {}
    for path, result in zip(expanded, child_results):
        if isinstance(result, FsError):
            get_runtime_logger().debug("pane.reload.dropped", pane_id=state.id, path=path, error=str(result))
            continue
        if isinstance(result, BaseException):
            raise result
        raw_children[path] = take_snapshot(path, result)

    listing = take_snapshot(state.current_path, listing_result)
    return _project(state, listing, raw_children)


def apply_view(state: PaneState) -> PaneState:
    if state.listing is None:
        return state
    return _project(state, state.listing, dict(state.raw_children))


def set_search(state: PaneState, query: str) -> PaneState:
    return apply_view(replace(state, search_query=query))


def set_view(state: PaneState, view: ViewOptions) -> PaneState:
    return apply_view(replace(state, view=view))


async def toggle_expand(state: PaneState, fs: VirtualFilesystem, entry: FileEntry) -> PaneState:
    if not entry.is_dir:
        return state
    focused = state.focused_entry()

    if entry.path in state.expanded_paths:
        # Collapse the folder and every expanded folder below it.
        expanded = frozenset(path for path in state.expanded_paths if not is_within(path, entry.path))
        children = {path: rows for path, rows in state.children_cache.items() if path in expanded}
        raw = {path: listing for path, listing in state.raw_children.items() if path in expanded}
        collapsed = replace(state, expanded_paths=expanded, children_cache=children, raw_children=raw)
        return _settle(collapsed, focused.path if focused else None)

    listing = take_snapshot(entry.path, await fs.read_dir(entry.path))
    expanded_state = replace(
        state,
        expanded_paths=state.expanded_paths | {entry.path},
        children_cache={**state.children_cache, entry.path: apply_pipeline(listing.entries, state.view, state.search_query)},
        raw_children={**state.raw_children, entry.path: listing},
    )
    return _settle(expanded_state, focused.path if focused else None)


def _project(state: PaneState, listing: DirectorySnapshot, raw_children: dict[str, DirectorySnapshot]) -> PaneState:
    focused = state.focused_entry()
    entries = apply_pipeline(listing.entries, state.view, state.search_query)

    # Keep only expansions still reachable through what is visible now.
    children_cache: dict[str, tuple[FileEntry, ...]] = {}
    pending = list(entries)
    while pending:
        entry = pending.pop()
        if not entry.is_dir or entry.path not in state.expanded_paths or entry.path not in raw_children:
            continue
        rows = apply_pipeline(raw_children[entry.path].entries, state.view, state.search_query)
        children_cache[entry.path] = rows
        pending.extend(rows)

    projected = replace(
        state,
        listing=listing,
        entries=entries,
        expanded_paths=frozenset(children_cache),
        children_cache=children_cache,
        raw_children={path: raw_children[path] for path in children_cache},
    )
    return _settle(projected, focused.path if focused else None)


def _settle(state: PaneState, focus_path: str | None) -> PaneState:
    """Prune the selection to visible rows and keep focus on the same row when possible."""
    rows = state.display_list()
    visible = {row.entry.path for row in rows}
    selected = frozenset(path for path in state.selected_paths if path in visible)
    anchor = state.last_clicked_path if state.last_clicked_path in visible else None

    focus = index_of(rows, focus_path) if focus_path is not None else -1
    if focus < 0:
        focus = min(max(state.focus_index, 0), len(rows) - 1) if rows else -1
    return replace(state, selected_paths=selected, last_clicked_path=anchor, focus_index=focus)

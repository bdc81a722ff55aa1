"""Owns every pane and the layout tree, and routes user intents to transitions.

Mutations never patch pane state in place: after each backend call the
affected directories are re-listed in every pane that shows them.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Literal

from panex.config.models import SplitDirection
from panex.context import AppContext, Clipboard
from panex.fs.backend import VirtualFilesystem
from panex.fs.entries import FileEntry, is_within, join_path, split_path
from panex.fs.errors import FsError, PartialFailure
from panex.layout.tree import (
    Leaf,
    LayoutNode,
    collect_leaf_ids,
    count_leaves,
    find_split,
    remove,
    set_ratio,
    split,
)
from panex.pane import selection, state as pane_state
from panex.pane.naming import generate_unique_name
from panex.pane.pipeline import ViewOptions
from panex.pane.state import Modifiers, PaneState
from panex.runtime_logging import get_runtime_logger

ConflictChoice = Literal["replace", "keep-both", "cancel"]
ConflictResolver = Callable[[FileEntry, str], Awaitable[ConflictChoice]]
ChangeCallback = Callable[[str | None], None]


@dataclass(frozen=True, slots=True)
class DragPayload:
    entries: tuple[FileEntry, ...]
    source_pane_id: str


@dataclass(slots=True)
class TransferReport:
    succeeded: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    cancelled: bool = False


def _raise_failures(action: str, succeeded: list[str], failures: list[tuple[str, FsError]]) -> None:
    if not failures:
        return
    if len(failures) == 1 and not succeeded:
        raise failures[0][1]
    raise PartialFailure(f"Could not {action} {len(failures)} item(s)", succeeded=succeeded, failures=failures)


class Workspace:
    def __init__(self, context: AppContext, *, on_change: ChangeCallback | None = None) -> None:
        self.context = context
        self.on_change = on_change
        self.panes: dict[str, PaneState] = {}
        self.layout: LayoutNode | None = None
        self.active_pane_id: str | None = None
        self._next_index = 1
        self.logger = get_runtime_logger().bind(component="workspace")
        context.scheduler.on_resolved = self._on_size_resolved

    @property
    def fs(self) -> VirtualFilesystem:
        return self.context.fs

    @property
    def min_panes(self) -> int:
        return self.context.settings.layout.min_panes

    def _new_pane_id(self) -> str:
        pane_id = f"pane-{self._next_index}"
        self._next_index += 1
        return pane_id

    # -- state plumbing -------------------------------------------------------

    def pane(self, pane_id: str | None = None) -> PaneState:
        key = pane_id or self.active_pane_id
        if key is None or key not in self.panes:
            raise KeyError(f"Unknown pane: {key}")
        return self.panes[key]

    @property
    def active_pane(self) -> PaneState:
        return self.pane()

    def pane_ids(self) -> list[str]:
        return collect_leaf_ids(self.layout)

    def _notify(self, pane_id: str | None) -> None:
        if self.on_change is not None:
            self.on_change(pane_id)

    def _store(self, state: PaneState) -> PaneState:
        if state.id not in self.panes:
            return state
        self.panes[state.id] = state
        directories = [row.entry for row in state.display_list() if row.entry.is_dir]
        self.context.scheduler.enqueue_many(state.id, directories)
        self._notify(state.id)
        return state

    def _on_size_resolved(self, pane_id: str, path: str, size: int) -> None:
        self.logger.debug("workspace.size.resolved", pane_id=pane_id, path=path, size=size)
        self._notify(pane_id)

    def size_of(self, entry: FileEntry) -> int | None:
        if entry.is_dir:
            return self.context.size_cache.get(entry.path)
        return entry.size

    # -- layout ---------------------------------------------------------------

    async def start(self, path: str | None = None) -> None:
        direction = self.context.settings.layout.initial_direction
        first = self._new_pane_id()
        self.layout = Leaf(first)
        self.panes[first] = pane_state.create_pane(first, self.context.view_options())
        while count_leaves(self.layout) < self.min_panes:
            leaf_ids = collect_leaf_ids(self.layout)
            new_id = self._new_pane_id()
            self.layout = split(self.layout, leaf_ids[-1], new_id, direction)
            self.panes[new_id] = pane_state.create_pane(new_id, self.context.view_options())
        self.active_pane_id = first
        self._notify(None)

        start_path = path or await self.fs.get_home_dir()
        self.logger.info("workspace.start", path=start_path, panes=len(self.panes))

        loaded = await asyncio.gather(
            *(pane_state.load_directory(state, self.fs, start_path) for state in self.panes.values())
        )
        for state in loaded:
            self._store(state)
        self._notify(None)

    async def split_pane(self, pane_id: str | None = None, direction: SplitDirection = "vertical") -> str:
        source = self.pane(pane_id)
        assert self.layout is not None
        new_id = self._new_pane_id()
        fresh = pane_state.create_pane(new_id, source.view)
        loaded = await pane_state.load_directory(fresh, self.fs, source.current_path)
        self.layout = split(self.layout, source.id, new_id, direction)
        self.panes[new_id] = loaded
        self.active_pane_id = new_id
        self._store(loaded)
        self.logger.info("workspace.split", source=source.id, pane_id=new_id, direction=direction)
        self._notify(None)
        return new_id

    def close_pane(self, pane_id: str | None = None) -> bool:
        target = self.pane(pane_id).id
        if count_leaves(self.layout) <= self.min_panes:
            self.logger.debug("workspace.close.refused", pane_id=target, min_panes=self.min_panes)
            return False
        order = self.pane_ids()
        self.layout = remove(self.layout, target)
        del self.panes[target]
        if self.active_pane_id == target:
            position = order.index(target)
            remaining = self.pane_ids()
            self.active_pane_id = remaining[min(position, len(remaining) - 1)]
        self.logger.info("workspace.close", pane_id=target)
        self._notify(None)
        return True

    def focus_pane(self, pane_id: str) -> None:
        if pane_id in self.panes and pane_id != self.active_pane_id:
            self.active_pane_id = pane_id
            self._notify(None)

    def focus_next(self, step: int = 1) -> str:
        order = self.pane_ids()
        if not order:
            raise KeyError("No panes")
        current = order.index(self.active_pane_id) if self.active_pane_id in order else -1
        self.focus_pane(order[(current + step) % len(order)])
        assert self.active_pane_id is not None
        return self.active_pane_id

    def resize(self, pane_id: str, ratio: float) -> bool:
        owner = find_split(self.layout, pane_id)
        if owner is None:
            return False
        set_ratio(owner, ratio)
        self._notify(None)
        return True

    # -- navigation -----------------------------------------------------------

    async def navigate_into(self, pane_id: str, entry: FileEntry) -> PaneState:
        return self._store(await pane_state.navigate_into(self.pane(pane_id), self.fs, entry))

    async def navigate_up(self, pane_id: str) -> PaneState:
        return self._store(await pane_state.navigate_up(self.pane(pane_id), self.fs))

    async def navigate_home(self, pane_id: str) -> PaneState:
        return self._store(await pane_state.navigate_home(self.pane(pane_id), self.fs))

    async def navigate_to(self, pane_id: str, path: str) -> PaneState:
        return self._store(await pane_state.navigate_to(self.pane(pane_id), self.fs, path))

    async def reload(self, pane_id: str) -> PaneState:
        self.context.scheduler.invalidate(self.pane(pane_id).current_path)
        return self._store(await pane_state.reload(self.pane(pane_id), self.fs))

    async def toggle_expand(self, pane_id: str, entry: FileEntry) -> PaneState:
        return self._store(await pane_state.toggle_expand(self.pane(pane_id), self.fs, entry))

    def set_search(self, pane_id: str, query: str) -> PaneState:
        return self._store(pane_state.set_search(self.pane(pane_id), query))

    def set_view(self, view: ViewOptions) -> None:
        for pane_id in self.pane_ids():
            self._store(pane_state.set_view(self.panes[pane_id], view))

    # -- selection ------------------------------------------------------------

    def click(self, pane_id: str, entry: FileEntry, modifiers: Modifiers = Modifiers()) -> PaneState:
        for other_id, other in self.panes.items():
            if other_id != pane_id and other.selected_paths:
                self.panes[other_id] = selection.clear_selection(other)
                self._notify(other_id)
        self.focus_pane(pane_id)
        return self._store(selection.select(self.pane(pane_id), entry, modifiers))

    def move_cursor(self, pane_id: str, delta: int, extend: bool = False) -> PaneState:
        return self._store(selection.move_cursor(self.pane(pane_id), delta, extend))

    def select_all(self, pane_id: str) -> PaneState:
        return self._store(selection.select_all(self.pane(pane_id)))

    def clear_selection(self, pane_id: str) -> PaneState:
        return self._store(selection.clear_selection(self.pane(pane_id)))

    def targets(self, pane_id: str) -> list[FileEntry]:
        """Selected entries, or the focused row when nothing is selected."""
        current = self.pane(pane_id)
        chosen = current.selected_entries()
        if chosen:
            return chosen
        focused = current.focused_entry()
        return [focused] if focused is not None else []

    # -- mutations ------------------------------------------------------------

    async def open_entry(self, pane_id: str, entry: FileEntry) -> None:
        if entry.is_dir:
            await self.navigate_into(pane_id, entry)
            return
        self.logger.info("workspace.open", pane_id=pane_id, path=entry.path)
        await self.fs.open_entry(entry.path)

    async def open_in_terminal(self, pane_id: str) -> None:
        await self.fs.open_in_terminal(self.pane(pane_id).current_path)

    async def rename(self, pane_id: str, entry: FileEntry, new_name: str) -> str:
        parent = self.pane(pane_id).parent_dir_of(entry.path)
        await self.fs.rename_entry(entry.path, new_name)
        self.context.scheduler.invalidate(entry.path)
        self.logger.info("workspace.rename", path=entry.path, new_name=new_name)
        await self.refresh_paths(parent)
        return join_path(parent, new_name)

    async def delete(self, pane_id: str, entries: list[FileEntry], permanent: bool | None = None) -> list[str]:
        if permanent is None:
            permanent = self.context.settings.files.delete_permanently
        current = self.pane(pane_id)
        deleted: list[str] = []
        failures: list[tuple[str, FsError]] = []
        parents: set[str] = set()
        for entry in entries:
            parents.add(current.parent_dir_of(entry.path))
            try:
                await self.fs.delete_entry(entry.path, permanent)
            except FsError as exc:
                self.logger.warning("workspace.delete.failed", path=entry.path, error=str(exc))
                failures.append((entry.path, exc))
                continue
            self.context.scheduler.invalidate(entry.path)
            deleted.append(entry.path)
        await self.refresh_paths(*parents)
        _raise_failures("delete", deleted, failures)
        return deleted

    async def create_file(self, pane_id: str, name: str, dir_path: str | None = None) -> str:
        directory = dir_path or self.pane(pane_id).current_path
        await self.fs.create_file(directory, name)
        await self.refresh_paths(directory)
        return join_path(directory, name)

    async def create_folder(self, pane_id: str, name: str, dir_path: str | None = None) -> str:
        directory = dir_path or self.pane(pane_id).current_path
        await self.fs.create_folder(directory, name)
        await self.refresh_paths(directory)
        return join_path(directory, name)

    # -- clipboard and drag/drop ---------------------------------------------

    def copy_to_clipboard(self, pane_id: str, *, cut: bool = False) -> int:
        chosen = self.targets(pane_id)
        if not chosen:
            return 0
        self.context.clipboard = Clipboard(entries=tuple(chosen), mode="cut" if cut else "copy", source_pane_id=pane_id)
        self.logger.debug("workspace.clipboard", mode="cut" if cut else "copy", count=len(chosen))
        return len(chosen)

    async def paste(self, pane_id: str, resolver: ConflictResolver) -> TransferReport:
        clipboard = self.context.clipboard
        if clipboard is None or not clipboard.entries:
            return TransferReport()
        move = clipboard.mode == "cut"
        report = await self.transfer(list(clipboard.entries), self.pane(pane_id).current_path, move=move, resolver=resolver)
        if move and not report.cancelled:
            self.context.clipboard = None
        return report

    async def drop(
        self,
        target_pane_id: str,
        payload: DragPayload,
        *,
        copy: bool,
        resolver: ConflictResolver,
        dest_dir: str | None = None,
    ) -> TransferReport:
        if payload.source_pane_id == target_pane_id:
            return TransferReport()
        destination = dest_dir or self.pane(target_pane_id).current_path
        return await self.transfer(list(payload.entries), destination, move=not copy, resolver=resolver)

    async def transfer(
        self,
        entries: list[FileEntry],
        dest_dir: str,
        *,
        move: bool,
        resolver: ConflictResolver,
    ) -> TransferReport:
        action = "move" if move else "copy"
        names = {entry.name for entry in await self.fs.read_dir(dest_dir)}
        report = TransferReport()
        failures: list[tuple[str, FsError]] = []
        touched: set[str] = {dest_dir}

        for entry in entries:
            source_dir, _ = split_path(entry.path)
            new_name: str | None = None
            if move and source_dir == dest_dir:
                report.skipped.append(entry.path)
                continue
            if entry.name in names:
                choice = await resolver(entry, dest_dir)
                self.logger.debug("workspace.transfer.conflict", path=entry.path, choice=choice)
                if choice == "cancel":
                    report.cancelled = True
                    break
                if choice == "keep-both":
                    new_name = generate_unique_name(entry.name, names)
                else:
                    existing = join_path(dest_dir, entry.name)
                    if existing == entry.path:
                        report.skipped.append(entry.path)
                        continue
                    if is_within(entry.path, existing):
                        error = FsError("Cannot replace a folder that contains the source", path=existing)
                        failures.append((entry.path, error))
                        continue
                    try:
                        await self.fs.delete_entry(existing, self.context.settings.files.delete_permanently)
                    except FsError as exc:
                        failures.append((entry.path, exc))
                        continue
                    self.context.scheduler.invalidate(existing)

            try:
                if move:
                    new_path = await self.fs.move_entry(entry.path, dest_dir, new_name)
                else:
                    new_path = await self.fs.copy_entry(entry.path, dest_dir, new_name)
            except FsError as exc:
                self.logger.warning("workspace.transfer.failed", action=action, path=entry.path, error=str(exc))
                failures.append((entry.path, exc))
                continue

            self.logger.info("workspace.transfer.item", action=action, source=entry.path, dest=new_path)
            names.add(new_name or entry.name)
            report.succeeded.append(new_path)
            if move:
                touched.add(source_dir)
                self.context.scheduler.invalidate(entry.path)

        self.context.scheduler.invalidate(dest_dir)
        await self.refresh_paths(*touched)
        _raise_failures(action, report.succeeded, failures)
        return report

    # -- refresh --------------------------------------------------------------

    async def refresh_paths(self, *dirs: str) -> None:
        """Re-list every pane showing one of ``dirs`` or something below them."""
        affected = [
            pane_id
            for pane_id, current in self.panes.items()
            if any(
                is_within(current.current_path, directory)
                or any(is_within(path, directory) for path in current.expanded_paths)
                for directory in dirs
            )
        ]
        if not affected:
            return
        results = await asyncio.gather(
            *(pane_state.reload(self.panes[pane_id], self.fs) for pane_id in affected),
            return_exceptions=True,
        )
        for pane_id, result in zip(affected, results):
            if isinstance(result, PaneState):
                self._store(result)
                continue
            if not isinstance(result, FsError):
                raise result
            # The folder this pane showed is gone.
            self.logger.warning("workspace.refresh.fallback", pane_id=pane_id, error=str(result))
            self._store(await pane_state.navigate_home(self.panes[pane_id], self.fs))

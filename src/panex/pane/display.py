"""Flatten a pane's entries and expanded subtrees into the rows it displays."""

from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Mapping, Sequence

from panex.fs.entries import FileEntry


@dataclass(frozen=True, slots=True)
class DisplayRow:
    entry: FileEntry
    depth: int

    @property
    def path(self) -> str:
        return self.entry.path


def build_display_list(
    entries: Sequence[FileEntry],
    expanded_paths: AbstractSet[str],
    children_cache: Mapping[str, Sequence[FileEntry]],
    depth: int = 0,
) -> list[DisplayRow]:
    rows: list[DisplayRow] = []
    for entry in entries:
        rows.append(DisplayRow(entry=entry, depth=depth))
        if entry.is_dir and entry.path in expanded_paths:
            children = children_cache.get(entry.path, ())
            rows.extend(build_display_list(children, expanded_paths, children_cache, depth + 1))
    return rows


def index_of(rows: Sequence[DisplayRow], path: str) -> int:
    for index, row in enumerate(rows):
        if row.entry.path == path:
            return index
    return -1

"""Filter, search and sort applied to every listing a pane shows."""

from __future__ import annotations

import locale
from dataclasses import dataclass
from typing import Iterable

from panex.config.models import SortDirection, SortField, ViewSettings
from panex.fs.entries import FileEntry
from panex.fs.filtering import EntryFilter

SORT_FIELDS: tuple[SortField, ...] = ("name", "size", "modified", "type")


@dataclass(frozen=True, slots=True)
class ViewOptions:
    sort_field: SortField = "name"
    sort_direction: SortDirection = "asc"
    show_hidden: bool = False
    ignore_patterns: tuple[str, ...] = ()
    dirs_first: bool = True

    @classmethod
    def from_settings(cls, view: ViewSettings) -> "ViewOptions":
        return cls(
            sort_field=view.sort_field,
            sort_direction=view.sort_direction,
            show_hidden=view.show_hidden,
            ignore_patterns=tuple(view.ignore_patterns),
        )

    def next_sort_field(self) -> SortField:
        index = SORT_FIELDS.index(self.sort_field)
        return SORT_FIELDS[(index + 1) % len(SORT_FIELDS)]


def name_key(name: str) -> str:
    return locale.strxfrm(name.casefold())


def _field_key(entry: FileEntry, field: SortField) -> object:
    if field == "size":
        return entry.size
    if field == "modified":
        return entry.modified
    if field == "type":
        return entry.extension.casefold()
    return name_key(entry.name)


def sort_entries(entries: Iterable[FileEntry], view: ViewOptions) -> list[FileEntry]:
    # Name order first, then a stable sort by field keeps name as the tiebreak.
    descending = view.sort_direction == "desc"
    ordered = sorted(entries, key=lambda entry: name_key(entry.name), reverse=descending and view.sort_field == "name")
    if view.sort_field != "name":
        ordered.sort(key=lambda entry: _field_key(entry, view.sort_field), reverse=descending)
    if view.dirs_first:
        ordered.sort(key=lambda entry: not entry.is_dir)
    return ordered


def apply_pipeline(entries: Iterable[FileEntry], view: ViewOptions, query: str = "") -> tuple[FileEntry, ...]:
    visible = EntryFilter(show_hidden=view.show_hidden, ignore_patterns=view.ignore_patterns).apply(entries)
    needle = query.casefold()
    if needle:
        visible = [entry for entry in visible if needle in entry.name.casefold()]
    return tuple(sort_entries(visible, view))

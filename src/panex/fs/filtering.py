"""Hidden-entry filtering: dotfiles plus optional gitwildmatch ignore patterns."""

from __future__ import annotations

from typing import Iterable

import pathspec

from panex.fs.entries import FileEntry


class EntryFilter:
    def __init__(self, *, show_hidden: bool = False, ignore_patterns: Iterable[str] = ()) -> None:
        self.show_hidden = show_hidden
        self.patterns = tuple(pattern for pattern in ignore_patterns if pattern.strip())
        self._spec = self._build_spec()

    def _build_spec(self) -> pathspec.PathSpec | None:
        patterns: list[str] = []
        for line in self.patterns:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            patterns.append(line)
        if not patterns:
            return None
        return pathspec.PathSpec.from_lines("gitwildmatch", patterns)

    def include(self, entry: FileEntry) -> bool:
        if entry.hidden and not self.show_hidden:
            return False
        if self._spec is None:
            return True
        # Match on the bare name so patterns apply at any depth of an expanded tree.
        rel_text = entry.name + "/" if entry.is_dir else entry.name
        return not self._spec.match_file(rel_text)

    def apply(self, entries: Iterable[FileEntry]) -> list[FileEntry]:
        return [entry for entry in entries if self.include(entry)]

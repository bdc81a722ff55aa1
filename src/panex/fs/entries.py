"""Immutable directory listing data and virtual path helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

SEPARATORS = ("/", "\\")


@dataclass(frozen=True, slots=True)
class FileEntry:
    name: str
    path: str
    is_dir: bool
    size: int = 0
    modified: int = 0  # milliseconds since the epoch

    @property
    def extension(self) -> str:
        if self.is_dir:
            return ""
        dot = self.name.rfind(".")
        return self.name[dot:] if dot > 0 else ""

    @property
    def hidden(self) -> bool:
        return self.name.startswith(".")

    def to_payload(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "is_dir": self.is_dir,
            "size": self.size,
            "modified": self.modified,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "FileEntry":
        return cls(
            name=str(payload["name"]),
            path=str(payload["path"]),
            is_dir=bool(payload.get("is_dir", False)),
            size=int(payload.get("size") or 0),
            modified=int(payload.get("modified") or 0),
        )


@dataclass(frozen=True, slots=True)
class DirectorySnapshot:
    """One ``read_dir`` result, as listed by the backend before any view filtering."""

    path: str
    entries: tuple[FileEntry, ...] = ()


def join_path(directory: str, name: str) -> str:
    if directory.endswith(SEPARATORS):
        return directory + name
    return f"{directory}/{name}"


def split_path(path: str) -> tuple[str, str]:
    """Split a virtual path into ``(parent, name)``; the parent of ``/x`` is ``/``."""
    cut = path.rfind("/")
    if cut < 0:
        cut = path.rfind("\\")
    if cut <= 0:
        return "/", path[1:] if path.startswith(SEPARATORS) else path
    return path[:cut], path[cut + 1 :]


def is_within(path: str, ancestor: str) -> bool:
    """True when ``path`` equals ``ancestor`` or lies somewhere below it."""
    if path == ancestor:
        return True
    base = ancestor.rstrip("/\\")
    return any(path.startswith(base + sep) for sep in SEPARATORS)

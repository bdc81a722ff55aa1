from __future__ import annotations

from typing import Iterable

from panex.fs.entries import FileEntry


def split_extension(name: str) -> tuple[str, str]:
    dot = name.rfind(".")
    if dot <= 0:
        return name, ""
    return name[:dot], name[dot:]


def generate_unique_name(name: str, existing: Iterable[FileEntry | str]) -> str:
    """Return ``"base (N)ext"`` for the smallest N >= 2 not already taken.

    ``photo.png`` with ``photo.png`` and ``photo (2).png`` taken gives
    ``photo (3).png``; ``.env`` has no extension and gives ``.env (2)``.
    """
    taken = {item.name if isinstance(item, FileEntry) else item for item in existing}
    base, ext = split_extension(name)
    counter = 2
    while True:
        candidate = f"{base} ({counter}){ext}"
        if candidate not in taken:
            return candidate
        counter += 1

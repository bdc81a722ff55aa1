"""The filesystem contract shared by both backends and the one-time selection."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Protocol

from panex.config.models import BackendSettings
from panex.fs.bridge import BridgeFilesystem
from panex.fs.entries import FileEntry
from panex.fs.errors import BackendUnavailable
from panex.fs.handles import LocalDirectoryHandle
from panex.fs.sandbox import Opener, RootPicker, SandboxFilesystem
from panex.runtime_logging import get_runtime_logger


class VirtualFilesystem(Protocol):
    name: str

    async def read_dir(self, path: str) -> list[FileEntry]: ...

    async def get_home_dir(self) -> str: ...

    async def get_parent_dir(self, path: str) -> str: ...

    async def open_entry(self, path: str) -> None: ...

    async def rename_entry(self, path: str, new_name: str) -> None: ...

    async def delete_entry(self, path: str, permanent: bool = False) -> None: ...

    async def copy_entry(self, source: str, dest_dir: str, new_name: str | None = None) -> str: ...

    async def move_entry(self, source: str, dest_dir: str, new_name: str | None = None) -> str: ...

    async def get_dir_size(self, path: str) -> int: ...

    async def create_file(self, dir_path: str, name: str) -> None: ...

    async def create_folder(self, dir_path: str, name: str) -> None: ...

    async def open_in_terminal(self, path: str) -> None: ...

    async def close(self) -> None: ...


def fixed_root_picker(root: Path) -> RootPicker:
    """Picker that grants ``root`` without asking, for a preconfigured sandbox."""

    async def pick() -> LocalDirectoryHandle:
        if not root.is_dir():
            raise BackendUnavailable(f"Sandbox root is not a directory: {root}", path=str(root))
        return LocalDirectoryHandle(root)

    return pick


def select_backend(
    settings: BackendSettings,
    *,
    environ: Mapping[str, str] | None = None,
    picker: RootPicker | None = None,
    opener: Opener | None = None,
    export_ttl_s: float = 60.0,
) -> VirtualFilesystem:
    """Pick the backend once at startup.

    ``PANEX_BACKEND``, ``PANEX_BRIDGE_COMMAND`` and ``PANEX_SANDBOX_ROOT`` override
    the settings. ``auto`` means sandbox when a root is known, bridge otherwise.
    A configured root is granted without asking; otherwise ``picker`` prompts.
    """
    env = os.environ if environ is None else environ
    kind = (env.get("PANEX_BACKEND") or settings.kind).strip().lower()
    command = env.get("PANEX_BRIDGE_COMMAND") or settings.bridge_command
    root = env.get("PANEX_SANDBOX_ROOT") or settings.sandbox_root
    logger = get_runtime_logger()

    if kind == "auto":
        kind = "sandbox" if root else "bridge"
    if kind not in {"bridge", "sandbox"}:
        raise BackendUnavailable(f"Unknown backend: {kind}")

    if kind == "bridge":
        bridge = BridgeFilesystem(command)
        logger.info("backend.selected", backend="bridge", command=bridge.command)
        return bridge

    if root:
        picker = fixed_root_picker(Path(root).expanduser())
    elif picker is None:
        raise BackendUnavailable("The sandbox backend needs a root folder (--sandbox or PANEX_SANDBOX_ROOT)")
    logger.info("backend.selected", backend="sandbox", root=root)
    return SandboxFilesystem(picker, opener=opener, export_ttl_s=export_ttl_s)

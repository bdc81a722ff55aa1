"""Application-wide collaborators handed to the workspace instead of module globals."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from panex.config.models import AppSettings
from panex.fs.backend import VirtualFilesystem
from panex.fs.entries import FileEntry
from panex.fs.sizes import DirectorySizeScheduler, SizeCache
from panex.pane.pipeline import ViewOptions
from panex.runtime_logging import RuntimeLogger, get_runtime_logger

ClipboardMode = Literal["copy", "cut"]


@dataclass(frozen=True, slots=True)
class Clipboard:
    entries: tuple[FileEntry, ...]
    mode: ClipboardMode = "copy"
    source_pane_id: str | None = None


@dataclass(slots=True)
class AppContext:
    fs: VirtualFilesystem
    settings: AppSettings = field(default_factory=AppSettings)
    size_cache: SizeCache = field(default_factory=SizeCache)
    sizes: DirectorySizeScheduler | None = None
    clipboard: Clipboard | None = None
    logger: RuntimeLogger = field(default_factory=get_runtime_logger)

    def __post_init__(self) -> None:
        if self.sizes is None:
            self.sizes = DirectorySizeScheduler(
                self.fs,
                self.size_cache,
                concurrency=self.settings.sizes.concurrency,
            )

    @property
    def scheduler(self) -> DirectorySizeScheduler:
        assert self.sizes is not None
        return self.sizes

    def view_options(self) -> ViewOptions:
        return ViewOptions.from_settings(self.settings.view)

    async def close(self) -> None:
        await self.fs.close()

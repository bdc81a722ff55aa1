"""Settings schema for panex."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

SortField = Literal["name", "size", "modified", "type"]
SortDirection = Literal["asc", "desc"]
SplitDirection = Literal["horizontal", "vertical"]
BackendKind = Literal["auto", "bridge", "sandbox"]


class AppearanceSettings(BaseModel):
    theme: str = Field(default="textual-dark", description="Textual theme name")


class ViewSettings(BaseModel):
    sort_field: SortField = Field(default="name")
    sort_direction: SortDirection = Field(default="asc")
    show_hidden: bool = Field(default=False)
    ignore_patterns: list[str] = Field(
        default_factory=list,
        description="gitwildmatch patterns hidden from every pane",
    )


class LayoutSettings(BaseModel):
    min_panes: int = Field(default=2, ge=1, le=16)
    initial_direction: SplitDirection = Field(default="vertical")


class SizeSettings(BaseModel):
    concurrency: int = Field(default=2, ge=1, le=16)


class BackendSettings(BaseModel):
    kind: BackendKind = Field(default="auto")
    bridge_command: str | None = Field(default=None)
    sandbox_root: str | None = Field(default=None)

    @field_validator("sandbox_root")
    @classmethod
    def validate_root(cls, value: str | None) -> str | None:
        if not value:
            return None
        return str(Path(value).expanduser())


class FileSettings(BaseModel):
    delete_permanently: bool = Field(default=False)
    open_cleanup_delay_s: float = Field(default=60.0, ge=0)


class AppSettings(BaseModel):
    schema_version: int = Field(default=1)
    appearance: AppearanceSettings = Field(default_factory=AppearanceSettings)
    view: ViewSettings = Field(default_factory=ViewSettings)
    layout: LayoutSettings = Field(default_factory=LayoutSettings)
    sizes: SizeSettings = Field(default_factory=SizeSettings)
    backend: BackendSettings = Field(default_factory=BackendSettings)
    files: FileSettings = Field(default_factory=FileSettings)

    def setting_items(self) -> list[tuple[str, str]]:
        """Flatten key/value pairs, e.g. for ``panex config`` style listings."""

        result: list[tuple[str, str]] = []

        def walk(prefix: str, value: object) -> None:
            if isinstance(value, BaseModel):
                for key in type(value).model_fields:
                    walk(f"{prefix}.{key}" if prefix else key, getattr(value, key))
            else:
                result.append((prefix, str(value)))

        walk("", self)
        return result

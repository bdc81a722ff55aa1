"""Modal screens for prompts, confirmations and transfer conflicts."""

from __future__ import annotations

from pathlib import Path

from rich.markup import escape
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Static

from panex.workspace import ConflictChoice


class TextPromptModal(ModalScreen[str | None]):
    BINDINGS = [("escape", "cancel", "Cancel")]

    DEFAULT_CSS = """
    TextPromptModal {
        align: center middle;
    }

    TextPromptModal > Vertical {
        width: 70;
        height: auto;
        border: round $accent;
        background: $surface;
        padding: 1;
    }
    """

    def __init__(self, title: str, value: str = "", placeholder: str = "") -> None:
        self.heading = title
        self.value = value
        self.placeholder = placeholder
        super().__init__()

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Static(f"[b]{escape(self.heading)}[/b]", markup=True)
            yield Input(value=self.value, placeholder=self.placeholder, id="prompt")

    def on_mount(self) -> None:
        self.query_one(Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        value = event.value.strip()
        self.dismiss(value or None)

    def action_cancel(self) -> None:
        self.dismiss(None)


class RootPickerModal(TextPromptModal):
    """Asks which folder the sandbox may use; dismissing it declines."""

    def __init__(self, default: Path | None = None) -> None:
        super().__init__(
            "Grant panex access to a folder",
            value=str(default) if default else "",
            placeholder="/path/to/folder",
        )


class ConfirmModal(ModalScreen[bool]):
    DEFAULT_CSS = """
    ConfirmModal {
        align: center middle;
    }

    ConfirmModal > Vertical {
        width: 70;
        height: auto;
        border: round $warning;
        background: $surface;
        padding: 1;
    }

    ConfirmModal Button {
        width: 1fr;
        margin: 1 1 0 0;
    }
    """

    def __init__(self, title: str, detail: str) -> None:
        self.heading = title
        self.detail = detail
        super().__init__()

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Static(f"[b]{escape(self.heading)}[/b]\n\n{escape(self.detail)}", markup=True)
            with Horizontal():
                yield Button("Confirm", id="confirm", variant="error")
                yield Button("Cancel", id="cancel")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        self.dismiss(event.button.id == "confirm")


class ConflictModal(ModalScreen[ConflictChoice]):
    DEFAULT_CSS = """
    ConflictModal {
        align: center middle;
    }

    ConflictModal > Vertical {
        width: 80;
        height: auto;
        border: round $warning;
        background: $surface;
        padding: 1;
    }

    ConflictModal Button {
        width: 1fr;
        margin: 1 0;
    }
    """

    def __init__(self, name: str, dest_dir: str) -> None:
        self.entry_name = name
        self.dest_dir = dest_dir
        super().__init__()

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Static(
                f"[b]'{escape(self.entry_name)}' already exists[/b]\n\nin {escape(self.dest_dir)}",
                markup=True,
            )
            yield Button("Replace", id="replace", variant="error")
            yield Button("Keep Both", id="keep-both", variant="primary")
            yield Button("Cancel", id="cancel")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        choice = event.button.id or "cancel"
        self.dismiss(choice if choice in {"replace", "keep-both"} else "cancel")  # type: ignore[arg-type]

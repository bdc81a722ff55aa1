"""Textual message objects for widget/app coordination."""

from __future__ import annotations

from textual.message import Message

from panex.pane.state import Modifiers


class PaneFocused(Message):
    def __init__(self, *, pane_id: str) -> None:
        self.pane_id = pane_id
        super().__init__()


class RowClicked(Message):
    def __init__(self, *, pane_id: str, index: int, modifiers: Modifiers, double: bool = False) -> None:
        self.pane_id = pane_id
        self.index = index
        self.modifiers = modifiers
        self.double = double
        super().__init__()

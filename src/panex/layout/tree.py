"""Binary split tree of panes.

The tree is immutable apart from ``Split.ratio``, which interactive resizing
adjusts in place. Structural changes return a new root and share every
subtree they did not touch.
"""

from __future__ import annotations

from dataclasses import dataclass

from panex.config.models import SplitDirection

MIN_RATIO = 0.1
MAX_RATIO = 0.9


def clamp_ratio(ratio: float) -> float:
    return min(max(ratio, MIN_RATIO), MAX_RATIO)


@dataclass(frozen=True, slots=True)
class Leaf:
    pane_id: str


@dataclass(eq=True, slots=True)
class Split:
    direction: SplitDirection
    first: "LayoutNode"
    second: "LayoutNode"
    ratio: float = 0.5

    def __post_init__(self) -> None:
        self.ratio = clamp_ratio(self.ratio)


LayoutNode = Leaf | Split


def count_leaves(tree: LayoutNode | None) -> int:
    if tree is None:
        return 0
    if isinstance(tree, Leaf):
        return 1
    return count_leaves(tree.first) + count_leaves(tree.second)


def collect_leaf_ids(tree: LayoutNode | None) -> list[str]:
    if tree is None:
        return []
    if isinstance(tree, Leaf):
        return [tree.pane_id]
    return collect_leaf_ids(tree.first) + collect_leaf_ids(tree.second)


def contains(tree: LayoutNode | None, pane_id: str) -> bool:
    return pane_id in collect_leaf_ids(tree)


def split(tree: LayoutNode, target_id: str, new_id: str, direction: SplitDirection) -> LayoutNode:
    """Replace leaf ``target_id`` with a split holding it and a new leaf ``new_id``."""
    if isinstance(tree, Leaf):
        if tree.pane_id == target_id:
            return Split(direction, Leaf(target_id), Leaf(new_id), 0.5)
        return Leaf(tree.pane_id)
    if _holds(tree.first, target_id):
        return Split(tree.direction, split(tree.first, target_id, new_id, direction), tree.second, tree.ratio)
    if _holds(tree.second, target_id):
        return Split(tree.direction, tree.first, split(tree.second, target_id, new_id, direction), tree.ratio)
    return Split(tree.direction, tree.first, tree.second, tree.ratio)


def remove(tree: LayoutNode | None, pane_id: str) -> LayoutNode | None:
    """Drop leaf ``pane_id``; a split left with one child collapses into it."""
    if tree is None:
        return None
    if isinstance(tree, Leaf):
        return None if tree.pane_id == pane_id else tree
    if not _holds(tree, pane_id):
        return tree

    first = remove(tree.first, pane_id)
    second = remove(tree.second, pane_id)
    if first is None:
        return second
    if second is None:
        return first
    return Split(tree.direction, first, second, tree.ratio)


def find_split(tree: LayoutNode | None, pane_id: str) -> Split | None:
    """The split whose direct child is leaf ``pane_id``."""
    if tree is None or isinstance(tree, Leaf):
        return None
    for child in (tree.first, tree.second):
        if isinstance(child, Leaf) and child.pane_id == pane_id:
            return tree
    return find_split(tree.first, pane_id) or find_split(tree.second, pane_id)


def set_ratio(node: Split, ratio: float) -> None:
    node.ratio = clamp_ratio(ratio)


def _holds(tree: LayoutNode, pane_id: str) -> bool:
    if isinstance(tree, Leaf):
        return tree.pane_id == pane_id
    return _holds(tree.first, pane_id) or _holds(tree.second, pane_id)

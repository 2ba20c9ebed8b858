"""On-screen element tree as seen by the automation backend.

A ``UiNode`` is one element of the accessibility tree: a button, a text
field, a list row, or a plain container.  Nodes carry the attributes that
``Selector`` objects match against, a clickable flag, and their screen
bounds so that a synthetic tap can be aimed at them.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Rectangle:
    """Axis-aligned bounding rectangle in screen coordinates.

    All values are in pixels. The origin (0, 0) is the top-left corner
    of the screen.

    Attributes:
        x: Left edge x-coordinate.
        y: Top edge y-coordinate.
        width: Horizontal extent in pixels (must be >= 0).
        height: Vertical extent in pixels (must be >= 0).
    """

    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    def __post_init__(self) -> None:
        """Validate that width and height are non-negative."""
        if self.width < 0:
            raise ValueError(f"Rectangle width must be >= 0, got {self.width}")
        if self.height < 0:
            raise ValueError(f"Rectangle height must be >= 0, got {self.height}")

    def center(self) -> tuple[int, int]:
        """Return the center point of the rectangle.

        Returns:
            A (cx, cy) tuple of integer pixel coordinates.
        """
        return (self.x + self.width // 2, self.y + self.height // 2)

    def is_empty(self) -> bool:
        """True when the rectangle covers no pixels."""
        return self.width == 0 or self.height == 0


@dataclass(eq=False)
class UiNode:
    """One element of the on-screen accessibility tree.

    Nodes compare by identity.  ``parent`` links are maintained by
    ``add_child`` so the executor can walk up to the nearest clickable
    ancestor.

    Attributes:
        text: Visible text of the element.
        content_description: Accessible description (icon buttons
            usually only have this).
        resource_id: Element identifier, e.g.
            ``"com.android.chrome:id/search_box"``.
        class_name: Widget class, e.g. ``"android.widget.EditText"``.
        clickable: Whether the element accepts a click action.
        bounds: Screen-space bounding rectangle.
        children: Direct child elements, in tree order.
        parent: Enclosing element, or ``None`` for the root.
    """

    text: str = ""
    content_description: str = ""
    resource_id: str = ""
    class_name: str = ""
    clickable: bool = False
    bounds: Rectangle = field(default_factory=Rectangle)
    children: list[UiNode] = field(default_factory=list)
    parent: UiNode | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        for child in self.children:
            child.parent = self

    def add_child(self, child: UiNode) -> UiNode:
        """Attach *child* under this node and return it."""
        child.parent = self
        self.children.append(child)
        return child

    def walk(self) -> Iterator[UiNode]:
        """Yield this node and all descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def clickable_ancestor(self) -> UiNode | None:
        """Return the nearest clickable ancestor, or ``None``."""
        node = self.parent
        while node is not None:
            if node.clickable:
                return node
            node = node.parent
        return None

    def label(self) -> str:
        """Short human-readable identification used in logs."""
        return (
            self.text
            or self.content_description
            or self.resource_id
            or self.class_name
            or "<node>"
        )

    def dump(self, depth: int = 0) -> str:
        """Render the subtree as indented text for diagnostics."""
        indent = "  " * depth
        line = (
            f"{indent}[{self.class_name}] text={self.text!r} "
            f"desc={self.content_description!r} id={self.resource_id!r} "
            f"clickable={self.clickable} bounds={self.bounds.x},"
            f"{self.bounds.y},{self.bounds.width}x{self.bounds.height}"
        )
        lines = [line]
        lines.extend(child.dump(depth + 1) for child in self.children)
        return "\n".join(lines)

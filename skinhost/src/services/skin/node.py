"""Layout tree data model.

Nodes are immutable values: a traversal never edits a node, it builds a new
tree. Parent links are not stored on nodes; a traversal wraps each visited
node in a NodeRef that points at its parent's NodeRef and records the node's
position, so upward lookups are queries over traversal metadata.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Iterator, Mapping, Optional

# Tags with meaning to the binder
SCRIPT = "script"
GROUP = "group"
GROUPDEF = "groupdef"
INCLUDE = "include"
ABSTRACTION_LAYER_ROOT = "WinampAbstractionLayer"
DOCUMENT_ROOT = "WasabiXML"


@dataclass(frozen=True)
class ScriptProgram:
    """Compiled script payload attached to a script node by the archive loader.

    Attributes:
        source_file: Archive member the program was read from.
        data: Raw program bytes, handed unchanged to the script engine.
    """

    source_file: str
    data: bytes = b""

    def text(self, encoding: str = "utf-8") -> str:
        """Decode the program payload as text."""
        return self.data.decode(encoding)


@dataclass(frozen=True, eq=False)
class Node:
    """A tagged layout element.

    Attributes:
        name: Tag identifying the node kind.
        attributes: String attributes from the layout document.
        children: Ordered child nodes.
        annotations: Opaque loader payload (e.g. "script" -> ScriptProgram).
    """

    name: str
    attributes: Mapping[str, str] = field(default_factory=dict)
    children: tuple["Node", ...] = ()
    annotations: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.children, tuple):
            object.__setattr__(self, "children", tuple(self.children))

    @property
    def is_script(self) -> bool:
        return self.name == SCRIPT

    @property
    def element_id(self) -> Optional[str]:
        """The node's "id" attribute, if any."""
        return self.attributes.get("id")

    @property
    def file(self) -> Optional[str]:
        """The node's "file" attribute, if any."""
        return self.attributes.get("file")

    @property
    def script(self) -> Optional[ScriptProgram]:
        """Compiled program attached by the loader, for script nodes."""
        return self.annotations.get("script")

    def with_children(self, children: tuple["Node", ...] | list["Node"]) -> "Node":
        """Return a copy of this node with different children."""
        return replace(self, children=tuple(children))

    def with_annotations(self, **annotations: Any) -> "Node":
        """Return a copy of this node with extra annotations."""
        merged = dict(self.annotations)
        merged.update(annotations)
        return replace(self, annotations=merged)

    def iter(self) -> Iterator["Node"]:
        """Yield this node and its descendants in pre-order."""
        stack: list[Node] = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def same_shape(self, other: "Node") -> bool:
        """Structural equality: tags, attributes and children, ignoring annotations."""
        if self.name != other.name or dict(self.attributes) != dict(other.attributes):
            return False
        if len(self.children) != len(other.children):
            return False
        return all(a.same_shape(b) for a, b in zip(self.children, other.children))

    def __repr__(self) -> str:
        ident = f" id={self.element_id!r}" if self.element_id else ""
        return f"<Node {self.name}{ident} children={len(self.children)}>"


@dataclass(frozen=True, eq=False)
class NodeRef:
    """A node as seen during one traversal.

    Attributes:
        node: The visited node.
        parent: NodeRef of the parent, None for the root.
        path: Child indices from the root to this node (root is ()).
    """

    node: Node
    parent: Optional["NodeRef"] = None
    path: tuple[int, ...] = ()

    @classmethod
    def root(cls, node: Node) -> "NodeRef":
        return cls(node=node)

    def child(self, index: int, node: Node) -> "NodeRef":
        """Build the ref for this node's child at ``index``."""
        return NodeRef(node=node, parent=self, path=self.path + (index,))

    def ancestors(self) -> Iterator["NodeRef"]:
        """Yield parent, grandparent, ... up to the root."""
        current = self.parent
        while current is not None:
            yield current
            current = current.parent

    @property
    def depth(self) -> int:
        return len(self.path)

    def __repr__(self) -> str:
        return f"<NodeRef {self.node.name} path={self.path}>"


__all__ = [
    "SCRIPT",
    "GROUP",
    "GROUPDEF",
    "INCLUDE",
    "ABSTRACTION_LAYER_ROOT",
    "DOCUMENT_ROOT",
    "ScriptProgram",
    "Node",
    "NodeRef",
]

"""Asynchronous transform-and-prune traversal over a layout tree.

The traversal visits nodes in pre-order, left to right, one at a time: a node's
visit (and any engine work it awaits) settles before the next node is visited.
A visit returning no node prunes that node and its whole subtree; descendants
of a pruned node are never visited. The input tree is left untouched and a new
tree is returned.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, Protocol, Union

from .node import Node, NodeRef

logger = logging.getLogger(__name__)


class VisitResult(Protocol):
    """What a visit callback returns: the node to emit, or None to prune."""

    @property
    def node(self) -> Optional[Node]: ...


VisitReturn = Union[VisitResult, Node, None]
Visitor = Callable[[NodeRef], Awaitable[VisitReturn]]


def _emitted(result: VisitReturn) -> Optional[Node]:
    if result is None or isinstance(result, Node):
        return result
    return result.node


class TreeTransformer:
    """Sequential pre-order async tree flat-map."""

    def __init__(self) -> None:
        self.visits = 0

    async def transform(self, root: Node, visit: Visitor) -> Optional[Node]:
        """Visit every reachable node of ``root`` and build the output tree.

        Returns:
            The new tree, or None when the root itself was pruned.
        """
        self.visits = 0
        result = await self._transform(NodeRef.root(root), visit)
        logger.debug(f"Transformed tree rooted at <{root.name}> in {self.visits} visits")
        return result

    async def _transform(self, ref: NodeRef, visit: Visitor) -> Optional[Node]:
        self.visits += 1
        emitted = _emitted(await visit(ref))
        if emitted is None:
            return None

        # Children of the emitted node, positioned under the emitted node
        here = NodeRef(node=emitted, parent=ref.parent, path=ref.path)
        children: list[Node] = []
        for index, child in enumerate(emitted.children):
            mapped = await self._transform(here.child(index, child), visit)
            if mapped is not None:
                children.append(mapped)
        return emitted.with_children(children)


async def async_tree_flat_map(root: Node, visit: Visitor) -> Optional[Node]:
    """Functional form of TreeTransformer.transform."""
    return await TreeTransformer().transform(root, visit)


__all__ = ["TreeTransformer", "Visitor", "VisitResult", "async_tree_flat_map"]

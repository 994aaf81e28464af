"""Scope resolution for script nodes.

A script executes against its nearest enclosing scope node. The lookup walks
strictly upward from the script's parent; the script node itself never
qualifies.
"""

from __future__ import annotations

import logging
from typing import Iterable

from .errors import ScopeNotFoundError
from .node import ABSTRACTION_LAYER_ROOT, DOCUMENT_ROOT, GROUP, Node, NodeRef

logger = logging.getLogger(__name__)

SCOPE_TAGS: frozenset[str] = frozenset({GROUP, ABSTRACTION_LAYER_ROOT, DOCUMENT_ROOT})


def find_parent_node_of_type(ref: NodeRef, tags: Iterable[str]) -> Node:
    """Return the nearest ancestor of ``ref`` whose tag is in ``tags``.

    Raises:
        ScopeNotFoundError: If the root is reached without a match.
    """
    allowed = frozenset(tags)
    for ancestor in ref.ancestors():
        if ancestor.node.name in allowed:
            return ancestor.node
    raise ScopeNotFoundError(
        f"No enclosing {sorted(allowed)} for <{ref.node.name}> at {ref.path}",
        path=ref.path,
        allowed_tags=tuple(sorted(allowed)),
    )


class ScopeResolver:
    """Resolves the runtime scope of a node against a fixed tag set."""

    def __init__(self, allowed_tags: Iterable[str] = SCOPE_TAGS) -> None:
        self.allowed_tags = frozenset(allowed_tags)
        if not self.allowed_tags:
            raise ValueError("ScopeResolver needs at least one allowed tag")

    def resolve(self, ref: NodeRef) -> Node:
        """Return the nearest qualifying ancestor of ``ref``."""
        scope = find_parent_node_of_type(ref, self.allowed_tags)
        logger.debug(f"Resolved scope <{scope.name}> for {ref!r}")
        return scope


__all__ = ["SCOPE_TAGS", "ScopeResolver", "find_parent_node_of_type"]

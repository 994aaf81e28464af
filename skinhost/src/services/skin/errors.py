"""Error kinds raised while loading and binding a skin."""

from __future__ import annotations

from typing import Optional


class SkinError(Exception):
    """Base exception for skin loading errors."""
    pass


class ArchiveLoadError(SkinError):
    """The skin archive or one of its documents could not be read."""
    pass


class BindingError(SkinError):
    """A script node could not be bound to an execution context."""
    pass


class ScopeNotFoundError(BindingError):
    """A script node has no enclosing scope node.

    Attributes:
        path: Position of the script node in the tree.
        allowed_tags: Tags that would have qualified as a scope.
    """

    def __init__(
        self,
        message: str,
        path: tuple[int, ...] = (),
        allowed_tags: tuple[str, ...] = (),
    ) -> None:
        super().__init__(message)
        self.path = path
        self.allowed_tags = allowed_tags


class EngineError(SkinError):
    """The script engine failed to execute a program.

    Attributes:
        source_file: File the program was compiled from, when known.
    """

    def __init__(self, message: str, source_file: Optional[str] = None) -> None:
        super().__init__(message)
        self.source_file = source_file


class EngineTimeoutError(EngineError):
    """A script exceeded its execution time limit."""
    pass


class TraversalIntegrityError(SkinError):
    """The tree traversal broke its visit-once, pre-order contract."""
    pass


__all__ = [
    "SkinError",
    "ArchiveLoadError",
    "BindingError",
    "ScopeNotFoundError",
    "EngineError",
    "EngineTimeoutError",
    "TraversalIntegrityError",
]

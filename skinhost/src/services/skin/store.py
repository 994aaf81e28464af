"""Application state container for the loaded skin.

Scripts read and mutate this state through their runtime bridge. State is an
immutable snapshot replaced on every dispatch; listeners are notified after
the swap, outside the lock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from threading import Lock
from typing import Any, Callable, Optional

from .node import Node

logger = logging.getLogger(__name__)

Action = dict[str, Any]
Listener = Callable[["SkinState"], None]

SET_XML_TREE = "SET_XML_TREE"
SET_MAKI_TREE = "SET_MAKI_TREE"
SET_SKIN_TREES = "SET_SKIN_TREES"
SET_VOLUME = "SET_VOLUME"
SET_PRIVATE_STRING = "SET_PRIVATE_STRING"

MIN_VOLUME = 0
MAX_VOLUME = 255


@dataclass(frozen=True)
class SkinState:
    """Snapshot of application state.

    Attributes:
        xml_tree: Include-resolved layout document of the visible skin.
        maki_tree: Bound layout tree of the visible skin.
        skin_generation: Load generation that produced the visible trees.
        volume: Player volume, 0-255.
        private_strings: Per-section script settings.
    """

    xml_tree: Optional[Node] = None
    maki_tree: Optional[Node] = None
    skin_generation: int = 0
    volume: int = 200
    private_strings: dict[str, dict[str, str]] = field(default_factory=dict)

    def get_private_string(self, section: str, item: str, default: str = "") -> str:
        return self.private_strings.get(section, {}).get(item, default)


# =============================================================================
# Action creators
# =============================================================================


def set_xml_tree(xml_tree: Node) -> Action:
    return {"type": SET_XML_TREE, "xml_tree": xml_tree}


def set_maki_tree(maki_tree: Node) -> Action:
    return {"type": SET_MAKI_TREE, "maki_tree": maki_tree}


def set_skin_trees(
    maki_tree: Optional[Node],
    xml_tree: Optional[Node] = None,
    generation: int = 0,
) -> Action:
    return {
        "type": SET_SKIN_TREES,
        "maki_tree": maki_tree,
        "xml_tree": xml_tree,
        "generation": generation,
    }


def set_volume(volume: int) -> Action:
    return {"type": SET_VOLUME, "volume": volume}


def set_private_string(section: str, item: str, value: str) -> Action:
    return {"type": SET_PRIVATE_STRING, "section": section, "item": item, "value": value}


def reduce(state: SkinState, action: Action) -> SkinState:
    """Return the state that results from applying ``action``."""
    action_type = action.get("type")

    if action_type == SET_XML_TREE:
        return replace(state, xml_tree=action["xml_tree"])

    if action_type == SET_MAKI_TREE:
        return replace(state, maki_tree=action["maki_tree"])

    if action_type == SET_SKIN_TREES:
        generation = action.get("generation", state.skin_generation)
        if generation < state.skin_generation:
            return state
        xml_tree = action.get("xml_tree")
        return replace(
            state,
            maki_tree=action["maki_tree"],
            xml_tree=xml_tree if xml_tree is not None else state.xml_tree,
            skin_generation=generation,
        )

    if action_type == SET_VOLUME:
        volume = max(MIN_VOLUME, min(MAX_VOLUME, int(action["volume"])))
        return replace(state, volume=volume)

    if action_type == SET_PRIVATE_STRING:
        strings = {k: dict(v) for k, v in state.private_strings.items()}
        strings.setdefault(str(action["section"]), {})[str(action["item"])] = str(action["value"])
        return replace(state, private_strings=strings)

    logger.debug(f"Ignoring unknown action type: {action_type}")
    return state


class SkinStore:
    """Thread-safe state container with dispatch and subscribe."""

    def __init__(self, initial_state: Optional[SkinState] = None) -> None:
        self._state = initial_state or SkinState()
        self._listeners: list[Listener] = []
        self._lock = Lock()
        self._dispatch_count = 0

    def get_state(self) -> SkinState:
        """Return the current state snapshot."""
        with self._lock:
            return self._state

    def dispatch(self, action: Action) -> Action:
        """Apply an action and notify listeners.

        Returns:
            The dispatched action.
        """
        if "type" not in action:
            raise ValueError(f"Action has no type: {action!r}")

        with self._lock:
            self._state = reduce(self._state, action)
            self._dispatch_count += 1
            state = self._state
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(state)
            except Exception as e:
                logger.error(f"Error in store listener for {action['type']}: {e}")
        return action

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @property
    def dispatch_count(self) -> int:
        return self._dispatch_count


__all__ = [
    "Action",
    "SkinState",
    "SkinStore",
    "SET_XML_TREE",
    "SET_MAKI_TREE",
    "SET_SKIN_TREES",
    "SET_VOLUME",
    "SET_PRIVATE_STRING",
    "set_xml_tree",
    "set_maki_tree",
    "set_skin_trees",
    "set_volume",
    "set_private_string",
    "reduce",
]

"""Runtime bridge ("System") between a script instance and the host.

A bridge pairs the scope node a script runs against with the application
store. The script engine keeps the bridge after execution returns: scripts
subscribe to host events on it and are re-entered through ``fire``. One bridge
is created per execution, never shared, even when two scripts resolve to the
same scope.

BridgeRegistry is the arena that owns bridges by instance id and groups them
by the load that created them, so a whole load's bridges can be released when
that load is superseded.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from threading import Lock
from typing import Any, Callable, Optional
from uuid import uuid4

from .node import Node
from .store import Action, SkinState, SkinStore

logger = logging.getLogger(__name__)

EventCallback = Callable[..., Any]
DisposeCallback = Callable[["RuntimeBridge"], None]


class RuntimeBridge:
    """Per-execution host context for one script instance.

    Attributes:
        scope: Node the script executes against.
        store: Shared application store handle.
        instance_id: Unique id of this script instance.
        load_id: Generation of the skin load that created the bridge.
    """

    def __init__(
        self,
        scope: Node,
        store: SkinStore,
        load_id: Optional[int] = None,
        source_file: Optional[str] = None,
    ) -> None:
        self.scope = scope
        self.store = store
        self.load_id = load_id
        self.source_file = source_file
        self.instance_id = uuid4().hex
        self._subscriptions: dict[str, list[EventCallback]] = defaultdict(list)
        self._on_dispose: list[DisposeCallback] = []
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def get_state(self) -> SkinState:
        return self.store.get_state()

    def dispatch(self, action: Action) -> Optional[Action]:
        """Forward an action to the store; a disposed bridge drops it."""
        if self._disposed:
            logger.warning(
                f"Dropping {action.get('type')} from disposed bridge {self.instance_id}"
            )
            return None
        return self.store.dispatch(action)

    def subscribe(self, event: str, callback: EventCallback) -> None:
        """Register a script callback for a host event."""
        if self._disposed:
            logger.warning(f"Ignoring subscription to {event} on disposed bridge {self.instance_id}")
            return
        self._subscriptions[event.lower()].append(callback)

    def unsubscribe(self, event: str, callback: EventCallback) -> bool:
        callbacks = self._subscriptions.get(event.lower(), [])
        try:
            callbacks.remove(callback)
            return True
        except ValueError:
            return False

    def subscriptions(self, event: str) -> int:
        """Number of callbacks registered for ``event``."""
        return len(self._subscriptions.get(event.lower(), []))

    def fire(self, event: str, *args: Any) -> list[Any]:
        """Deliver a host event to the script's callbacks.

        Callback errors are logged and do not stop delivery to the remaining
        callbacks.

        Returns:
            The callbacks' return values, in subscription order.
        """
        if self._disposed:
            logger.debug(f"Event {event} dropped by disposed bridge {self.instance_id}")
            return []

        results: list[Any] = []
        for callback in list(self._subscriptions.get(event.lower(), [])):
            try:
                results.append(callback(*args))
            except Exception as e:
                logger.error(
                    f"Error in {self.source_file or 'script'} handler for {event}: {e}",
                    extra={"instance_id": self.instance_id, "event": event},
                )
        return results

    def on_dispose(self, callback: DisposeCallback) -> None:
        """Run ``callback`` when the bridge is disposed (engine cleanup hook).

        Runs it right away if the bridge is already disposed.
        """
        if self._disposed:
            callback(self)
            return
        self._on_dispose.append(callback)

    def dispose(self) -> None:
        """Drop subscriptions and release engine resources held for this bridge."""
        if self._disposed:
            return
        self._disposed = True
        self._subscriptions.clear()
        for callback in self._on_dispose:
            try:
                callback(self)
            except Exception as e:
                logger.error(f"Error disposing bridge {self.instance_id}: {e}")
        self._on_dispose.clear()

    def __repr__(self) -> str:
        return (
            f"<RuntimeBridge {self.instance_id[:8]} scope=<{self.scope.name}"
            f" id={self.scope.element_id!r}> load={self.load_id}>"
        )


def make_bridge(
    scope: Node,
    store: SkinStore,
    load_id: Optional[int] = None,
    source_file: Optional[str] = None,
) -> RuntimeBridge:
    """Allocate a fresh bridge for one script execution."""
    return RuntimeBridge(scope, store, load_id=load_id, source_file=source_file)


class BridgeRegistry:
    """Owns live bridges, indexed by instance id and by load."""

    def __init__(self) -> None:
        self._bridges: dict[str, RuntimeBridge] = {}
        self._by_load: dict[Optional[int], list[str]] = defaultdict(list)
        self._lock = Lock()

    def register(self, bridge: RuntimeBridge) -> RuntimeBridge:
        with self._lock:
            if bridge.instance_id in self._bridges:
                raise ValueError(f"Bridge {bridge.instance_id} is already registered")
            self._bridges[bridge.instance_id] = bridge
            self._by_load[bridge.load_id].append(bridge.instance_id)
        return bridge

    def get(self, instance_id: str) -> Optional[RuntimeBridge]:
        with self._lock:
            return self._bridges.get(instance_id)

    def bridges_for(self, load_id: Optional[int]) -> list[RuntimeBridge]:
        with self._lock:
            return [self._bridges[i] for i in self._by_load.get(load_id, [])]

    def release_load(self, load_id: Optional[int]) -> int:
        """Dispose and forget every bridge created by ``load_id``.

        Returns:
            Number of bridges released.
        """
        with self._lock:
            ids = self._by_load.pop(load_id, [])
            bridges = [self._bridges.pop(i) for i in ids if i in self._bridges]
        for bridge in bridges:
            bridge.dispose()
        if bridges:
            logger.info(f"Released {len(bridges)} bridges from load {load_id}")
        return len(bridges)

    def release_older_than(self, load_id: int) -> int:
        """Release bridges of every load with a generation below ``load_id``."""
        with self._lock:
            stale = [lid for lid in self._by_load if lid is not None and lid < load_id]
        return sum(self.release_load(lid) for lid in stale)

    def fire(self, event: str, *args: Any) -> int:
        """Deliver a host event to every live bridge.

        Returns:
            Number of bridges the event was delivered to.
        """
        with self._lock:
            bridges = list(self._bridges.values())
        for bridge in bridges:
            bridge.fire(event, *args)
        return len(bridges)

    @property
    def load_ids(self) -> list[Optional[int]]:
        with self._lock:
            return list(self._by_load.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._bridges)


__all__ = ["RuntimeBridge", "BridgeRegistry", "make_bridge"]

"""Atomic publication of bound layout trees.

Loads are not cancelled when a newer one starts, so traversals can finish out
of order. Each load takes a ticket with an increasing generation when it
starts; a finished tree is published only if no newer generation has been
published already. A stale result is discarded and the visible state keeps
the newer skin.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from threading import Lock
from typing import Optional

from ..events import Event, EventBus, EventType, Severity, get_event_bus
from .bridge import BridgeRegistry
from .node import Node
from .store import SkinStore, set_skin_trees

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadTicket:
    """Identifies one skin load attempt."""

    generation: int
    source: str = ""


class ResultPublisher:
    """Sole gate through which load results reach the store."""

    def __init__(
        self,
        store: SkinStore,
        registry: Optional[BridgeRegistry] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.event_bus = event_bus if event_bus is not None else get_event_bus()
        self._generations = itertools.count(1)
        self._published_generation = 0
        self._lock = Lock()

    @property
    def published_generation(self) -> int:
        return self._published_generation

    def begin(self, source: str = "") -> LoadTicket:
        """Start a load attempt."""
        with self._lock:
            ticket = LoadTicket(generation=next(self._generations), source=source)
        logger.info(f"Load {ticket.generation} started: {source or '<archive>'}")
        self._emit(EventType.LOAD_STARTED, Severity.INFO, ticket, {})
        return ticket

    def publish(self, ticket: LoadTicket, tree: Optional[Node], xml_tree: Optional[Node] = None) -> bool:
        """Make a finished tree visible unless a newer load already published.

        Returns:
            True if the tree was published, False if it was discarded.
        """
        with self._lock:
            stale = ticket.generation < self._published_generation
            if not stale:
                self._published_generation = ticket.generation

        if stale:
            logger.warning(
                f"Discarding load {ticket.generation}: load {self._published_generation} "
                "is already published"
            )
            self._emit(
                EventType.LOAD_DISCARDED,
                Severity.WARNING,
                ticket,
                {"published_generation": self._published_generation},
            )
            self._release(ticket.generation)
            return False

        # Listeners may start a new load, so the store is dispatched unlocked;
        # the reducer drops a generation older than the visible one.
        self.store.dispatch(set_skin_trees(tree, xml_tree, generation=ticket.generation))
        logger.info(f"Published load {ticket.generation}")
        self._emit(EventType.LOAD_PUBLISHED, Severity.INFO, ticket, {})
        if self.registry is not None:
            released = self.registry.release_older_than(ticket.generation)
            if released:
                self._emit(EventType.BRIDGE_RELEASED, Severity.INFO, ticket, {"count": released})
        return True

    def abandon(self, ticket: LoadTicket, reason: str = "") -> None:
        """Record that a load will never publish and release its bridges."""
        logger.error(f"Load {ticket.generation} aborted: {reason}")
        self._emit(EventType.LOAD_ABORTED, Severity.ERROR, ticket, {"reason": reason})
        self._release(ticket.generation)

    def _release(self, generation: int) -> None:
        if self.registry is None:
            return
        released = self.registry.release_load(generation)
        if released:
            self.event_bus.emit(Event(
                type=EventType.BRIDGE_RELEASED,
                source="result_publisher",
                severity=Severity.INFO,
                payload={"generation": generation, "count": released},
            ))

    def _emit(self, event_type: str, severity: Severity, ticket: LoadTicket, payload: dict) -> None:
        self.event_bus.emit(Event(
            type=event_type,
            source="result_publisher",
            severity=severity,
            payload=dict(payload, generation=ticket.generation, source=ticket.source),
        ))


__all__ = ["LoadTicket", "ResultPublisher"]

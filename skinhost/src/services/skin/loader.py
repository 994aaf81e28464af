"""Skin load orchestration.

Fetch or open an archive, resolve its layout, bind and run its scripts, and
publish the result:

    archive -> read_layout -> initialize -> TreeTransformer(ScriptBinder) -> publish

Per-script failures are contained by the binder. A broken traversal
(TraversalIntegrityError) aborts the load before anything is published, so
the previously published skin stays visible.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import httpx

from ..config import SkinConfig, get_config
from ..events import EventBus, get_event_bus
from .archive import SkinArchive
from .binder import BindReport, ScriptBinder
from .bridge import BridgeRegistry
from .engine import NativeFunctionTable, ScriptEngine
from .errors import ArchiveLoadError, TraversalIntegrityError
from .lua_engine import LuaScriptEngine
from .natives import DEFAULT_NATIVE_FUNCTIONS
from .node import Node
from .publisher import LoadTicket, ResultPublisher
from .store import SkinStore
from .transform import TreeTransformer

logger = logging.getLogger(__name__)


@dataclass
class LoadResult:
    """Outcome of one skin load.

    Attributes:
        ticket: The load's ticket.
        tree: Bound layout tree produced by the traversal.
        xml_tree: Include-resolved layout document.
        published: Whether the tree became visible (False when superseded).
        report: Per-script binding report.
    """

    ticket: LoadTicket
    tree: Optional[Node]
    xml_tree: Node
    published: bool
    report: BindReport


class SkinLoader:
    """Loads skins into a store, one binder per load."""

    def __init__(
        self,
        store: Optional[SkinStore] = None,
        engine: Optional[ScriptEngine] = None,
        config: Optional[SkinConfig] = None,
        native_functions: NativeFunctionTable = DEFAULT_NATIVE_FUNCTIONS,
        registry: Optional[BridgeRegistry] = None,
        event_bus: Optional[EventBus] = None,
        transformer: Optional[TreeTransformer] = None,
    ) -> None:
        self.config = config or get_config()
        self.store = store or SkinStore()
        self.engine = engine or LuaScriptEngine(
            timeout_seconds=self.config.script_timeout_seconds,
            log_calls=self.config.engine_log,
        )
        self.native_functions = native_functions
        self.registry = registry if registry is not None else BridgeRegistry()
        self.event_bus = event_bus if event_bus is not None else get_event_bus()
        self.transformer = transformer or TreeTransformer()
        self.publisher = ResultPublisher(self.store, registry=self.registry, event_bus=self.event_bus)

    async def load_url(self, url: str, client: Optional[httpx.AsyncClient] = None) -> LoadResult:
        """Download a skin archive and load it."""
        logger.info(f"Fetching skin from {url}")
        try:
            if client is None:
                async with httpx.AsyncClient(
                    timeout=self.config.fetch_timeout_seconds,
                    follow_redirects=True,
                ) as owned:
                    response = await owned.get(url)
            else:
                response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ArchiveLoadError(f"Failed to fetch skin {url}: {e}")
        return await self.load_bytes(response.content, name=url)

    async def load_path(self, path: Union[str, Path]) -> LoadResult:
        with SkinArchive.from_path(path, max_include_depth=self.config.max_include_depth) as archive:
            return await self.load_archive(archive)

    async def load_bytes(self, data: bytes, name: str = "") -> LoadResult:
        with SkinArchive.from_bytes(data, name=name, max_include_depth=self.config.max_include_depth) as archive:
            return await self.load_archive(archive)

    async def load_archive(self, archive: SkinArchive) -> LoadResult:
        """Resolve, bind and publish one archive.

        The caller owns ``archive`` and closes it.

        Raises:
            ArchiveLoadError: If the layout cannot be read.
            TraversalIntegrityError: If the traversal broke its contract.
        """
        ticket = self.publisher.begin(source=archive.name)

        try:
            xml_tree = archive.read_layout(self.config.layout_document)
            maki_tree = archive.initialize(xml_tree)
        except ArchiveLoadError as e:
            self.publisher.abandon(ticket, reason=str(e))
            raise

        binder = ScriptBinder(
            self.engine,
            self.store,
            native_functions=self.native_functions,
            registry=self.registry,
            skip_scripts=self.config.skip_scripts,
            load_id=ticket.generation,
            event_bus=self.event_bus,
        )

        try:
            tree = await self.transformer.transform(maki_tree, binder)
        except TraversalIntegrityError as e:
            self.publisher.abandon(ticket, reason=str(e))
            raise

        published = self.publisher.publish(ticket, tree, xml_tree=xml_tree)
        report = binder.report
        logger.info(
            f"Load {ticket.generation} finished: {len(report.executed)} executed, "
            f"{len(report.failed)} failed, published={published}",
            extra={"generation": ticket.generation, "source": archive.name},
        )
        return LoadResult(ticket=ticket, tree=tree, xml_tree=xml_tree, published=published, report=report)


__all__ = ["LoadResult", "SkinLoader"]

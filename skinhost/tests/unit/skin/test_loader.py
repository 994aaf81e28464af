"""Unit tests for SkinLoader - end-to-end load, bind and publish."""

import asyncio
import io
import zipfile
from typing import Optional

import httpx
import pytest

from skinhost.src.services.config import SkinConfig
from skinhost.src.services.events import EventBus, EventType
from skinhost.src.services.skin.archive import SkinArchive
from skinhost.src.services.skin.errors import ArchiveLoadError, TraversalIntegrityError
from skinhost.src.services.skin.loader import SkinLoader
from skinhost.src.services.skin.node import NodeRef
from skinhost.src.services.skin.store import SkinStore, set_volume
from skinhost.src.services.skin.transform import TreeTransformer


SKIN_XML = (
    "<WasabiXML>"
    '<include file="xml/player.xml"/>'
    '<container id="main"><layout id="normal"><group id="player"/></layout></container>'
    '<script file="scripts/standardframe.maki"/>'
    "</WasabiXML>"
)

PLAYER_XML = '<groupdef id="player"><layer id="bg"/><script file="scripts/player.maki"/></groupdef>'


def make_zip(files: dict) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


def skin_bytes(**overrides) -> bytes:
    files = {
        "skin.xml": SKIN_XML,
        "xml/player.xml": PLAYER_XML,
        "scripts/player.maki": b"player",
        "scripts/standardframe.maki": b"frame",
    }
    files.update(overrides)
    return make_zip(files)


class RecordingEngine:
    """Engine double that records executions and optionally waits on a gate."""

    def __init__(self, gate_file: Optional[str] = None) -> None:
        self.executed: list[tuple[str, str]] = []
        self.gate_file = gate_file
        self.started = asyncio.Event()
        self.gate = asyncio.Event()

    async def execute(self, program, native_functions, bridge):
        self.executed.append((program.source_file, bridge.scope.element_id))
        if program.source_file == self.gate_file:
            self.started.set()
            await self.gate.wait()
        if program.data == b"volume":
            bridge.dispatch(set_volume(17))
        return None


class DoubleVisitTransformer(TreeTransformer):
    """Transformer that breaks the visit contract by visiting the root twice."""

    async def transform(self, root, visit):
        await visit(NodeRef.root(root))
        await visit(NodeRef.root(root))
        return root


@pytest.fixture
def store() -> SkinStore:
    return SkinStore()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def engine() -> RecordingEngine:
    return RecordingEngine()


@pytest.fixture
def loader(store, engine, event_bus) -> SkinLoader:
    return SkinLoader(store=store, engine=engine, config=SkinConfig(), event_bus=event_bus)


# =============================================================================
# Load flow
# =============================================================================


class TestLoadFlow:

    @pytest.mark.asyncio
    async def test_load_publishes_bound_tree(self, loader, store, engine):
        result = await loader.load_bytes(skin_bytes(), name="bento.wal")

        assert result.published
        assert engine.executed == [("scripts/player.maki", "player")]
        state = store.get_state()
        assert state.maki_tree is result.tree
        assert state.xml_tree is result.xml_tree
        assert state.skin_generation == result.ticket.generation

    @pytest.mark.asyncio
    async def test_published_tree_has_no_templates(self, loader):
        result = await loader.load_bytes(skin_bytes())

        assert "groupdef" not in {n.name for n in result.tree.iter()}
        assert "groupdef" in {n.name for n in result.xml_tree.iter()}

    @pytest.mark.asyncio
    async def test_report(self, loader):
        result = await loader.load_bytes(skin_bytes())

        assert [(s.file, s.kind.value) for s in result.report.scripts] == [
            ("scripts/player.maki", "executed"),
            ("scripts/standardframe.maki", "skipped"),
        ]

    @pytest.mark.asyncio
    async def test_script_store_changes_land_in_store(self, loader, store):
        await loader.load_bytes(skin_bytes(**{"scripts/player.maki": b"volume"}))
        assert store.get_state().volume == 17

    @pytest.mark.asyncio
    async def test_script_failure_does_not_stop_load(self, loader, store):
        data = make_zip({
            "skin.xml": (
                '<WasabiXML><group id="g"><script file="gone.maki"/></group>'
                '<group id="h"><script file="ok.maki"/></group></WasabiXML>'
            ),
            "ok.maki": b"ok",
        })

        result = await loader.load_bytes(data)

        assert result.published
        assert [s.kind.value for s in result.report.scripts] == ["failed", "executed"]
        assert store.get_state().maki_tree is result.tree

    @pytest.mark.asyncio
    async def test_load_path(self, loader, tmp_path):
        path = tmp_path / "bento.wal"
        path.write_bytes(skin_bytes())

        result = await loader.load_path(path)

        assert result.published
        assert result.ticket.source == str(path)

    @pytest.mark.asyncio
    async def test_archives_are_closed_after_load(self, loader, monkeypatch, tmp_path):
        opened = []
        original = SkinArchive.from_bytes.__func__

        def tracking_from_bytes(cls, data, **kwargs):
            archive = original(cls, data, **kwargs)
            opened.append(archive)
            return archive

        monkeypatch.setattr(SkinArchive, "from_bytes", classmethod(tracking_from_bytes))
        path = tmp_path / "bento.wal"
        path.write_bytes(skin_bytes())

        await loader.load_bytes(skin_bytes())
        await loader.load_path(path)
        with pytest.raises(ArchiveLoadError):
            await loader.load_bytes(make_zip({"readme.txt": "hi"}))

        assert len(opened) == 3
        assert all(archive.closed for archive in opened)

    @pytest.mark.asyncio
    async def test_bridges_are_registered_under_the_load(self, loader):
        result = await loader.load_bytes(skin_bytes())
        assert len(loader.registry.bridges_for(result.ticket.generation)) == 1

    @pytest.mark.asyncio
    async def test_second_load_releases_first_loads_bridges(self, loader):
        first = await loader.load_bytes(skin_bytes())
        old_bridges = loader.registry.bridges_for(first.ticket.generation)

        second = await loader.load_bytes(skin_bytes())

        assert all(b.disposed for b in old_bridges)
        assert loader.registry.load_ids == [second.ticket.generation]


# =============================================================================
# Failures before publishing
# =============================================================================


class TestLoadFailures:

    @pytest.mark.asyncio
    async def test_missing_layout_aborts(self, loader, store, event_bus):
        aborted = []
        event_bus.subscribe(EventType.LOAD_ABORTED, aborted.append)

        with pytest.raises(ArchiveLoadError):
            await loader.load_bytes(make_zip({"readme.txt": "hi"}))

        assert store.get_state().maki_tree is None
        assert len(aborted) == 1

    @pytest.mark.asyncio
    async def test_integrity_violation_aborts_without_publishing(self, store, engine, event_bus):
        loader = SkinLoader(
            store=store,
            engine=engine,
            config=SkinConfig(),
            event_bus=event_bus,
            transformer=DoubleVisitTransformer(),
        )
        aborted = []
        event_bus.subscribe(EventType.LOAD_ABORTED, aborted.append)

        with pytest.raises(TraversalIntegrityError):
            await loader.load_bytes(skin_bytes())

        assert store.dispatch_count == 0
        assert len(aborted) == 1

    @pytest.mark.asyncio
    async def test_custom_layout_document(self, store, engine, event_bus):
        config = SkinConfig(layout_document="main.xml")
        loader = SkinLoader(store=store, engine=engine, config=config, event_bus=event_bus)

        result = await loader.load_bytes(make_zip({"main.xml": "<WasabiXML/>"}))

        assert result.tree.name == "WasabiXML"


# =============================================================================
# Overlapping loads
# =============================================================================


class TestOverlappingLoads:

    @pytest.mark.asyncio
    async def test_stale_load_is_discarded(self, store, event_bus):
        engine = RecordingEngine(gate_file="scripts/slow.maki")
        loader = SkinLoader(store=store, engine=engine, config=SkinConfig(), event_bus=event_bus)
        slow_skin = make_zip({
            "skin.xml": '<WasabiXML><group id="slow"><script file="scripts/slow.maki"/></group></WasabiXML>',
            "scripts/slow.maki": b"slow",
        })

        slow_task = asyncio.create_task(loader.load_bytes(slow_skin, name="slow.wal"))
        await engine.started.wait()
        fast = await loader.load_bytes(skin_bytes(), name="fast.wal")
        engine.gate.set()
        slow = await slow_task

        assert fast.published
        assert not slow.published
        assert slow.ticket.generation < fast.ticket.generation
        assert store.get_state().maki_tree is fast.tree
        assert loader.registry.bridges_for(slow.ticket.generation) == []


# =============================================================================
# Fetching
# =============================================================================


class TestLoadUrl:

    @pytest.mark.asyncio
    async def test_load_url(self, loader):
        data = skin_bytes()

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/skins/bento.wal"
            return httpx.Response(200, content=data)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await loader.load_url("https://example.com/skins/bento.wal", client=client)

        assert result.published
        assert result.ticket.source == "https://example.com/skins/bento.wal"

    @pytest.mark.asyncio
    async def test_http_error_becomes_archive_error(self, loader, store):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(ArchiveLoadError, match="Failed to fetch"):
                await loader.load_url("https://example.com/missing.wal", client=client)

        assert store.get_state().maki_tree is None

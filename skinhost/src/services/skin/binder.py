"""Script binding and dispatch policy.

ScriptBinder is installed as the per-node callback of a TreeTransformer. For
every visited node it decides one of:

- PRUNED: a ``groupdef`` template. Only instantiated copies (ordinary groups)
  run scripts, so the template and its subtree are dropped from the output.
- SKIPPED: a ``script`` whose file is handled by a built-in mechanism
  (``standardframe.maki`` by default). Passed through, never executed.
- EXECUTED: any other ``script``. Its scope is resolved upward, a fresh
  RuntimeBridge is built, and the engine runs the compiled program. The node
  passes through unchanged; execution is a side effect.
- FAILED: scope resolution or the engine failed for that one script. The
  error is logged and emitted on the event bus; the node passes through and
  the traversal continues.
- PASSTHROUGH: everything else.

Scripts run strictly one after another in visit order, because later scripts
may observe store changes made by earlier ones. The binder verifies that its
visits arrive in pre-order, each position once, and never inside a pruned
subtree; a traversal that breaks this raises TraversalIntegrityError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from ..config import DEFAULT_SKIP_SCRIPTS
from ..events import Event, EventBus, EventType, Severity, get_event_bus
from .bridge import BridgeRegistry, RuntimeBridge, make_bridge
from .engine import NativeFunctionTable, ScriptEngine
from .errors import BindingError, EngineError, EngineTimeoutError, TraversalIntegrityError
from .natives import DEFAULT_NATIVE_FUNCTIONS
from .node import GROUPDEF, SCRIPT, Node, NodeRef
from .scope import SCOPE_TAGS, ScopeResolver
from .store import SkinStore

logger = logging.getLogger(__name__)


class OutcomeKind(Enum):
    """Decision taken for one visited node."""

    PRUNED = "pruned"
    SKIPPED = "skipped"
    EXECUTED = "executed"
    FAILED = "failed"
    PASSTHROUGH = "passthrough"


@dataclass(frozen=True)
class BindOutcome:
    """Result of binding one node.

    Attributes:
        kind: Decision taken.
        node: Node to emit, None when pruned.
        path: Position of the visited node.
        bridge: Bridge built for an executed script.
        error: Per-node error for a failed script.
    """

    kind: OutcomeKind
    node: Optional[Node]
    path: tuple[int, ...] = ()
    bridge: Optional[RuntimeBridge] = None
    error: Optional[Exception] = None


@dataclass
class ScriptExecution:
    """Report entry for one script node."""

    file: str
    kind: OutcomeKind
    path: tuple[int, ...]
    scope_tag: Optional[str] = None
    scope_id: Optional[str] = None
    instance_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BindReport:
    """What one traversal did."""

    scripts: list[ScriptExecution] = field(default_factory=list)
    counts: dict[OutcomeKind, int] = field(default_factory=lambda: {k: 0 for k in OutcomeKind})

    def record(self, outcome: BindOutcome) -> None:
        self.counts[outcome.kind] += 1

    @property
    def executed(self) -> list[ScriptExecution]:
        return [s for s in self.scripts if s.kind is OutcomeKind.EXECUTED]

    @property
    def failed(self) -> list[ScriptExecution]:
        return [s for s in self.scripts if s.kind is OutcomeKind.FAILED]


def normalize_script_name(file: str) -> str:
    """Lower-cased base name of a script path, with either separator."""
    return file.replace("\\", "/").rsplit("/", 1)[-1].lower()


def is_builtin_script(file: Optional[str], skip_names: Iterable[str]) -> bool:
    if not file:
        return False
    return normalize_script_name(file) in {normalize_script_name(n) for n in skip_names}


class ScriptBinder:
    """Per-node binding policy for one skin load.

    Example:
        binder = ScriptBinder(engine, store, load_id=ticket.generation)
        tree = await TreeTransformer().transform(root, binder)
    """

    def __init__(
        self,
        engine: ScriptEngine,
        store: SkinStore,
        native_functions: NativeFunctionTable = DEFAULT_NATIVE_FUNCTIONS,
        registry: Optional[BridgeRegistry] = None,
        skip_scripts: Iterable[str] = DEFAULT_SKIP_SCRIPTS,
        scope_tags: Iterable[str] = SCOPE_TAGS,
        load_id: Optional[int] = None,
        event_bus: Optional[EventBus] = None,
    ) -> None:
        self.engine = engine
        self.store = store
        self.native_functions = native_functions
        self.registry = registry if registry is not None else BridgeRegistry()
        self.skip_names = frozenset(normalize_script_name(n) for n in skip_scripts)
        self.resolver = ScopeResolver(scope_tags)
        self.load_id = load_id
        self.event_bus = event_bus if event_bus is not None else get_event_bus()
        self.report = BindReport()
        self._last_path: Optional[tuple[int, ...]] = None
        self._last_pruned: Optional[tuple[int, ...]] = None

    async def __call__(self, ref: NodeRef) -> BindOutcome:
        return await self.bind(ref)

    async def bind(self, ref: NodeRef) -> BindOutcome:
        """Decide the outcome for one visited node."""
        self._check_visit_order(ref)
        node = ref.node

        if node.name == GROUPDEF:
            outcome = self._prune(ref)
        elif node.name == SCRIPT:
            if is_builtin_script(node.file, self.skip_names):
                outcome = self._skip(ref)
            else:
                outcome = await self._execute(ref)
        else:
            outcome = BindOutcome(OutcomeKind.PASSTHROUGH, node, ref.path)

        self.report.record(outcome)
        return outcome

    def reset(self) -> None:
        """Forget visit history and the report (for a fresh traversal)."""
        self.report = BindReport()
        self._last_path = None
        self._last_pruned = None

    def _check_visit_order(self, ref: NodeRef) -> None:
        path = ref.path
        if self._last_path is not None and path <= self._last_path:
            if path == self._last_path:
                raise TraversalIntegrityError(f"Node at {path} visited twice")
            raise TraversalIntegrityError(
                f"Node at {path} visited after {self._last_path}; expected pre-order"
            )
        pruned = self._last_pruned
        if pruned is not None and path[:len(pruned)] == pruned:
            raise TraversalIntegrityError(
                f"Node at {path} visited inside pruned template at {pruned}"
            )
        self._last_path = path

    def _prune(self, ref: NodeRef) -> BindOutcome:
        self._last_pruned = ref.path
        logger.debug(f"Pruned template {ref.node.element_id!r} at {ref.path}")
        self._emit(
            EventType.TEMPLATE_PRUNED,
            Severity.DEBUG,
            {"id": ref.node.element_id, "path": list(ref.path)},
        )
        return BindOutcome(OutcomeKind.PRUNED, None, ref.path)

    def _skip(self, ref: NodeRef) -> BindOutcome:
        file = ref.node.file or ""
        logger.debug(f"Skipping built-in script {file}")
        self.report.scripts.append(ScriptExecution(file=file, kind=OutcomeKind.SKIPPED, path=ref.path))
        self._emit(EventType.SCRIPT_SKIPPED, Severity.DEBUG, {"file": file, "path": list(ref.path)})
        return BindOutcome(OutcomeKind.SKIPPED, ref.node, ref.path)

    async def _execute(self, ref: NodeRef) -> BindOutcome:
        node = ref.node
        file = node.file or ""
        scope: Optional[Node] = None
        bridge: Optional[RuntimeBridge] = None

        try:
            scope = self.resolver.resolve(ref)
            program = node.script
            if program is None:
                raise EngineError(f"Script {file!r} has no compiled program", source_file=file)

            bridge = make_bridge(scope, self.store, load_id=self.load_id, source_file=file)
            self.registry.register(bridge)
            try:
                await self.engine.execute(program, self.native_functions, bridge)
            except EngineError:
                raise
            except Exception as e:
                raise EngineError(f"Engine failed: {e}", source_file=file) from e

        except (BindingError, EngineError) as e:
            if isinstance(e, EngineTimeoutError) and bridge is not None:
                bridge.dispose()
            return self._fail(ref, e, scope, bridge)

        logger.info(
            f"Executed {file} in <{scope.name}> {scope.element_id or ''}".rstrip(),
            extra={"load_id": self.load_id, "instance_id": bridge.instance_id},
        )
        self.report.scripts.append(ScriptExecution(
            file=file,
            kind=OutcomeKind.EXECUTED,
            path=ref.path,
            scope_tag=scope.name,
            scope_id=scope.element_id,
            instance_id=bridge.instance_id,
        ))
        self._emit(
            EventType.SCRIPT_EXECUTED,
            Severity.INFO,
            {
                "file": file,
                "scope": scope.name,
                "scope_id": scope.element_id,
                "instance_id": bridge.instance_id,
            },
        )
        return BindOutcome(OutcomeKind.EXECUTED, node, ref.path, bridge=bridge)

    def _fail(
        self,
        ref: NodeRef,
        error: Exception,
        scope: Optional[Node],
        bridge: Optional[RuntimeBridge],
    ) -> BindOutcome:
        file = ref.node.file or ""
        logger.warning(
            f"Script {file or '<unnamed>'} at {ref.path} failed: {error}",
            extra={"load_id": self.load_id, "error_type": type(error).__name__},
        )
        self.report.scripts.append(ScriptExecution(
            file=file,
            kind=OutcomeKind.FAILED,
            path=ref.path,
            scope_tag=scope.name if scope is not None else None,
            scope_id=scope.element_id if scope is not None else None,
            instance_id=bridge.instance_id if bridge is not None else None,
            error=str(error),
        ))
        self._emit(
            EventType.SCRIPT_FAILED,
            Severity.ERROR,
            {
                "file": file,
                "path": list(ref.path),
                "error_type": type(error).__name__,
                "error_message": str(error),
            },
        )
        return BindOutcome(OutcomeKind.FAILED, ref.node, ref.path, bridge=bridge, error=error)

    def _emit(self, event_type: str, severity: Severity, payload: dict) -> None:
        payload = dict(payload, load_id=self.load_id)
        self.event_bus.emit(Event(type=event_type, source="script_binder", severity=severity, payload=payload))


__all__ = [
    "OutcomeKind",
    "BindOutcome",
    "BindReport",
    "ScriptExecution",
    "ScriptBinder",
    "is_builtin_script",
    "normalize_script_name",
]

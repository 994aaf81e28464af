"""Skin loading and script binding.

Loads a packaged skin (a zip archive with a layout document and compiled
behaviour scripts), decides which layout nodes carry executable scripts and
under which scope each runs, executes them through a script engine with a
per-execution runtime bridge, and publishes the bound tree to the store.

Components:
- node.py: Node, NodeRef and ScriptProgram
- scope.py: ScopeResolver (nearest enclosing scope lookup)
- bridge.py: RuntimeBridge, make_bridge, BridgeRegistry
- engine.py: ScriptEngine protocol
- natives.py: default native-function table
- lua_engine.py: LuaScriptEngine via lupa
- binder.py: ScriptBinder policy
- transform.py: TreeTransformer (sequential pre-order async traversal)
- store.py: SkinStore and actions
- publisher.py: ResultPublisher (atomic, stale-safe publication)
- archive.py: SkinArchive (zip reading, include inlining, group instantiation)
- loader.py: SkinLoader orchestration

Example usage:
    from skinhost.src.services.skin import SkinLoader

    loader = SkinLoader()
    result = await loader.load_path("skins/bento.wal")
    for script in result.report.executed:
        print(script.file, script.scope_id)
"""

from .errors import (
    ArchiveLoadError,
    BindingError,
    EngineError,
    EngineTimeoutError,
    ScopeNotFoundError,
    SkinError,
    TraversalIntegrityError,
)

from .node import (
    ABSTRACTION_LAYER_ROOT,
    DOCUMENT_ROOT,
    GROUP,
    GROUPDEF,
    INCLUDE,
    SCRIPT,
    Node,
    NodeRef,
    ScriptProgram,
)

from .scope import SCOPE_TAGS, ScopeResolver, find_parent_node_of_type

from .store import (
    SkinState,
    SkinStore,
    set_maki_tree,
    set_private_string,
    set_skin_trees,
    set_volume,
    set_xml_tree,
)

from .bridge import BridgeRegistry, RuntimeBridge, make_bridge

from .engine import NativeFunction, NativeFunctionTable, ScriptEngine

from .natives import DEFAULT_NATIVE_FUNCTIONS

from .lua_engine import LuaScriptEngine

from .transform import TreeTransformer, async_tree_flat_map

from .binder import (
    BindOutcome,
    BindReport,
    OutcomeKind,
    ScriptBinder,
    ScriptExecution,
)

from .publisher import LoadTicket, ResultPublisher

from .archive import SkinArchive, parse_fragment

from .loader import LoadResult, SkinLoader

__all__ = [
    # Errors
    "SkinError",
    "ArchiveLoadError",
    "BindingError",
    "ScopeNotFoundError",
    "EngineError",
    "EngineTimeoutError",
    "TraversalIntegrityError",
    # Tree model
    "SCRIPT",
    "GROUP",
    "GROUPDEF",
    "INCLUDE",
    "ABSTRACTION_LAYER_ROOT",
    "DOCUMENT_ROOT",
    "Node",
    "NodeRef",
    "ScriptProgram",
    # Scope
    "SCOPE_TAGS",
    "ScopeResolver",
    "find_parent_node_of_type",
    # Store
    "SkinState",
    "SkinStore",
    "set_xml_tree",
    "set_maki_tree",
    "set_skin_trees",
    "set_volume",
    "set_private_string",
    # Bridge and engine
    "RuntimeBridge",
    "BridgeRegistry",
    "make_bridge",
    "NativeFunction",
    "NativeFunctionTable",
    "ScriptEngine",
    "DEFAULT_NATIVE_FUNCTIONS",
    "LuaScriptEngine",
    # Binding
    "TreeTransformer",
    "async_tree_flat_map",
    "OutcomeKind",
    "BindOutcome",
    "BindReport",
    "ScriptExecution",
    "ScriptBinder",
    # Publication and loading
    "LoadTicket",
    "ResultPublisher",
    "SkinArchive",
    "parse_fragment",
    "LoadResult",
    "SkinLoader",
]

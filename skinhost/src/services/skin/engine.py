"""Script engine contract.

The binder hands each executable script's compiled program to an engine
together with the shared native-function table and the script's bridge. The
engine may keep the bridge for as long as the script instance lives.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Protocol, runtime_checkable

from .bridge import RuntimeBridge
from .node import ScriptProgram

# Native functions receive the calling script's bridge first
NativeFunction = Callable[..., Any]
NativeFunctionTable = Mapping[str, NativeFunction]


@runtime_checkable
class ScriptEngine(Protocol):
    """Executes compiled script programs."""

    async def execute(
        self,
        program: ScriptProgram,
        native_functions: NativeFunctionTable,
        bridge: RuntimeBridge,
    ) -> Any:
        """Run ``program`` against ``bridge``.

        Raises:
            EngineError: If the program fails to load or run.
        """
        ...


__all__ = ["NativeFunction", "NativeFunctionTable", "ScriptEngine"]

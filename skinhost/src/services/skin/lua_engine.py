"""Lua-backed script engine.

Runs script programs whose payload is Lua source via lupa, inside a
restricted environment:
- Environment whitelisting (no os, io, debug, require, load)
- Timeout enforcement on an executor thread, with a debug-hook deadline
  that stops the program itself rather than abandoning it
- A ``System`` table exposing the native-function table bound to the
  script's bridge, plus ``System.onEvent(name, fn)`` for host events

The Lua runtime of a script instance is kept until its bridge is disposed,
so callbacks registered with ``System.onEvent`` stay callable after
``execute`` returns.

Usage:
    engine = LuaScriptEngine(timeout_seconds=5.0)
    await engine.execute(program, DEFAULT_NATIVE_FUNCTIONS, bridge)
    bridge.fire("volumechanged", 128)
"""

from __future__ import annotations

import asyncio
import logging
import time
from functools import partial
from threading import Lock
from typing import Any, Callable

from lupa import LuaError, LuaRuntime

from .bridge import RuntimeBridge
from .engine import NativeFunction, NativeFunctionTable
from .errors import EngineError, EngineTimeoutError
from .node import ScriptProgram

logger = logging.getLogger(__name__)


# Basic functions copied into the sandbox environment
ALLOWED_GLOBALS = frozenset({
    "print",
    "type",
    "tostring",
    "tonumber",
    "pairs",
    "ipairs",
    "next",
    "select",
    "unpack",
    "pcall",
    "xpcall",
    "error",
    "assert",
})

# Never exposed to scripts
BLOCKED_GLOBALS = frozenset({
    "os",
    "io",
    "debug",
    "dofile",
    "loadfile",
    "load",
    "loadstring",
    "rawget",
    "rawset",
    "rawequal",
    "rawlen",
    "require",
    "module",
    "package",
    "collectgarbage",
    "setfenv",
    "getfenv",
    "setmetatable",
    "getmetatable",
    "coroutine",
})

SAFE_MODULE_FUNCTIONS = {
    "string": frozenset({
        "byte", "char", "find", "format", "gmatch", "gsub", "len",
        "lower", "match", "rep", "reverse", "sub", "upper",
    }),
    "table": frozenset({
        "concat", "insert", "maxn", "remove", "sort", "unpack",
    }),
    "math": frozenset({
        "abs", "acos", "asin", "atan", "ceil", "cos", "deg", "exp",
        "floor", "fmod", "huge", "log", "max", "min", "modf", "pi",
        "rad", "random", "sin", "sqrt", "tan",
    }),
}


# Instructions between deadline checks of a running program
HOOK_INSTRUCTION_COUNT = 1000

# Once expired the hook fires on every instruction, so an error caught by
# pcall is raised again as soon as control returns to the caller.
_DEADLINE_HOOK = """
function(expired, count)
  local function check()
    if expired() then
      debug.sethook(check, "", 1)
      error("script deadline exceeded", 2)
    end
  end
  debug.sethook(check, "", count)
end
"""


class _Deadline:
    """Time limit for the initial run of one program."""

    def __init__(self, seconds: float) -> None:
        self.at = time.monotonic() + seconds
        self.active = True
        self.tripped = False

    def expired(self) -> bool:
        if self.active and time.monotonic() >= self.at:
            self.tripped = True
        return self.tripped and self.active


class LuaScriptEngine:
    """Script engine executing Lua programs against runtime bridges.

    Attributes:
        timeout_seconds: Maximum time for the initial run of a program.
        log_calls: Log every native call a script makes.
    """

    def __init__(self, timeout_seconds: float = 5.0, log_calls: bool = False) -> None:
        self.timeout_seconds = timeout_seconds
        self.log_calls = log_calls
        self._runtimes: dict[str, LuaRuntime] = {}
        self._lock = Lock()

    @property
    def live_instances(self) -> int:
        """Number of script instances whose Lua runtime is still held."""
        with self._lock:
            return len(self._runtimes)

    async def execute(
        self,
        program: ScriptProgram,
        native_functions: NativeFunctionTable,
        bridge: RuntimeBridge,
    ) -> Any:
        """Execute a program in the sandbox.

        Returns:
            The chunk's return value converted to Python types.

        Raises:
            EngineError: If the program has syntax or runtime errors.
            EngineTimeoutError: If the program exceeds the timeout.
        """
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: self.execute_sync(program, native_functions, bridge),
                ),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Script {program.source_file} timed out after {self.timeout_seconds}s")
            # The executor thread stops at its own deadline; until then a
            # disposed bridge drops whatever the script still dispatches.
            bridge.dispose()
            raise EngineTimeoutError(
                f"Script execution exceeded {self.timeout_seconds} second timeout",
                source_file=program.source_file,
            )

    def execute_sync(
        self,
        program: ScriptProgram,
        native_functions: NativeFunctionTable,
        bridge: RuntimeBridge,
    ) -> Any:
        """Run a program on the calling thread.

        The initial run is interrupted once ``timeout_seconds`` pass, both
        inside Lua code (instruction hook) and at the next native call.

        Raises:
            EngineError: If the program has syntax or runtime errors.
            EngineTimeoutError: If the program runs past its deadline.
        """
        try:
            source = program.text()
        except UnicodeDecodeError as e:
            raise EngineError(f"Program is not Lua text: {e}", source_file=program.source_file)

        if not source.strip():
            return None

        try:
            lua = LuaRuntime(unpack_returned_tuples=True)
        except Exception as e:
            raise EngineError(f"Failed to create Lua runtime: {e}", source_file=program.source_file)

        deadline = _Deadline(self.timeout_seconds)
        env = self._create_sandbox_env(lua)
        env["System"] = self._system_table(lua, native_functions, bridge, deadline)

        load_func = lua.globals().load
        if load_func is None:
            raise EngineError("Lua load function not available", source_file=program.source_file)

        try:
            # Lua 5.2+ load(chunk, chunkname, mode, env) -> func | nil, err
            compile_result = load_func(source, program.source_file, "t", env)
            if isinstance(compile_result, tuple):
                compiled = compile_result[0]
                compile_error = compile_result[1] if len(compile_result) > 1 else None
            else:
                compiled, compile_error = compile_result, None
            if compiled is None:
                raise EngineError(
                    f"Lua syntax error: {compile_error or 'unknown error'}",
                    source_file=program.source_file,
                )
            lua.eval(_DEADLINE_HOOK)(deadline.expired, HOOK_INSTRUCTION_COUNT)
            try:
                result = compiled()
            finally:
                deadline.active = False
                lua.globals().debug.sethook()
        except EngineError:
            raise
        except Exception as e:
            if deadline.tripped:
                raise EngineTimeoutError(
                    f"Script execution exceeded {self.timeout_seconds} second timeout",
                    source_file=program.source_file,
                )
            if isinstance(e, LuaError):
                raise EngineError(f"Lua error: {e}", source_file=program.source_file)
            raise EngineError(f"Native call failed: {e}", source_file=program.source_file)

        with self._lock:
            self._runtimes[bridge.instance_id] = lua
        bridge.on_dispose(self._release)

        return _lua_to_python(result)

    def _release(self, bridge: RuntimeBridge) -> None:
        with self._lock:
            self._runtimes.pop(bridge.instance_id, None)

    def _system_table(
        self,
        lua: LuaRuntime,
        native_functions: NativeFunctionTable,
        bridge: RuntimeBridge,
        deadline: _Deadline,
    ) -> Any:
        system = lua.table()
        for name, func in native_functions.items():
            system[name] = self._bind_native(name, func, bridge, deadline)

        def on_event(event: str, callback: Callable[..., Any]) -> None:
            bridge.subscribe(str(event), callback)

        system["onEvent"] = on_event
        return system

    def _bind_native(
        self,
        name: str,
        func: NativeFunction,
        bridge: RuntimeBridge,
        deadline: _Deadline,
    ) -> Callable[..., Any]:
        bound = partial(func, bridge)

        def call(*args: Any) -> Any:
            if deadline.expired() or (deadline.active and bridge.disposed):
                deadline.tripped = True
                raise EngineTimeoutError(
                    f"System.{name} called after the script deadline",
                    source_file=bridge.source_file,
                )
            if self.log_calls:
                logger.debug(f"[{bridge.source_file}] System.{name}{args}")
            return bound(*args)

        return call

    def _create_sandbox_env(self, lua: LuaRuntime) -> Any:
        env = lua.table()
        lua_globals = lua.globals()

        for name in ALLOWED_GLOBALS:
            try:
                value = lua_globals[name]
            except (KeyError, LuaError):
                continue
            if value is not None:
                env[name] = value

        for module_name, functions in SAFE_MODULE_FUNCTIONS.items():
            module_table = lua.table()
            lua_module = lua_globals[module_name]
            if lua_module is not None:
                for func_name in functions:
                    value = lua_module[func_name]
                    if value is not None:
                        module_table[func_name] = value
            env[module_name] = module_table

        return env


def _lua_to_python(value: Any) -> Any:
    """Convert a Lua return value to plain Python types."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if hasattr(value, "items"):
        return {_lua_to_python(k): _lua_to_python(v) for k, v in value.items()}
    return value


__all__ = ["LuaScriptEngine", "ALLOWED_GLOBALS", "BLOCKED_GLOBALS"]

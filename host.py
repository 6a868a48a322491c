from __future__ import annotations

import sys
import threading
from pathlib import Path
from wasmtime import Engine, Store, Module, Instance, Func, Memory, Trap, WasmtimeError
from typing import Any

from binding import NativeFunction, ParamType, Registry, Signature, invoke

ARENA_BASE = 0
PAGE_SIZE = 65536

# Native functions exported by native.wasm and the signatures they are bound with.
NATIVE_METHODS: dict[str, Signature] = {
    "strcmp": Signature([ParamType.STR, ParamType.STR], ParamType.I32),
}

# Wasm value types each parameter type flattens to at the module boundary.
_FLAT_TYPES = {
    ParamType.STR: ["i32", "i32"],  # (ptr, len)
    ParamType.I32: ["i32"],
}

# --- High-level Abstractions ---

class WasmGuest:
    """
    Represents a running native (Wasm) module instance. It handles loading,
    instantiation, and provides a high-level API for interacting
    with the module's memory and exported functions.
    """
    def __init__(self, wasm: str | Path | bytes):
        if isinstance(wasm, str):
            wasm = Path(wasm)
        if isinstance(wasm, Path):
            if not wasm.exists():
                raise FileNotFoundError(f"Wasm file not found at: {wasm}")
            print(f"Loading Wasm module from {wasm}...")
            wasm = wasm.read_bytes()
        else:
            print(f"Loading Wasm module ({len(wasm)} bytes)...")

        self.engine = Engine()
        self.store = Store(self.engine)
        self.module = Module(self.engine, wasm)

        self._analyze_imports()

        self.host = Host(self.store)
        # The store and the argument arena are shared by every call on this guest.
        self._lock = threading.RLock()

        print("Instantiating module...")
        self.instance = Instance(self.store, self.module, [])

        # Link the instance's memory to the host
        memory = self._lookup("memory")
        if not isinstance(memory, Memory):
            raise TypeError("Wasm module did not export 'memory'")
        self.host.memory = memory

        print("Successfully instantiated WASM module.")

    def _analyze_imports(self):
        """The host provides no imports, so a module must not require any."""
        required = [f"{imp.module}.{imp.name}" for imp in self.module.imports]
        if required:
            raise TypeError(f"Wasm module requires unsupported imports: {', '.join(required)}")

    def _lookup(self, name: str) -> Any:
        try:
            return self.instance.exports(self.store)[name]
        except KeyError:
            return None

    def _export(self, func_name: str) -> Func:
        func = self._lookup(func_name)
        if func is None:
            raise TypeError(f"Wasm module has no export '{func_name}'.")
        if not isinstance(func, Func):
            raise TypeError(f"Export '{func_name}' is not a function.")
        return func

    def call(self, func_name: str, *args: Any) -> Any:
        """
        Calls an exported function from the Wasm module with raw wasm values.

        Args:
            func_name: The name of the exported function to call.
            *args: The arguments to pass to the function.

        Returns:
            The result of the function call.
        """
        func = self._export(func_name)
        print(f"Calling exported function '{func_name}' with args: {args}")
        with self._lock:
            return func(self.store, *args)

    def write_memory(self, offset: int, data: bytes):
        """Writes data to the Wasm instance's memory."""
        print(f"Writing {len(data)} bytes to memory at offset {offset}")
        with self._lock:
            self.host.ensure_capacity(offset + len(data))
            self.host.memory.write(self.store, data, offset)

    def read_memory(self, offset: int, length: int) -> bytes:
        """Reads `length` bytes from the Wasm instance's memory."""
        with self._lock:
            return bytes(self.host.memory.read(self.store, offset, offset + length))

    def bind(self, func_name: str, signature: Signature) -> NativeFunction:
        """
        Wraps an export as a NativeFunction with the given signature.

        The export's wasm type is checked against the flattened signature
        here, so a wrong declaration fails at bind time and not mid-call.
        """
        func = self._export(func_name)
        if signature.result is not ParamType.I32:
            raise TypeError(f"'{func_name}': only i32 results cross the wasm boundary")

        expected_params = [t for p in signature.params for t in _FLAT_TYPES[p]]
        ftype = func.type(self.store)
        actual_params = [str(t) for t in ftype.params]
        actual_results = [str(t) for t in ftype.results]
        if actual_params != expected_params or actual_results != ["i32"]:
            raise TypeError(
                f"Export '{func_name}' has type ({' '.join(actual_params)}) -> "
                f"({' '.join(actual_results)}), cannot bind as {signature}"
            )

        def call(*lowered: Any) -> Any:
            with self._lock:
                self.host.reset()
                flat: list[int] = []
                for value, ptype in zip(lowered, signature.params):
                    if ptype is ParamType.STR:
                        flat.extend((self.host.alloc(value), len(value)))
                    else:
                        flat.append(value)
                return self.call(func_name, *flat)

        return NativeFunction(func_name, signature, call)


class Host:
    """
    Owns the guest's linear memory on the host side: a bump-allocated
    argument arena starting at ARENA_BASE, reset before every bound call.
    """
    def __init__(self, store: Store):
        self.store = store
        self.memory: Memory | None = None
        self._top = ARENA_BASE

    def reset(self):
        self._top = ARENA_BASE

    def ensure_capacity(self, end: int):
        if self.memory is None:
            raise RuntimeError("Host Error: Memory not available.")
        size = self.memory.data_len(self.store)
        if end > size:
            pages = -(-(end - size) // PAGE_SIZE)
            self.memory.grow(self.store, pages)

    def alloc(self, data: bytes) -> int:
        """Copies `data` into the arena and returns its offset."""
        ptr = self._top
        end = ptr + len(data)
        self.ensure_capacity(end)
        if data:
            self.memory.write(self.store, data, ptr)
        self._top = end
        return ptr


def build_registry(guest: WasmGuest) -> Registry:
    """Binds every entry of NATIVE_METHODS exported by `guest`."""
    registry = Registry()
    for name, signature in NATIVE_METHODS.items():
        registry.register(guest.bind(name, signature))
    return registry


# --- Main script execution ---
if __name__ == "__main__":
    argv = sys.argv[1:]
    if len(argv) == 3:
        wasm_path, call_args = Path(argv[0]), argv[1:]
    else:
        wasm_path, call_args = Path("native.wasm"), argv

    try:
        # 1. Load the native module (see native.py to build it).
        guest = WasmGuest(wasm_path)

        # 2. Build the name -> marshaled function table once.
        registry = build_registry(guest)

        # 3. Marshal the command-line arguments through strcmp.
        result = invoke(registry.get("strcmp"), call_args)

        if result.ok:
            print(f"\n'strcmp' returned: {result.value}")
        else:
            print(f"\n'strcmp' failed: {result.error.kind.value}: {result.error.message}")
            sys.exit(1)

    except (WasmtimeError, Trap, RuntimeError, TypeError, FileNotFoundError) as e:
        print(f"\nAn error occurred: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)

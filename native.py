# native.py
# Builds the native side of the binding: a tiny WebAssembly module exporting
#   (memory (export "memory") 1)
#   (export "strcmp" (func $strcmp (param i32 i32 i32 i32) (result i32)))
#
# strcmp takes two (ptr, len) byte ranges in linear memory and behaves like
# C strcmp over them: unsigned bytes are compared up to the shorter length,
# the first differing pair decides (a - b), and when one string is a prefix
# of the other the missing byte compares as the terminating NUL.
#
# The host copies arguments into memory before calling; see host.py.

from __future__ import annotations
from pathlib import Path
from wasmtime import wat2wasm

OUT_WASM = Path("native.wasm")

# --- WAT emission -------------------------------------------------------------------

def _byte_at(base: str, limit: str) -> str:
    # i < limit ? mem[base + i] : 0
    return (
        f"    local.get $i\n    local.get {limit}\n    i32.lt_u\n"
        f"    if (result i32)\n"
        f"      local.get {base}\n      local.get $i\n      i32.add\n      i32.load8_u\n"
        f"    else\n      i32.const 0\n    end\n"
    )


def emit_wat() -> str:
    prefix_tail = _byte_at("$a", "$a_len") + _byte_at("$b", "$b_len")

    wat = f"""
(module
  (memory (export "memory") 1)

  ;; strcmp(a_ptr: i32, a_len: i32, b_ptr: i32, b_len: i32) -> i32
  (func $strcmp (param $a i32) (param $a_len i32) (param $b i32) (param $b_len i32) (result i32)
    (local $i i32) (local $n i32) (local $ca i32) (local $cb i32)

    ;; n = min(a_len, b_len)
    local.get $a_len
    local.get $b_len
    local.get $a_len
    local.get $b_len
    i32.lt_u
    select
    local.set $n

    block $done
      loop $next
        local.get $i
        local.get $n
        i32.ge_u
        br_if $done

        local.get $a
        local.get $i
        i32.add
        i32.load8_u
        local.set $ca
        local.get $b
        local.get $i
        i32.add
        i32.load8_u
        local.set $cb

        local.get $ca
        local.get $cb
        i32.ne
        if
          local.get $ca
          local.get $cb
          i32.sub
          return
        end

        local.get $i
        i32.const 1
        i32.add
        local.set $i
        br $next
      end
    end

    ;; one is a prefix of the other (or both equal)
{prefix_tail}    i32.sub
  )

  (export "strcmp" (func $strcmp))
)
    """.strip()
    return wat


def build_native_module() -> bytes:
    return wat2wasm(emit_wat())

# --- Main ---------------------------------------------------------------------------

if __name__ == "__main__":
    wasm_bytes = build_native_module()
    OUT_WASM.write_bytes(wasm_bytes)
    print(f"Wrote {OUT_WASM} ({len(wasm_bytes)} bytes)")

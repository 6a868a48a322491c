from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Ensure repository root is on sys.path so the top-level modules import
# without an installed package.
_REPO_ROOT = Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from binding import NativeFunction, ParamType, Signature
from host import WasmGuest, build_registry
from native import build_native_module

STRCMP_SIGNATURE = Signature([ParamType.STR, ParamType.STR], ParamType.I32)


class CountingNative:
    """Stand-in native callable that records every call it receives."""

    def __init__(self, returns=0):
        self.returns = returns
        self.calls: list[tuple] = []

    def __call__(self, *args):
        self.calls.append(args)
        return self.returns


@pytest.fixture(scope="session")
def native_wasm() -> bytes:
    return bytes(build_native_module())


@pytest.fixture
def guest(native_wasm: bytes) -> WasmGuest:
    return WasmGuest(native_wasm)


@pytest.fixture
def registry(guest: WasmGuest):
    return build_registry(guest)


@pytest.fixture
def counting_native() -> CountingNative:
    return CountingNative()


@pytest.fixture
def stub_strcmp(counting_native: CountingNative) -> NativeFunction:
    return NativeFunction("strcmp", STRCMP_SIGNATURE, counting_native)

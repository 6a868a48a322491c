from __future__ import annotations

import pytest
from wasmtime import wat2wasm

from binding import ArgumentMismatchError, ErrorKind, ParamType, Signature, invoke
from host import NATIVE_METHODS, PAGE_SIZE, WasmGuest, build_registry


def _sign(n: int) -> int:
    return (n > 0) - (n < 0)


def _reference_sign(a: str, b: str) -> int:
    ea, eb = a.encode("utf-8"), b.encode("utf-8")
    return (ea > eb) - (ea < eb)


class TestStrcmpScenarios:
    def test_equal_strings(self, registry) -> None:
        result = registry.invoke("strcmp", ["hello world", "hello world"])

        assert result.ok
        assert result.value == 0

    def test_less_than(self, registry) -> None:
        assert registry.invoke("strcmp", ["abc", "abd"]).value < 0

    def test_greater_than(self, registry) -> None:
        assert registry.invoke("strcmp", ["abd", "abc"]).value > 0

    def test_missing_argument(self, registry) -> None:
        result = registry.invoke("strcmp", ["only-one-arg"])

        assert result.error.kind is ErrorKind.ARGUMENT_MISMATCH

    def test_non_string_argument(self, registry) -> None:
        result = registry.invoke("strcmp", [42, "text"])

        assert result.error.kind is ErrorKind.ARGUMENT_MISMATCH


class TestStrcmpSemantics:
    @pytest.mark.parametrize(
        "a, b",
        [
            ("", ""),
            ("", "a"),
            ("a", ""),
            ("ab", "abc"),
            ("abc", "ab"),
            ("Zebra", "apple"),
            ("apple", "Zebra"),
            ("naïve", "naive"),
            ("日本", "日本語"),
            ("\x7f", "\x80"),
        ],
    )
    def test_sign_matches_byte_comparison(self, registry, a, b) -> None:
        result = registry.invoke("strcmp", [a, b])

        assert _sign(result.value) == _reference_sign(a, b)

    def test_returns_difference_of_first_differing_bytes(self, registry) -> None:
        assert registry.invoke("strcmp", ["abc", "abd"]).value == ord("c") - ord("d")

    def test_prefix_compares_against_terminator(self, registry) -> None:
        assert registry.invoke("strcmp", ["ab", "abc"]).value == -ord("c")
        assert registry.invoke("strcmp", ["abc", "ab"]).value == ord("c")

    def test_bytes_arguments(self, registry) -> None:
        assert registry.invoke("strcmp", [b"\xff", b"\x01"]).value == 0xFF - 0x01

    def test_repeated_calls_are_identical(self, registry) -> None:
        results = {registry.invoke("strcmp", ["abd", "abc"]).value for _ in range(10)}

        assert len(results) == 1

    def test_arguments_larger_than_one_page_grow_memory(self, guest) -> None:
        registry = build_registry(guest)
        big = "x" * (PAGE_SIZE + 10)

        assert registry.invoke("strcmp", [big, big]).value == 0
        assert registry.invoke("strcmp", [big, big + "y"]).value == -ord("y")
        assert guest.host.memory.data_len(guest.store) >= 2 * len(big)

    def test_method_table(self, registry) -> None:
        strcmp = registry.method_table()["strcmp"]

        assert strcmp("same", "same") == 0
        with pytest.raises(ArgumentMismatchError):
            strcmp("same")


class TestWasmGuest:
    def test_load_from_path(self, tmp_path, native_wasm) -> None:
        path = tmp_path / "native.wasm"
        path.write_bytes(native_wasm)

        guest = WasmGuest(path)

        assert build_registry(guest).names() == list(NATIVE_METHODS)

    def test_load_from_str_path(self, tmp_path, native_wasm) -> None:
        path = tmp_path / "native.wasm"
        path.write_bytes(native_wasm)

        guest = WasmGuest(str(path))

        assert build_registry(guest).invoke("strcmp", ["a", "a"]).value == 0

    def test_missing_file_as_str(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            WasmGuest(str(tmp_path / "missing.wasm"))

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            WasmGuest(tmp_path / "missing.wasm")

    def test_module_without_memory(self) -> None:
        with pytest.raises(TypeError, match="memory"):
            WasmGuest(bytes(wat2wasm("(module)")))

    def test_module_with_imports(self) -> None:
        wasm = wat2wasm('(module (import "env" "log" (func (param i32 i32))) (memory (export "memory") 1))')

        with pytest.raises(TypeError, match="env.log"):
            WasmGuest(bytes(wasm))

    def test_raw_call_with_memory(self, guest) -> None:
        guest.write_memory(0, b"abc")
        guest.write_memory(16, b"abc")

        assert guest.read_memory(0, 3) == b"abc"
        assert guest.call("strcmp", 0, 3, 16, 3) == 0

    def test_call_non_function_export(self, guest) -> None:
        with pytest.raises(TypeError, match="not a function"):
            guest.call("memory")

    def test_bind_unknown_export(self, guest) -> None:
        with pytest.raises(TypeError, match="no export"):
            guest.bind("strncmp", NATIVE_METHODS["strcmp"])

    def test_bind_with_wrong_signature(self, guest) -> None:
        with pytest.raises(TypeError, match="cannot bind"):
            guest.bind("strcmp", Signature([ParamType.STR], ParamType.I32))

    def test_bind_with_str_result(self, guest) -> None:
        with pytest.raises(TypeError, match="i32 results"):
            guest.bind("strcmp", Signature([ParamType.STR, ParamType.STR], ParamType.STR))

    def test_bound_function_with_i32_parameters(self, guest) -> None:
        # strcmp's raw (ptr, len, ptr, len) form, bound with plain ints
        raw = guest.bind("strcmp", Signature([ParamType.I32] * 4, ParamType.I32))
        guest.write_memory(100, b"b")
        guest.write_memory(200, b"a")

        assert invoke(raw, [100, 1, 200, 1]).value == 1

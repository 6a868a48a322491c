# binding.py
# Marshals calls from Python into statically-typed native functions.
#
# A native function declares a fixed Signature. invoke() checks the host
# arguments against it, lowers them to native values, performs the call and
# lifts the native return value back into a Python value:
#
#   STR  <- str (UTF-8) | bytes | bytearray, no NUL bytes   -> bytes
#   I32  <- int in [-2**31, 2**31 - 1], bool rejected        -> int
#
# Errors never escape invoke(): they come back as a FAILED CallResult.

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Sequence

I32_MIN = -(2 ** 31)
I32_MAX = 2 ** 31 - 1


class ParamType(Enum):
    STR = "str"
    I32 = "i32"


class ErrorKind(Enum):
    ARGUMENT_MISMATCH = "ArgumentMismatch"
    CONVERSION_FAILURE = "ConversionFailure"


class CallState(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


# --- Errors -------------------------------------------------------------------------

class BindingError(Exception):
    """Raised when a failed CallResult is unwrapped."""
    kind: ErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


class ArgumentMismatchError(BindingError, TypeError):
    kind = ErrorKind.ARGUMENT_MISMATCH


class ConversionFailureError(BindingError, ValueError):
    kind = ErrorKind.CONVERSION_FAILURE


_ERRORS: dict[ErrorKind, type[BindingError]] = {
    ErrorKind.ARGUMENT_MISMATCH: ArgumentMismatchError,
    ErrorKind.CONVERSION_FAILURE: ConversionFailureError,
}


class _NotConvertible(Exception):
    pass


# --- Call data ----------------------------------------------------------------------

@dataclass(frozen=True)
class CallError:
    kind: ErrorKind
    message: str

    def to_exception(self) -> BindingError:
        return _ERRORS[self.kind](self.message)


@dataclass(frozen=True)
class CallResult:
    """
    Outcome of one marshaled call.

    PENDING is the state before the native side has produced anything; it is
    never returned by invoke(). SUCCESS carries a value, FAILED carries a
    CallError, and never both.
    """
    state: CallState
    _value: Any = None
    error: CallError | None = None

    def __post_init__(self):
        if self.state is CallState.SUCCESS and self.error is not None:
            raise ValueError("a successful result cannot carry an error")
        if self.state is CallState.FAILED:
            if not isinstance(self.error, CallError):
                raise ValueError("a failed result needs a CallError")
            if self._value is not None:
                raise ValueError("a failed result cannot carry a value")
        if self.state is CallState.PENDING and (self._value is not None or self.error is not None):
            raise ValueError("a pending result carries neither value nor error")

    @classmethod
    def pending(cls) -> CallResult:
        return cls(CallState.PENDING)

    @classmethod
    def success(cls, value: Any) -> CallResult:
        return cls(CallState.SUCCESS, value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> CallResult:
        return cls(CallState.FAILED, error=CallError(kind, message))

    @property
    def ok(self) -> bool:
        return self.state is CallState.SUCCESS

    @property
    def value(self) -> Any:
        if self.state is not CallState.SUCCESS:
            raise AttributeError(f"{self.state.value} result has no value")
        return self._value

    def unwrap(self) -> Any:
        """Returns the value, or raises the BindingError matching the failure."""
        if self.state is CallState.SUCCESS:
            return self._value
        if self.state is CallState.FAILED:
            raise self.error.to_exception()
        raise RuntimeError("call result was never computed")

    def __repr__(self) -> str:
        if self.state is CallState.SUCCESS:
            return f"CallResult.success({self._value!r})"
        if self.state is CallState.FAILED:
            return f"CallResult.failure({self.error.kind.value}, {self.error.message!r})"
        return "CallResult.pending()"


@dataclass(frozen=True)
class Signature:
    params: tuple[ParamType, ...]
    result: ParamType

    def __init__(self, params: Sequence[ParamType], result: ParamType):
        object.__setattr__(self, "params", tuple(params))
        object.__setattr__(self, "result", result)

    @property
    def arity(self) -> int:
        return len(self.params)

    def __str__(self) -> str:
        args = ", ".join(p.value for p in self.params)
        return f"({args}) -> {self.result.value}"


@dataclass(frozen=True)
class NativeFunction:
    """A native callable together with the signature it was declared with.

    `call` receives already-lowered values (bytes for STR, int for I32).
    """
    name: str
    signature: Signature
    call: Callable[..., Any]


# --- Conversions --------------------------------------------------------------------

def _lower(value: Any, ptype: ParamType) -> Any:
    if ptype is ParamType.STR:
        if isinstance(value, str):
            try:
                data = value.encode("utf-8")
            except UnicodeEncodeError as e:
                raise _NotConvertible(f"cannot encode as UTF-8: {e.reason}") from e
        elif isinstance(value, (bytes, bytearray)):
            data = bytes(value)
        else:
            raise _NotConvertible(f"expected str, got {type(value).__name__}")
        if b"\x00" in data:
            raise _NotConvertible("embedded null character")
        return data

    if ptype is ParamType.I32:
        if isinstance(value, bool) or not isinstance(value, int):
            raise _NotConvertible(f"expected int, got {type(value).__name__}")
        if not I32_MIN <= value <= I32_MAX:
            raise _NotConvertible(f"{value} does not fit in a signed 32-bit integer")
        return value

    raise AssertionError(f"unknown parameter type {ptype!r}")


def _lift(raw: Any, ptype: ParamType) -> Any:
    if ptype is ParamType.I32:
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise _NotConvertible(f"native returned {type(raw).__name__}, expected i32")
        if not I32_MIN <= raw <= I32_MAX:
            raise _NotConvertible(f"native returned {raw}, outside i32 range")
        return raw

    if ptype is ParamType.STR:
        if isinstance(raw, str):
            return raw
        if isinstance(raw, (bytes, bytearray)):
            try:
                return bytes(raw).decode("utf-8")
            except UnicodeDecodeError as e:
                raise _NotConvertible(f"native returned invalid UTF-8: {e.reason}") from e
        raise _NotConvertible(f"native returned {type(raw).__name__}, expected str")

    raise AssertionError(f"unknown result type {ptype!r}")


# --- Marshaler ----------------------------------------------------------------------

def invoke(native_fn: NativeFunction, call_arguments: Sequence[Any]) -> CallResult:
    """
    Calls `native_fn` with host values and returns a CallResult.

    Arity and every argument are checked before the native call; on a
    mismatch the native function is not called at all.
    """
    result = CallResult.pending()
    sig = native_fn.signature
    args = tuple(call_arguments)

    if len(args) != sig.arity:
        return CallResult.failure(
            ErrorKind.ARGUMENT_MISMATCH,
            f"{native_fn.name}() takes exactly {sig.arity} argument(s) ({len(args)} given)",
        )

    lowered = []
    for pos, (value, ptype) in enumerate(zip(args, sig.params), start=1):
        try:
            lowered.append(_lower(value, ptype))
        except _NotConvertible as e:
            return CallResult.failure(
                ErrorKind.ARGUMENT_MISMATCH,
                f"{native_fn.name}() argument {pos} must be {ptype.value}: {e}",
            )

    raw = native_fn.call(*lowered)

    try:
        result = CallResult.success(_lift(raw, sig.result))
    except _NotConvertible as e:
        result = CallResult.failure(
            ErrorKind.CONVERSION_FAILURE, f"{native_fn.name}(): {e}"
        )

    if result.state is CallState.PENDING:
        raise AssertionError("call result was never computed")
    return result


# --- Registry -----------------------------------------------------------------------

class Registry:
    """
    The set of native functions exposed to the host, keyed by name.

    Built once at startup and handed to whatever integrates the functions
    into the host (see method_table()).
    """
    def __init__(self):
        self._functions: dict[str, NativeFunction] = {}

    def register(self, native_fn: NativeFunction, name: str | None = None) -> None:
        name = name or native_fn.name
        if name in self._functions:
            raise ValueError(f"native function '{name}' is already registered")
        self._functions[name] = native_fn

    def get(self, name: str) -> NativeFunction:
        try:
            return self._functions[name]
        except KeyError:
            raise KeyError(f"no native function named '{name}'") from None

    def names(self) -> list[str]:
        return list(self._functions)

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def __len__(self) -> int:
        return len(self._functions)

    def invoke(self, name: str, call_arguments: Sequence[Any]) -> CallResult:
        return invoke(self.get(name), call_arguments)

    def method_table(self) -> dict[str, Callable[..., Any]]:
        """Plain Python callables that return the value or raise BindingError."""
        table = {}
        for name, fn in self._functions.items():
            table[name] = _host_callable(name, fn)
        return table


def _host_callable(name: str, native_fn: NativeFunction) -> Callable[..., Any]:
    def call(*args: Any) -> Any:
        return invoke(native_fn, args).unwrap()

    call.__name__ = name
    call.__qualname__ = name
    call.__doc__ = f"{name}{native_fn.signature}"
    return call

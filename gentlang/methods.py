"""Built-in methods on arrays, strings, objects and enum values.

Every method is a pure function of its receiver and arguments. `push`
and `pop` return a replacement receiver alongside their result; the
evaluator rebinds the variable the method was called on.
"""
from __future__ import annotations
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from .errors import GentTypeError, RuntimeGentError
from .types import (
    BuiltinFunction, Closure, EnumValue, StructValue, VariantConstructor,
    display, is_number, truthy, type_name, values_equal,
)

# (value, new receiver or None)
MethodResult = Tuple[Any, Optional[Any]]
CallFn = Callable[[Any, List[Any]], Awaitable[Any]]

REBINDING_METHODS = frozenset({"push", "pop"})


def _arg(args: List[Any], i: int, method: str, kind: str) -> Any:
    if i >= len(args):
        raise GentTypeError(f"{method}() expects a {kind} argument at position {i + 1}, got nothing")
    value = args[i]
    ok = {
        "string": isinstance(value, str),
        "number": is_number(value),
        "array": isinstance(value, list),
        "function": callable_value(value),
        "any": True,
    }[kind]
    if not ok:
        raise GentTypeError(f"{method}() expects a {kind} argument at position {i + 1}, got {type_name(value)}")
    return value


def _int_arg(args: List[Any], i: int, method: str) -> int:
    n = _arg(args, i, method, "number")
    if isinstance(n, float) and not n.is_integer():
        raise GentTypeError(f"{method}() expects an integer, got {display(n)}")
    return int(n)


def callable_value(value: Any) -> bool:
    return isinstance(value, (Closure, BuiltinFunction, VariantConstructor))


def _slice_bounds(size: int, args: List[Any], method: str) -> Tuple[int, int]:
    start = _int_arg(args, 0, method) if args else 0
    end = _int_arg(args, 1, method) if len(args) > 1 else size
    return start, end


# ---------- arrays ----------
async def _array_method(arr: list, name: str, args: List[Any], call: CallFn) -> MethodResult:
    match name:
        case "length":
            return len(arr), None
        case "isEmpty":
            return len(arr) == 0, None
        case "push":
            value = _arg(args, 0, "push", "any")
            return None, arr + [value]
        case "pop":
            if not arr:
                return None, arr
            return arr[-1], arr[:-1]
        case "indexOf":
            target = _arg(args, 0, "indexOf", "any")
            for i, v in enumerate(arr):
                if values_equal(v, target):
                    return i, None
            return -1, None
        case "contains":
            target = _arg(args, 0, "contains", "any")
            return any(values_equal(v, target) for v in arr), None
        case "join":
            sep = _arg(args, 0, "join", "string") if args else ","
            return sep.join(display(v) for v in arr), None
        case "slice":
            start, end = _slice_bounds(len(arr), args, "slice")
            return arr[start:end], None
        case "concat":
            other = _arg(args, 0, "concat", "array")
            return arr + other, None
        case "reverse":
            return list(reversed(arr)), None
        case "map":
            fn = _arg(args, 0, "map", "function")
            return [await call(fn, [v]) for v in arr], None
        case "filter":
            fn = _arg(args, 0, "filter", "function")
            out = []
            for v in arr:
                if truthy(await call(fn, [v])):
                    out.append(v)
            return out, None
        case "find":
            fn = _arg(args, 0, "find", "function")
            for v in arr:
                if truthy(await call(fn, [v])):
                    return v, None
            return None, None
        case "reduce":
            fn = _arg(args, 0, "reduce", "function")
            if len(args) < 2:
                raise GentTypeError("reduce() expects an initial value as its second argument")
            acc = args[1]
            for v in arr:
                acc = await call(fn, [acc, v])
            return acc, None
    raise GentTypeError(f"Array has no method '{name}'")


# ---------- strings ----------
def _string_method(s: str, name: str, args: List[Any]) -> MethodResult:
    match name:
        case "length":
            return len(s), None
        case "isEmpty":
            return len(s) == 0, None
        case "trim":
            return s.strip(), None
        case "toLowerCase":
            return s.lower(), None
        case "toUpperCase":
            return s.upper(), None
        case "contains":
            return _arg(args, 0, "contains", "string") in s, None
        case "startsWith":
            return s.startswith(_arg(args, 0, "startsWith", "string")), None
        case "endsWith":
            return s.endswith(_arg(args, 0, "endsWith", "string")), None
        case "indexOf":
            return s.find(_arg(args, 0, "indexOf", "string")), None
        case "split":
            sep = _arg(args, 0, "split", "string")
            if sep == "":
                return list(s), None
            return s.split(sep), None
        case "chars":
            return list(s), None
        case "replace":
            old = _arg(args, 0, "replace", "string")
            new = _arg(args, 1, "replace", "string")
            return s.replace(old, new, 1), None
        case "slice":
            start, end = _slice_bounds(len(s), args, "slice")
            return s[start:end], None
        case "concat":
            return s + display(_arg(args, 0, "concat", "any")), None
    raise GentTypeError(f"String has no method '{name}'")


# ---------- objects ----------
def _object_method(obj: dict, name: str, args: List[Any]) -> MethodResult:
    match name:
        case "keys":
            return list(obj.keys()), None
        case "values":
            return list(obj.values()), None
        case "entries":
            return [{"key": k, "value": v} for k, v in obj.items()], None
        case "length":
            return len(obj), None
        case "isEmpty":
            return len(obj) == 0, None
        case "contains" | "has":
            return _arg(args, 0, name, "string") in obj, None
        case "get":
            key = _arg(args, 0, "get", "string")
            default = args[1] if len(args) > 1 else None
            return obj.get(key, default), None
    raise GentTypeError(f"Object has no method '{name}'")


# ---------- enums ----------
def _enum_method(value: EnumValue, name: str, args: List[Any]) -> MethodResult:
    match name:
        case "is":
            other = _arg(args, 0, "is", "any")
            if isinstance(other, EnumValue):
                return (other.enum_name, other.variant) == (value.enum_name, value.variant), None
            if isinstance(other, VariantConstructor):
                return (other.enum.name, other.variant.name) == (value.enum_name, value.variant), None
            raise GentTypeError(f"is() expects an enum variant, got {type_name(other)}")
        case "data":
            i = _int_arg(args, 0, "data") if args else 0
            if not 0 <= i < len(value.payload):
                raise RuntimeGentError(
                    f"Variant '{value.enum_name}.{value.variant}' has no data at index {i}"
                )
            return value.payload[i], None
        case "variant":
            return value.variant, None
    raise GentTypeError(f"Enum value has no method '{name}'")


async def call_method(target: Any, name: str, args: List[Any], call: CallFn) -> MethodResult:
    if isinstance(target, list):
        return await _array_method(target, name, args, call)
    if isinstance(target, str):
        return _string_method(target, name, args)
    if isinstance(target, dict):
        return _object_method(target, name, args)
    if isinstance(target, StructValue):
        return _object_method(target.fields, name, args)
    if isinstance(target, EnumValue):
        return _enum_method(target, name, args)
    raise GentTypeError(f"Cannot call method '{name}' on {type_name(target)}")

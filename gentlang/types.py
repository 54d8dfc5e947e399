"""Runtime value model for GENT programs.

Primitive values map directly onto Python objects:

    null     -> None
    boolean  -> bool
    number   -> int | float
    string   -> str
    array    -> list
    object   -> dict (insertion ordered)

Composite language values (struct instances, enum variants, closures,
agent and parallel handles) are the frozen dataclasses below.
"""
from __future__ import annotations
import json
import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

from . import ast
from .errors import GentTypeError


class ValueTag(str, Enum):
    Null = "null"
    Boolean = "boolean"
    Number = "number"
    String = "string"
    Array = "array"
    Object = "object"
    Struct = "struct"
    Enum = "enum"
    Function = "function"
    Agent = "agent"
    Parallel = "parallel"
    Knowledge = "knowledge"
    Type = "type"


@dataclass(frozen=True)
class StructValue:
    type_name: str
    fields: Dict[str, Any]


@dataclass(frozen=True)
class EnumValue:
    enum_name: str
    variant: str
    payload: Tuple[Any, ...] = ()
    field_names: Tuple[Optional[str], ...] = ()

    def field(self, name: str) -> Any:
        for i, n in enumerate(self.field_names):
            if n == name:
                return self.payload[i]
        raise GentTypeError(f"Variant '{self.enum_name}.{self.variant}' has no field '{name}'")


@dataclass(frozen=True)
class StructType:
    decl: ast.StructDecl

    @property
    def name(self) -> str:
        return self.decl.name


@dataclass(frozen=True)
class EnumType:
    decl: ast.EnumDecl

    @property
    def name(self) -> str:
        return self.decl.name


@dataclass(frozen=True)
class VariantConstructor:
    enum: ast.EnumDecl
    variant: ast.VariantDecl


@dataclass(frozen=True, eq=False)
class Closure:
    """Function, tool or lambda plus the environment it was defined in."""
    decl: Any  # ast.FunctionDecl | ast.ToolDecl | ast.Lambda
    env: Any  # Environment, shared rather than copied
    name: str = "<lambda>"

    @property
    def is_tool(self) -> bool:
        return isinstance(self.decl, ast.ToolDecl)


@dataclass(frozen=True, eq=False)
class BuiltinFunction:
    name: str
    fn: Callable[..., Any]
    min_args: int = 0
    max_args: Optional[int] = None


@dataclass(frozen=True)
class KnowledgeBinding:
    source: Any  # knowledge.KnowledgeBase
    chunk_limit: int = 3
    score_threshold: float = 0.0


@dataclass(frozen=True)
class AgentHandle:
    name: str
    system_prompt: str
    user_prompt: Optional[str] = None
    model: Optional[str] = None
    provider: Optional[str] = None
    tools: Tuple[str, ...] = ()
    output: Optional[ast.TypeExpr] = None
    output_retries: int = 1
    retry_prompt: Optional[str] = None
    max_steps: int = 10
    knowledge: Optional[KnowledgeBinding] = None

    def with_overrides(self, **changes: Any) -> "AgentHandle":
        return replace(self, **changes)


@dataclass(frozen=True)
class ParallelHandle:
    name: str
    agents: Tuple[AgentHandle, ...]
    timeout_s: Optional[float] = None


# ---------- introspection ----------
def tag_of(value: Any) -> ValueTag:
    if value is None:
        return ValueTag.Null
    if isinstance(value, bool):
        return ValueTag.Boolean
    if isinstance(value, (int, float)):
        return ValueTag.Number
    if isinstance(value, str):
        return ValueTag.String
    if isinstance(value, list):
        return ValueTag.Array
    if isinstance(value, dict):
        return ValueTag.Object
    if isinstance(value, StructValue):
        return ValueTag.Struct
    if isinstance(value, EnumValue):
        return ValueTag.Enum
    if isinstance(value, (Closure, BuiltinFunction, VariantConstructor)):
        return ValueTag.Function
    if isinstance(value, AgentHandle):
        return ValueTag.Agent
    if isinstance(value, ParallelHandle):
        return ValueTag.Parallel
    if isinstance(value, (StructType, EnumType)):
        return ValueTag.Type
    return ValueTag.Knowledge


def type_name(value: Any) -> str:
    if isinstance(value, StructValue):
        return value.type_name
    if isinstance(value, EnumValue):
        return value.enum_name
    return tag_of(value).value


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def truthy(value: Any) -> bool:
    if value is None or value is False:
        return False
    if is_number(value):
        return value != 0
    if isinstance(value, (str, list, dict)):
        return len(value) > 0
    return True


def values_equal(a: Any, b: Any) -> bool:
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if is_number(a) and is_number(b):
        return a == b
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(values_equal(a[k], b[k]) for k in a)
    if isinstance(a, StructValue) and isinstance(b, StructValue):
        return a.type_name == b.type_name and values_equal(a.fields, b.fields)
    if isinstance(a, EnumValue) and isinstance(b, EnumValue):
        return (a.enum_name, a.variant) == (b.enum_name, b.variant) and values_equal(
            list(a.payload), list(b.payload)
        )
    if type(a) is not type(b):
        return False
    if isinstance(a, (Closure, BuiltinFunction)):
        return a is b
    return a == b


# ---------- display & JSON ----------
def format_number(n: float) -> str:
    if isinstance(n, float):
        if math.isnan(n):
            return "NaN"
        if math.isinf(n):
            return "Infinity" if n > 0 else "-Infinity"
        if n.is_integer() and abs(n) < 1e16:
            return str(int(n))
    return str(n)


def _repr(value: Any) -> str:
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    return display(value)


def display(value: Any) -> str:
    """Human-readable form used by print, interpolation and string concatenation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if is_number(value):
        return format_number(value)
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        return "[" + ", ".join(_repr(v) for v in value) + "]"
    if isinstance(value, dict):
        return "{" + ", ".join(f"{k}: {_repr(v)}" for k, v in value.items()) + "}"
    if isinstance(value, StructValue):
        inner = ", ".join(f"{k}: {_repr(v)}" for k, v in value.fields.items())
        return f"{value.type_name} {{ {inner} }}" if inner else f"{value.type_name} {{}}"
    if isinstance(value, EnumValue):
        if value.payload:
            return f"{value.enum_name}.{value.variant}(" + ", ".join(_repr(v) for v in value.payload) + ")"
        return f"{value.enum_name}.{value.variant}"
    if isinstance(value, Closure):
        if value.is_tool:
            return f"<tool {value.name}>"
        if isinstance(value.decl, ast.Lambda):
            return "<lambda>"
        return f"<fn {value.name}>"
    if isinstance(value, BuiltinFunction):
        return f"<builtin {value.name}>"
    if isinstance(value, VariantConstructor):
        return f"<constructor {value.enum.name}.{value.variant.name}>"
    if isinstance(value, AgentHandle):
        return f"<agent {value.name}>"
    if isinstance(value, ParallelHandle):
        return f"<parallel {value.name}>"
    if isinstance(value, (StructType, EnumType)):
        return f"<type {value.name}>"
    return f"<{type_name(value)}>"


def to_json(value: Any) -> Any:
    """Plain JSON-compatible form of a value."""
    if value is None or isinstance(value, (bool, str)):
        return value
    if is_number(value):
        if isinstance(value, float) and value.is_integer() and abs(value) < 1e16:
            return int(value)
        return value
    if isinstance(value, list):
        return [to_json(v) for v in value]
    if isinstance(value, dict):
        return {k: to_json(v) for k, v in value.items()}
    if isinstance(value, StructValue):
        return {k: to_json(v) for k, v in value.fields.items()}
    if isinstance(value, EnumValue):
        if not value.payload:
            return value.variant
        data = {"variant": value.variant}
        for i, (name, v) in enumerate(zip(value.field_names, value.payload)):
            data[name or str(i)] = to_json(v)
        return data
    return display(value)


def to_text(value: Any) -> str:
    """Text form used where a value crosses into a prompt or tool result."""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, dict, StructValue, EnumValue)):
        return json.dumps(to_json(value), ensure_ascii=False)
    return display(value)


# ---------- type registry ----------
class TypeRegistry:
    """Struct and enum declarations of one program.

    Names are looked up when a type is first used, so agent and tool
    signatures may mention types declared further down the file.
    """

    def __init__(self, structs: Optional[Dict[str, ast.StructDecl]] = None,
                 enums: Optional[Dict[str, ast.EnumDecl]] = None):
        self.structs: Dict[str, ast.StructDecl] = dict(structs or {})
        self.enums: Dict[str, ast.EnumDecl] = dict(enums or {})

    def lookup(self, name: str) -> Any:
        if name in self.structs:
            return self.structs[name]
        if name in self.enums:
            return self.enums[name]
        raise GentTypeError(f"Unknown type '{name}'")

    def resolve(self, type_ann: ast.TypeExpr) -> None:
        """Raise GentTypeError if any name inside the annotation is unknown."""
        if isinstance(type_ann, ast.NamedType):
            if type_ann.name not in _PRIMITIVES:
                self.lookup(type_ann.name)
        elif isinstance(type_ann, ast.ArrayType):
            self.resolve(type_ann.element)
        elif isinstance(type_ann, ast.ObjectType):
            for f in type_ann.fields:
                self.resolve(f.type)

    def check(self, value: Any, type_ann: Optional[ast.TypeExpr], path: str = "value") -> Optional[str]:
        """Return a description of the first mismatch, or None when the value conforms."""
        if type_ann is None:
            return None
        if isinstance(type_ann, ast.ArrayType):
            if not isinstance(value, list):
                return f"{path}: expected {type_ann}, got {type_name(value)}"
            for i, item in enumerate(value):
                err = self.check(item, type_ann.element, f"{path}[{i}]")
                if err:
                    return err
            return None
        if isinstance(type_ann, ast.ObjectType):
            fields = value.fields if isinstance(value, StructValue) else value
            if not isinstance(fields, dict):
                return f"{path}: expected object, got {type_name(value)}"
            return self._check_fields(fields, type_ann.fields, path)
        name = type_ann.name
        prim = _PRIMITIVES.get(name)
        if prim is not None:
            return None if prim(value) else f"{path}: expected {name}, got {type_name(value)}"
        decl = self.lookup(name)
        if isinstance(decl, ast.StructDecl):
            if isinstance(value, StructValue):
                return None if value.type_name == name else f"{path}: expected {name}, got {value.type_name}"
            if isinstance(value, dict):
                return self._check_fields(value, decl.fields, path)
            return f"{path}: expected {name}, got {type_name(value)}"
        if isinstance(value, EnumValue) and value.enum_name == name:
            return None
        return f"{path}: expected {name}, got {type_name(value)}"

    def _check_fields(self, fields: Dict[str, Any], decls, path: str) -> Optional[str]:
        for f in decls:
            if f.name not in fields:
                return f"{path}.{f.name}: missing required field"
            err = self.check(fields[f.name], f.type, f"{path}.{f.name}")
            if err:
                return err
        return None

    def coerce(self, value: Any, type_ann: Optional[ast.TypeExpr]) -> Any:
        """Convert plain JSON-shaped data into struct/enum values per the annotation."""
        if type_ann is None or value is None:
            return value
        if isinstance(type_ann, ast.ArrayType) and isinstance(value, list):
            return [self.coerce(v, type_ann.element) for v in value]
        if isinstance(type_ann, ast.ObjectType) and isinstance(value, dict):
            out = dict(value)
            for f in type_ann.fields:
                if f.name in out:
                    out[f.name] = self.coerce(out[f.name], f.type)
            return out
        if isinstance(type_ann, ast.NamedType):
            if type_ann.name in self.structs and isinstance(value, dict):
                decl = self.structs[type_ann.name]
                return StructValue(decl.name, {
                    f.name: self.coerce(value.get(f.name), f.type) for f in decl.fields
                })
            if type_ann.name in self.enums and isinstance(value, str):
                decl = self.enums[type_ann.name]
                variant = decl.variant(value)
                if variant is not None and not variant.fields:
                    return EnumValue(decl.name, variant.name)
        return value

    def json_schema(self, type_ann: Optional[ast.TypeExpr]) -> Dict[str, Any]:
        if type_ann is None:
            return {}
        if isinstance(type_ann, ast.ArrayType):
            return {"type": "array", "items": self.json_schema(type_ann.element)}
        if isinstance(type_ann, ast.ObjectType):
            return self._object_schema(type_ann.fields)
        name = type_ann.name
        if name in _JSON_TYPES:
            return dict(_JSON_TYPES[name])
        decl = self.lookup(name)
        if isinstance(decl, ast.StructDecl):
            return self._object_schema(decl.fields)
        return {"type": "string", "enum": [v.name for v in decl.variants]}

    def _object_schema(self, fields) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {f.name: self.json_schema(f.type) for f in fields},
            "required": [f.name for f in fields],
        }


_PRIMITIVES: Dict[str, Callable[[Any], bool]] = {
    "string": lambda v: isinstance(v, str),
    "number": is_number,
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, (dict, StructValue)),
    "any": lambda v: True,
    "null": lambda v: v is None,
}

_JSON_TYPES: Dict[str, Dict[str, Any]] = {
    "string": {"type": "string"},
    "number": {"type": "number"},
    "boolean": {"type": "boolean"},
    "array": {"type": "array"},
    "object": {"type": "object"},
    "any": {},
    "null": {"type": "null"},
}

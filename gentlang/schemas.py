"""Pydantic validation for agent structured output and tool arguments.

Output annotations are compiled into pydantic models with strict field
types, so a model reply of `{"age": "42"}` fails against `age: number`
instead of being silently converted. Every failure raises
SchemaMismatch; the agent engine turns that into a retry or an
OutputValidationFailed, the tool registry into a ToolArgumentError.
"""
from __future__ import annotations
import json
import re
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple, Union

from pydantic import (
    BaseModel, ConfigDict, Field, StrictBool, StrictFloat, StrictInt, StrictStr,
    TypeAdapter, ValidationError, create_model,
)

from . import ast
from .errors import GentTypeError
from .types import TypeRegistry

_FENCE_RE = re.compile(r"^```[\w-]*\s*\n?(.*?)\n?```$", re.DOTALL)

_PRIMITIVE_TYPES: Dict[str, Any] = {
    "string": StrictStr,
    "number": Union[StrictInt, StrictFloat],
    "boolean": StrictBool,
    "array": List[Any],
    "object": Dict[str, Any],
    "any": Any,
    "null": None,
}


class SchemaMismatch(ValueError):
    """A value did not conform to its declared shape."""


def strip_code_fences(text: str) -> str:
    text = text.strip()
    m = _FENCE_RE.match(text)
    return m.group(1).strip() if m else text


def _format_errors(err: ValidationError) -> str:
    parts = []
    for e in err.errors():
        loc = ".".join(str(p) for p in e["loc"]) or "value"
        parts.append(f"{loc}: {e['msg']}")
    return "; ".join(parts)


class SchemaCompiler:
    """Builds (and caches) pydantic types for annotations of one program."""

    def __init__(self, registry: TypeRegistry):
        self.registry = registry
        self._models: Dict[str, Any] = {}
        self._adapters: Dict[str, TypeAdapter] = {}

    def python_type(self, type_ann: Optional[ast.TypeExpr]) -> Any:
        if type_ann is None:
            return Any
        if isinstance(type_ann, ast.ArrayType):
            return List[self.python_type(type_ann.element)]
        if isinstance(type_ann, ast.ObjectType):
            return self._fields_model("InlineObject", type_ann.fields)
        name = type_ann.name
        if name in _PRIMITIVE_TYPES:
            return _PRIMITIVE_TYPES[name]
        if name not in self._models:
            self._models[name] = self._named_type(self.registry.lookup(name))
        return self._models[name]

    def _named_type(self, decl: Any) -> Any:
        if isinstance(decl, ast.StructDecl):
            return self._fields_model(decl.name, decl.fields)
        if any(v.fields for v in decl.variants):
            raise GentTypeError(
                f"Enum '{decl.name}' has variants with data and cannot be used as a schema type"
            )
        return Literal[tuple(v.name for v in decl.variants)]

    def _fields_model(self, name: str, fields: Sequence[ast.FieldDecl]) -> type:
        # Positional names avoid clashes with BaseModel attributes; the
        # declared name is the alias used on the wire.
        definitions: Dict[str, Tuple[Any, Any]] = {}
        for i, f in enumerate(fields):
            definitions[f"f{i}"] = (self.python_type(f.type), Field(alias=f.name))
        return create_model(
            name,
            __config__=ConfigDict(extra="ignore", populate_by_name=False),
            **definitions,
        )

    def adapter(self, type_ann: Optional[ast.TypeExpr]) -> TypeAdapter:
        key = str(type_ann)
        if key not in self._adapters:
            self._adapters[key] = TypeAdapter(self.python_type(type_ann))
        return self._adapters[key]

    def validate(self, data: Any, type_ann: Optional[ast.TypeExpr]) -> Any:
        """Validate JSON-shaped data; return it coerced to language values."""
        adapter = self.adapter(type_ann)
        try:
            validated = adapter.validate_python(data)
        except ValidationError as e:
            raise SchemaMismatch(_format_errors(e)) from None
        plain = adapter.dump_python(validated, mode="json", by_alias=True)
        return self.registry.coerce(plain, type_ann)

    def validate_output(self, text: str, type_ann: ast.TypeExpr) -> Any:
        body = strip_code_fences(text)
        try:
            data = json.loads(body)
        except json.JSONDecodeError as e:
            if isinstance(type_ann, ast.NamedType) and type_ann.name == "string":
                return body
            raise SchemaMismatch(f"response is not valid JSON ({e.msg} at position {e.pos})") from None
        return self.validate(data, type_ann)

    # ---------- JSON Schema ----------
    def json_schema(self, type_ann: Optional[ast.TypeExpr]) -> Dict[str, Any]:
        return self.registry.json_schema(type_ann)

    def output_instructions(self, type_ann: ast.TypeExpr) -> str:
        schema = json.dumps(self.json_schema(type_ann), indent=2)
        return (
            "Respond ONLY with a JSON value matching this JSON Schema. "
            "Do not add explanations or code fences.\n" + schema
        )

    def parameters_schema(self, params: Sequence[ast.Param]) -> Dict[str, Any]:
        return {
            "type": "object",
            "properties": {p.name: self.json_schema(p.type) for p in params},
            "required": [p.name for p in params],
        }

    def validate_arguments(self, params: Sequence[ast.Param], args: Dict[str, Any]) -> List[Any]:
        """Bind a tool-call argument object to positional parameter values."""
        if not isinstance(args, dict):
            raise SchemaMismatch("arguments must be a JSON object")
        missing = [p.name for p in params if p.name not in args]
        if missing:
            raise SchemaMismatch(f"missing required argument(s): {', '.join(missing)}")
        values = []
        for p in params:
            try:
                values.append(self.validate(args[p.name], p.type))
            except SchemaMismatch as e:
                raise SchemaMismatch(f"argument '{p.name}': {e}") from None
        return values


def sample_value(schema: Dict[str, Any]) -> Any:
    """A small value conforming to a JSON Schema produced by `json_schema`."""
    if "enum" in schema:
        return schema["enum"][0]
    kind = schema.get("type")
    if kind == "object":
        props = schema.get("properties", {})
        return {k: sample_value(v) for k, v in props.items()}
    if kind == "array":
        items = schema.get("items")
        return [sample_value(items)] if items else []
    if kind == "string":
        return "sample"
    if kind == "number":
        return 1
    if kind == "boolean":
        return True
    return None

# Syntax tree for GENT programs. All nodes are frozen; children are tuples.
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Optional, Tuple, Union


@dataclass(frozen=True)
class Node:
    line: int = field(default=0, kw_only=True)
    column: int = field(default=0, kw_only=True)


# ---------- Type annotations ----------
@dataclass(frozen=True)
class NamedType(Node):
    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class ArrayType(Node):
    element: "TypeExpr"

    def __str__(self) -> str:
        return f"{self.element}[]"


@dataclass(frozen=True)
class FieldDecl(Node):
    name: Optional[str]
    type: "TypeExpr"


@dataclass(frozen=True)
class ObjectType(Node):
    fields: Tuple[FieldDecl, ...]

    def __str__(self) -> str:
        inner = ", ".join(f"{f.name}: {f.type}" for f in self.fields)
        return "{" + inner + "}"


TypeExpr = Union[NamedType, ArrayType, ObjectType]


# ---------- Expressions ----------
@dataclass(frozen=True)
class Literal(Node):
    value: Any


@dataclass(frozen=True)
class Interpolation(Node):
    parts: Tuple[Any, ...]  # str segments and expressions


@dataclass(frozen=True)
class ArrayLiteral(Node):
    items: Tuple[Any, ...]


@dataclass(frozen=True)
class ObjectLiteral(Node):
    entries: Tuple[Tuple[str, Any], ...]


@dataclass(frozen=True)
class Identifier(Node):
    name: str


@dataclass(frozen=True)
class MemberAccess(Node):
    target: Any
    name: str


@dataclass(frozen=True)
class IndexAccess(Node):
    target: Any
    index: Any


@dataclass(frozen=True)
class Call(Node):
    callee: Any
    args: Tuple[Any, ...]


@dataclass(frozen=True)
class BinaryOp(Node):
    op: str
    left: Any
    right: Any


@dataclass(frozen=True)
class UnaryOp(Node):
    op: str
    operand: Any


@dataclass(frozen=True)
class Lambda(Node):
    params: Tuple[str, ...]
    body: Any  # expression or Block


@dataclass(frozen=True)
class WildcardPattern(Node):
    pass


@dataclass(frozen=True)
class LiteralPattern(Node):
    value: Any


@dataclass(frozen=True)
class VariantPattern(Node):
    enum_name: str
    variant: str
    bindings: Tuple[str, ...] = ()


Pattern = Union[WildcardPattern, LiteralPattern, VariantPattern]


@dataclass(frozen=True)
class MatchArm(Node):
    pattern: Pattern
    body: Any  # expression or Block


@dataclass(frozen=True)
class MatchExpr(Node):
    subject: Any
    arms: Tuple[MatchArm, ...]


# ---------- Statements ----------
@dataclass(frozen=True)
class Block(Node):
    statements: Tuple[Any, ...]


@dataclass(frozen=True)
class LetStmt(Node):
    name: str
    type: Optional[TypeExpr]
    value: Any


@dataclass(frozen=True)
class AssignStmt(Node):
    name: str
    value: Any


@dataclass(frozen=True)
class IfStmt(Node):
    condition: Any
    then_block: Block
    else_branch: Optional[Union[Block, "IfStmt"]] = None


@dataclass(frozen=True)
class WhileStmt(Node):
    condition: Any
    body: Block


@dataclass(frozen=True)
class ForStmt(Node):
    var: str
    value_var: Optional[str]
    iterable: Any
    body: Block


@dataclass(frozen=True)
class TryStmt(Node):
    body: Block
    error_name: str
    handler: Block


@dataclass(frozen=True)
class ReturnStmt(Node):
    value: Optional[Any] = None


@dataclass(frozen=True)
class BreakStmt(Node):
    pass


@dataclass(frozen=True)
class ContinueStmt(Node):
    pass


@dataclass(frozen=True)
class ExprStmt(Node):
    expr: Any


# ---------- Declarations ----------
@dataclass(frozen=True)
class Param(Node):
    name: str
    type: Optional[TypeExpr] = None


@dataclass(frozen=True)
class FunctionDecl(Node):
    name: str
    params: Tuple[Param, ...]
    return_type: Optional[TypeExpr]
    body: Block


@dataclass(frozen=True)
class ToolDecl(Node):
    name: str
    params: Tuple[Param, ...]
    return_type: Optional[TypeExpr]
    body: Block


@dataclass(frozen=True)
class StructDecl(Node):
    name: str
    fields: Tuple[FieldDecl, ...]


@dataclass(frozen=True)
class VariantDecl(Node):
    name: str
    fields: Tuple[FieldDecl, ...] = ()


@dataclass(frozen=True)
class EnumDecl(Node):
    name: str
    variants: Tuple[VariantDecl, ...]

    def variant(self, name: str) -> Optional[VariantDecl]:
        for v in self.variants:
            if v.name == name:
                return v
        return None


@dataclass(frozen=True)
class AgentDecl(Node):
    name: str
    fields: Tuple[Tuple[str, Any], ...]  # canonical field name -> expression
    tools: Tuple[str, ...] = ()
    output: Optional[TypeExpr] = None

    def get(self, key: str) -> Optional[Any]:
        for k, v in self.fields:
            if k == key:
                return v
        return None


@dataclass(frozen=True)
class ParallelDecl(Node):
    name: str
    agents: Tuple[Any, ...]
    timeout_s: Optional[float] = None


DECLARATION_TYPES = (AgentDecl, ToolDecl, FunctionDecl, StructDecl, EnumDecl, ParallelDecl)


@dataclass(frozen=True)
class Program(Node):
    items: Tuple[Any, ...]

    @property
    def declarations(self) -> Tuple[Any, ...]:
        return tuple(i for i in self.items if isinstance(i, DECLARATION_TYPES))

    @property
    def statements(self) -> Tuple[Any, ...]:
        return tuple(i for i in self.items if not isinstance(i, DECLARATION_TYPES))

    def of_kind(self, kind: type) -> Tuple[Any, ...]:
        return tuple(i for i in self.items if isinstance(i, kind))

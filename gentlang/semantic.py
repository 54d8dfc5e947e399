from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterator, Set

import networkx as nx

from . import ast
from .errors import SemanticError

BUILTIN_TYPES = frozenset({"string", "number", "boolean", "array", "object", "any", "null"})

AGENT_FIELDS = frozenset({
    "systemPrompt", "userPrompt", "model", "provider",
    "outputRetries", "retryPrompt", "maxSteps", "knowledge",
})

_KIND_NAMES = {
    ast.AgentDecl: "agent",
    ast.ToolDecl: "tool",
    ast.FunctionDecl: "function",
    ast.StructDecl: "struct",
    ast.EnumDecl: "enum",
    ast.ParallelDecl: "parallel block",
}


@dataclass
class DeclInfo:
    name: str
    kind: str
    node: ast.Node


def _fail(message: str, node: ast.Node) -> SemanticError:
    return SemanticError(message, node.line, node.column)


def _named_types(type_ann: ast.TypeExpr) -> Iterator[ast.NamedType]:
    if isinstance(type_ann, ast.NamedType):
        yield type_ann
    elif isinstance(type_ann, ast.ArrayType):
        yield from _named_types(type_ann.element)
    elif isinstance(type_ann, ast.ObjectType):
        for f in type_ann.fields:
            yield from _named_types(f.type)


class SemanticAnalyzer:
    """Declaration-level checks run once after parsing:
    - duplicate top-level names (same kind, or colliding across kinds)
    - struct/enum field annotations name a builtin or a declared type
    - struct and enum declarations do not refer back to themselves
    - agents declare a system prompt and only known fields
    - parameter names are unique per signature
    Agent and tool signatures are resolved lazily by the runtime type
    registry.
    """

    def __init__(self, program: ast.Program):
        self.program = program
        self.names: Dict[str, DeclInfo] = {}
        self.agents: Dict[str, ast.AgentDecl] = {}
        self.tools: Dict[str, ast.ToolDecl] = {}
        self.functions: Dict[str, ast.FunctionDecl] = {}
        self.structs: Dict[str, ast.StructDecl] = {}
        self.enums: Dict[str, ast.EnumDecl] = {}
        self.parallels: Dict[str, ast.ParallelDecl] = {}
        self.type_graph: nx.DiGraph = nx.DiGraph()

    def analyze(self) -> "SemanticAnalyzer":
        for item in self.program.declarations:
            self._declare(item)
            if isinstance(item, ast.StructDecl):
                self.structs[item.name] = item
            elif isinstance(item, ast.EnumDecl):
                self.enums[item.name] = item
            elif isinstance(item, ast.AgentDecl):
                self._check_agent(item)
                self.agents[item.name] = item
            elif isinstance(item, ast.ToolDecl):
                self._check_params(item.name, item.params)
                self.tools[item.name] = item
            elif isinstance(item, ast.FunctionDecl):
                self._check_params(item.name, item.params)
                self.functions[item.name] = item
            elif isinstance(item, ast.ParallelDecl):
                if item.timeout_s is not None and item.timeout_s <= 0:
                    raise _fail(f"Parallel block '{item.name}' timeout must be positive", item)
                self.parallels[item.name] = item
        for decl in self.structs.values():
            self._check_fields(decl, decl.fields, f"struct '{decl.name}'")
        for decl in self.enums.values():
            self._check_enum(decl)
        self._check_type_cycles()
        return self

    # ---------- declarations ----------
    def _declare(self, node: ast.Node) -> None:
        kind = _KIND_NAMES[type(node)]
        name = node.name
        existing = self.names.get(name)
        if existing is not None:
            if existing.kind == kind:
                raise _fail(f"Duplicate {kind} '{name}'", node)
            raise _fail(f"Name '{name}' already declared as {existing.kind}", node)
        self.names[name] = DeclInfo(name, kind, node)

    def _check_enum(self, decl: ast.EnumDecl) -> None:
        seen: Set[str] = set()
        if not decl.variants:
            raise _fail(f"Enum '{decl.name}' has no variants", decl)
        for variant in decl.variants:
            if variant.name in seen:
                raise _fail(f"Duplicate variant '{variant.name}' in enum '{decl.name}'", variant)
            seen.add(variant.name)
            self._check_fields(decl, variant.fields, f"variant '{decl.name}.{variant.name}'")

    def _check_fields(self, owner_decl, fields, owner: str) -> None:
        self.type_graph.add_node(owner_decl.name)
        seen: Set[str] = set()
        for f in fields:
            if f.name is not None:
                if f.name in seen:
                    raise _fail(f"Duplicate field '{f.name}' in {owner}", f)
                seen.add(f.name)
            for named in _named_types(f.type):
                if named.name in BUILTIN_TYPES:
                    continue
                if named.name not in self.structs and named.name not in self.enums:
                    raise _fail(f"Unknown type '{named.name}' in {owner}", named)
                self.type_graph.add_edge(owner_decl.name, named.name)

    def _check_type_cycles(self) -> None:
        try:
            cycle = nx.find_cycle(self.type_graph)
        except nx.NetworkXNoCycle:
            return
        path = [edge[0] for edge in cycle] + [cycle[0][0]]
        start = self.structs.get(path[0]) or self.enums[path[0]]
        raise _fail(f"Recursive type: {' -> '.join(path)}", start)

    def _check_agent(self, decl: ast.AgentDecl) -> None:
        for key, value in decl.fields:
            if key not in AGENT_FIELDS:
                raise _fail(f"Unknown field '{key}' in agent '{decl.name}'", value)
        if decl.get("systemPrompt") is None:
            raise _fail(f"Agent '{decl.name}' requires a systemPrompt", decl)
        for key, minimum in (("maxSteps", 1), ("outputRetries", 0)):
            value = decl.get(key)
            if isinstance(value, ast.Literal):
                v = value.value
                if isinstance(v, bool) or not isinstance(v, int) or v < minimum:
                    raise _fail(f"'{key}' in agent '{decl.name}' must be an integer >= {minimum}", value)
        if len(set(decl.tools)) != len(decl.tools):
            raise _fail(f"Duplicate tool in agent '{decl.name}'", decl)

    def _check_params(self, owner: str, params) -> None:
        seen: Set[str] = set()
        for p in params:
            if p.name in seen:
                raise _fail(f"Duplicate parameter '{p.name}' in '{owner}'", p)
            seen.add(p.name)


def analyze(program: ast.Program) -> SemanticAnalyzer:
    return SemanticAnalyzer(program).analyze()

from __future__ import annotations
import re
import textwrap
from pathlib import Path
from typing import Any, List

from lark import Lark, Token, Transformer, v_args
from lark.exceptions import UnexpectedCharacters, UnexpectedEOF, UnexpectedInput, UnexpectedToken, VisitError
from lark.lexer import PatternStr

from . import ast
from .errors import GentSyntaxError

GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")

_parser = None

# snake_case spellings accepted for agent fields
AGENT_FIELD_ALIASES = {
    "system_prompt": "systemPrompt",
    "prompt": "systemPrompt",
    "user_prompt": "userPrompt",
    "output_retries": "outputRetries",
    "retry_prompt": "retryPrompt",
    "max_steps": "maxSteps",
}

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\", "$": "$", "0": "\0", "{": "{", "}": "}"}
_ESCAPE_RE = re.compile(r"\\(.)", re.S)


def _load_parser() -> Lark:
    global _parser
    if _parser is None:
        grammar = GRAMMAR_PATH.read_text(encoding="utf-8")
        _parser = Lark(
            grammar,
            start=["start", "expr"],
            parser="lalr",
            lexer="contextual",
            maybe_placeholders=True,
            propagate_positions=True,
        )
    return _parser


def _pos(meta_or_token: Any) -> dict:
    return {
        "line": getattr(meta_or_token, "line", 0) or 0,
        "column": getattr(meta_or_token, "column", 0) or 0,
    }


def _unescape(raw: str) -> str:
    return _ESCAPE_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(0)), raw)


def _split_interpolation(raw: str, line: int, column: int) -> List[Any]:
    """Split string body into literal text and `${expr}` expressions."""
    parts: List[Any] = []
    buf: List[str] = []
    i = 0
    while i < len(raw):
        ch = raw[i]
        if ch == "\\" and i + 1 < len(raw):
            buf.append(raw[i:i + 2])
            i += 2
            continue
        if ch == "$" and raw.startswith("${", i):
            depth = 1
            j = i + 2
            in_str = False
            while j < len(raw) and depth:
                c = raw[j]
                if in_str:
                    if c == "\\":
                        j += 1
                    elif c == '"':
                        in_str = False
                elif c == '"':
                    in_str = True
                elif c == "{":
                    depth += 1
                elif c == "}":
                    depth -= 1
                j += 1
            if depth:
                raise GentSyntaxError("Unterminated interpolation in string", line, column,
                                      expected=["}"], found="end of string")
            if buf:
                parts.append(_unescape("".join(buf)))
                buf = []
            parts.append(parse_expression(raw[i + 2:j - 1], line=line, column=column))
            i = j
            continue
        buf.append(ch)
        i += 1
    if buf:
        parts.append(_unescape("".join(buf)))
    return parts


def _string_node(raw: str, token: Token):
    pos = _pos(token)
    if "${" not in raw:
        return ast.Literal(_unescape(raw), **pos)
    parts = _split_interpolation(raw, pos["line"], pos["column"])
    if len(parts) == 1 and isinstance(parts[0], str):
        return ast.Literal(parts[0], **pos)
    return ast.Interpolation(tuple(parts), **pos)


def _number(token: Token):
    text = str(token)
    return float(text) if "." in text else int(text)


def _duration_seconds(token: Token) -> float:
    m = re.fullmatch(r"(\d+(?:\.\d+)?)(ms|s|m)", str(token))
    value = float(m.group(1))
    unit = m.group(2)
    if unit == "ms":
        return value / 1000.0
    if unit == "m":
        return value * 60.0
    return value


def _syntax_error(message: str, node: Any) -> GentSyntaxError:
    pos = _pos(node)
    return GentSyntaxError(message, pos["line"], pos["column"], found=None)


@v_args(meta=True)
class AstBuilder(Transformer):
    """Turns the Lark parse tree into frozen `gentlang.ast` nodes."""

    def start(self, meta, children):
        return ast.Program(tuple(children), line=1, column=1)

    # ---------- declarations ----------
    def agent_decl(self, meta, children):
        name = children[0]
        fields = []
        tools: tuple = ()
        output = None
        seen = set()
        for entry in children[1:]:
            key, value, token = entry
            if key in seen:
                raise _syntax_error(f"Duplicate field '{key}' in agent '{name}'", token)
            seen.add(key)
            if key == "output":
                output = value
            elif key == "tools":
                if not isinstance(value, ast.ArrayLiteral) or not all(
                    isinstance(i, ast.Identifier) for i in value.items
                ):
                    raise _syntax_error("'tools' must be a list of tool names", token)
                tools = tuple(i.name for i in value.items)
            else:
                fields.append((key, value))
        return ast.AgentDecl(str(name), tuple(fields), tools, output, **_pos(name))

    def agent_field(self, meta, children):
        key, value = children[0], children[1]
        return (AGENT_FIELD_ALIASES.get(str(key), str(key)), value, key)

    def output_field(self, meta, children):
        return ("output", children[0], meta)

    def tool_decl(self, meta, children):
        name, params, ret, body = children
        return ast.ToolDecl(str(name), tuple(params or ()), ret, body, **_pos(name))

    def fn_decl(self, meta, children):
        name, params, ret, body = children
        return ast.FunctionDecl(str(name), tuple(params or ()), ret, body, **_pos(name))

    def params(self, meta, children):
        return list(children)

    def param(self, meta, children):
        name, type_ann = children
        return ast.Param(str(name), type_ann, **_pos(name))

    def struct_decl(self, meta, children):
        name = children[0]
        return ast.StructDecl(str(name), tuple(children[1:]), **_pos(name))

    def struct_field(self, meta, children):
        name, type_ann = children
        return ast.FieldDecl(str(name), type_ann, **_pos(name))

    def enum_decl(self, meta, children):
        name = children[0]
        return ast.EnumDecl(str(name), tuple(c for c in children[1:] if c is not None), **_pos(name))

    def variant(self, meta, children):
        name = children[0]
        fields = tuple(c for c in children[1:] if c is not None)
        return ast.VariantDecl(str(name), fields, **_pos(name))

    def named_variant_field(self, meta, children):
        name, type_ann = children
        return ast.FieldDecl(str(name), type_ann, **_pos(name))

    def positional_variant_field(self, meta, children):
        return ast.FieldDecl(None, children[0], **_pos(meta))

    def parallel_decl(self, meta, children):
        name = children[0]
        agents = None
        timeout = None
        for key, value, token in children[1:]:
            if key == "agents":
                if not isinstance(value, ast.ArrayLiteral):
                    raise _syntax_error("'agents' must be a list", token)
                agents = value.items
            elif key == "timeout":
                timeout = value
            else:
                raise _syntax_error(f"Unknown parallel field '{key}'", token)
        if agents is None:
            raise _syntax_error(f"Parallel block '{name}' requires 'agents'", name)
        return ast.ParallelDecl(str(name), tuple(agents), timeout, **_pos(name))

    def parallel_timeout(self, meta, children):
        key, dur = children
        return (str(key), _duration_seconds(dur), key)

    def parallel_field(self, meta, children):
        key, value = children
        if str(key) == "timeout":
            if isinstance(value, ast.Literal) and isinstance(value.value, (int, float)):
                return ("timeout", float(value.value), key)
            raise _syntax_error("'timeout' must be a duration such as 30s or 500ms", key)
        return (str(key), value, key)

    # ---------- types ----------
    def named_type(self, meta, children):
        return ast.NamedType(str(children[0]), **_pos(children[0]))

    def array_type(self, meta, children):
        return ast.ArrayType(children[0], **_pos(meta))

    def object_type(self, meta, children):
        return ast.ObjectType(tuple(children), **_pos(meta))

    def type_field(self, meta, children):
        name, type_ann = children
        return ast.FieldDecl(str(name), type_ann, **_pos(name))

    # ---------- statements ----------
    def block(self, meta, children):
        return ast.Block(tuple(children), **_pos(meta))

    def let_stmt(self, meta, children):
        name, type_ann, value = children
        return ast.LetStmt(str(name), type_ann, value, **_pos(name))

    def assign_stmt(self, meta, children):
        name, value = children
        return ast.AssignStmt(str(name), value, **_pos(name))

    def if_stmt(self, meta, children):
        cond, then_block, else_branch = children
        return ast.IfStmt(cond, then_block, else_branch, **_pos(meta))

    def while_stmt(self, meta, children):
        cond, body = children
        return ast.WhileStmt(cond, body, **_pos(meta))

    def for_stmt(self, meta, children):
        var, value_var, iterable, body = children
        return ast.ForStmt(str(var), str(value_var) if value_var is not None else None,
                           iterable, body, **_pos(meta))

    def try_stmt(self, meta, children):
        body, name, handler = children
        return ast.TryStmt(body, str(name), handler, **_pos(meta))

    def return_stmt(self, meta, children):
        return ast.ReturnStmt(children[0], **_pos(meta))

    def break_stmt(self, meta, children):
        return ast.BreakStmt(**_pos(meta))

    def continue_stmt(self, meta, children):
        return ast.ContinueStmt(**_pos(meta))

    def expr_stmt(self, meta, children):
        return ast.ExprStmt(children[0], **_pos(meta))

    # ---------- expressions ----------
    def lambda_expr(self, meta, children):
        head, body = children
        inner = str(head).rsplit("=>", 1)[0].strip()
        if inner.startswith("("):
            inner = inner[1:-1]
        params = tuple(p.strip() for p in inner.split(",") if p.strip())
        return ast.Lambda(params, body, **_pos(head))

    def _binary(op):
        def build(self, meta, children):
            left, right = children
            return ast.BinaryOp(op, left, right, **_pos(meta))
        return build

    logical_or = _binary("||")
    logical_and = _binary("&&")
    eq = _binary("==")
    ne = _binary("!=")
    lt = _binary("<")
    gt = _binary(">")
    le = _binary("<=")
    ge = _binary(">=")
    add = _binary("+")
    sub = _binary("-")
    mul = _binary("*")
    div = _binary("/")
    mod = _binary("%")
    del _binary

    def not_op(self, meta, children):
        return ast.UnaryOp("!", children[0], **_pos(meta))

    def neg(self, meta, children):
        return ast.UnaryOp("-", children[0], **_pos(meta))

    def member(self, meta, children):
        target, name = children
        return ast.MemberAccess(target, str(name), **_pos(name))

    def call(self, meta, children):
        callee, args = children
        return ast.Call(callee, tuple(args or ()), **_pos(meta))

    def index(self, meta, children):
        target, idx = children
        return ast.IndexAccess(target, idx, **_pos(meta))

    def args(self, meta, children):
        return list(children)

    def number(self, meta, children):
        return ast.Literal(_number(children[0]), **_pos(children[0]))

    def string(self, meta, children):
        token = children[0]
        return _string_node(str(token)[1:-1], token)

    def multiline_string(self, meta, children):
        token = children[0]
        body = str(token)[3:-3]
        if body.startswith("\n"):
            body = body[1:]
        return _string_node(textwrap.dedent(body).rstrip(" \t"), token)

    def true(self, meta, children):
        return ast.Literal(True, **_pos(meta))

    def false(self, meta, children):
        return ast.Literal(False, **_pos(meta))

    def null(self, meta, children):
        return ast.Literal(None, **_pos(meta))

    def var(self, meta, children):
        return ast.Identifier(str(children[0]), **_pos(children[0]))

    def array(self, meta, children):
        return ast.ArrayLiteral(tuple(children[0] or ()), **_pos(meta))

    def object(self, meta, children):
        entries = tuple(c for c in children if isinstance(c, tuple))
        keys = [k for k, _ in entries]
        for k in keys:
            if keys.count(k) > 1:
                raise _syntax_error(f"Duplicate key '{k}' in object literal", meta)
        return ast.ObjectLiteral(entries, **_pos(meta))

    def name_pair(self, meta, children):
        key, value = children
        return (str(key), value)

    def string_pair(self, meta, children):
        key, value = children
        return (_unescape(str(key)[1:-1]), value)

    def match_expr(self, meta, children):
        subject = children[0]
        return ast.MatchExpr(subject, tuple(children[1:]), **_pos(meta))

    def match_arm(self, meta, children):
        pattern, body = children
        return ast.MatchArm(pattern, body, **_pos(meta))

    def wildcard_arm(self, meta, children):
        head, body = children
        return ast.MatchArm(ast.WildcardPattern(**_pos(head)), body, **_pos(meta))

    def variant_pattern(self, meta, children):
        enum_name, variant = children[0], children[1]
        rest = [c for c in children[2:] if c is not None]
        names = tuple(str(b) for b in (rest[0] if rest else ()))
        return ast.VariantPattern(str(enum_name), str(variant), names, **_pos(enum_name))

    def bindings(self, meta, children):
        return list(children)

    def number_pattern(self, meta, children):
        return ast.LiteralPattern(_number(children[0]), **_pos(children[0]))

    def string_pattern(self, meta, children):
        return ast.LiteralPattern(_unescape(str(children[0])[1:-1]), **_pos(children[0]))

    def true_pattern(self, meta, children):
        return ast.LiteralPattern(True, **_pos(meta))

    def false_pattern(self, meta, children):
        return ast.LiteralPattern(False, **_pos(meta))

    def null_pattern(self, meta, children):
        return ast.LiteralPattern(None, **_pos(meta))


def _describe_terminal(parser: Lark, name: str) -> str:
    if name == "$END":
        return "end of input"
    try:
        term = parser.get_terminal(name)
    except KeyError:
        return name
    if isinstance(term.pattern, PatternStr):
        return f'"{term.pattern.value}"'
    return name


def _convert_error(e: UnexpectedInput, parser: Lark) -> GentSyntaxError:
    line = getattr(e, "line", 0) or 0
    column = getattr(e, "column", 0) or 0
    expected_raw = getattr(e, "expected", None) or getattr(e, "allowed", None) or set()
    expected = sorted({_describe_terminal(parser, n) for n in expected_raw})
    if isinstance(e, UnexpectedToken):
        found = "end of input" if e.token.type == "$END" else repr(str(e.token))
    elif isinstance(e, UnexpectedCharacters):
        found = repr(e.char)
    elif isinstance(e, UnexpectedEOF):
        found = "end of input"
    else:
        found = None
    message = f"Unexpected {found}" if found else "Syntax error"
    if expected:
        message += f", expected one of: {', '.join(expected[:8])}"
    return GentSyntaxError(message, line, column, expected=expected, found=found)


def _parse_tree(text: str, start: str):
    parser = _load_parser()
    try:
        tree = parser.parse(text, start=start)
    except UnexpectedInput as e:
        raise _convert_error(e, parser) from e
    try:
        return AstBuilder().transform(tree)
    except VisitError as e:
        if isinstance(e.orig_exc, GentSyntaxError):
            raise e.orig_exc from None
        raise


def parse_expression(text: str, line: int = 0, column: int = 0):
    try:
        return _parse_tree(text, "expr")
    except GentSyntaxError as e:
        raise GentSyntaxError(f"In interpolation: {e.message}", line or e.line, column or e.column,
                              expected=e.expected, found=e.found) from None


def parse(source: str | Path) -> ast.Program:
    """Parse GENT source text (or a path to a file) into a Program."""
    if isinstance(source, Path):
        text = source.read_text(encoding="utf-8")
    else:
        text = str(source)
    return _parse_tree(text, "start")

from __future__ import annotations
import inspect
import json
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from . import ast
from .environment import Environment
from .errors import (
    AgentError, ConfigError, GentError, GentTypeError, NoMatchingArm, ParallelError,
    RuntimeGentError,
)
from .knowledge import KnowledgeBase
from .methods import REBINDING_METHODS, call_method, callable_value
from .types import (
    AgentHandle, BuiltinFunction, Closure, EnumType, EnumValue, KnowledgeBinding,
    ParallelHandle, StructType, StructValue, TypeRegistry, VariantConstructor,
    display, is_number, to_json, truthy, type_name, values_equal,
)

MAX_LOOP_ITERATIONS = 1_000_000


class _ReturnSignal(Exception):
    def __init__(self, value: Any):
        self.value = value


class _BreakSignal(Exception):
    pass


class _ContinueSignal(Exception):
    pass


class Evaluator:
    """Async tree walker over a parsed and analyzed Program.

    The agent engine, parallel runner and knowledge base factory are
    passed in by the runtime; the evaluator never builds them itself.
    """

    def __init__(self, program: ast.Program, types: TypeRegistry,
                 emit: Callable[[str], None],
                 engine: Any = None,
                 run_parallel: Optional[Callable[..., Any]] = None,
                 knowledge_factory: Optional[Callable[[str, Dict[str, Any]], Any]] = None,
                 validate_provider: Optional[Callable[[str], str]] = None):
        self.program = program
        self.types = types
        self.emit = emit
        self.engine = engine
        self.run_parallel = run_parallel
        self.knowledge_factory = knowledge_factory
        self.validate_provider = validate_provider
        self.globals = Environment()
        self.user_tools: Dict[str, Closure] = {}
        self.last_value: Any = None
        self._install_builtins()

    # ---------- program ----------
    def hoist(self) -> None:
        """Bind structs, enums, functions and tools before any statement runs."""
        for item in self.program.items:
            match item:
                case ast.StructDecl():
                    self.globals.define(item.name, StructType(item))
                case ast.EnumDecl():
                    self.globals.define(item.name, EnumType(item))
                case ast.FunctionDecl():
                    self.globals.define(item.name, Closure(item, self.globals, item.name))
                case ast.ToolDecl():
                    closure = Closure(item, self.globals, item.name)
                    self.globals.define(item.name, closure)
                    self.user_tools[item.name] = closure

    async def run(self) -> Any:
        for item in self.program.items:
            match item:
                case ast.AgentDecl():
                    self.globals.define(item.name, await self.build_agent(item, self.globals))
                case ast.ParallelDecl():
                    self.globals.define(item.name, await self.build_parallel(item, self.globals))
                case ast.StructDecl() | ast.EnumDecl() | ast.FunctionDecl() | ast.ToolDecl():
                    continue
                case _:
                    try:
                        await self.exec_stmt(item, self.globals)
                    except _ReturnSignal as r:
                        self.last_value = r.value
                        return r.value
                    except (_BreakSignal, _ContinueSignal):
                        raise RuntimeGentError("'break'/'continue' used outside of a loop")
        return self.last_value

    # ---------- declarations ----------
    async def _optional_str(self, decl: ast.AgentDecl, key: str, env: Environment) -> Optional[str]:
        expr = decl.get(key)
        if expr is None:
            return None
        value = await self.eval(expr, env)
        if value is None:
            return None
        if not isinstance(value, str):
            raise GentTypeError(f"Agent '{decl.name}' field '{key}' must be a string, got {type_name(value)}")
        return value

    async def _optional_int(self, decl: ast.AgentDecl, key: str, env: Environment,
                            default: int, minimum: int) -> int:
        expr = decl.get(key)
        if expr is None:
            return default
        value = await self.eval(expr, env)
        if not is_number(value) or int(value) != value or value < minimum:
            raise GentTypeError(f"Agent '{decl.name}' field '{key}' must be an integer >= {minimum}")
        return int(value)

    async def build_agent(self, decl: ast.AgentDecl, env: Environment) -> AgentHandle:
        system_prompt = await self._optional_str(decl, "systemPrompt", env)
        provider = await self._optional_str(decl, "provider", env)
        if provider is not None and self.validate_provider is not None:
            provider = self.validate_provider(provider)
        knowledge = None
        kexpr = decl.get("knowledge")
        if kexpr is not None:
            knowledge = self._knowledge_binding(decl.name, await self.eval(kexpr, env))
        return AgentHandle(
            name=decl.name,
            system_prompt=system_prompt or "",
            user_prompt=await self._optional_str(decl, "userPrompt", env),
            model=await self._optional_str(decl, "model", env),
            provider=provider,
            tools=decl.tools,
            output=decl.output,
            output_retries=await self._optional_int(decl, "outputRetries", env, 1, 0),
            retry_prompt=await self._optional_str(decl, "retryPrompt", env),
            max_steps=await self._optional_int(decl, "maxSteps", env, 10, 1),
            knowledge=knowledge,
        )

    def _knowledge_binding(self, agent: str, value: Any) -> KnowledgeBinding:
        if isinstance(value, dict):
            source = value.get("source")
            limit = value.get("chunkLimit", value.get("limit", 3))
            threshold = value.get("scoreThreshold", value.get("threshold", 0.0))
        else:
            source, limit, threshold = value, 3, 0.0
        if not isinstance(source, KnowledgeBase):
            raise GentTypeError(f"Agent '{agent}' knowledge source must be a KnowledgeBase")
        if not is_number(limit) or limit < 1:
            raise GentTypeError(f"Agent '{agent}' knowledge chunkLimit must be a positive number")
        if not is_number(threshold):
            raise GentTypeError(f"Agent '{agent}' knowledge scoreThreshold must be a number")
        return KnowledgeBinding(source, int(limit), float(threshold))

    async def build_parallel(self, decl: ast.ParallelDecl, env: Environment) -> ParallelHandle:
        agents = []
        for expr in decl.agents:
            value = await self.eval(expr, env)
            if not isinstance(value, AgentHandle):
                raise GentTypeError(
                    f"Parallel block '{decl.name}' expects agents, got {type_name(value)}"
                )
            agents.append(value)
        return ParallelHandle(decl.name, tuple(agents), decl.timeout_s)

    # ---------- statements ----------
    async def exec_block(self, block: ast.Block, env: Environment) -> Any:
        scope = env.child()
        value = None
        for stmt in block.statements:
            value = await self.exec_stmt(stmt, scope)
        return value

    async def exec_stmt(self, stmt: Any, env: Environment) -> Any:
        """Execute one statement; expression statements yield their value."""
        match stmt:
            case ast.ExprStmt():
                value = await self.eval(stmt.expr, env)
                self.last_value = value
                return value
            case ast.LetStmt():
                value = await self.eval(stmt.value, env)
                if stmt.type is not None:
                    self._check_type(value, stmt.type, f"variable '{stmt.name}'")
                env.define(stmt.name, value)
            case ast.AssignStmt():
                env.assign(stmt.name, await self.eval(stmt.value, env))
            case ast.IfStmt():
                if truthy(await self.eval(stmt.condition, env)):
                    return await self.exec_block(stmt.then_block, env)
                if isinstance(stmt.else_branch, ast.IfStmt):
                    return await self.exec_stmt(stmt.else_branch, env)
                if stmt.else_branch is not None:
                    return await self.exec_block(stmt.else_branch, env)
            case ast.WhileStmt():
                await self._exec_while(stmt, env)
            case ast.ForStmt():
                await self._exec_for(stmt, env)
            case ast.TryStmt():
                return await self._exec_try(stmt, env)
            case ast.ReturnStmt():
                value = await self.eval(stmt.value, env) if stmt.value is not None else None
                raise _ReturnSignal(value)
            case ast.BreakStmt():
                raise _BreakSignal()
            case ast.ContinueStmt():
                raise _ContinueSignal()
            case ast.AgentDecl():
                env.define(stmt.name, await self.build_agent(stmt, env))
            case ast.ParallelDecl():
                env.define(stmt.name, await self.build_parallel(stmt, env))
            case _:
                raise RuntimeGentError(f"Unsupported statement {type(stmt).__name__}")
        return None

    async def _exec_while(self, stmt: ast.WhileStmt, env: Environment) -> None:
        iterations = 0
        while truthy(await self.eval(stmt.condition, env)):
            iterations += 1
            if iterations > MAX_LOOP_ITERATIONS:
                raise RuntimeGentError(f"while loop exceeded {MAX_LOOP_ITERATIONS} iterations")
            try:
                await self.exec_block(stmt.body, env)
            except _BreakSignal:
                break
            except _ContinueSignal:
                continue

    async def _exec_for(self, stmt: ast.ForStmt, env: Environment) -> None:
        iterable = await self.eval(stmt.iterable, env)
        if isinstance(iterable, StructValue):
            iterable = iterable.fields
        if isinstance(iterable, dict):
            if stmt.value_var is not None:
                items = [(k, v) for k, v in iterable.items()]
            else:
                items = [({"key": k, "value": v}, None) for k, v in iterable.items()]
        elif isinstance(iterable, (list, str)):
            if stmt.value_var is not None:
                items = [(i, v) for i, v in enumerate(iterable)]
            else:
                items = [(v, None) for v in iterable]
        else:
            raise GentTypeError(f"Cannot iterate over {type_name(iterable)}")
        for first, second in items:
            scope = env.child()
            scope.define(stmt.var, first)
            if stmt.value_var is not None:
                scope.define(stmt.value_var, second)
            try:
                await self.exec_block(stmt.body, scope)
            except _BreakSignal:
                break
            except _ContinueSignal:
                continue

    async def _exec_try(self, stmt: ast.TryStmt, env: Environment) -> Any:
        try:
            return await self.exec_block(stmt.body, env)
        except GentError as e:
            if not _catchable(e):
                raise
            logger.debug("caught {}: {}", e.kind, e.message)
            scope = env.child()
            scope.define(stmt.error_name, e.to_value())
            return await self.exec_block(stmt.handler, scope)

    # ---------- expressions ----------
    async def eval(self, expr: Any, env: Environment) -> Any:
        match expr:
            case ast.Literal():
                return expr.value
            case ast.Identifier():
                return env.get(expr.name)
            case ast.Interpolation():
                parts = []
                for part in expr.parts:
                    parts.append(part if isinstance(part, str) else display(await self.eval(part, env)))
                return "".join(parts)
            case ast.ArrayLiteral():
                return [await self.eval(i, env) for i in expr.items]
            case ast.ObjectLiteral():
                return {k: await self.eval(v, env) for k, v in expr.entries}
            case ast.BinaryOp():
                return await self._eval_binary(expr, env)
            case ast.UnaryOp():
                return self._unary(expr.op, await self.eval(expr.operand, env))
            case ast.MemberAccess():
                return self._member(await self.eval(expr.target, env), expr.name)
            case ast.IndexAccess():
                return self._index(await self.eval(expr.target, env), await self.eval(expr.index, env))
            case ast.Call():
                return await self._eval_call(expr, env)
            case ast.Lambda():
                return Closure(expr, env)
            case ast.MatchExpr():
                return await self._eval_match(expr, env)
        raise RuntimeGentError(f"Unsupported expression node: {type(expr).__name__}")

    async def _eval_binary(self, expr: ast.BinaryOp, env: Environment) -> Any:
        op = expr.op
        left = await self.eval(expr.left, env)
        if op == "&&":
            return truthy(left) and truthy(await self.eval(expr.right, env))
        if op == "||":
            return truthy(left) or truthy(await self.eval(expr.right, env))
        right = await self.eval(expr.right, env)
        return self._apply_bin_op(op, left, right)

    def _apply_bin_op(self, op: str, a: Any, b: Any) -> Any:
        if op == "==":
            return values_equal(a, b)
        if op == "!=":
            return not values_equal(a, b)
        if op == "+":
            if isinstance(a, str) or isinstance(b, str):
                return display(a) + display(b)
            if isinstance(a, list) and isinstance(b, list):
                return a + b
        if op in ("<", ">", "<=", ">="):
            if not ((is_number(a) and is_number(b)) or (isinstance(a, str) and isinstance(b, str))):
                raise GentTypeError(f"Cannot compare {type_name(a)} {op} {type_name(b)}")
            return {"<": a < b, ">": a > b, "<=": a <= b, ">=": a >= b}[op]
        if not (is_number(a) and is_number(b)):
            raise GentTypeError(f"Operator '{op}' not supported for {type_name(a)} and {type_name(b)}")
        if op == "+":
            return a + b
        if op == "-":
            return a - b
        if op == "*":
            return a * b
        if op == "/":
            if b == 0:
                raise RuntimeGentError("Division by zero")
            result = a / b
            return int(result) if isinstance(a, int) and isinstance(b, int) and a % b == 0 else result
        if op == "%":
            if b == 0:
                raise RuntimeGentError("Modulo by zero")
            return a % b
        raise RuntimeGentError(f"Unknown operator {op}")

    def _unary(self, op: str, v: Any) -> Any:
        if op == "!":
            return not truthy(v)
        if op == "-":
            if not is_number(v):
                raise GentTypeError(f"Cannot negate {type_name(v)}")
            return -v
        raise RuntimeGentError(f"Unknown unary {op}")

    def _member(self, target: Any, name: str) -> Any:
        if isinstance(target, EnumType):
            variant = target.decl.variant(name)
            if variant is None:
                raise GentTypeError(f"Enum '{target.name}' has no variant '{name}'")
            if variant.fields:
                return VariantConstructor(target.decl, variant)
            return EnumValue(target.name, variant.name)
        if isinstance(target, StructValue):
            if name in target.fields:
                return target.fields[name]
            raise GentTypeError(f"Struct '{target.type_name}' has no field '{name}'")
        if isinstance(target, dict):
            if name in target:
                return target[name]
            if name == "length":
                return len(target)
            raise RuntimeGentError(f"Object has no field '{name}'")
        if isinstance(target, (list, str)) and name == "length":
            return len(target)
        if isinstance(target, EnumValue):
            return target.field(name)
        if isinstance(target, (AgentHandle, ParallelHandle)) and name == "name":
            return target.name
        raise GentTypeError(f"Cannot access field '{name}' on {type_name(target)}")

    def _index(self, target: Any, index: Any) -> Any:
        if isinstance(target, (list, str)):
            if not is_number(index) or int(index) != index:
                raise GentTypeError(f"Index must be an integer, got {type_name(index)}")
            i = int(index)
            if i < 0 or i >= len(target):
                raise RuntimeGentError(f"Index {i} out of bounds for length {len(target)}")
            return target[i]
        if isinstance(target, StructValue):
            target = target.fields
        if isinstance(target, dict):
            if not isinstance(index, str):
                raise GentTypeError(f"Object key must be a string, got {type_name(index)}")
            return target.get(index)
        raise GentTypeError(f"Cannot index into {type_name(target)}")

    # ---------- calls ----------
    async def _eval_call(self, expr: ast.Call, env: Environment) -> Any:
        args = [await self.eval(a, env) for a in expr.args]
        callee = expr.callee
        if isinstance(callee, ast.MemberAccess):
            target = await self.eval(callee.target, env)
            return await self._call_member(target, callee, args, env)
        fn = await self.eval(callee, env)
        return await self.call_value(fn, args)

    async def _call_member(self, target: Any, callee: ast.MemberAccess, args: List[Any], env: Environment) -> Any:
        name = callee.name
        if isinstance(target, AgentHandle):
            return await self._agent_method(target, name, args)
        if isinstance(target, ParallelHandle):
            return await self._parallel_method(target, name, args)
        if isinstance(target, (EnumType, StructType)):
            return await self.call_value(self._member(target, name), args)
        if isinstance(target, dict) and callable_value(target.get(name)):
            return await self.call_value(target[name], args)
        if isinstance(target, KnowledgeBase):
            return await self._knowledge_method(target, name, args)
        result, new_receiver = await call_method(target, name, args, self.call_value)
        if name in REBINDING_METHODS and new_receiver is not None:
            if not isinstance(callee.target, ast.Identifier):
                raise RuntimeGentError(f"'{name}' can only be called on a variable")
            env.assign(callee.target.name, new_receiver)
        return result

    async def call_value(self, fn: Any, args: List[Any]) -> Any:
        if isinstance(fn, Closure):
            return await self._call_closure(fn, args)
        if isinstance(fn, BuiltinFunction):
            if len(args) < fn.min_args or (fn.max_args is not None and len(args) > fn.max_args):
                raise GentTypeError(f"{fn.name}() got {len(args)} arguments")
            result = fn.fn(*args)
            if inspect.isawaitable(result):
                result = await result
            return result
        if isinstance(fn, VariantConstructor):
            return self._construct_variant(fn, args)
        if isinstance(fn, StructType):
            return self._construct_struct(fn, args)
        if isinstance(fn, AgentHandle):
            return await self._agent_method(fn, "run", args)
        raise GentTypeError(f"{type_name(fn)} is not callable")

    async def _call_closure(self, fn: Closure, args: List[Any]) -> Any:
        decl = fn.decl
        scope = fn.env.child(isolated=fn.is_tool)
        if isinstance(decl, ast.Lambda):
            if len(args) > len(decl.params):
                args = args[:len(decl.params)]
            for i, name in enumerate(decl.params):
                scope.define(name, args[i] if i < len(args) else None)
            if isinstance(decl.body, ast.Block):
                return await self._run_body(decl.body, scope)
            return await self.eval(decl.body, scope)
        if len(args) != len(decl.params):
            raise GentTypeError(
                f"{fn.name}() expects {len(decl.params)} arguments, got {len(args)}"
            )
        for param, value in zip(decl.params, args):
            if param.type is not None:
                self._check_type(value, param.type, f"parameter '{param.name}' of {fn.name}()")
            scope.define(param.name, value)
        result = await self._run_body(decl.body, scope)
        if decl.return_type is not None:
            self._check_type(result, decl.return_type, f"return value of {fn.name}()")
        return result

    async def _run_body(self, body: ast.Block, scope: Environment) -> Any:
        try:
            for stmt in body.statements:
                await self.exec_stmt(stmt, scope)
        except _ReturnSignal as r:
            return r.value
        except (_BreakSignal, _ContinueSignal):
            raise RuntimeGentError("'break'/'continue' used outside of a loop")
        return None

    def _construct_variant(self, ctor: VariantConstructor, args: List[Any]) -> EnumValue:
        fields = ctor.variant.fields
        label = f"{ctor.enum.name}.{ctor.variant.name}"
        if len(args) != len(fields):
            raise GentTypeError(f"{label} expects {len(fields)} values, got {len(args)}")
        for i, (f, value) in enumerate(zip(fields, args)):
            self._check_type(value, f.type, f"{label} field '{f.name or i}'")
        return EnumValue(ctor.enum.name, ctor.variant.name, tuple(args), tuple(f.name for f in fields))

    def _construct_struct(self, st: StructType, args: List[Any]) -> StructValue:
        if len(args) != 1 or not isinstance(args[0], dict):
            raise GentTypeError(f"{st.name}() expects a single object argument")
        data = args[0]
        err = self.types.check(data, ast.NamedType(st.name), st.name)
        if err:
            raise GentTypeError(err)
        return self.types.coerce(data, ast.NamedType(st.name))

    def _check_type(self, value: Any, type_ann: ast.TypeExpr, what: str) -> None:
        self.types.resolve(type_ann)
        err = self.types.check(value, type_ann, what)
        if err:
            raise GentTypeError(f"Type mismatch for {err}")

    # ---------- match ----------
    async def _eval_match(self, expr: ast.MatchExpr, env: Environment) -> Any:
        subject = await self.eval(expr.subject, env)
        for arm in expr.arms:
            bindings = self._match_pattern(arm.pattern, subject)
            if bindings is None:
                continue
            scope = env.child()
            for k, v in bindings.items():
                scope.define(k, v)
            if isinstance(arm.body, ast.Block):
                return await self.exec_block(arm.body, scope)
            return await self.eval(arm.body, scope)
        raise NoMatchingArm(f"No match arm for value {display(subject)}", subject)

    def _match_pattern(self, pattern: ast.Pattern, subject: Any) -> Optional[Dict[str, Any]]:
        match pattern:
            case ast.WildcardPattern():
                return {}
            case ast.LiteralPattern():
                return {} if values_equal(pattern.value, subject) else None
            case ast.VariantPattern():
                decl = self.types.lookup(pattern.enum_name)
                if not isinstance(decl, ast.EnumDecl):
                    raise GentTypeError(f"'{pattern.enum_name}' is not an enum")
                variant = decl.variant(pattern.variant)
                if variant is None:
                    raise GentTypeError(f"Enum '{decl.name}' has no variant '{pattern.variant}'")
                if not isinstance(subject, EnumValue) or subject.enum_name != decl.name:
                    return None
                if subject.variant != variant.name:
                    return None
                if len(pattern.bindings) > len(subject.payload):
                    raise GentTypeError(
                        f"Pattern {decl.name}.{variant.name} binds {len(pattern.bindings)} values, "
                        f"variant has {len(subject.payload)}"
                    )
                if pattern.bindings and all(b in subject.field_names for b in pattern.bindings):
                    return {b: subject.field(b) for b in pattern.bindings}
                return {b: subject.payload[i] for i, b in enumerate(pattern.bindings)}
        return None

    # ---------- handles ----------
    async def _agent_method(self, agent: AgentHandle, name: str, args: List[Any]) -> Any:
        def one_string() -> str:
            if len(args) != 1:
                raise GentTypeError(f"{agent.name}.{name}() expects one argument")
            value = args[0]
            return value if isinstance(value, str) else display(value)

        match name:
            case "run":
                if args:
                    agent = agent.with_overrides(user_prompt=one_string())
                if self.engine is None:
                    raise RuntimeGentError("No agent engine configured")
                return await self.engine.run(agent)
            case "userPrompt" | "input":
                return agent.with_overrides(user_prompt=one_string())
            case "systemPrompt":
                return agent.with_overrides(system_prompt=one_string())
            case "model":
                return agent.with_overrides(model=one_string())
            case "provider":
                provider = one_string()
                if self.validate_provider is not None:
                    provider = self.validate_provider(provider)
                return agent.with_overrides(provider=provider)
        raise GentTypeError(f"Agent has no method '{name}'")

    async def _parallel_method(self, handle: ParallelHandle, name: str, args: List[Any]) -> Any:
        if name not in ("run", "settle"):
            raise GentTypeError(f"Parallel block has no method '{name}'")
        if self.run_parallel is None or self.engine is None:
            raise RuntimeGentError("No agent engine configured")
        results = await self.run_parallel(self.engine, list(handle.agents), handle.timeout_s, name=handle.name)
        if name == "run" and any(isinstance(r, GentError) for r in results):
            raise ParallelError(handle.name, results)
        return [r.to_value() if isinstance(r, GentError) else r for r in results]

    async def _knowledge_method(self, kb: KnowledgeBase, name: str, args: List[Any]) -> Any:
        opts = args[-1] if args and isinstance(args[-1], dict) else {}
        match name:
            case "index":
                return await kb.index(**_knowledge_index_options(opts))
            case "search":
                if not args or not isinstance(args[0], str):
                    raise GentTypeError("search() expects a query string")
                limit = opts.get("limit", 5)
                threshold = opts.get("threshold", opts.get("scoreThreshold", 0.0))
                if not is_number(limit):
                    raise GentTypeError("search() option 'limit' must be a number")
                if not is_number(threshold):
                    raise GentTypeError("search() option 'threshold' must be a number")
                hits = await kb.search(args[0], int(limit), float(threshold))
                return [h.to_value() for h in hits]
            case "isIndexed":
                return kb.is_indexed()
        raise GentTypeError(f"KnowledgeBase has no method '{name}'")

    # ---------- builtins ----------
    def _install_builtins(self) -> None:
        def _print(*args: Any) -> None:
            self.emit(" ".join(display(a) for a in args))

        def _len(value: Any) -> int:
            if isinstance(value, (str, list, dict)):
                return len(value)
            raise GentTypeError(f"len() not supported for {type_name(value)}")

        def _num(value: Any) -> Any:
            if is_number(value):
                return value
            try:
                text = str(value).strip()
                return int(text) if text.lstrip("-").isdigit() else float(text)
            except ValueError:
                raise GentTypeError(f"Cannot convert {display(value)!r} to number") from None

        def _knowledge(path: str, opts: Optional[Dict[str, Any]] = None) -> Any:
            if self.knowledge_factory is None:
                raise RuntimeGentError("KnowledgeBase is not available in this runtime")
            if not isinstance(path, str):
                raise GentTypeError("KnowledgeBase() expects a path string")
            if opts is not None and not isinstance(opts, dict):
                raise GentTypeError("KnowledgeBase() options must be an object")
            return self.knowledge_factory(path, opts or {})

        builtins = [
            BuiltinFunction("print", _print),
            BuiltinFunction("println", _print),
            BuiltinFunction("len", _len, 1, 1),
            BuiltinFunction("str", lambda v: display(v), 1, 1),
            BuiltinFunction("num", _num, 1, 1),
            BuiltinFunction("typeOf", lambda v: type_name(v), 1, 1),
            BuiltinFunction("toJson", lambda v: _json_dumps(v), 1, 1),
            BuiltinFunction("KnowledgeBase", _knowledge, 1, 2),
        ]
        for b in builtins:
            self.globals.define(b.name, b)


def _json_dumps(value: Any) -> str:
    return json.dumps(to_json(value), ensure_ascii=False)


def _knowledge_index_options(opts: Dict[str, Any]) -> Dict[str, Any]:
    mapping = {
        "extensions": "extensions",
        "recursive": "recursive",
        "chunkSize": "chunk_size",
        "chunkOverlap": "chunk_overlap",
        "strategy": "strategy",
    }
    return {mapping[k]: v for k, v in opts.items() if k in mapping}


def _catchable(error: GentError) -> bool:
    return isinstance(error, (RuntimeGentError, AgentError, ConfigError))

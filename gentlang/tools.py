"""Tool registry: built-in tools plus the program's `tool` declarations."""
from __future__ import annotations
import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

import requests
from loguru import logger

from . import ast
from .ai_providers import ToolSignature
from .errors import AgentError, RuntimeGentError, ToolArgumentError, UnknownToolError
from .schemas import SchemaCompiler, SchemaMismatch
from .types import Closure, to_text

WEB_FETCH_TIMEOUT_S = 30


class ToolFailure(Exception):
    """A tool ran but could not do its job; reported to the model, not raised."""


def _string_params(*names: str) -> tuple:
    return tuple(ast.Param(n, ast.NamedType("string")) for n in names)


class Tool:
    name: str = ""
    description: str = ""
    params: Sequence[ast.Param] = ()

    def signature(self, compiler: SchemaCompiler) -> ToolSignature:
        return ToolSignature(
            name=self.name,
            description=self.description,
            parameters=compiler.parameters_schema(self.params),
        )

    async def execute(self, values: List[Any]) -> str:  # pragma: no cover - abstract
        raise NotImplementedError


class BuiltinTool(Tool):
    def __init__(self, name: str, description: str, params: Sequence[ast.Param],
                 fn: Callable[..., Awaitable[str]]):
        self.name = name
        self.description = description
        self.params = params
        self._fn = fn

    async def execute(self, values: List[Any]) -> str:
        return await self._fn(*values)


class UserTool(Tool):
    """A `tool` declaration; its body runs through the evaluator in an isolated scope."""

    def __init__(self, closure: Closure, invoke: Callable[[Any, List[Any]], Awaitable[Any]]):
        self.closure = closure
        self.name = closure.name
        self.description = f"User-defined tool '{closure.name}'"
        self.params = closure.decl.params
        self._invoke = invoke

    async def execute(self, values: List[Any]) -> str:
        return to_text(await self._invoke(self.closure, values))


# ---------- built-ins ----------
async def _read_file(path: str) -> str:
    try:
        return await asyncio.to_thread(Path(path).read_text, encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ToolFailure(f"Failed to read file '{path}': {e}") from e


async def _write_file(path: str, content: str) -> str:
    def write() -> int:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        return target.write_text(content, encoding="utf-8")

    try:
        written = await asyncio.to_thread(write)
    except OSError as e:
        raise ToolFailure(f"Failed to write file '{path}': {e}") from e
    return f"Wrote {written} characters to {path}"


async def _json_parse(text: str) -> str:
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ToolFailure(f"Failed to parse JSON: {e}") from e
    return json.dumps(parsed, ensure_ascii=False)


async def _web_fetch(url: str) -> str:
    try:
        resp = await asyncio.to_thread(requests.get, url, timeout=WEB_FETCH_TIMEOUT_S)
    except requests.RequestException as e:
        raise ToolFailure(f"Request failed: {e}") from e
    if not resp.ok:
        raise ToolFailure(f"HTTP error: {resp.status_code} {resp.reason}")
    return resp.text


def builtin_tools() -> List[BuiltinTool]:
    return [
        BuiltinTool("read_file", "Read the contents of a file", _string_params("path"), _read_file),
        BuiltinTool("write_file", "Write content to a file", _string_params("path", "content"), _write_file),
        BuiltinTool("json_parse", "Parse a JSON string into an object or array", _string_params("text"), _json_parse),
        BuiltinTool("web_fetch", "Fetch content from a URL. Returns the response body as text.",
                    _string_params("url"), _web_fetch),
    ]


class ToolRegistry:
    """Name -> tool lookup shared read-only by every agent invocation."""

    def __init__(self, compiler: SchemaCompiler, include_builtins: bool = True):
        self.compiler = compiler
        self._tools: Dict[str, Tool] = {}
        if include_builtins:
            for tool in builtin_tools():
                self._tools[tool.name] = tool

    def register(self, tool: Tool) -> None:
        existing = self._tools.get(tool.name)
        if isinstance(existing, BuiltinTool) and isinstance(tool, UserTool):
            logger.warning("Tool '{}' shadows the built-in tool of the same name", tool.name)
        self._tools[tool.name] = tool

    def register_user_tools(self, closures: Dict[str, Closure],
                            invoke: Callable[[Any, List[Any]], Awaitable[Any]]) -> None:
        for closure in closures.values():
            self.register(UserTool(closure, invoke))

    def names(self) -> List[str]:
        return sorted(self._tools)

    def resolve(self, name: str, agent: Optional[str] = None) -> Tool:
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name, agent)
        return tool

    def signatures_for(self, names: Iterable[str], agent: Optional[str] = None) -> List[ToolSignature]:
        return [self.resolve(n, agent).signature(self.compiler) for n in names]

    async def invoke(self, name: str, arguments: Dict[str, Any], agent: Optional[str] = None) -> str:
        """Run one tool call. Failures inside the tool come back as `Error: ...` text."""
        tool = self.resolve(name, agent)
        try:
            values = self.compiler.validate_arguments(tool.params, arguments)
        except SchemaMismatch as e:
            raise ToolArgumentError(f"Invalid arguments for tool '{name}': {e}", name, agent) from None
        logger.debug("Tool call {}({})", name, arguments)
        try:
            result = await tool.execute(values)
        except ToolFailure as e:
            logger.debug("Tool {} failed: {}", name, e)
            return f"Error: {e}"
        except (RuntimeGentError, AgentError) as e:
            logger.debug("Tool {} raised {}: {}", name, e.kind, e.message)
            return f"Error: {e.message}"
        return result

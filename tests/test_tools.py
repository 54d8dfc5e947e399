"""Built-in tools and the tool registry."""
import asyncio
import json

import pytest
import requests
from loguru import logger

from gentlang import tools as tools_module
from gentlang.errors import ToolArgumentError, UnknownToolError
from gentlang.schemas import SchemaCompiler
from gentlang.tools import ToolRegistry
from gentlang.types import TypeRegistry


@pytest.fixture
def registry():
    return ToolRegistry(SchemaCompiler(TypeRegistry()))


def invoke(registry, name, **arguments):
    return asyncio.run(registry.invoke(name, arguments, "Agent"))


class TestBuiltinTools:

    def test_builtin_names(self, registry):
        assert registry.names() == ["json_parse", "read_file", "web_fetch", "write_file"]

    def test_write_then_read(self, registry, tmp_path):
        target = tmp_path / "nested" / "out.txt"
        assert invoke(registry, "write_file", path=str(target), content="hello") == f"Wrote 5 characters to {target}"
        assert invoke(registry, "read_file", path=str(target)) == "hello"

    def test_read_missing_file(self, registry, tmp_path):
        result = invoke(registry, "read_file", path=str(tmp_path / "missing.txt"))
        assert result.startswith("Error: Failed to read file")

    def test_json_parse(self, registry):
        assert invoke(registry, "json_parse", text='{ "a" : [1, 2] }') == json.dumps({"a": [1, 2]})
        assert invoke(registry, "json_parse", text="{oops").startswith("Error: Failed to parse JSON")

    def test_web_fetch(self, registry, monkeypatch):
        class Response:
            ok = True
            text = "<html>page</html>"

        calls = []
        monkeypatch.setattr(tools_module.requests, "get",
                            lambda url, timeout: calls.append((url, timeout)) or Response())
        assert invoke(registry, "web_fetch", url="https://example.com") == "<html>page</html>"
        assert calls == [("https://example.com", 30)]

    def test_web_fetch_failures(self, registry, monkeypatch):
        class NotFound:
            ok = False
            status_code = 404
            reason = "Not Found"

        monkeypatch.setattr(tools_module.requests, "get", lambda url, timeout: NotFound())
        assert invoke(registry, "web_fetch", url="https://example.com/x") == "Error: HTTP error: 404 Not Found"

        def refuse(url, timeout):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(tools_module.requests, "get", refuse)
        assert invoke(registry, "web_fetch", url="https://example.com").startswith("Error: Request failed")


class TestRegistry:

    def test_unknown_tool(self, registry):
        with pytest.raises(UnknownToolError) as exc:
            invoke(registry, "nope")
        assert exc.value.agent == "Agent"

    def test_argument_validation(self, registry):
        with pytest.raises(ToolArgumentError, match="missing required argument"):
            invoke(registry, "read_file")
        with pytest.raises(ToolArgumentError, match="argument 'path'"):
            invoke(registry, "read_file", path=3)

    def test_signatures(self, registry):
        sig = registry.signatures_for(["write_file"])[0]
        assert sig.name == "write_file"
        assert sig.parameters["required"] == ["path", "content"]
        assert sig.parameters["properties"]["path"] == {"type": "string"}

    def test_user_tool_shadows_builtin(self, runtime):
        messages = []
        sink = logger.add(messages.append, level="WARNING", format="{message}")
        try:
            runtime.load('tool read_file(path: string) { return "shadowed" }')
            evaluator = runtime.build()
        finally:
            logger.remove(sink)
        assert any("shadows the built-in tool" in str(m) for m in messages)
        result = asyncio.run(evaluator.engine.tools.invoke("read_file", {"path": "x"}))
        assert result == "shadowed"

    def test_user_tool_result_is_text(self, runtime):
        runtime.load("""
        struct Point { x: number, y: number }
        tool origin() -> Point { return Point({ x: 0, y: 0.5 }) }
        """)
        evaluator = runtime.build()
        sig = evaluator.engine.tools.signatures_for(["origin"])[0]
        assert sig.description == "User-defined tool 'origin'"
        result = asyncio.run(evaluator.engine.tools.invoke("origin", {}))
        assert json.loads(result) == {"x": 0, "y": 0.5}

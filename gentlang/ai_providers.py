from __future__ import annotations
import asyncio
import json
import shutil
from collections import deque
from typing import Any, Deque, Dict, List, Literal, Optional, Sequence, Union

import anthropic
import openai
from loguru import logger
from pydantic import BaseModel, Field

from .errors import CliUnavailableError, ConfigError, ProviderError, UnknownProviderError
from .schemas import sample_value

SUPPORTED_PROVIDERS = ("openai", "anthropic", "claude-code", "mock")

OPENAI_MODEL_PREFIXES = ("gpt-", "o1", "o3", "o4", "chatgpt-", "text-")
ANTHROPIC_MODEL_PREFIXES = ("claude-",)

DEFAULT_MOCK_RESPONSE = "Hello! I'm a friendly assistant. How can I help you today?"


# ---------- wire models ----------
class ToolSignature(BaseModel):
    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class ToolCall(BaseModel):
    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class Message(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = None


class ProviderResponse(BaseModel):
    text: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)


class Conversation(BaseModel):
    """Ordered messages of one agent invocation; never shared between invocations."""
    system: str = ""
    messages: List[Message] = Field(default_factory=list)

    def add_user(self, text: str) -> None:
        self.messages.append(Message(role="user", content=text))

    def add_assistant(self, response: ProviderResponse) -> None:
        self.messages.append(Message(
            role="assistant", content=response.text, tool_calls=list(response.tool_calls)
        ))

    def add_tool_result(self, call: ToolCall, content: str) -> None:
        self.messages.append(Message(role="tool", content=content, tool_call_id=call.id))


# ---------- providers ----------
class AIProvider:
    name: str = "base"
    default_model: Optional[str] = None

    async def converse(self, conversation: Conversation, tools: Sequence[ToolSignature] = (),
                       model: Optional[str] = None, json_mode: bool = False,
                       json_schema: Optional[Dict[str, Any]] = None) -> ProviderResponse:  # pragma: no cover - abstract
        raise NotImplementedError


def _map_sdk_error(sdk: Any, exc: Exception) -> ProviderError:
    """Translate an openai/anthropic SDK exception into a ProviderError kind."""
    message = str(exc)
    if isinstance(exc, (sdk.AuthenticationError, sdk.PermissionDeniedError)):
        return ProviderError(ProviderError.AUTH_FAILURE, message)
    if isinstance(exc, sdk.NotFoundError):
        return ProviderError(ProviderError.NOT_FOUND, message)
    if isinstance(exc, sdk.RateLimitError):
        return ProviderError(ProviderError.RATE_LIMITED, message)
    if isinstance(exc, sdk.APITimeoutError):
        return ProviderError(ProviderError.TIMEOUT, message)
    if isinstance(exc, sdk.APIConnectionError):
        return ProviderError(ProviderError.NOT_FOUND, f"endpoint unreachable: {message}")
    return ProviderError(ProviderError.MALFORMED, message)


def _parse_arguments(raw: Optional[str], tool: str) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        args = json.loads(raw)
    except json.JSONDecodeError:
        raise ProviderError(ProviderError.MALFORMED, f"tool call '{tool}' has invalid JSON arguments") from None
    if not isinstance(args, dict):
        raise ProviderError(ProviderError.MALFORMED, f"tool call '{tool}' arguments are not an object")
    return args


class OpenAIProvider(AIProvider):
    name = "openai"
    default_model = "gpt-4o-mini"

    def __init__(self, api_key: Optional[str], default_model: Optional[str] = None,
                 timeout_s: float = 300.0) -> None:
        if not api_key:
            raise ConfigError("OpenAI provider requires OPENAI_API_KEY")
        self.client = openai.AsyncOpenAI(api_key=api_key, max_retries=0, timeout=timeout_s)
        if default_model:
            self.default_model = default_model

    @staticmethod
    def _messages(conversation: Conversation) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        if conversation.system:
            out.append({"role": "system", "content": conversation.system})
        for m in conversation.messages:
            if m.role == "tool":
                out.append({"role": "tool", "tool_call_id": m.tool_call_id, "content": m.content})
            elif m.role == "assistant" and m.tool_calls:
                out.append({
                    "role": "assistant",
                    "content": m.content or None,
                    "tool_calls": [
                        {
                            "id": c.id,
                            "type": "function",
                            "function": {"name": c.name, "arguments": json.dumps(c.arguments)},
                        }
                        for c in m.tool_calls
                    ],
                })
            else:
                out.append({"role": m.role, "content": m.content})
        return out

    async def converse(self, conversation, tools=(), model=None, json_mode=False, json_schema=None):
        params: Dict[str, Any] = {
            "model": model or self.default_model,
            "messages": self._messages(conversation),
        }
        if tools:
            params["tools"] = [
                {
                    "type": "function",
                    "function": {"name": t.name, "description": t.description, "parameters": t.parameters},
                }
                for t in tools
            ]
        if json_mode:
            params["response_format"] = {"type": "json_object"}
        try:
            resp = await self.client.chat.completions.create(**params)
        except openai.OpenAIError as e:
            raise _map_sdk_error(openai, e) from e
        if not resp.choices:
            raise ProviderError(ProviderError.MALFORMED, "response has no choices")
        message = resp.choices[0].message
        calls = [
            ToolCall(id=tc.id, name=tc.function.name, arguments=_parse_arguments(tc.function.arguments, tc.function.name))
            for tc in (message.tool_calls or [])
        ]
        return ProviderResponse(text=message.content or "", tool_calls=calls)


class AnthropicProvider(AIProvider):
    name = "anthropic"
    default_model = "claude-3-5-sonnet-20241022"
    max_tokens = 4096

    def __init__(self, api_key: Optional[str], default_model: Optional[str] = None,
                 timeout_s: float = 300.0) -> None:
        if not api_key:
            raise ConfigError("Anthropic provider requires ANTHROPIC_API_KEY")
        self.client = anthropic.AsyncAnthropic(api_key=api_key, max_retries=0, timeout=timeout_s)
        if default_model:
            self.default_model = default_model

    @staticmethod
    def _messages(conversation: Conversation) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for m in conversation.messages:
            if m.role == "tool":
                block = {"type": "tool_result", "tool_use_id": m.tool_call_id, "content": m.content}
                # consecutive tool results share one user turn
                if out and out[-1]["role"] == "user" and isinstance(out[-1]["content"], list):
                    out[-1]["content"].append(block)
                else:
                    out.append({"role": "user", "content": [block]})
            elif m.role == "assistant":
                blocks: List[Dict[str, Any]] = []
                if m.content:
                    blocks.append({"type": "text", "text": m.content})
                for c in m.tool_calls:
                    blocks.append({"type": "tool_use", "id": c.id, "name": c.name, "input": c.arguments})
                out.append({"role": "assistant", "content": blocks or m.content})
            elif m.role == "user":
                out.append({"role": "user", "content": m.content})
        return out

    async def converse(self, conversation, tools=(), model=None, json_mode=False, json_schema=None):
        params: Dict[str, Any] = {
            "model": model or self.default_model,
            "max_tokens": self.max_tokens,
            "messages": self._messages(conversation),
        }
        if conversation.system:
            params["system"] = conversation.system
        if tools:
            params["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.parameters}
                for t in tools
            ]
        try:
            resp = await self.client.messages.create(**params)
        except anthropic.AnthropicError as e:
            raise _map_sdk_error(anthropic, e) from e
        texts: List[str] = []
        calls: List[ToolCall] = []
        for block in resp.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                if not isinstance(block.input, dict):
                    raise ProviderError(ProviderError.MALFORMED, f"tool call '{block.name}' input is not an object")
                calls.append(ToolCall(id=block.id, name=block.name, arguments=block.input))
        return ProviderResponse(text="".join(texts), tool_calls=calls)


class ClaudeCodeProvider(AIProvider):
    """Drives the `claude` CLI in print mode, one subprocess per turn.

    The CLI has no tool-calling API of its own, so tool signatures are
    described in the prompt and the model asks for a call by replying
    with a `{"tool_calls": [...]}` JSON envelope.
    """
    name = "claude-code"

    def __init__(self, binary: str = "claude", default_model: Optional[str] = None) -> None:
        self.binary = binary
        self.default_model = default_model
        self._checked = False
        self._calls = 0

    async def _ensure_available(self) -> None:
        if self._checked:
            return
        if shutil.which(self.binary) is None:
            raise CliUnavailableError(
                f"Claude Code CLI '{self.binary}' not found on PATH; install it or set GENT_CLAUDE_BIN"
            )
        self._checked = True

    def _render(self, conversation: Conversation, tools: Sequence[ToolSignature]) -> str:
        lines: List[str] = []
        if tools:
            lines.append("You can call these tools. To call tools reply with ONLY this JSON and nothing else:")
            lines.append('{"tool_calls": [{"name": "<tool>", "arguments": {...}}]}')
            for t in tools:
                lines.append(f"- {t.name}: {t.description} parameters={json.dumps(t.parameters)}")
            lines.append("")
        for m in conversation.messages:
            if m.role == "user":
                lines.append(f"User: {m.content}")
            elif m.role == "assistant":
                if m.tool_calls:
                    calls = [{"name": c.name, "arguments": c.arguments} for c in m.tool_calls]
                    lines.append(f"Assistant: {json.dumps({'tool_calls': calls})}")
                else:
                    lines.append(f"Assistant: {m.content}")
            elif m.role == "tool":
                lines.append(f"Tool result ({m.tool_call_id}): {m.content}")
        return "\n".join(lines)

    def _tool_calls(self, text: str, tools: Sequence[ToolSignature]) -> List[ToolCall]:
        if not tools:
            return []
        try:
            data = json.loads(text.strip())
        except json.JSONDecodeError:
            return []
        if not isinstance(data, dict) or not isinstance(data.get("tool_calls"), list):
            return []
        calls = []
        for raw in data["tool_calls"]:
            if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
                raise ProviderError(ProviderError.MALFORMED, "tool call envelope is missing a tool name")
            self._calls += 1
            args = raw.get("arguments") or {}
            if not isinstance(args, dict):
                raise ProviderError(ProviderError.MALFORMED, f"tool call '{raw['name']}' arguments are not an object")
            calls.append(ToolCall(id=f"cc_{self._calls}", name=raw["name"], arguments=args))
        return calls

    async def converse(self, conversation, tools=(), model=None, json_mode=False, json_schema=None):
        await self._ensure_available()
        argv = [self.binary, "-p", self._render(conversation, tools), "--output-format", "json"]
        if conversation.system:
            argv += ["--append-system-prompt", conversation.system]
        if model or self.default_model:
            argv += ["--model", model or self.default_model]
        proc = await asyncio.create_subprocess_exec(
            *argv, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            if proc.returncode is None:
                proc.kill()
                await proc.wait()
            raise
        err_text = stderr.decode("utf-8", "replace").strip()
        if proc.returncode != 0:
            if "login" in err_text.lower() or "auth" in err_text.lower():
                raise CliUnavailableError(f"Claude Code CLI is not authenticated: {err_text}")
            raise ProviderError(ProviderError.MALFORMED, f"claude exited with status {proc.returncode}: {err_text}")
        try:
            payload = json.loads(stdout.decode("utf-8", "replace"))
        except json.JSONDecodeError:
            raise ProviderError(ProviderError.MALFORMED, "claude CLI output is not JSON") from None
        text = payload.get("result", "") if isinstance(payload, dict) else ""
        if isinstance(payload, dict) and payload.get("is_error"):
            if "login" in text.lower() or "auth" in text.lower():
                raise CliUnavailableError(f"Claude Code CLI is not authenticated: {text}")
            raise ProviderError(ProviderError.MALFORMED, text or "claude CLI reported an error")
        calls = self._tool_calls(text, tools)
        return ProviderResponse(text="" if calls else text, tool_calls=calls)


ScriptItem = Union[str, ProviderResponse, Exception]


class MockProvider(AIProvider):
    """Offline provider: replays a script, then answers with a fixed response.

    In json mode with nothing scripted it synthesises a sample value that
    matches the requested schema. Every request is recorded in `calls`.
    """
    name = "mock"

    def __init__(self, response: Optional[str] = None, script: Sequence[ScriptItem] = (),
                 delay: float = 0.0) -> None:
        self.response = response
        self.script: Deque[ScriptItem] = deque(script)
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []

    async def converse(self, conversation, tools=(), model=None, json_mode=False, json_schema=None):
        self.calls.append({
            "messages": [m.model_copy() for m in conversation.messages],
            "system": conversation.system,
            "tools": [t.name for t in tools],
            "model": model,
            "json_mode": json_mode,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.script:
            item = self.script.popleft()
            if isinstance(item, Exception):
                raise item
            if isinstance(item, str):
                return ProviderResponse(text=item)
            return item
        if self.response is not None:
            return ProviderResponse(text=self.response)
        if json_mode and json_schema is not None:
            return ProviderResponse(text=json.dumps(sample_value(json_schema)))
        return ProviderResponse(text=DEFAULT_MOCK_RESPONSE)


# ---------- factory ----------
def validate_provider_name(name: str) -> str:
    normalized = name.strip().lower()
    if normalized not in SUPPORTED_PROVIDERS:
        raise ConfigError(
            f"Unknown provider '{name}'. Supported: {', '.join(SUPPORTED_PROVIDERS)}"
        )
    return normalized


def detect_provider(model: str) -> str:
    """Infer the provider from a model name prefix."""
    lowered = model.lower()
    if lowered.startswith(OPENAI_MODEL_PREFIXES):
        return "openai"
    if lowered.startswith(ANTHROPIC_MODEL_PREFIXES):
        return "anthropic"
    raise UnknownProviderError(model)


class ProviderFactory:
    def __init__(self, config: Any, mock: bool = False, mock_provider: Optional[AIProvider] = None):
        self.config = config
        self.mock = mock or bool(getattr(config, "mock", False))
        self._mock_provider = mock_provider
        self._cache: Dict[str, AIProvider] = {}

    def provider_name(self, agent: Any) -> str:
        if self.mock:
            return "mock"
        if agent.provider:
            return validate_provider_name(agent.provider)
        if agent.model:
            return detect_provider(agent.model)
        return validate_provider_name(self.config.default_provider)

    def create(self, agent: Any) -> AIProvider:
        name = self.provider_name(agent)
        if name not in self._cache:
            self._cache[name] = self._build(name)
            logger.debug("Created {} provider for agent '{}'", name, agent.name)
        return self._cache[name]

    def _build(self, name: str) -> AIProvider:
        cfg = self.config
        if name == "mock":
            return self._mock_provider or MockProvider(response=cfg.mock_response)
        # the configured default model belongs to the default provider only
        model = cfg.default_model if name == cfg.default_provider else None
        if name == "openai":
            return OpenAIProvider(cfg.openai_api_key, model, cfg.provider_timeout)
        if name == "anthropic":
            return AnthropicProvider(cfg.anthropic_api_key, model, cfg.provider_timeout)
        return ClaudeCodeProvider(cfg.claude_bin, model)

from __future__ import annotations
import asyncio
from typing import Any

from loguru import logger
from opentelemetry import trace

from .ai_providers import AIProvider, Conversation, ProviderFactory, ProviderResponse
from .errors import AgentError, OutputValidationFailed, ProviderError, StepLimitExceeded
from .schemas import SchemaCompiler, SchemaMismatch
from .tools import ToolRegistry
from .types import AgentHandle

PROVIDER_TIMEOUT_S = 300
DEFAULT_USER_PROMPT = "Hello!"
DEFAULT_RETRY_PROMPT = (
    "Your previous response did not match the required output schema: {error}. "
    "Respond again with ONLY valid JSON that matches the schema."
)

_tracer = trace.get_tracer(__name__)


class AgentEngine:
    """Runs one agent invocation: conversation, tool loop, structured output.

    Each call to `run` builds its own Conversation, so concurrent runs
    of the same handle (parallel blocks) never share message history.
    """

    def __init__(self, factory: ProviderFactory, tools: ToolRegistry, schemas: SchemaCompiler,
                 provider_timeout: float = PROVIDER_TIMEOUT_S):
        self.factory = factory
        self.tools = tools
        self.schemas = schemas
        self.provider_timeout = provider_timeout

    async def run(self, agent: AgentHandle) -> Any:
        with _tracer.start_as_current_span(f"agent:{agent.name}") as span:
            span.set_attribute("gent.agent", agent.name)
            try:
                return await self._run(agent)
            except AgentError as e:
                if e.agent is None:
                    e.agent = agent.name
                span.set_attribute("gent.error", e.kind)
                raise

    async def _run(self, agent: AgentHandle) -> Any:
        provider = self.factory.create(agent)
        signatures = self.tools.signatures_for(agent.tools, agent.name)
        user_prompt = agent.user_prompt if agent.user_prompt is not None else DEFAULT_USER_PROMPT
        conversation = Conversation(system=await self._system_prompt(agent, user_prompt))
        conversation.add_user(user_prompt)

        json_schema = self.schemas.json_schema(agent.output) if agent.output is not None else None
        reply = await self._tool_loop(agent, provider, conversation, signatures, json_schema)
        if agent.output is None:
            return reply.text

        attempts = 1
        while True:
            try:
                value = self.schemas.validate_output(reply.text, agent.output)
            except SchemaMismatch as e:
                error = str(e)
                if attempts > agent.output_retries:
                    raise OutputValidationFailed(error, attempts, agent.name) from None
                logger.debug("Agent '{}' output rejected (attempt {}): {}", agent.name, attempts, error)
                retry = agent.retry_prompt or DEFAULT_RETRY_PROMPT
                conversation.add_user(retry.replace("{error}", error))
                attempts += 1
                reply = await self._tool_loop(agent, provider, conversation, signatures, json_schema)
                continue
            return value

    async def _system_prompt(self, agent: AgentHandle, user_prompt: str) -> str:
        parts = [agent.system_prompt]
        if agent.knowledge is not None:
            binding = agent.knowledge
            hits = await binding.source.search(user_prompt, binding.chunk_limit, binding.score_threshold)
            if hits:
                context = "\n\n".join(
                    f"[{h.source}:{h.start_line}-{h.end_line}]\n{h.text}" for h in hits
                )
                parts.append("Relevant context:\n\n" + context)
            logger.debug("Agent '{}' injected {} knowledge chunks", agent.name, len(hits))
        if agent.output is not None:
            parts.append(self.schemas.output_instructions(agent.output))
        return "\n\n".join(p for p in parts if p)

    async def _tool_loop(self, agent: AgentHandle, provider: AIProvider, conversation: Conversation,
                         signatures, json_schema) -> ProviderResponse:
        """Call the provider until it answers without tool calls; `maxSteps` calls at most."""
        for step in range(1, agent.max_steps + 1):
            reply = await self._converse(agent, provider, conversation, signatures, json_schema)
            conversation.add_assistant(reply)
            if not reply.tool_calls:
                return reply
            for call in reply.tool_calls:
                result = await self.tools.invoke(call.name, call.arguments, agent.name)
                conversation.add_tool_result(call, result)
            logger.debug("Agent '{}' step {} ran {} tool call(s)", agent.name, step, len(reply.tool_calls))
        raise StepLimitExceeded(agent.max_steps, agent.name)

    async def _converse(self, agent: AgentHandle, provider: AIProvider, conversation: Conversation,
                        signatures, json_schema) -> ProviderResponse:
        logger.debug("Agent '{}' -> {} ({} messages)", agent.name, provider.name, len(conversation.messages))
        try:
            return await asyncio.wait_for(
                provider.converse(
                    conversation,
                    signatures,
                    model=agent.model,
                    json_mode=json_schema is not None,
                    json_schema=json_schema,
                ),
                timeout=self.provider_timeout,
            )
        except asyncio.TimeoutError:
            raise ProviderError(
                ProviderError.TIMEOUT, f"no response within {self.provider_timeout:g}s", agent.name
            ) from None

"""
Test configuration and fixtures for the GENT test suite.
"""
import asyncio
import sys
from pathlib import Path
from typing import Dict, Optional

import pytest

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from gentlang.ai_providers import AIProvider, MockProvider, ProviderResponse
from gentlang.config import GentConfig
from gentlang.parser import parse
from gentlang.runtime import Runtime
from gentlang.semantic import SemanticAnalyzer


@pytest.fixture
def sample_program() -> str:
    """Return a small program that exercises agents and tools."""
    return """
    tool double(n: number) -> number {
        return n * 2
    }

    agent Helper {
        systemPrompt: "You are helpful."
        tools: [double]
        maxSteps: 3
    }

    let answer = Helper.run("What is 21 doubled?")
    println(answer)
    """


@pytest.fixture
def parser_func():
    """Return the parse function."""
    return parse


@pytest.fixture
def analyzer():
    """Return a function that parses and analyzes source text."""
    def _analyze(source: str) -> SemanticAnalyzer:
        return SemanticAnalyzer(parse(source)).analyze()
    return _analyze


@pytest.fixture
def config() -> GentConfig:
    """Configuration with no credentials and no .gent.env lookup."""
    return GentConfig.load(env_file=None, environ={})


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()


@pytest.fixture
def runtime(config, mock_provider) -> Runtime:
    """Return a runtime wired to the mock provider; output is captured, not printed."""
    return Runtime(config=config, provider=mock_provider, echo=False)


@pytest.fixture
def run_program(config):
    """Load and run source text; returns the runtime so tests can inspect `console`."""
    def _run(source: str, provider: Optional[AIProvider] = None) -> Runtime:
        rt = Runtime(config=config, provider=provider or MockProvider(), echo=False)
        rt.load(source)
        rt.run()
        return rt
    return _run


class LatencyProvider(AIProvider):
    """Answers each agent after a per-agent delay; the agent is identified by its system prompt."""
    name = "latency"

    def __init__(self, delays: Dict[str, float], replies: Optional[Dict[str, str]] = None):
        self.delays = delays
        self.replies = replies or {}
        self.cancelled = []

    async def converse(self, conversation, tools=(), model=None, json_mode=False, json_schema=None):
        key = conversation.system.split("\n", 1)[0]
        try:
            await asyncio.sleep(self.delays.get(key, 0))
        except asyncio.CancelledError:
            self.cancelled.append(key)
            raise
        return ProviderResponse(text=self.replies.get(key, f"done:{key}"))


@pytest.fixture
def latency_provider():
    return LatencyProvider

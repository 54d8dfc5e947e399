from __future__ import annotations
import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger

from . import ast
from .agent import AgentEngine
from .ai_providers import AIProvider, ProviderFactory, validate_provider_name
from .config import GentConfig
from .errors import GentTypeError, RuntimeGentError
from .evaluator import Evaluator
from .knowledge import KnowledgeBase, OpenAIEmbeddings
from .parallel import run_parallel
from .parser import parse
from .schemas import SchemaCompiler
from .semantic import SemanticAnalyzer
from .tools import ToolRegistry
from .types import TypeRegistry


class Runtime:
    """Loads a GENT program and runs it.

    Program output (`print`/`println`) is collected in `console` and
    echoed to stdout; diagnostics go through the loguru logger.
    """

    def __init__(self, mock: bool = False, mock_response: Optional[str] = None,
                 config: Optional[GentConfig] = None, provider: Optional[AIProvider] = None,
                 echo: bool = True):
        if config is None:
            config = GentConfig.load(mock=mock or None, mock_response=mock_response)
        self.config = config
        self.factory = ProviderFactory(config, mock=mock or provider is not None, mock_provider=provider)
        self.echo = echo
        self.console: List[str] = []
        self.program: Optional[ast.Program] = None
        self.analysis: Optional[SemanticAnalyzer] = None
        self.base_dir = Path.cwd()
        self.evaluator: Optional[Evaluator] = None

    def log(self, msg: str) -> None:
        self.console.append(msg)
        if self.echo:
            print(msg)

    def load(self, source: str | Path) -> ast.Program:
        """Parse and check a program. Raises GentSyntaxError or SemanticError."""
        if isinstance(source, Path):
            self.base_dir = source.resolve().parent
        self.program = parse(source)
        self.analysis = SemanticAnalyzer(self.program).analyze()
        logger.debug(
            "Loaded program: {} agents, {} tools, {} types",
            len(self.analysis.agents), len(self.analysis.tools),
            len(self.analysis.structs) + len(self.analysis.enums),
        )
        return self.program

    def _knowledge_base(self, path: str, opts: Dict[str, Any]) -> KnowledgeBase:
        target = Path(path)
        if not target.is_absolute():
            target = self.base_dir / target
        embeddings = None
        kind = opts.get("embeddings", "hash")
        if kind == "openai" and self.factory.mock:
            logger.debug("Mock mode: KnowledgeBase '{}' uses hash embeddings instead of openai", path)
        elif kind == "openai":
            embeddings = OpenAIEmbeddings(self.config.openai_api_key)
        elif kind != "hash":
            raise GentTypeError(f"Unknown embeddings '{kind}'; expected 'hash' or 'openai'")
        return KnowledgeBase(target, embeddings)

    def build(self) -> Evaluator:
        if self.program is None or self.analysis is None:
            raise RuntimeGentError("No program loaded")
        types = TypeRegistry(self.analysis.structs, self.analysis.enums)
        schemas = SchemaCompiler(types)
        tools = ToolRegistry(schemas)
        engine = AgentEngine(self.factory, tools, schemas, self.config.provider_timeout)
        evaluator = Evaluator(
            self.program,
            types,
            emit=self.log,
            engine=engine,
            run_parallel=run_parallel,
            knowledge_factory=self._knowledge_base,
            validate_provider=validate_provider_name,
        )
        evaluator.hoist()
        tools.register_user_tools(evaluator.user_tools, evaluator.call_value)
        self.evaluator = evaluator
        return evaluator

    async def run_async(self) -> Any:
        return await self.build().run()

    def run(self) -> Any:
        return asyncio.run(self.run_async())

    def execute(self, source: str | Path) -> Any:
        self.load(source)
        return self.run()

from __future__ import annotations
from typing import Any, Dict, List, Optional


class GentError(Exception):
    kind = "GentError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def context(self) -> Dict[str, Any]:
        return {}

    def to_value(self) -> Dict[str, Any]:
        """Object bound to the identifier of a `catch` clause."""
        value: Dict[str, Any] = {"message": self.message, "kind": self.kind}
        value.update(self.context())
        return value


class GentSyntaxError(GentError):
    kind = "SyntaxError"

    def __init__(self, message: str, line: int = 0, column: int = 0,
                 expected: Optional[List[str]] = None, found: Optional[str] = None):
        super().__init__(message)
        self.line = line
        self.column = column
        self.expected = expected or []
        self.found = found

    def __str__(self) -> str:
        return f"{self.message} at line {self.line}, column {self.column}"


class SemanticError(GentError):
    kind = "SemanticError"

    def __init__(self, message: str, line: int = 0, column: int = 0):
        super().__init__(message)
        self.line = line
        self.column = column

    def __str__(self) -> str:
        if self.line:
            return f"{self.message} at line {self.line}, column {self.column}"
        return self.message


class RuntimeGentError(GentError):
    kind = "RuntimeError"


class GentTypeError(RuntimeGentError):
    kind = "TypeError"


class NoMatchingArm(RuntimeGentError):
    kind = "NoMatchingArm"

    def __init__(self, message: str, value: Any = None):
        super().__init__(message)
        self.value = value


class ParallelError(RuntimeGentError):
    """Raised by `.run()` on a parallel handle when at least one branch failed."""
    kind = "ParallelError"

    def __init__(self, name: str, results: List[Any]):
        self.name = name
        self.results = results
        failed = [r for r in results if isinstance(r, GentError)]
        self.failed = len(failed)
        super().__init__(
            f"Parallel block '{name}': {self.failed} of {len(results)} branches failed"
        )

    def context(self) -> Dict[str, Any]:
        return {
            "parallel": self.name,
            "failed": self.failed,
            "results": [r.to_value() if isinstance(r, GentError) else r for r in self.results],
        }


class ConfigError(GentError):
    kind = "ConfigError"


class UnknownProviderError(ConfigError):
    kind = "UnknownProvider"

    def __init__(self, model: str):
        super().__init__(f"Cannot infer provider from model '{model}'; set 'provider' explicitly")
        self.model = model

    def context(self) -> Dict[str, Any]:
        return {"model": self.model}


class CliUnavailableError(ConfigError):
    kind = "CliUnavailable"


class AgentError(GentError):
    kind = "AgentError"

    def __init__(self, message: str, agent: Optional[str] = None):
        super().__init__(message)
        self.agent = agent

    def context(self) -> Dict[str, Any]:
        return {"agent": self.agent} if self.agent else {}

    def __str__(self) -> str:
        if self.agent:
            return f"{self.message} (agent '{self.agent}')"
        return self.message


class UnknownToolError(AgentError):
    kind = "UnknownTool"

    def __init__(self, tool: str, agent: Optional[str] = None):
        super().__init__(f"Unknown tool '{tool}'", agent)
        self.tool = tool

    def context(self) -> Dict[str, Any]:
        ctx = super().context()
        ctx["tool"] = self.tool
        return ctx


class ToolArgumentError(AgentError):
    kind = "ToolArgumentError"

    def __init__(self, message: str, tool: str, agent: Optional[str] = None):
        super().__init__(message, agent)
        self.tool = tool

    def context(self) -> Dict[str, Any]:
        ctx = super().context()
        ctx["tool"] = self.tool
        return ctx


class StepLimitExceeded(AgentError):
    kind = "StepLimitExceeded"

    def __init__(self, max_steps: int, agent: Optional[str] = None):
        super().__init__(f"Agent did not produce a final answer within {max_steps} steps", agent)
        self.max_steps = max_steps

    def context(self) -> Dict[str, Any]:
        ctx = super().context()
        ctx["maxSteps"] = self.max_steps
        return ctx


class OutputValidationFailed(AgentError):
    kind = "OutputValidationFailed"

    def __init__(self, last_error: str, attempts: int, agent: Optional[str] = None):
        super().__init__(
            f"Output failed schema validation after {attempts} attempts: {last_error}", agent
        )
        self.last_error = last_error
        self.attempts = attempts

    def context(self) -> Dict[str, Any]:
        ctx = super().context()
        ctx.update({"lastError": self.last_error, "attempts": self.attempts})
        return ctx


class ProviderError(AgentError):
    kind = "ProviderError"

    NOT_FOUND = "NotFound"
    AUTH_FAILURE = "AuthFailure"
    RATE_LIMITED = "RateLimited"
    TIMEOUT = "Timeout"
    MALFORMED = "Malformed"

    def __init__(self, error_kind: str, message: str, agent: Optional[str] = None):
        super().__init__(f"{error_kind}: {message}", agent)
        self.error_kind = error_kind

    def context(self) -> Dict[str, Any]:
        ctx = super().context()
        ctx["errorKind"] = self.error_kind
        return ctx


class ParallelTimeout(AgentError):
    kind = "ParallelTimeout"

    def __init__(self, timeout_s: float, agent: Optional[str] = None):
        super().__init__(f"Branch cancelled after parallel timeout of {timeout_s:g}s", agent)
        self.timeout_s = timeout_s

from __future__ import annotations
import asyncio
from typing import Any, List, Optional, Sequence

from loguru import logger
from opentelemetry import trace

from .errors import AgentError, ConfigError, ParallelTimeout, RuntimeGentError
from .types import AgentHandle

_tracer = trace.get_tracer(__name__)

# errors a branch may end with; anything else propagates out of the block
BRANCH_ERRORS = (AgentError, ConfigError, RuntimeGentError)


async def run_parallel(engine: Any, handles: Sequence[AgentHandle], timeout_s: Optional[float],
                       name: Optional[str] = None) -> List[Any]:
    """Run every agent concurrently under one shared deadline.

    Returns one slot per handle, in input order: the agent's result, the
    error it failed with, or ParallelTimeout for branches still running
    when the deadline passed (those are cancelled).
    """
    label = name or "parallel"
    with _tracer.start_as_current_span(f"parallel:{label}") as span:
        span.set_attribute("gent.branches", len(handles))
        if not handles:
            return []
        tasks = [
            asyncio.create_task(engine.run(h), name=f"{label}:{i}:{h.name}")
            for i, h in enumerate(handles)
        ]
        try:
            done, pending = await asyncio.wait(tasks, timeout=timeout_s)
        except asyncio.CancelledError:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        results: List[Any] = []
        for handle, task in zip(handles, tasks):
            if task in pending:
                results.append(ParallelTimeout(timeout_s, handle.name))
                logger.debug("Parallel '{}': branch '{}' timed out", label, handle.name)
                continue
            exc = task.exception()
            if exc is None:
                results.append(task.result())
                logger.debug("Parallel '{}': branch '{}' succeeded", label, handle.name)
            elif isinstance(exc, BRANCH_ERRORS):
                results.append(exc)
                logger.debug("Parallel '{}': branch '{}' failed with {}", label, handle.name, exc.kind)
            else:
                raise exc
        span.set_attribute("gent.failed", sum(1 for r in results if isinstance(r, BRANCH_ERRORS)))
        return results

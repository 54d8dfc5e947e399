from __future__ import annotations
from typing import Any, Dict, Iterator, Optional

from .errors import RuntimeGentError


class Environment:
    """Lexical scope: a binding table plus an optional parent link.

    An environment marked `isolated` is the root of a tool-call body:
    lookups still walk into the captured scope, but assignments stop at
    the boundary so a tool cannot rebind state shared with its caller.
    """

    __slots__ = ("values", "parent", "isolated")

    def __init__(self, parent: Optional["Environment"] = None, isolated: bool = False):
        self.values: Dict[str, Any] = {}
        self.parent = parent
        self.isolated = isolated

    def child(self, isolated: bool = False) -> "Environment":
        return Environment(self, isolated=isolated)

    def define(self, name: str, value: Any) -> None:
        self.values[name] = value

    def _owner(self, name: str) -> Optional["Environment"]:
        env: Optional[Environment] = self
        while env is not None:
            if name in env.values:
                return env
            env = env.parent
        return None

    def has(self, name: str) -> bool:
        return self._owner(name) is not None

    def get(self, name: str) -> Any:
        owner = self._owner(name)
        if owner is None:
            raise RuntimeGentError(f"Undefined variable '{name}'")
        return owner.values[name]

    def assign(self, name: str, value: Any) -> None:
        env: Optional[Environment] = self
        while env is not None:
            if name in env.values:
                env.values[name] = value
                return
            if env.isolated:
                if env.parent is not None and env.parent.has(name):
                    raise RuntimeGentError(
                        f"Cannot assign to '{name}' from inside a tool body; declare a local with 'let'"
                    )
                break
            env = env.parent
        raise RuntimeGentError(f"Assignment to undeclared variable '{name}'")

    def names(self) -> Iterator[str]:
        seen = set()
        env: Optional[Environment] = self
        while env is not None:
            for k in env.values:
                if k not in seen:
                    seen.add(k)
                    yield k
            env = env.parent

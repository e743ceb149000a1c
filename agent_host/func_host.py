from __future__ import annotations

import inspect
import threading
from pathlib import Path
from typing import Any, List, Optional, Union

from .agent_loader import Agent, AgentFunc, load_agent
from .models import AgentMetadata, Message
from .user_storage import UserStorage


class FunctionNotFound(RuntimeError):
    """Raised when the requested function is not exported by the agent."""


def _accepts_user_storage(func: AgentFunc) -> bool:
    try:
        params = list(inspect.signature(func).parameters.values())
    except (TypeError, ValueError):
        # Builtins without a signature get the full calling convention.
        return True
    positional = [
        p
        for p in params
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]
    has_varargs = any(p.kind == inspect.Parameter.VAR_POSITIONAL for p in params)
    return has_varargs or len(positional) >= 2


class FuncHost:
    """
    Immutable wrapper around one loaded Agent.

    Reloads build a new FuncHost; an existing instance is never mutated, so
    concurrent invoke/metadata calls are safe.
    """

    def __init__(self, agent: Agent, user_storage: Optional[UserStorage]) -> None:
        self._agent = agent
        self._user_storage = user_storage

    @classmethod
    def from_path(cls, path: Union[str, Path], user_storage: Optional[UserStorage]) -> "FuncHost":
        return cls(load_agent(path), user_storage)

    @property
    def agent(self) -> Agent:
        return self._agent

    def function_names(self) -> List[str]:
        return sorted(self._agent.funcs)

    def invoke(self, name: str, message: Message) -> Any:
        """Call an agent function. The result may be awaitable."""
        func = self._agent.funcs.get(name)
        if func is None:
            raise FunctionNotFound(
                f"Function not found: {name}. Functions available: {', '.join(self.function_names())}"
            )
        if _accepts_user_storage(func):
            return func(message, self._user_storage)
        return func(message)

    def metadata(self) -> AgentMetadata:
        return AgentMetadata(
            base_prompt=self._agent.base_prompt,
            few_shots=list(self._agent.few_shots),
        )


class HostSlot:
    """The single reference to the FuncHost currently serving requests."""

    def __init__(self, host: FuncHost) -> None:
        self._host = host
        self._lock = threading.Lock()

    @property
    def current(self) -> FuncHost:
        return self._host

    def publish(self, host: FuncHost) -> FuncHost:
        """Swap in `host` and return the one it replaced."""
        with self._lock:
            previous, self._host = self._host, host
        return previous

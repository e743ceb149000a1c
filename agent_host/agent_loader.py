from __future__ import annotations

import hashlib
import importlib
import importlib.util
import inspect
import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType, ModuleType
from typing import Any, Callable, List, Mapping, Pattern, Tuple, Union

logger = logging.getLogger("agent-host")

BASE_PROMPT = "BASE_PROMPT"
FEW_SHOTS = "FEW_SHOTS"
RESERVED_EXPORTS = frozenset({BASE_PROMPT, FEW_SHOTS})
FEW_SHOT_DELIMITER = "\n\n"

# Dependency caches and bytecode under the agent root are not agent sources.
DEFAULT_WATCH_IGNORE = r"(^|/)(__pycache__|\.venv|venv|site-packages|node_modules|\.git)(/|$)|\.py[co]$"

# (message, user_storage=None) -> str | Message, possibly awaitable.
AgentFunc = Callable[..., Any]


@dataclass(frozen=True)
class Agent:
    path: Path
    base_prompt: str
    few_shots: Tuple[str, ...]
    funcs: Mapping[str, AgentFunc]


class AgentLoadError(RuntimeError):
    """Raised when an agent module cannot be loaded or validated."""


class AgentModuleNotFound(AgentLoadError):
    """Raised when the package path does not resolve to a loadable module."""


class InvalidAgentExport(AgentLoadError):
    """Raised when BASE_PROMPT / FEW_SHOTS are missing or not strings."""

    def __init__(self, message: str, exports: List[str]):
        super().__init__(message)
        self.exports = exports


def _not_found(path: Path) -> AgentModuleNotFound:
    return AgentModuleNotFound(
        f"Could not find package at path: {path}. Does this path exist? "
        "If it does, does the package have an __init__.py entry point?"
    )


def _entry_point(path: Path) -> Path:
    """Resolve a package directory or module file to the file to execute."""
    if path.is_dir():
        init_file = path / "__init__.py"
        if init_file.is_file():
            return init_file
    elif path.is_file() and path.suffix == ".py":
        return path
    raise _not_found(path)


def module_name_for(path: Union[str, Path]) -> str:
    """Stable sys.modules key for the agent at `path`."""
    resolved = Path(path).resolve()
    digest = hashlib.sha1(str(resolved).encode("utf-8")).hexdigest()[:12]
    stem = resolved.stem.replace("-", "_").replace(".", "_") or "agent"
    return f"_agent_{stem}_{digest}"


def watch_root_for(path: Union[str, Path]) -> Path:
    """Directory that holds the agent's sources."""
    resolved = Path(path).resolve()
    return resolved if resolved.is_dir() else resolved.parent


def _import_agent_module(path: Path) -> ModuleType:
    name = module_name_for(path)
    cached = sys.modules.get(name)
    if cached is not None:
        return cached

    entry = _entry_point(path)
    search_locations = [str(path)] if path.is_dir() else None
    spec = importlib.util.spec_from_file_location(
        name, entry, submodule_search_locations=search_locations
    )
    if spec is None or spec.loader is None:
        raise AgentModuleNotFound(f"Could not find package at path: {path}. Is it a Python module?")

    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        invalidate_agent_module(path)
        raise
    return module


def _export_names(module: ModuleType) -> List[str]:
    explicit = getattr(module, "__all__", None)
    if explicit is not None:
        return [str(n) for n in explicit]
    return [n for n in vars(module) if not n.startswith("_")]


def _is_own_routine(obj: Any, module: ModuleType) -> bool:
    if not inspect.isroutine(obj):
        return False
    owner = getattr(obj, "__module__", None) or ""
    return owner == module.__name__ or owner.startswith(module.__name__ + ".")


def _collect_funcs(module: ModuleType, exports: List[str]) -> Mapping[str, AgentFunc]:
    explicit = getattr(module, "__all__", None) is not None
    funcs = {}
    for name in exports:
        if name in RESERVED_EXPORTS:
            continue
        obj = getattr(module, name, None)
        if explicit:
            if not callable(obj):
                raise InvalidAgentExport(
                    f'Agent export "{name}" is listed in __all__ but is not callable. '
                    f"The agent at {module.__file__} exported the following: \"{', '.join(exports)}\".",
                    exports,
                )
            funcs[name] = obj
        elif _is_own_routine(obj, module):
            funcs[name] = obj
    return MappingProxyType(funcs)


def load_agent(path: Union[str, Path]) -> Agent:
    """Import the agent at `path` and validate its exports."""
    resolved = Path(path).resolve()
    if not resolved.exists():
        raise _not_found(resolved)

    module = _import_agent_module(resolved)
    exports = _export_names(module)
    all_exports = ", ".join(exports)

    try:
        base_prompt = getattr(module, BASE_PROMPT, None)
        if not isinstance(base_prompt, str):
            raise InvalidAgentExport(
                f"Agent must have a string export named {BASE_PROMPT}. "
                f'The agent at {resolved} exported the following: "{all_exports}".',
                exports,
            )
        few_shots = getattr(module, FEW_SHOTS, None)
        if not isinstance(few_shots, str):
            raise InvalidAgentExport(
                f"Agent must have a string export named {FEW_SHOTS} "
                f"(one or more examples separated by a blank line). "
                f'The agent at {resolved} exported the following: "{all_exports}".',
                exports,
            )
        funcs = _collect_funcs(module, exports)
    except InvalidAgentExport:
        invalidate_agent_module(resolved)
        raise

    return Agent(
        path=resolved,
        base_prompt=base_prompt,
        few_shots=tuple(few_shots.split(FEW_SHOT_DELIMITER)),
        funcs=funcs,
    )


def invalidate_agent_module(
    path: Union[str, Path],
    ignore: Union[str, Pattern[str]] = DEFAULT_WATCH_IGNORE,
) -> List[str]:
    """
    Forget every cached module belonging to the agent at `path`.

    That is the agent module, its submodules, and modules loaded from files
    under the agent directory whose relative path does not match `ignore`
    (installed libraries in a project virtualenv stay cached). The next
    load_agent call re-reads the sources from disk. Returns the evicted
    module names.
    """
    resolved = Path(path).resolve()
    name = module_name_for(resolved)
    root = watch_root_for(resolved)
    ignore_re = re.compile(ignore) if isinstance(ignore, str) else ignore

    evicted = []
    for mod_name, module in list(sys.modules.items()):
        if mod_name == name or mod_name.startswith(name + "."):
            evicted.append(mod_name)
            continue
        mod_file = getattr(module, "__file__", None)
        if not mod_file or not resolved.is_dir():
            continue
        try:
            rel = Path(mod_file).resolve().relative_to(root).as_posix()
        except ValueError:
            continue
        if not ignore_re.search(rel):
            evicted.append(mod_name)

    for mod_name in evicted:
        sys.modules.pop(mod_name, None)
    importlib.invalidate_caches()
    logger.debug("evicted agent modules: %s", evicted)
    return evicted

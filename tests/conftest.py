from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Callable

import pytest

from agent_host.agent_loader import invalidate_agent_module

ECHO_AGENT = '''
BASE_PROMPT = "I echo things."
FEW_SHOTS = "Q: hi\\nA: hi\\n\\nQ: bye\\nA: bye"


def echo(message):
    return message.text
'''


@pytest.fixture
def write_agent(tmp_path: Path) -> Callable[..., Path]:
    """
    Write an agent package under tmp_path and return its directory.

    `files` maps extra relative paths to source; the package entry point is
    always `__init__.py`. Cached modules are evicted after the test.
    """
    written = []

    def _write(source: str = ECHO_AGENT, name: str = "agent", **files: str) -> Path:
        pkg = tmp_path / name
        pkg.mkdir(parents=True, exist_ok=True)
        (pkg / "__init__.py").write_text(textwrap.dedent(source), encoding="utf-8")
        for rel, content in files.items():
            target = pkg / f"{rel}.py"
            target.write_text(textwrap.dedent(content), encoding="utf-8")
        written.append(pkg)
        return pkg

    yield _write

    for pkg in written:
        invalidate_agent_module(pkg)

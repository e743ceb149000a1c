from __future__ import annotations

import time
from pathlib import Path
from typing import List

import pytest
from fastapi.testclient import TestClient
from watchdog.events import (
    DirModifiedEvent,
    FileClosedEvent,
    FileCreatedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileOpenedEvent,
)

from agent_host.func_host import FuncHost, HostSlot
from agent_host.reload import ReloadController, ReloadState, _ChangeHandler
from agent_host.server import create_app

V1 = '''
BASE_PROMPT = "version one"
FEW_SHOTS = "a\\n\\nb"


def echo(message):
    return message.text
'''

SAME_METADATA_NEW_CODE = '''
BASE_PROMPT = "version one"
FEW_SHOTS = "a\\n\\nb"


def echo(message):
    return "echo: " + message.text


def extra(message):
    return "extra"
'''

NEW_PROMPT = '''
BASE_PROMPT = "version two has a longer prompt"
FEW_SHOTS = "a\\n\\nb"


def echo(message):
    return message.text
'''

BROKEN = '''
FEW_SHOTS = "BASE_PROMPT went missing"
'''


class RecordingNotifier:
    """Stands in for RefreshNotifier and counts notify calls."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    def notify(self) -> bool:
        self.calls.append(time.monotonic())
        return True


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def agent_dir(write_agent) -> Path:
    return write_agent(V1)


@pytest.fixture
def slot(agent_dir) -> HostSlot:
    return HostSlot(FuncHost.from_path(agent_dir, None))


@pytest.fixture
def controller(agent_dir, slot, notifier) -> ReloadController:
    ctrl = ReloadController(agent_dir, slot, None, notifier, debounce=0.05)  # type: ignore[arg-type]
    yield ctrl
    ctrl.stop()


def _rewrite(agent_dir: Path, source: str) -> Path:
    target = agent_dir / "__init__.py"
    target.write_text(source, encoding="utf-8")
    return target


def test_identical_metadata_does_not_notify(controller, agent_dir, slot, notifier):
    before = slot.current
    changed = _rewrite(agent_dir, SAME_METADATA_NEW_CODE)

    assert controller.reload(changed) is True
    assert slot.current is not before
    assert slot.current.function_names() == ["echo", "extra"]
    assert notifier.calls == []


def test_changed_base_prompt_notifies_exactly_once(controller, agent_dir, slot, notifier):
    changed = _rewrite(agent_dir, NEW_PROMPT)

    assert controller.reload(changed) is True
    assert slot.current.metadata().base_prompt == "version two has a longer prompt"
    assert len(notifier.calls) == 1


def test_failed_reload_keeps_previous_host(controller, agent_dir, slot, notifier):
    app = create_app(slot)
    client = TestClient(app)
    before = slot.current

    changed = _rewrite(agent_dir, BROKEN)
    assert controller.reload(changed) is False

    assert slot.current is before
    assert controller.state is ReloadState.STABLE
    assert notifier.calls == []
    resp = client.post("/echo", json={"message": {"text": "still here"}})
    assert resp.status_code == 200
    assert resp.json() == {"message": {"text": "still here", "embeds": {}}}


def test_recovers_after_a_failed_reload(controller, agent_dir, slot):
    _rewrite(agent_dir, BROKEN)
    assert controller.reload() is False

    _rewrite(agent_dir, NEW_PROMPT)
    assert controller.reload() is True
    assert slot.current.metadata().base_prompt == "version two has a longer prompt"


def test_reload_logs_changed_path(controller, agent_dir, caplog):
    changed = _rewrite(agent_dir, SAME_METADATA_NEW_CODE)
    with caplog.at_level("INFO", logger="agent-host"):
        controller.reload(changed)
    assert f'Reloading agent because "{changed}" changed' in caplog.text


def test_ignore_pattern(controller, agent_dir):
    assert controller.is_ignored(agent_dir / "__pycache__" / "x.cpython-312.pyc")
    assert controller.is_ignored(agent_dir / ".venv" / "lib" / "thing.py")
    assert controller.is_ignored(agent_dir / "helpers.pyc")
    assert controller.is_ignored(agent_dir.parent / "outside.py")
    assert not controller.is_ignored(agent_dir / "__init__.py")
    assert not controller.is_ignored(agent_dir / "tools" / "search.py")


def test_custom_ignore_pattern(agent_dir, slot, notifier):
    ctrl = ReloadController(agent_dir, slot, None, notifier, ignore=r"^fixtures/")  # type: ignore[arg-type]
    assert ctrl.is_ignored(agent_dir / "fixtures" / "data.json")
    assert not ctrl.is_ignored(agent_dir / "__init__.py")


def test_scheduled_events_coalesce_into_one_reload(controller, monkeypatch):
    reloaded: List[str] = []
    monkeypatch.setattr(controller, "reload", lambda path=None: reloaded.append(path) or True)

    controller.start()
    for i in range(5):
        controller.schedule(f"file-{i}.py")

    deadline = time.monotonic() + 5
    while not reloaded and time.monotonic() < deadline:
        time.sleep(0.01)
    time.sleep(0.2)

    assert reloaded == ["file-4.py"]


def test_watcher_reloads_on_file_change(controller, agent_dir, slot, notifier):
    controller.start()
    assert controller.running

    _rewrite(agent_dir, NEW_PROMPT)

    deadline = time.monotonic() + 10
    while time.monotonic() < deadline:
        if slot.current.metadata().base_prompt == "version two has a longer prompt":
            break
        time.sleep(0.05)

    assert slot.current.metadata().base_prompt == "version two has a longer prompt"
    assert len(notifier.calls) >= 1


def test_stop_is_idempotent(controller):
    controller.start()
    controller.stop()
    assert not controller.running
    controller.stop()


def test_agent_exiting_at_import_keeps_previous_host(controller, agent_dir, slot, notifier):
    before = slot.current
    changed = _rewrite(agent_dir, 'import sys\n\nsys.exit(3)\n')

    assert controller.reload(changed) is False
    assert slot.current is before
    assert controller.state is ReloadState.STABLE
    assert notifier.calls == []

    _rewrite(agent_dir, NEW_PROMPT)
    assert controller.reload() is True
    assert slot.current.metadata().base_prompt == "version two has a longer prompt"


def test_worker_survives_an_escaping_reload_error(controller, monkeypatch):
    reloaded: List[str] = []

    def flaky_reload(path=None):
        reloaded.append(path)
        if len(reloaded) == 1:
            raise KeyboardInterrupt
        return True

    monkeypatch.setattr(controller, "reload", flaky_reload)
    controller.start()

    controller.schedule("first.py")
    deadline = time.monotonic() + 5
    while not reloaded and time.monotonic() < deadline:
        time.sleep(0.01)

    controller.schedule("second.py")
    deadline = time.monotonic() + 5
    while len(reloaded) < 2 and time.monotonic() < deadline:
        time.sleep(0.01)

    assert reloaded == ["first.py", "second.py"]


# --- event filtering -------------------------------------------------------


@pytest.fixture
def scheduled(controller, monkeypatch) -> List[str]:
    paths: List[str] = []
    monkeypatch.setattr(controller, "schedule", paths.append)
    return paths


def test_handler_drops_access_and_directory_events(controller, agent_dir, scheduled):
    handler = _ChangeHandler(controller)
    init_file = str(agent_dir / "__init__.py")

    handler.dispatch(FileOpenedEvent(init_file))
    handler.dispatch(FileClosedEvent(init_file))
    handler.dispatch(DirModifiedEvent(str(agent_dir)))
    handler.dispatch(FileModifiedEvent(str(agent_dir / "__pycache__" / "agent.cpython-312.pyc")))

    assert scheduled == []


def test_handler_schedules_content_changes(controller, agent_dir, scheduled):
    handler = _ChangeHandler(controller)

    handler.dispatch(FileModifiedEvent(str(agent_dir / "__init__.py")))
    handler.dispatch(FileCreatedEvent(str(agent_dir / "tools.py")))

    assert scheduled == [str(agent_dir / "__init__.py"), str(agent_dir / "tools.py")]


def test_handler_schedules_moved_file_by_destination(controller, agent_dir, scheduled):
    handler = _ChangeHandler(controller)
    staged = str(agent_dir / ".venv" / "tools.py")
    moved_in = str(agent_dir / "tools.py")

    handler.dispatch(FileMovedEvent(staged, moved_in))
    handler.dispatch(FileMovedEvent(moved_in, str(agent_dir.parent / "elsewhere.py")))
    handler.dispatch(FileMovedEvent(str(agent_dir.parent / "a.py"), str(agent_dir.parent / "b.py")))

    assert scheduled == [moved_in, moved_in]

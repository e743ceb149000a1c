"""CLI entry point for the agent-host package."""

from __future__ import annotations

import asyncio
import os
import platform
import shutil
import sys
from typing import List, Optional

MIN_PYTHON = (3, 10)


def _python_version_str() -> str:
    return ".".join(str(part) for part in sys.version_info[:3])


def _ensure_supported_python() -> None:
    if sys.version_info < MIN_PYTHON:
        print(
            "Error: Python {} detected. agent-host requires Python {}.{}+.".format(
                _python_version_str(),
                MIN_PYTHON[0],
                MIN_PYTHON[1],
            ),
            file=sys.stderr,
        )
        sys.exit(2)


def _print_help() -> None:
    print("Agent Host CLI")
    print()
    print("Usage:")
    print("  agent-host [package_path] [--watch]   Serve the agent's functions over HTTP")
    print("  agent-host inspect [package_path]     Print the agent's metadata and functions")
    print("  agent-host doctor                     Print install/environment diagnostics")
    print()
    print("Configuration is read from the environment (or .env):")
    print("  AGENT_PACKAGE_PATH, PORT, HOST, AGENT_ID, USER_STORAGE_API_URL,")
    print("  REFRESH_METADATA_API_URL, WATCH, WATCH_IGNORE, SILENT_STARTUP,")
    print("  SILENT_REQUEST_HANDLING, HUMAN_READABLE_LOGS, LOG_LEVEL")
    print()


def _print_doctor() -> None:
    from .config import get_settings

    settings = get_settings()
    print("Agent Host Doctor")
    print()
    print(f"Platform: {platform.platform()}")
    print(f"Python:   {_python_version_str()}")
    print(f"Exe:      {sys.executable}")
    print(f"In venv:  {'yes' if sys.prefix != sys.base_prefix else 'no'}")
    print(f"PATH bin: {shutil.which('agent-host') or 'not found'}")
    print()
    print(f"Package:  {os.path.abspath(settings.package_path)}")
    print(f"Agent id: {settings.agent_id}")
    print(f"Storage:  {settings.user_storage_api_url}")
    print(f"Refresh:  {settings.refresh_metadata_api_url or 'not configured'}")
    print(f"Listen:   {settings.host}:{settings.port}")
    print(f"Watch:    {'yes' if settings.watch else 'no'}")
    if sys.version_info < MIN_PYTHON:
        print(f"Issue: Python is below required minimum {MIN_PYTHON[0]}.{MIN_PYTHON[1]}.")


def _run_inspect(package_path: str) -> int:
    from .agent_loader import AgentLoadError
    from .func_host import FuncHost

    try:
        host = FuncHost.from_path(package_path, None)
    except AgentLoadError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    metadata = host.metadata()
    print(f"Agent: {host.agent.path}")
    print()
    print("Base prompt:")
    print(f"  {metadata.base_prompt}")
    print()
    print(f"Few shots: {len(metadata.few_shots)}")
    print(f"Functions: {', '.join(host.function_names()) or '(none)'}")
    return 0


async def _serve_forever(settings) -> None:
    from .service import AgentService

    service = AgentService(settings)
    await service.start()
    try:
        await service.wait_closed()
    finally:
        await service.close()


def main(argv: Optional[List[str]] = None) -> None:
    """Serve an agent or handle inspect/doctor/help commands."""
    from .config import get_settings
    from .logging_config import configure_logging

    args = list(sys.argv[1:] if argv is None else argv)
    settings = get_settings()

    if args:
        subcommand = args[0].strip().lower()
        if subcommand in {"-h", "--help", "help"}:
            _print_help()
            sys.exit(0)
        if subcommand == "doctor":
            _print_doctor()
            sys.exit(0)
        if subcommand == "inspect":
            target = args[1] if len(args) > 1 else settings.package_path
            sys.exit(_run_inspect(target))

    _ensure_supported_python()

    updates = {}
    if "--watch" in args:
        updates["watch"] = True
        args.remove("--watch")
    if args:
        updates["package_path"] = args[0]
    if updates:
        settings = settings.model_copy(update=updates)

    configure_logging(
        human_readable=settings.human_readable_logs,
        level=settings.log_level,
        silent_request_handling=settings.silent_request_handling,
    )

    try:
        asyncio.run(_serve_forever(settings))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
    sys.exit(0)

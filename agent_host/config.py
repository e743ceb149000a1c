import os
from functools import lru_cache
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

from .agent_loader import DEFAULT_WATCH_IGNORE

# Load .env from current directory so AGENT_ID, USER_STORAGE_API_URL etc. are set automatically.
load_dotenv()


class Settings(BaseModel):
    """Runtime configuration loaded from environment variables."""

    package_path: str
    agent_id: str
    user_storage_api_url: str
    refresh_metadata_api_url: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 8181
    silent_startup: bool = False
    watch: bool = False
    watch_ignore: str = DEFAULT_WATCH_IGNORE
    silent_request_handling: bool = False
    human_readable_logs: bool = False
    log_level: str = "INFO"

    service_name: str = "agent-host"


def parse_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in {"true", "1", "yes"}:
        return True
    if lowered in {"false", "0", "no"}:
        return False
    return None


@lru_cache(maxsize=1)
def _base_settings() -> Settings:
    """
    Defaults only.

    `get_settings` below re-creates Settings from the current environment on
    every call; tests mutate os.environ between calls.
    """
    return Settings(
        package_path=".",
        agent_id="local-agent",
        user_storage_api_url="http://localhost:8000/api",
    )


def _env_bool(name: str, default: bool) -> bool:
    parsed = parse_bool(os.getenv(name) or None)
    return default if parsed is None else parsed


def get_settings() -> Settings:
    """Return Settings built from the *current* environment."""
    base = _base_settings()
    port_raw = os.getenv("PORT") or ""

    return Settings(
        package_path=os.getenv("AGENT_PACKAGE_PATH") or base.package_path,
        agent_id=os.getenv("AGENT_ID") or base.agent_id,
        user_storage_api_url=os.getenv("USER_STORAGE_API_URL") or base.user_storage_api_url,
        refresh_metadata_api_url=os.getenv("REFRESH_METADATA_API_URL") or None,
        host=os.getenv("HOST") or base.host,
        port=int(port_raw) if port_raw.strip() else base.port,
        silent_startup=_env_bool("SILENT_STARTUP", base.silent_startup),
        watch=_env_bool("WATCH", base.watch),
        watch_ignore=os.getenv("WATCH_IGNORE") or base.watch_ignore,
        silent_request_handling=_env_bool("SILENT_REQUEST_HANDLING", base.silent_request_handling),
        human_readable_logs=_env_bool("HUMAN_READABLE_LOGS", base.human_readable_logs),
        log_level=(os.getenv("LOG_LEVEL") or base.log_level).upper(),
        service_name=base.service_name,
    )

from __future__ import annotations

import threading
from typing import Any, List, Optional
from urllib.parse import quote

import httpx


class UserStorage:
    """
    Per-agent key/value handle passed into every agent function call.

    One instance is shared by every request and survives reloads. The HTTP
    client is created on first use so constructing the handle never touches
    the network.
    """

    def __init__(
        self,
        api_url: str,
        agent_id: str,
        *,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 30,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.agent_id = agent_id
        self._transport = transport
        self._timeout = timeout
        self._client: Optional[httpx.Client] = None
        self._lock = threading.Lock()

    def _http(self) -> httpx.Client:
        with self._lock:
            if self._client is None:
                self._client = httpx.Client(
                    base_url=f"{self.api_url}/agents/{quote(self.agent_id, safe='')}/storage",
                    transport=self._transport,
                    timeout=self._timeout,
                )
            return self._client

    @staticmethod
    def _key_path(key: str) -> str:
        return "/" + quote(key, safe="")

    def get(self, key: str) -> Any:
        resp = self._http().get(self._key_path(key))
        if resp.status_code == 404:
            raise KeyError(key)
        resp.raise_for_status()
        return resp.json().get("value")

    def set(self, key: str, value: Any) -> None:
        resp = self._http().put(self._key_path(key), json={"value": value})
        resp.raise_for_status()

    def has(self, key: str) -> bool:
        try:
            self.get(key)
        except KeyError:
            return False
        return True

    def delete(self, key: str) -> None:
        resp = self._http().delete(self._key_path(key))
        if resp.status_code == 404:
            raise KeyError(key)
        resp.raise_for_status()

    def keys(self) -> List[str]:
        resp = self._http().get("")
        resp.raise_for_status()
        return [str(k) for k in resp.json().get("keys", [])]

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def __repr__(self) -> str:
        return f"UserStorage(api_url={self.api_url!r}, agent_id={self.agent_id!r})"

from __future__ import annotations

import logging
from typing import Optional

import httpx

logger = logging.getLogger("agent-host")


class RefreshNotifier:
    """Tells the coordinator to re-read this agent's metadata."""

    def __init__(
        self,
        url: Optional[str],
        *,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 30,
    ) -> None:
        self.url = url or None
        self._transport = transport
        self._timeout = timeout

    def notify(self) -> bool:
        """POST to the refresh URL. Failures are logged, never raised."""
        if self.url is None:
            return False
        try:
            with httpx.Client(transport=self._transport, timeout=self._timeout) as client:
                resp = client.post(self.url)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("refresh notification to %s failed: %s", self.url, exc)
            return False
        logger.debug("refresh notification sent to %s", self.url)
        return True

"""Network state tracking for the offline queue."""

import asyncio
from typing import Awaitable, Callable

import httpx

from safetrust.core.logging import get_logger

logger = get_logger(__name__)

ConnectivityListener = Callable[[bool], Awaitable[None] | None]


class ConnectivityMonitor:
    """
    Holds the current online/offline state and notifies subscribers on change.

    The state is pushed by the host (``set_online``) or polled with ``probe``.
    """

    def __init__(
        self,
        online: bool = False,
        probe_url: str | None = None,
        probe_timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._online = online
        self.probe_url = probe_url
        self.probe_timeout = probe_timeout
        self._transport = transport
        self._listeners: list[ConnectivityListener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: ConnectivityListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: ConnectivityListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def set_online(self, online: bool) -> bool:
        """Update the state. Returns True when it changed."""
        if online == self._online:
            return False
        self._online = online
        logger.info("Connectivity changed", extra={"online": online})
        for listener in list(self._listeners):
            try:
                result = listener(online)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}", exc_info=True)
        return True

    async def probe(self) -> bool:
        """GET the probe URL and update the state from the outcome."""
        if not self.probe_url:
            return self._online
        try:
            async with httpx.AsyncClient(timeout=self.probe_timeout, transport=self._transport) as client:
                response = await client.get(self.probe_url)
            online = response.status_code < 500
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity probe failed: {e}")
            online = False
        await self.set_online(online)
        return online

    async def run(self, interval: float) -> None:
        """Probe forever every ``interval`` seconds. Cancel the task to stop."""
        while True:
            await self.probe()
            await asyncio.sleep(interval)

"""
Process-wide owner of the ClearNode client.

The registry is constructed once (at app startup, or by the CLI) and injected
where a client is needed. The first ``get()`` builds and authenticates the
client; callers that arrive while that is in flight await the same
initialization task, so only one connection/authentication sequence runs.
A failed initialization is not cached: the next ``get()`` tries again.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from ..config import Settings
from ..errors import NetworkError, ValidationError
from ..logging import get_logger
from .client import ClearNodeClient, Connector
from .signer import EthRawSigner

log = get_logger(__name__)

ClientFactory = Callable[[], ClearNodeClient]


def client_from_settings(settings: Settings, *, connector: Optional[Connector] = None) -> ClearNodeClient:
    key = settings.operator_key()
    if not key:
        raise ValidationError("Operator private key not configured (set OPERATOR_PRIVATE_KEY)")
    kwargs = {}
    if connector is not None:
        kwargs["connector"] = connector
    return ClearNodeClient(
        signer=EthRawSigner(key),
        url=settings.resolved_clearnode_url,
        application=settings.application,
        scope=settings.auth_scope,
        auth_expiry=settings.auth_expiry_seconds,
        request_timeout=settings.request_timeout,
        connect_timeout=settings.connect_timeout,
        reconnect_base_delay=settings.reconnect_base_delay,
        max_reconnect_attempts=settings.max_reconnect_attempts,
        **kwargs,
    )


class ClearNodeRegistry:
    def __init__(self, factory: ClientFactory) -> None:
        self._factory = factory
        self._client: Optional[ClearNodeClient] = None
        self._init: Optional[asyncio.Task] = None
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings, *, connector: Optional[Connector] = None) -> "ClearNodeRegistry":
        return cls(lambda: client_from_settings(settings, connector=connector))

    @property
    def client(self) -> Optional[ClearNodeClient]:
        """The live client, if one has been created (never triggers a connection)."""
        return self._client

    async def get(self) -> ClearNodeClient:
        if self._closed:
            raise NetworkError("ClearNode registry is closed")
        if self._client is not None:
            return self._client
        if self._init is None:
            self._init = asyncio.create_task(self._create(), name="ClearNodeRegistry.init")
        init = self._init
        try:
            return await asyncio.shield(init)
        except BaseException:
            if init.done() and self._init is init:
                self._init = None
            raise

    async def _create(self) -> ClearNodeClient:
        client = self._factory()
        try:
            await client.connect()
        except BaseException:
            await client.disconnect()
            raise
        self._client = client
        self._init = None
        log.info("clearnode_client_ready", address=client.address)
        return client

    async def reset(self) -> None:
        """Drop the current client (e.g. after its retry budget ran out); the next get() rebuilds it."""
        client, self._client = self._client, None
        init, self._init = self._init, None
        if init is not None and not init.done():
            init.cancel()
        if client is not None:
            await client.disconnect()

    async def close(self) -> None:
        """Explicit teardown; later get() calls fail."""
        self._closed = True
        await self.reset()


__all__ = ["ClearNodeRegistry", "ClientFactory", "client_from_settings"]

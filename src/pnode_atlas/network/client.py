"""pRPC client: one JSON-RPC call to one pNode.

Each call is a single HTTP POST to ``http://{host}:6000/rpc`` carrying a
JSON-RPC 2.0 envelope. The client enforces a per-call timeout, validates
the response against the method's schema and maps every failure onto one
of the :mod:`pnode_atlas.network.errors` kinds. It never retries; retry
policy belongs to the caller.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

import aiohttp
import pydantic
from aiohttp import ClientSession, ClientTimeout
from pydantic import BaseModel

from pnode_atlas.network.errors import (
    NetworkError,
    PrpcError,
    PrpcTimeoutError,
    RpcError,
    ValidationError,
)
from pnode_atlas.network.schemas import (
    RESULT_SCHEMAS,
    JsonRpcResponse,
    PeerListResponse,
    Telemetry,
    validate_result,
)
from pnode_atlas.network.seeds import (
    DEFAULT_TIMEOUT,
    MAX_TIMEOUT,
    METHOD_GET_TELEMETRY,
    METHOD_LIST_PEERS,
    METHOD_LIST_PEERS_WITH_TELEMETRY,
    PRPC_METHODS,
    PRPC_PATH,
    PRPC_PORT,
)

logger = logging.getLogger(__name__)


class PrpcClient:
    """JSON-RPC client bound to a single pNode.

    Pass a shared ``session`` when issuing many calls (the collector does);
    without one, every call opens and closes a private session.
    """

    def __init__(
        self,
        host: str,
        port: int = PRPC_PORT,
        timeout: float = DEFAULT_TIMEOUT,
        debug: bool = False,
        session: ClientSession | None = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self.host = host
        self.port = port
        self.timeout = min(timeout, MAX_TIMEOUT)
        self.debug = debug
        self._session = session

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}{PRPC_PATH}"

    async def call(self, method: str, params: list[Any] | None = None) -> BaseModel:
        """Issue one call and return the validated result model.

        Raises:
            PrpcTimeoutError: No response within ``self.timeout`` seconds.
            NetworkError: Connection, DNS or HTTP-status failure.
            RpcError: The peer returned a JSON-RPC error object.
            ValidationError: The result does not match the method schema.
        """
        if method not in PRPC_METHODS:
            raise ValueError(f"Unknown pRPC method: {method}")

        body = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params or []}
        if self.debug:
            logger.debug("Request to %s: %s", self.url, json.dumps(body))

        try:
            raw = await self._post(body)
        except asyncio.TimeoutError as exc:
            raise PrpcTimeoutError(self.timeout, self.url) from exc
        except (aiohttp.ClientError, OSError) as exc:
            raise NetworkError(str(exc) or type(exc).__name__) from exc

        if self.debug:
            logger.debug("Response from %s: %s", self.host, raw)
        return self._unwrap(method, raw)

    async def list_peers(self) -> PeerListResponse:
        """Peers known to this node's gossip table."""
        return await self.call(METHOD_LIST_PEERS)  # type: ignore[return-value]

    async def get_telemetry(self) -> Telemetry:
        """This node's own live metrics."""
        return await self.call(METHOD_GET_TELEMETRY)  # type: ignore[return-value]

    async def list_peers_with_telemetry(self) -> PeerListResponse:
        return await self.call(METHOD_LIST_PEERS_WITH_TELEMETRY)  # type: ignore[return-value]

    async def health_check(self) -> dict[str, Any]:
        """Try one ``list-peers`` call; never raises for pRPC failures."""
        start = time.monotonic()
        try:
            await self.list_peers()
            healthy = True
        except PrpcError:
            logger.debug("Health check failed for %s", self.host, exc_info=True)
            healthy = False
        return {
            "healthy": healthy,
            "latency_ms": round((time.monotonic() - start) * 1000),
        }

    # ── Internals ────────────────────────────────────────────────

    async def _post(self, body: dict[str, Any]) -> Any:
        timeout = ClientTimeout(total=self.timeout)
        if self._session is not None:
            return await self._post_with(self._session, body, timeout)
        async with ClientSession() as session:
            return await self._post_with(session, body, timeout)

    async def _post_with(
        self,
        session: ClientSession,
        body: dict[str, Any],
        timeout: ClientTimeout,
    ) -> Any:
        async with session.post(
            self.url,
            json=body,
            headers={"Accept": "application/json"},
            timeout=timeout,
        ) as resp:
            if resp.status != 200:
                raise NetworkError(f"HTTP {resp.status}: {resp.reason}")
            try:
                return await resp.json(content_type=None)
            except ValueError as exc:
                raise NetworkError(f"Invalid JSON body from {self.host}") from exc

    def _unwrap(self, method: str, raw: Any) -> BaseModel:
        try:
            envelope = JsonRpcResponse.model_validate(raw)
        except pydantic.ValidationError:
            envelope = None

        if envelope is None:
            # Some builds answer with the bare result instead of an envelope
            try:
                return RESULT_SCHEMAS[method].model_validate(raw)
            except pydantic.ValidationError:
                raise ValidationError(
                    "Invalid JSON-RPC response format",
                    [{"path": "root", "message": "Response does not match JSON-RPC 2.0 format"}],
                ) from None

        if envelope.error is not None:
            raise RpcError(envelope.error.message, envelope.error.code, envelope.error.data)
        return validate_result(method, envelope.result)

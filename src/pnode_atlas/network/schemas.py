"""Response schemas for the pRPC methods.

One pydantic model per method result, plus the JSON-RPC envelope. The
client validates every response through :func:`validate_result`, so
downstream code only ever sees typed, checked values.
"""

from __future__ import annotations

from typing import Any, Literal

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from pnode_atlas.network.errors import ValidationError
from pnode_atlas.network.seeds import (
    METHOD_GET_TELEMETRY,
    METHOD_LIST_PEERS,
    METHOD_LIST_PEERS_WITH_TELEMETRY,
)


class Peer(BaseModel):
    """One pNode as reported by a bootstrap seed's gossip table."""

    model_config = ConfigDict(frozen=True, strict=True)

    pubkey: str = Field(min_length=32, max_length=64)
    address: str
    version: str | None = None
    last_seen_timestamp: float
    uptime: float | None = None
    storage_used: float | None = None

    @property
    def host(self) -> str:
        """Address without the gossip port."""
        return self.address.split(":")[0]


class Telemetry(BaseModel):
    """Live metrics reported by a pNode about itself."""

    model_config = ConfigDict(frozen=True, strict=True)

    active_streams: int = Field(ge=0)
    cpu_percent: float = Field(ge=0, le=100)
    current_index: int = Field(ge=0)
    file_size: int = Field(ge=0)
    last_updated: float
    packets_received: int = Field(ge=0)
    packets_sent: int = Field(ge=0)
    ram_total: int = Field(ge=0)
    ram_used: int = Field(ge=0)
    total_bytes: int = Field(ge=0)
    total_pages: int = Field(ge=0)
    uptime: int = Field(ge=0)


class PeerListResponse(BaseModel):
    """Result of ``list-peers``.

    Malformed entries are dropped rather than failing the whole list;
    ``rejected`` counts how many were dropped.
    """

    peers: list[Peer] = Field(validation_alias=AliasChoices("pods", "peers"))
    total_count: int = Field(ge=0)
    rejected: int = 0

    @model_validator(mode="before")
    @classmethod
    def _drop_malformed_entries(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        key = "pods" if "pods" in data else "peers"
        raw = data.get(key)
        if not isinstance(raw, list):
            return data
        kept: list[Peer] = []
        for entry in raw:
            try:
                kept.append(Peer.model_validate(entry))
            except pydantic.ValidationError:
                continue
        return {**data, key: kept, "rejected": len(raw) - len(kept)}


class JsonRpcErrorObject(BaseModel):
    code: int
    message: str
    data: Any = None


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 response envelope."""

    jsonrpc: Literal["2.0"]
    id: int | str
    result: Any = None
    error: JsonRpcErrorObject | None = None


RESULT_SCHEMAS: dict[str, type[BaseModel]] = {
    METHOD_LIST_PEERS: PeerListResponse,
    METHOD_GET_TELEMETRY: Telemetry,
    METHOD_LIST_PEERS_WITH_TELEMETRY: PeerListResponse,
}


def issues_from(exc: pydantic.ValidationError) -> list[dict[str, str]]:
    """Flatten a pydantic error into ``{"path", "message"}`` issues."""
    return [
        {
            "path": ".".join(str(part) for part in err["loc"]) or "root",
            "message": err["msg"],
        }
        for err in exc.errors()
    ]


def validate_result(method: str, payload: Any) -> BaseModel:
    """Validate a method result, raising :class:`ValidationError` on mismatch."""
    schema = RESULT_SCHEMAS[method]
    try:
        return schema.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError("Response validation failed", issues_from(exc)) from exc

"""Ledger adapter interface consumed by the ESC runtime."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol


class TransactionError(RuntimeError):
    """Raised when a submit or evaluate call fails on the ledger side."""


@dataclass(frozen=True)
class LedgerEvent:
    type: str
    payload: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.payload.get(key, default)


EventListener = Callable[[LedgerEvent], Awaitable[None]]


class LedgerAdapter(Protocol):
    async def submit_transaction(self, name: str, *args: str) -> bytes:
        ...

    async def evaluate_transaction(self, name: str, *args: str) -> bytes:
        ...

    def subscribe(self, listener: EventListener) -> int:
        ...

    def unsubscribe(self, token: int) -> None:
        ...


class LedgerNetwork(Protocol):
    """A channel exposing one adapter per installed chaincode."""

    def contract(self, chaincode_name: str) -> LedgerAdapter:
        ...


def decode_result(raw: bytes | str) -> Any:
    """Decode a contract result; non-JSON results come back as plain text."""
    text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else str(raw)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text

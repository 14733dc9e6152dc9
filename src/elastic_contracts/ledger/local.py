"""In-process ledger simulator implementing the LedgerAdapter protocol."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from elastic_contracts.clock import Clock, LoopClock, now_ms

from .adapter import EventListener, LedgerEvent, TransactionError


logger = logging.getLogger("elastic_contracts.ledger.local")


@dataclass
class ContractContext:
    """What a contract function sees while it runs."""

    world: dict[str, Any]
    timestamp_ms: int
    events: list[LedgerEvent] = field(default_factory=list)

    def emit(self, event_type: str, payload: dict[str, Any]) -> None:
        self.events.append(LedgerEvent(type=event_type, payload=dict(payload)))


ContractFunction = Callable[..., Any]


@dataclass(frozen=True)
class SubmittedTransaction:
    name: str
    args: tuple[str, ...]
    submitted_at: float


class LocalLedger:
    """Local ledger for dry runs and tests.

    Submits run the named contract against a shared world-state dict after an
    optional commit latency; emitted events are delivered to subscribers as
    separate tasks once the transaction commits. Evaluates run against a copy
    of the world state and never emit.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        *,
        commit_latency: float = 0.0,
        evaluate_latency: float = 0.0,
        delivery_latency: float = 0.0,
    ) -> None:
        self.clock = clock or LoopClock()
        self.commit_latency = commit_latency
        self.evaluate_latency = evaluate_latency
        self.delivery_latency = delivery_latency
        self.world: dict[str, Any] = {}
        self.submitted: list[SubmittedTransaction] = []
        self.evaluated: list[SubmittedTransaction] = []
        self.peak_in_flight = 0
        self._in_flight = 0
        self._contracts: dict[str, ContractFunction] = {}
        self._listeners: dict[int, EventListener] = {}
        self._next_token = 1
        self._deliveries: set[asyncio.Task[None]] = set()

    def register(self, name: str, function: ContractFunction) -> None:
        self._contracts[name] = function

    def submissions(self, name: str) -> list[SubmittedTransaction]:
        return [tx for tx in self.submitted if tx.name == name]

    async def submit_transaction(self, name: str, *args: str) -> bytes:
        function = self._lookup(name)
        self.submitted.append(SubmittedTransaction(name=name, args=tuple(args), submitted_at=self.clock.now()))
        self._in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
        try:
            if self.commit_latency > 0:
                await self.clock.sleep(self.commit_latency)
            context = ContractContext(world=self.world, timestamp_ms=now_ms(self.clock))
            result = _invoke(name, function, context, args)
        finally:
            self._in_flight -= 1
        for event in context.events:
            self._deliver(event)
        return _encode(result)

    async def evaluate_transaction(self, name: str, *args: str) -> bytes:
        function = self._lookup(name)
        self.evaluated.append(SubmittedTransaction(name=name, args=tuple(args), submitted_at=self.clock.now()))
        if self.evaluate_latency > 0:
            await self.clock.sleep(self.evaluate_latency)
        context = ContractContext(world=copy.deepcopy(self.world), timestamp_ms=now_ms(self.clock))
        return _encode(_invoke(name, function, context, args))

    def subscribe(self, listener: EventListener) -> int:
        token = self._next_token
        self._next_token += 1
        self._listeners[token] = listener
        return token

    def unsubscribe(self, token: int) -> None:
        self._listeners.pop(token, None)

    def publish(self, event: LedgerEvent) -> None:
        """Deliver an event as if a committed transaction had emitted it."""
        self._deliver(event)

    def _lookup(self, name: str) -> ContractFunction:
        function = self._contracts.get(name)
        if function is None:
            raise TransactionError(f"unknown contract function: {name}")
        return function

    def _deliver(self, event: LedgerEvent) -> None:
        loop = asyncio.get_running_loop()
        for token, listener in list(self._listeners.items()):
            task = loop.create_task(self._dispatch(token, listener, event))
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)

    async def _dispatch(self, token: int, listener: EventListener, event: LedgerEvent) -> None:
        if self.delivery_latency > 0:
            await self.clock.sleep(self.delivery_latency)
        if token not in self._listeners:
            return
        try:
            await listener(event)
        except Exception:
            logger.exception("Ledger listener %s failed on %s event", token, event.type)


def _invoke(name: str, function: ContractFunction, context: ContractContext, args: tuple[str, ...]) -> Any:
    try:
        return function(context, *args)
    except TransactionError:
        raise
    except Exception as exc:
        raise TransactionError(f"contract {name} failed: {exc}") from exc


def _encode(result: Any) -> bytes:
    if result is None:
        return b""
    if isinstance(result, (bytes, bytearray)):
        return bytes(result)
    if isinstance(result, str):
        return result.encode("utf-8")
    return json.dumps(result, ensure_ascii=True, separators=(",", ":")).encode("utf-8")


class LocalNetwork:
    """Local channel holding one independent ``LocalLedger`` per chaincode.

    Each chaincode gets its own world state, contract registry and event
    listeners; only the clock and latency settings are shared.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        *,
        commit_latency: float = 0.0,
        evaluate_latency: float = 0.0,
        delivery_latency: float = 0.0,
    ) -> None:
        self.clock = clock or LoopClock()
        self.commit_latency = commit_latency
        self.evaluate_latency = evaluate_latency
        self.delivery_latency = delivery_latency
        self._chaincodes: dict[str, LocalLedger] = {}

    @property
    def chaincodes(self) -> list[str]:
        return sorted(self._chaincodes)

    def contract(self, chaincode_name: str) -> LocalLedger:
        ledger = self._chaincodes.get(chaincode_name)
        if ledger is None:
            ledger = LocalLedger(
                self.clock,
                commit_latency=self.commit_latency,
                evaluate_latency=self.evaluate_latency,
                delivery_latency=self.delivery_latency,
            )
            self._chaincodes[chaincode_name] = ledger
            logger.debug("Installed local chaincode %s", chaincode_name)
        return ledger

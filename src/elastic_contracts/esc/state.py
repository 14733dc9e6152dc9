"""Per-instance mutable control state."""

from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any

from .config import EscConfig


@dataclass(frozen=True)
class FrequencyChange:
    new_frequency: float


class FrequencyMailbox:
    """Single-slot cell between the evaluator and the harvest loop.

    ``post`` overwrites whatever is pending and ``take`` returns and clears
    it. Two posts before a take deliver only the second one; the harvest loop
    only ever needs the latest frequency, so this is not a queue.
    """

    def __init__(self) -> None:
        self._slot: FrequencyChange | None = None

    @property
    def pending(self) -> bool:
        return self._slot is not None

    def post(self, new_frequency: float) -> None:
        self._slot = FrequencyChange(new_frequency=float(new_frequency))

    def take(self) -> FrequencyChange | None:
        change, self._slot = self._slot, None
        return change

    def clear(self) -> None:
        self._slot = None


class LatencyHistory:
    """Latest analysis latencies, one per analysis id, first value wins.

    Ids that have dropped out of the window are forgotten; a late duplicate of
    an id at or below the newest evicted id is ignored.
    """

    def __init__(self, window: int) -> None:
        if window < 1:
            raise ValueError("latency window must be at least 1")
        self.window = window
        self._entries: deque[tuple[int, float]] = deque()
        self._seen: set[int] = set()
        self._evicted_through: int | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, analysis_id: object) -> bool:
        return analysis_id in self._seen

    def record(self, analysis_id: int, latency: float) -> bool:
        if analysis_id in self._seen:
            return False
        if self._evicted_through is not None and analysis_id <= self._evicted_through:
            return False
        self._seen.add(analysis_id)
        self._entries.append((analysis_id, float(latency)))
        while len(self._entries) > self.window:
            evicted, _ = self._entries.popleft()
            self._seen.discard(evicted)
            if self._evicted_through is None or evicted > self._evicted_through:
                self._evicted_through = evicted
        return True

    def values(self) -> list[float]:
        return [latency for _, latency in self._entries]

    def average(self) -> float | None:
        if not self._entries:
            return None
        return sum(latency for _, latency in self._entries) / len(self._entries)


# Start timestamps and fail counters are kept for this many recent ids.
START_RETENTION = 256


@dataclass
class InstanceState:
    key: str
    data_time_limit: float
    harvest_frequency: float
    analysis_frequency: float
    history: LatencyHistory
    mailbox: FrequencyMailbox = field(default_factory=FrequencyMailbox)
    harvest_batch: list[dict[str, Any]] = field(default_factory=list)
    in_flight: bool = False
    in_flight_kind: str | None = None
    analysis_fail_count: defaultdict[int, int] = field(default_factory=lambda: defaultdict(int))
    harvest_fail_count: int = 0
    analysis_start: dict[int, float] = field(default_factory=dict)
    update_start: dict[int, float] = field(default_factory=dict)
    calculation_window_dates: list[int] = field(default_factory=list)
    exec_times: list[float] = field(default_factory=list)
    calculations_over_max: int = 0
    _next_analysis_id: int = 0
    _next_update_id: int = 0

    @classmethod
    def from_config(cls, key: str, config: EscConfig) -> "InstanceState":
        return cls(
            key=key,
            data_time_limit=config.data_time_limit,
            harvest_frequency=config.harvest_frequency,
            analysis_frequency=config.analysis_frequency,
            history=LatencyHistory(config.number_of_times_for_analysis_avg),
        )

    def new_analysis_id(self) -> int:
        analysis_id = self._next_analysis_id
        self._next_analysis_id += 1
        stale = analysis_id - START_RETENTION
        self.analysis_start.pop(stale, None)
        self.analysis_fail_count.pop(stale, None)
        return analysis_id

    def new_update_id(self) -> int:
        update_id = self._next_update_id
        self._next_update_id += 1
        self.update_start.pop(update_id - START_RETENTION, None)
        return update_id

    def analysis_latency(self, analysis_id: int, now: float) -> float | None:
        started = self.analysis_start.get(analysis_id)
        if started is None:
            return None
        return now - started

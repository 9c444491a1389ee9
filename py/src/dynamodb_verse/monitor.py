from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class DispatchMetric:
    operation: str
    size: int
    table_names: tuple[str, ...]
    attempt: int
    seconds: float
    ok: bool
    error: BaseException | None = None


type Monitor = Callable[[DispatchMetric], None]


def observe(monitor: Monitor | None, metric: DispatchMetric) -> None:
    if monitor is not None:
        monitor(metric)

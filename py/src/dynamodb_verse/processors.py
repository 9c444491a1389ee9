from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Protocol

from .batches import BatchBuilder
from .descriptors import WriteItemFunc
from .errors import ValidationError
from .monitor import Monitor

log = logging.getLogger(__name__)

MAX_PROCESSOR_SIZE = 20


class ProcessorBuilder(Protocol):
    def put(self, *items: WriteItemFunc) -> Any: ...

    def delete(self, *items: WriteItemFunc) -> Any: ...

    def with_monitor(self, monitor: Monitor | None) -> Any: ...

    def run(self, client: Any, *, cancel: threading.Event | None = None) -> Any: ...


type BuilderFactory = Callable[[], ProcessorBuilder]


def _update(builder: ProcessorBuilder, items: tuple[WriteItemFunc, ...]) -> None:
    update = getattr(builder, "update", None)
    if update is None:
        raise ValidationError(f"{type(builder).__name__} does not support update")
    update(*items)


class SingleProcessor:
    def __init__(self, builder: ProcessorBuilder) -> None:
        self._builder = builder

    @property
    def builders(self) -> tuple[ProcessorBuilder, ...]:
        return (self._builder,)

    def with_monitor(self, monitor: Monitor | None) -> SingleProcessor:
        self._builder.with_monitor(monitor)
        return self

    def put(self, *items: WriteItemFunc) -> SingleProcessor:
        self._builder.put(*items)
        return self

    def delete(self, *items: WriteItemFunc) -> SingleProcessor:
        self._builder.delete(*items)
        return self

    def update(self, *items: WriteItemFunc) -> SingleProcessor:
        _update(self._builder, items)
        return self

    def run(self, client: Any, *, cancel: threading.Event | None = None) -> None:
        self._builder.run(client, cancel=cancel)


class MultiProcessor:
    """Round-robin fan-out over independent builders run on a thread pool.

    Each call to ``put``/``delete``/``update`` lands on one builder. ``run``
    executes every builder concurrently; the first failure sets the shared
    cancel event and is raised once all workers have returned. Work already
    committed by other workers is not undone.
    """

    def __init__(self, builders: list[ProcessorBuilder]) -> None:
        if len(builders) < 2:
            raise ValidationError("MultiProcessor requires at least two builders")
        self._builders = tuple(builders)
        self._counter = itertools.count()

    @property
    def builders(self) -> tuple[ProcessorBuilder, ...]:
        return self._builders

    def with_monitor(self, monitor: Monitor | None) -> MultiProcessor:
        for builder in self._builders:
            builder.with_monitor(monitor)
        return self

    def _next(self) -> ProcessorBuilder:
        return self._builders[next(self._counter) % len(self._builders)]

    def put(self, *items: WriteItemFunc) -> MultiProcessor:
        self._next().put(*items)
        return self

    def delete(self, *items: WriteItemFunc) -> MultiProcessor:
        self._next().delete(*items)
        return self

    def update(self, *items: WriteItemFunc) -> MultiProcessor:
        _update(self._next(), items)
        return self

    def run(self, client: Any, *, cancel: threading.Event | None = None) -> None:
        shared = cancel if cancel is not None else threading.Event()
        first: BaseException | None = None

        with ThreadPoolExecutor(
            max_workers=len(self._builders),
            thread_name_prefix="dynamodb-verse",
        ) as pool:
            futures = [pool.submit(builder.run, client, cancel=shared) for builder in self._builders]
            for future in as_completed(futures):
                err = future.exception()
                if err is not None and first is None:
                    log.debug("processor worker failed, cancelling siblings: %s", err)
                    first = err
                    shared.set()

        if first is not None:
            raise first


type Processor = SingleProcessor | MultiProcessor


def new_processor(
    size: int = 1,
    *,
    factory: BuilderFactory = BatchBuilder,
    monitor: Monitor | None = None,
) -> Processor:
    if size > 1:
        workers = min(size, MAX_PROCESSOR_SIZE)
        processor: Processor = MultiProcessor([factory() for _ in range(workers)])
    else:
        processor = SingleProcessor(factory())

    if monitor is not None:
        processor.with_monitor(monitor)
    return processor

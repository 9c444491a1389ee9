from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from botocore.exceptions import ClientError

from .attributes import Item, marshal_item, unmarshal_item
from .aws_errors import map_client_error
from .descriptors import (
    FetchItemFunc,
    GetKeyFunc,
    GetOperation,
    ScanFilterFunc,
    WriteItemFunc,
    WriteOperation,
    key,
    put_item,
    resolve_get,
    resolve_write,
)
from .errors import (
    BatchRetryExceededError,
    ConstructionError,
    OperationCancelledError,
    OversizedRequestError,
    ValidationError,
)
from .expression import projection
from .monitor import DispatchMetric, Monitor, observe
from .options import DEFAULT_BATCH_OPTIONS, BatchOptions
from .reads import scan_all

log = logging.getLogger(__name__)

MAX_WRITE_ITEMS = 25
MAX_GET_ITEMS = 100

type Sleep = Callable[[float], None]


def check_cancelled(cancel: threading.Event | None, operation: str) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError(f"{operation}: cancelled")


def _wait(seconds: float, cancel: threading.Event | None, sleep: Sleep | None) -> None:
    if sleep is not None:
        sleep(seconds)
    elif cancel is not None:
        cancel.wait(seconds)
    else:
        time.sleep(seconds)


def _capacity(capacity: int, limit: int) -> int:
    if capacity <= 0 or capacity > limit:
        raise ValidationError(f"capacity must be in [1, {limit}]")
    return capacity


class WriteGroup:
    def __init__(self, capacity: int = MAX_WRITE_ITEMS) -> None:
        self.capacity = capacity
        self.size = 0
        self._requests: dict[str, list[dict[str, Any]]] = {}

    def is_full(self) -> bool:
        return self.size >= self.capacity

    def add(self, table_name: str, request: Mapping[str, Any]) -> None:
        self._requests.setdefault(table_name, []).append(dict(request))
        self.size += 1

    @property
    def table_names(self) -> tuple[str, ...]:
        return tuple(self._requests)

    def request_items(self) -> dict[str, list[dict[str, Any]]]:
        return {table: list(reqs) for table, reqs in self._requests.items()}


class GetGroup:
    """Keys for one BatchGetItem call.

    BatchGetItem takes one projection per table, so every key of a table
    inside a group must ask for the same attributes.
    """

    def __init__(self, capacity: int = MAX_GET_ITEMS) -> None:
        self.capacity = capacity
        self.size = 0
        self._keys: dict[str, list[Item]] = {}
        self._projections: dict[str, tuple[str, ...]] = {}
        self._consistent_read: dict[str, bool] = {}

    def is_full(self) -> bool:
        return self.size >= self.capacity

    def _projection_matches(self, op: GetOperation) -> bool:
        current = self._projections.get(op.table_name)
        return current is None or current == op.projection

    def accepts(self, op: GetOperation) -> bool:
        return not self.is_full() and self._projection_matches(op)

    def add(self, op: GetOperation, *, consistent_read: bool = False) -> None:
        if not self._projection_matches(op):
            raise ValidationError(f"{op.table_name}: keys in one batch get group must share a projection")
        self._keys.setdefault(op.table_name, []).append(dict(op.key))
        self._projections.setdefault(op.table_name, op.projection)
        if consistent_read:
            self._consistent_read[op.table_name] = True
        self.size += 1

    @property
    def table_names(self) -> tuple[str, ...]:
        return tuple(self._keys)

    def request_items(self) -> dict[str, dict[str, Any]]:
        out: dict[str, dict[str, Any]] = {}
        for table, keys in self._keys.items():
            entry: dict[str, Any] = {"Keys": list(keys)}
            names = self._projections.get(table)
            if names:
                entry.update(projection(*names).request_fields({"projection"}))
            if self._consistent_read.get(table):
                entry["ConsistentRead"] = True
            out[table] = entry
        return out


def partition_writes(
    requests: Iterable[tuple[str, Mapping[str, Any]]],
    capacity: int = MAX_WRITE_ITEMS,
) -> list[WriteGroup]:
    capacity = _capacity(capacity, MAX_WRITE_ITEMS)
    groups: list[WriteGroup] = []
    current: WriteGroup | None = None
    for table_name, request in requests:
        if current is None or current.is_full():
            current = WriteGroup(capacity)
            groups.append(current)
        current.add(table_name, request)
    return groups


def partition_gets(
    operations: Iterable[GetOperation],
    capacity: int = MAX_GET_ITEMS,
    *,
    consistent_read: bool = False,
) -> list[GetGroup]:
    capacity = _capacity(capacity, MAX_GET_ITEMS)
    groups: list[GetGroup] = []
    current: GetGroup | None = None
    for op in operations:
        if current is None or not current.accepts(op):
            current = GetGroup(capacity)
            groups.append(current)
        current.add(op, consistent_read=consistent_read)
    return groups


def _unprocessed_writes(resp: Mapping[str, Any]) -> dict[str, list[dict[str, Any]]]:
    raw = resp.get("UnprocessedItems") or {}
    return {table: list(reqs) for table, reqs in raw.items() if reqs}


def _unprocessed_keys(resp: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    raw = resp.get("UnprocessedKeys") or {}
    return {table: dict(entry) for table, entry in raw.items() if entry and entry.get("Keys")}


def execute_write_group(
    client: Any,
    group: WriteGroup,
    options: BatchOptions = DEFAULT_BATCH_OPTIONS,
    *,
    cancel: threading.Event | None = None,
    sleep: Sleep | None = None,
    monitor: Monitor | None = None,
) -> None:
    if group.size == 0:
        return
    if group.size > MAX_WRITE_ITEMS:
        raise OversizedRequestError(operation="batch_write_item", size=group.size, limit=MAX_WRITE_ITEMS)

    pending = group.request_items()
    attempt = 0
    while pending:
        check_cancelled(cancel, "batch_write_item")
        attempt += 1
        size = sum(len(reqs) for reqs in pending.values())
        tables = tuple(pending)
        start = time.monotonic()
        try:
            resp = client.batch_write_item(**options.shape({"RequestItems": pending}))
        except ClientError as err:
            mapped = map_client_error(err)
            observe(
                monitor,
                DispatchMetric(
                    operation="batch_write_item",
                    size=size,
                    table_names=tables,
                    attempt=attempt,
                    seconds=time.monotonic() - start,
                    ok=False,
                    error=mapped,
                ),
            )
            raise mapped from err

        observe(
            monitor,
            DispatchMetric(
                operation="batch_write_item",
                size=size,
                table_names=tables,
                attempt=attempt,
                seconds=time.monotonic() - start,
                ok=True,
            ),
        )

        pending = _unprocessed_writes(resp)
        if not pending:
            return

        remaining = sum(len(reqs) for reqs in pending.values())
        if attempt >= options.max_retry:
            raise BatchRetryExceededError(
                operation="batch_write_item",
                table_names=tuple(pending),
                unprocessed_count=remaining,
            )

        delay = options.backoff_seconds(attempt)
        log.debug(
            "batch_write_item: %d unprocessed, retrying in %.3fs (attempt %d)", remaining, delay, attempt
        )
        _wait(delay, cancel, sleep)


def execute_get_group(
    client: Any,
    group: GetGroup,
    fetch: FetchItemFunc,
    options: BatchOptions = DEFAULT_BATCH_OPTIONS,
    *,
    cancel: threading.Event | None = None,
    sleep: Sleep | None = None,
    monitor: Monitor | None = None,
) -> None:
    if group.size == 0:
        return
    if group.size > MAX_GET_ITEMS:
        raise OversizedRequestError(operation="batch_get_item", size=group.size, limit=MAX_GET_ITEMS)

    pending = group.request_items()
    attempt = 0
    while pending:
        check_cancelled(cancel, "batch_get_item")
        attempt += 1
        size = sum(len(entry["Keys"]) for entry in pending.values())
        tables = tuple(pending)
        start = time.monotonic()
        try:
            resp = client.batch_get_item(**options.shape({"RequestItems": pending}))
        except ClientError as err:
            mapped = map_client_error(err)
            observe(
                monitor,
                DispatchMetric(
                    operation="batch_get_item",
                    size=size,
                    table_names=tables,
                    attempt=attempt,
                    seconds=time.monotonic() - start,
                    ok=False,
                    error=mapped,
                ),
            )
            raise mapped from err

        observe(
            monitor,
            DispatchMetric(
                operation="batch_get_item",
                size=size,
                table_names=tables,
                attempt=attempt,
                seconds=time.monotonic() - start,
                ok=True,
            ),
        )

        for table, items in (resp.get("Responses") or {}).items():
            for item in items:
                fetch(table, item)

        pending = _unprocessed_keys(resp)
        if not pending:
            return

        remaining = sum(len(entry["Keys"]) for entry in pending.values())
        if attempt >= options.max_retry:
            raise BatchRetryExceededError(
                operation="batch_get_item",
                table_names=tuple(pending),
                unprocessed_count=remaining,
            )

        delay = options.backoff_seconds(attempt)
        log.debug(
            "batch_get_item: %d unprocessed keys, retrying in %.3fs (attempt %d)", remaining, delay, attempt
        )
        _wait(delay, cancel, sleep)


class BatchBuilder:
    def __init__(
        self,
        *,
        options: BatchOptions = DEFAULT_BATCH_OPTIONS,
        monitor: Monitor | None = None,
        capacity: int = MAX_WRITE_ITEMS,
    ) -> None:
        self._options = options
        self._monitor = monitor
        self._capacity = _capacity(capacity, MAX_WRITE_ITEMS)
        self._requests: list[tuple[str, dict[str, Any]]] = []
        self._error: ConstructionError | None = None

    @property
    def error(self) -> ConstructionError | None:
        return self._error

    def has_error(self) -> bool:
        return self._error is not None

    def __len__(self) -> int:
        return len(self._requests)

    def with_monitor(self, monitor: Monitor | None) -> BatchBuilder:
        self._monitor = monitor
        return self

    def put(self, *items: WriteItemFunc) -> BatchBuilder:
        return self._add("PutRequest", items)

    def delete(self, *items: WriteItemFunc) -> BatchBuilder:
        return self._add("DeleteRequest", items)

    def _add(self, request_kind: str, items: Sequence[WriteItemFunc]) -> BatchBuilder:
        if self._error is not None:
            raise self._error

        for resolver in items:
            try:
                op = resolve_write(resolver)
                if op.expression is not None:
                    raise ConstructionError("batch writes do not support expressions")
            except ConstructionError as err:
                self._requests.clear()
                self._error = err
                raise

            body = {"Item": op.item} if request_kind == "PutRequest" else {"Key": op.item}
            self._requests.append((op.table_name, {request_kind: body}))
        return self

    def groups(self) -> list[WriteGroup]:
        return partition_writes(self._requests, self._capacity)

    def run(
        self,
        client: Any,
        *,
        cancel: threading.Event | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        if self._error is not None:
            raise self._error

        groups = self.groups()
        log.debug("batch write: %d requests in %d groups", len(self._requests), len(groups))
        for group in groups:
            execute_write_group(
                client,
                group,
                self._options,
                cancel=cancel,
                sleep=sleep,
                monitor=self._monitor,
            )


class BatchGetBuilder:
    def __init__(
        self,
        *keys: GetKeyFunc,
        options: BatchOptions = DEFAULT_BATCH_OPTIONS,
        monitor: Monitor | None = None,
        consistent_read: bool = False,
    ) -> None:
        self._options = options
        self._monitor = monitor
        self._consistent_read = consistent_read
        self._operations: list[GetOperation] = []
        self._error: ConstructionError | None = None
        if keys:
            self.keys(*keys)

    @property
    def error(self) -> ConstructionError | None:
        return self._error

    def has_error(self) -> bool:
        return self._error is not None

    def __len__(self) -> int:
        return len(self._operations)

    def keys(self, *keys: GetKeyFunc) -> BatchGetBuilder:
        if self._error is not None:
            raise self._error

        for resolver in keys:
            try:
                op = resolve_get(resolver)
            except ConstructionError as err:
                self._operations.clear()
                self._error = err
                raise
            self._operations.append(op)
        return self

    def groups(self) -> list[GetGroup]:
        return partition_gets(self._operations, consistent_read=self._consistent_read)

    def run(
        self,
        client: Any,
        fetch: FetchItemFunc,
        *,
        cancel: threading.Event | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        if self._error is not None:
            raise self._error

        for group in self.groups():
            execute_get_group(
                client,
                group,
                fetch,
                self._options,
                cancel=cancel,
                sleep=sleep,
                monitor=self._monitor,
            )


class Batch:
    """Bulk put/delete/get of plain records against one table.

    Records are dataclass instances or mappings. For ``delete`` and ``get``
    each record must carry exactly the table's key attributes.
    """

    def __init__(
        self,
        table_name: str,
        records: Sequence[Any],
        *,
        options: BatchOptions = DEFAULT_BATCH_OPTIONS,
    ) -> None:
        if not table_name:
            raise ValidationError("table_name is required")
        self.table_name = table_name
        self.records = list(records)
        self._options = options

    def put(
        self, client: Any, *, cancel: threading.Event | None = None, sleep: Sleep | None = None
    ) -> None:
        builder = BatchBuilder(options=self._options)
        builder.put(*(put_item(self.table_name, record) for record in self.records))
        builder.run(client, cancel=cancel, sleep=sleep)

    def delete(
        self, client: Any, *, cancel: threading.Event | None = None, sleep: Sleep | None = None
    ) -> None:
        builder = BatchBuilder(options=self._options)
        builder.delete(*(_key_write(self.table_name, record) for record in self.records))
        builder.run(client, cancel=cancel, sleep=sleep)

    def get(
        self,
        client: Any,
        fetch: FetchItemFunc,
        *,
        cancel: threading.Event | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        builder = BatchGetBuilder(
            *(key(self.table_name, record) for record in self.records),
            options=self._options,
        )
        builder.run(client, fetch, cancel=cancel, sleep=sleep)


def _key_write(table_name: str, key_values: Any) -> WriteItemFunc:
    def resolve() -> WriteOperation:
        return WriteOperation(table_name=table_name, item=marshal_item(key_values))

    return resolve


def truncate[T](
    client: Any,
    condition: ScanFilterFunc,
    key_of: Callable[[T], Mapping[str, Any]],
    *,
    record_type: type[T] = dict,  # type: ignore[assignment]
    options: BatchOptions = DEFAULT_BATCH_OPTIONS,
    cancel: threading.Event | None = None,
    sleep: Sleep | None = None,
) -> int:
    """Delete every item matched by ``condition``; returns the number deleted."""
    builder = BatchBuilder(options=options)

    def collect(table_name: str, items: list[Item]) -> None:
        for item in items:
            record = unmarshal_item(item, record_type)
            builder.delete(_key_write(table_name, key_of(record)))

    scan_all(client, condition, collect)
    count = len(builder)
    builder.run(client, cancel=cancel, sleep=sleep)
    log.info("truncated %d items", count)
    return count

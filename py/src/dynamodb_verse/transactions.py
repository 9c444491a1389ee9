from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

from botocore.exceptions import ClientError

from .aws_errors import error_code, error_message, map_client_error
from .batches import check_cancelled
from .descriptors import (
    Deferred,
    FetchItemFunc,
    GetKeyFunc,
    GetOperation,
    Pending,
    Resolved,
    WriteItemFunc,
    WriteKind,
    resolve_get,
    resolve_write,
)
from .errors import (
    ConditionFailedError,
    ConstructionError,
    OversizedRequestError,
    TransactionCanceledError,
    TransactionNotBeganError,
    ValidationError,
    VerseError,
)
from .expression import projection
from .monitor import DispatchMetric, Monitor, observe
from .options import (
    DEFAULT_TRANSACTION_OPTIONS,
    DEFAULT_WRITE_OPTIONS,
    TransactionOptions,
    WriteOptions,
)

log = logging.getLogger(__name__)

MAX_ITEMS = 25
MAX_GET_ITEMS = 100

_REQUEST_SHAPES: dict[WriteKind, tuple[str, str, frozenset[str]]] = {
    "put": ("Put", "Item", frozenset({"condition"})),
    "update": ("Update", "Key", frozenset({"update", "condition"})),
    "delete": ("Delete", "Key", frozenset({"condition"})),
    "condition_check": ("ConditionCheck", "Key", frozenset({"condition"})),
}


def _transact_item(entry: Resolved, write_options: WriteOptions) -> dict[str, Any]:
    wrapper, item_field, allowed = _REQUEST_SHAPES[entry.kind]
    op = entry.operation
    body: dict[str, Any] = {"TableName": op.table_name, item_field: op.item}
    if op.expression is not None:
        try:
            body.update(op.expression.request_fields(allowed))
        except ValidationError as err:
            raise ConstructionError(f"{entry.kind}: {err}") from err

    if entry.kind == "update" and "UpdateExpression" not in body:
        raise ConstructionError("update requires an update expression")
    if entry.kind == "condition_check" and "ConditionExpression" not in body:
        raise ConstructionError("condition_check requires a condition expression")

    write_options.shape_transact_item(body)
    return {wrapper: body}


def _map_cancellation(err: ClientError) -> VerseError:
    """Map a failed TransactWriteItems call; a cancellation caused by any
    ConditionalCheckFailed reason surfaces as ConditionFailedError."""
    if error_code(err) != "TransactionCanceledException":
        return map_client_error(err)

    message = error_message(err)
    reasons = [r for r in err.response.get("CancellationReasons") or [] if isinstance(r, dict)]
    codes = tuple(str(r["Code"]) for r in reasons if r.get("Code") and r["Code"] != "None")
    if "ConditionalCheckFailed" in codes or "ConditionalCheckFailed" in message:
        return ConditionFailedError(message or "transaction canceled: ConditionalCheckFailed")
    return TransactionCanceledError(message=message or "transaction canceled", reason_codes=codes)


def _table_names(items: Sequence[dict[str, Any]]) -> tuple[str, ...]:
    names: dict[str, None] = {}
    for item in items:
        for body in item.values():
            names[body["TableName"]] = None
    return tuple(names)


class TransactionBuilder:
    def __init__(
        self,
        *,
        max_items: int = MAX_ITEMS,
        options: TransactionOptions = DEFAULT_TRANSACTION_OPTIONS,
        write_options: WriteOptions = DEFAULT_WRITE_OPTIONS,
        monitor: Monitor | None = None,
    ) -> None:
        if max_items <= 0 or max_items > MAX_ITEMS:
            raise ValidationError(f"max_items must be in [1, {MAX_ITEMS}]")
        self._max_items = max_items
        self._options = options
        self._write_options = write_options
        self._monitor = monitor
        self._pending: list[Pending] = []
        self._error: ConstructionError | None = None

    @property
    def error(self) -> ConstructionError | None:
        return self._error

    def has_error(self) -> bool:
        return self._error is not None

    def __len__(self) -> int:
        return len(self._pending)

    def with_monitor(self, monitor: Monitor | None) -> TransactionBuilder:
        self._monitor = monitor
        return self

    def spawn(self) -> TransactionBuilder:
        return TransactionBuilder(
            max_items=self._max_items,
            options=self._options,
            write_options=self._write_options,
            monitor=self._monitor,
        )

    def put(self, *resolvers: WriteItemFunc, deferred: bool = False) -> TransactionBuilder:
        return self._add("put", resolvers, deferred)

    def update(self, *resolvers: WriteItemFunc, deferred: bool = False) -> TransactionBuilder:
        return self._add("update", resolvers, deferred)

    def delete(self, *resolvers: WriteItemFunc, deferred: bool = False) -> TransactionBuilder:
        return self._add("delete", resolvers, deferred)

    def condition_check(self, *resolvers: WriteItemFunc, deferred: bool = False) -> TransactionBuilder:
        return self._add("condition_check", resolvers, deferred)

    def _poison(self, err: ConstructionError) -> None:
        self._pending.clear()
        self._error = err

    def _add(self, kind: WriteKind, resolvers: Sequence[WriteItemFunc], deferred: bool) -> TransactionBuilder:
        if self._error is not None:
            raise self._error

        for resolver in resolvers:
            if deferred:
                self._pending.append(Deferred(kind=kind, resolver=resolver))
                continue
            try:
                self._pending.append(Resolved(kind=kind, operation=resolve_write(resolver)))
            except ConstructionError as err:
                self._poison(err)
                raise
        return self

    def transact_items(self) -> list[dict[str, Any]]:
        """Resolve every pending entry into its TransactWriteItems shape."""
        if self._error is not None:
            raise self._error
        try:
            resolved = [p if isinstance(p, Resolved) else p.resolve() for p in self._pending]
            return [_transact_item(entry, self._write_options) for entry in resolved]
        except ConstructionError as err:
            self._poison(err)
            raise

    def groups(self) -> list[list[dict[str, Any]]]:
        items = self.transact_items()
        return [items[i : i + self._max_items] for i in range(0, len(items), self._max_items)]

    def run(self, client: Any, *, cancel: threading.Event | None = None) -> list[dict[str, Any]]:
        groups = self.groups()
        log.debug("transaction: %d items in %d groups", sum(len(g) for g in groups), len(groups))

        responses: list[dict[str, Any]] = []
        for group in groups:
            check_cancelled(cancel, "transact_write_items")
            responses.append(self._dispatch(client, group))
        return responses

    def _dispatch(self, client: Any, group: list[dict[str, Any]]) -> dict[str, Any]:
        if len(group) > MAX_ITEMS:
            raise OversizedRequestError(operation="transact_write_items", size=len(group), limit=MAX_ITEMS)

        req = self._options.shape_transact_write({"TransactItems": group})
        tables = _table_names(group)
        start = time.monotonic()
        try:
            resp = client.transact_write_items(**req)
        except ClientError as err:
            mapped = _map_cancellation(err)
            observe(
                self._monitor,
                DispatchMetric(
                    operation="transact_write_items",
                    size=len(group),
                    table_names=tables,
                    attempt=1,
                    seconds=time.monotonic() - start,
                    ok=False,
                    error=mapped,
                ),
            )
            raise mapped from err

        observe(
            self._monitor,
            DispatchMetric(
                operation="transact_write_items",
                size=len(group),
                table_names=tables,
                attempt=1,
                seconds=time.monotonic() - start,
                ok=True,
            ),
        )
        return dict(resp)


def _transact_get_item(op: GetOperation) -> dict[str, Any]:
    body: dict[str, Any] = {"TableName": op.table_name, "Key": op.key}
    if op.projection:
        body.update(projection(*op.projection).request_fields({"projection"}))
    return {"Get": body}


class TransactGetBuilder:
    def __init__(
        self,
        *keys: GetKeyFunc,
        options: TransactionOptions = DEFAULT_TRANSACTION_OPTIONS,
        monitor: Monitor | None = None,
    ) -> None:
        self._options = options
        self._monitor = monitor
        self._operations: list[GetOperation] = []
        self._error: ConstructionError | None = None
        if keys:
            self.keys(*keys)

    @property
    def error(self) -> ConstructionError | None:
        return self._error

    def has_error(self) -> bool:
        return self._error is not None

    def keys(self, *keys: GetKeyFunc) -> TransactGetBuilder:
        if self._error is not None:
            raise self._error
        for resolver in keys:
            try:
                self._operations.append(resolve_get(resolver))
            except ConstructionError as err:
                self._operations.clear()
                self._error = err
                raise
        return self

    def run(
        self,
        client: Any,
        fetch: FetchItemFunc,
        *,
        cancel: threading.Event | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch every key; items that do not exist are skipped."""
        if self._error is not None:
            raise self._error

        responses: list[dict[str, Any]] = []
        for i in range(0, len(self._operations), MAX_GET_ITEMS):
            check_cancelled(cancel, "transact_get_items")
            ops = self._operations[i : i + MAX_GET_ITEMS]
            responses.append(self._dispatch(client, ops, fetch))
        return responses

    def _dispatch(self, client: Any, ops: list[GetOperation], fetch: FetchItemFunc) -> dict[str, Any]:
        req = self._options.shape_transact_get({"TransactItems": [_transact_get_item(op) for op in ops]})
        tables = tuple(dict.fromkeys(op.table_name for op in ops))
        start = time.monotonic()
        try:
            resp = client.transact_get_items(**req)
        except ClientError as err:
            mapped = map_client_error(err)
            observe(
                self._monitor,
                DispatchMetric(
                    operation="transact_get_items",
                    size=len(ops),
                    table_names=tables,
                    attempt=1,
                    seconds=time.monotonic() - start,
                    ok=False,
                    error=mapped,
                ),
            )
            raise mapped from err

        observe(
            self._monitor,
            DispatchMetric(
                operation="transact_get_items",
                size=len(ops),
                table_names=tables,
                attempt=1,
                seconds=time.monotonic() - start,
                ok=True,
            ),
        )

        for op, entry in zip(ops, resp.get("Responses") or [], strict=False):
            item = entry.get("Item")
            if item:
                fetch(op.table_name, item)
        return dict(resp)


_current: ContextVar[TransactionBuilder | None] = ContextVar("dynamodb_verse_transaction", default=None)


def begin(**kwargs: Any) -> TransactionBuilder:
    builder = TransactionBuilder(**kwargs)
    _current.set(builder)
    return builder


def current() -> TransactionBuilder | None:
    return _current.get()


def put(*resolvers: WriteItemFunc, deferred: bool = False) -> None:
    builder = _current.get()
    if builder is None:
        log.debug("put: no active transaction, %d operations dropped", len(resolvers))
        return
    builder.put(*resolvers, deferred=deferred)


def update(*resolvers: WriteItemFunc, deferred: bool = False) -> None:
    builder = _current.get()
    if builder is None:
        log.debug("update: no active transaction, %d operations dropped", len(resolvers))
        return
    builder.update(*resolvers, deferred=deferred)


def delete(*resolvers: WriteItemFunc, deferred: bool = False) -> None:
    builder = _current.get()
    if builder is None:
        log.debug("delete: no active transaction, %d operations dropped", len(resolvers))
        return
    builder.delete(*resolvers, deferred=deferred)


def run(client: Any, *, cancel: threading.Event | None = None) -> list[dict[str, Any]]:
    builder = _current.get()
    if builder is None:
        raise TransactionNotBeganError()
    _current.set(builder.spawn())
    return builder.run(client, cancel=cancel)


@contextmanager
def transaction(**kwargs: Any) -> Iterator[TransactionBuilder]:
    builder = TransactionBuilder(**kwargs)
    token = _current.set(builder)
    try:
        yield builder
    finally:
        _current.reset(token)

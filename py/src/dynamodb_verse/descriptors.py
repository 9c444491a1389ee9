from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, is_dataclass
from typing import Any, Literal

from .attributes import Item, marshal_item, prepare_record, unmarshal_item
from .errors import ConstructionError
from .expression import (
    Condition,
    ConditionExpression,
    Expression,
    ExpressionBuilder,
    UpdateBuilder,
)

type WriteKind = Literal["put", "update", "delete", "condition_check"]


@dataclass(frozen=True)
class WriteOperation:
    table_name: str
    item: Item
    expression: Expression | None = None


@dataclass(frozen=True)
class GetOperation:
    table_name: str
    key: Item
    projection: tuple[str, ...] = ()


@dataclass(frozen=True)
class ScanRequest:
    table_name: str
    expression: Expression | None = None
    index_name: str | None = None


@dataclass(frozen=True)
class QueryRequest:
    table_name: str
    expression: Expression
    index_name: str | None = None


type WriteItemFunc = Callable[[], WriteOperation]
type GetKeyFunc = Callable[[], GetOperation]
type ScanFilterFunc = Callable[[], ScanRequest]
type QueryConditionFunc = Callable[[], QueryRequest]
type FetchItemFunc = Callable[[str, Item], None]
type FetchItemsFunc = Callable[[str, list[Item]], None]
type UpdateField = Callable[[UpdateBuilder], None]


@dataclass(frozen=True)
class Resolved:
    kind: WriteKind
    operation: WriteOperation


@dataclass(frozen=True)
class Deferred:
    kind: WriteKind
    resolver: WriteItemFunc = field(repr=False)

    def resolve(self) -> Resolved:
        return Resolved(kind=self.kind, operation=resolve_write(self.resolver))


type Pending = Resolved | Deferred


def resolve_write(resolver: WriteItemFunc) -> WriteOperation:
    try:
        op = resolver()
    except ConstructionError:
        raise
    except Exception as err:
        raise ConstructionError(f"failed to build write operation: {err}") from err
    if not isinstance(op, WriteOperation):
        raise ConstructionError(f"write resolver returned {type(op).__name__}")
    if not op.table_name:
        raise ConstructionError("write operation requires a table name")
    return op


def resolve_get(resolver: GetKeyFunc) -> GetOperation:
    try:
        op = resolver()
    except ConstructionError:
        raise
    except Exception as err:
        raise ConstructionError(f"failed to build key: {err}") from err
    if not isinstance(op, GetOperation):
        raise ConstructionError(f"key resolver returned {type(op).__name__}")
    if not op.table_name:
        raise ConstructionError("key requires a table name")
    return op


def _resolve_request[R](resolver: Callable[[], R], expected: type[R]) -> R:
    try:
        req = resolver()
    except ConstructionError:
        raise
    except Exception as err:
        raise ConstructionError(f"failed to build request: {err}") from err
    if not isinstance(req, expected):
        raise ConstructionError(f"resolver returned {type(req).__name__}")
    return req


def resolve_scan(resolver: ScanFilterFunc) -> ScanRequest:
    return _resolve_request(resolver, ScanRequest)


def resolve_query(resolver: QueryConditionFunc) -> QueryRequest:
    return _resolve_request(resolver, QueryRequest)


def put_item(table_name: str, record: Any, expression: Expression | None = None) -> WriteItemFunc:
    def resolve() -> WriteOperation:
        return WriteOperation(
            table_name=table_name,
            item=marshal_item(prepare_record(record)),
            expression=expression,
        )

    return resolve


def key(table_name: str, key_values: Any, *attributes: str) -> GetKeyFunc:
    """Key resolver for gets, deletes and updates.

    ``key_values`` is a mapping of key attribute names to values, or a
    dataclass instance whose mapped fields form the key.
    """

    def resolve() -> GetOperation:
        if isinstance(key_values, Mapping) or is_dataclass(key_values):
            item = marshal_item(key_values)
        else:
            raise ConstructionError(f"unsupported key type: {type(key_values).__name__}")
        return GetOperation(table_name=table_name, key=item, projection=tuple(attributes))

    return resolve


def delete_item(key_fn: GetKeyFunc, condition: ConditionExpression | None = None) -> WriteItemFunc:
    def resolve() -> WriteOperation:
        target = resolve_get(key_fn)
        expr = None
        if condition is not None:
            expr = ExpressionBuilder().with_condition(condition).build()
        return WriteOperation(table_name=target.table_name, item=target.key, expression=expr)

    return resolve


def update_builder(*fields: UpdateField) -> UpdateBuilder:
    builder = UpdateBuilder()
    for update in fields:
        update(builder)
    return builder


def update_item(
    key_fn: GetKeyFunc,
    *fields: UpdateField,
    condition: ConditionExpression | None = None,
) -> WriteItemFunc:
    def resolve() -> WriteOperation:
        target = resolve_get(key_fn)
        builder = ExpressionBuilder().with_update(update_builder(*fields))
        if condition is not None:
            builder.with_condition(condition)
        return WriteOperation(table_name=target.table_name, item=target.key, expression=builder.build())

    return resolve


def consistent_update_item(
    key_fn: GetKeyFunc,
    field_name: str,
    count: int,
    *fields: UpdateField,
) -> WriteItemFunc:
    """Update guarded by a version counter.

    The write only applies while ``field_name`` still equals ``count``, and
    bumps it to ``count + 1``.
    """

    def resolve() -> WriteOperation:
        target = resolve_get(key_fn)
        updates = update_builder(*fields).set(field_name, count + 1)
        expr = (
            ExpressionBuilder()
            .with_update(updates)
            .with_condition(Condition.eq(field_name, count))
            .build()
        )
        return WriteOperation(table_name=target.table_name, item=target.key, expression=expr)

    return resolve


def check_item(key_fn: GetKeyFunc, condition: ConditionExpression) -> WriteItemFunc:
    def resolve() -> WriteOperation:
        target = resolve_get(key_fn)
        expr = ExpressionBuilder().with_condition(condition).build()
        return WriteOperation(table_name=target.table_name, item=target.key, expression=expr)

    return resolve


def scan_filter(
    table_name: str,
    expression: Expression | None = None,
    *,
    index_name: str | None = None,
) -> ScanFilterFunc:
    def resolve() -> ScanRequest:
        return ScanRequest(table_name=table_name, expression=expression, index_name=index_name)

    return resolve


def query_condition(
    table_name: str,
    expression: Expression,
    *,
    index_name: str | None = None,
) -> QueryConditionFunc:
    def resolve() -> QueryRequest:
        return QueryRequest(table_name=table_name, expression=expression, index_name=index_name)

    return resolve


def set_value(name: str, value: Any) -> UpdateField:
    def apply(builder: UpdateBuilder) -> None:
        builder.set(name, value)

    return apply


update_value = set_value


def remove_value(name: str) -> UpdateField:
    def apply(builder: UpdateBuilder) -> None:
        builder.remove(name)

    return apply


def add_value(name: str, value: Any) -> UpdateField:
    def apply(builder: UpdateBuilder) -> None:
        builder.add(name, value)

    return apply


def delete_value(name: str, value: Any) -> UpdateField:
    def apply(builder: UpdateBuilder) -> None:
        builder.delete(name, value)

    return apply


def fetch_into[T](record_type: type[T], out: list[T]) -> FetchItemFunc:
    def fetch(table_name: str, item: Item) -> None:
        out.append(unmarshal_item(item, record_type))

    return fetch


def fetch_all[T](record_type: type[T], out: list[T]) -> FetchItemsFunc:
    def fetch(table_name: str, items: Sequence[Item]) -> None:
        out.extend(unmarshal_item(item, record_type) for item in items)

    return fetch

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import Any

from botocore.exceptions import ClientError

from .attributes import Item, unmarshal_items
from .aws_errors import map_client_error
from .descriptors import (
    FetchItemFunc,
    FetchItemsFunc,
    GetKeyFunc,
    QueryConditionFunc,
    ScanFilterFunc,
    resolve_get,
    resolve_query,
    resolve_scan,
)
from .errors import ItemNotFoundError
from .expression import projection
from .options import DEFAULT_READ_OPTIONS, ReadOptions
from .query import Page, next_cursor, start_key

log = logging.getLogger(__name__)

type StartKey = str | Mapping[str, Any] | None

_SCAN_PARTS = frozenset({"filter", "projection"})
_QUERY_PARTS = frozenset({"key_condition", "filter", "projection"})


def get(
    client: Any,
    key_fn: GetKeyFunc,
    fetch: FetchItemFunc,
    options: ReadOptions = DEFAULT_READ_OPTIONS,
) -> dict[str, Any]:
    """Fetch one item; raises ``ItemNotFoundError`` when the table has no such key."""
    op = resolve_get(key_fn)
    req: dict[str, Any] = {"TableName": op.table_name, "Key": op.key}
    if op.projection:
        req.update(projection(*op.projection).request_fields({"projection"}))
    options.shape_get_item(req)

    try:
        resp = client.get_item(**req)
    except ClientError as err:
        raise map_client_error(err) from err

    item = resp.get("Item")
    if not item:
        raise ItemNotFoundError(op.table_name)
    fetch(op.table_name, item)
    return resp


def _dispatch_page(
    client_call: Callable[..., Any],
    req: dict[str, Any],
    table_name: str,
    fetch: FetchItemsFunc,
    error_on_empty: bool,
) -> dict[str, Any]:
    try:
        resp = client_call(**req)
    except ClientError as err:
        raise map_client_error(err) from err

    items: list[Item] = list(resp.get("Items") or [])
    if items:
        fetch(table_name, items)
    elif error_on_empty:
        raise ItemNotFoundError(table_name)
    return resp


def _scan_request(
    condition: ScanFilterFunc, options: ReadOptions, exclusive_start_key: StartKey
) -> tuple[str, dict[str, Any]]:
    scan_req = resolve_scan(condition)
    req: dict[str, Any] = {"TableName": scan_req.table_name}
    if scan_req.index_name:
        req["IndexName"] = scan_req.index_name
    if scan_req.expression is not None:
        req.update(scan_req.expression.request_fields(_SCAN_PARTS))
    options.shape_scan(req)
    esk = start_key(exclusive_start_key)
    if esk:
        req["ExclusiveStartKey"] = esk
    return scan_req.table_name, req


def _query_request(
    condition: QueryConditionFunc, options: ReadOptions, exclusive_start_key: StartKey
) -> tuple[str, dict[str, Any]]:
    query_req = resolve_query(condition)
    req: dict[str, Any] = {"TableName": query_req.table_name}
    if query_req.index_name:
        req["IndexName"] = query_req.index_name
    req.update(query_req.expression.request_fields(_QUERY_PARTS))
    options.shape_query(req)
    esk = start_key(exclusive_start_key)
    if esk:
        req["ExclusiveStartKey"] = esk
    return query_req.table_name, req


def scan(
    client: Any,
    condition: ScanFilterFunc,
    fetch: FetchItemsFunc,
    options: ReadOptions = DEFAULT_READ_OPTIONS,
    *,
    exclusive_start_key: StartKey = None,
    error_on_empty: bool = False,
) -> dict[str, Any]:
    table_name, req = _scan_request(condition, options, exclusive_start_key)
    return _dispatch_page(client.scan, req, table_name, fetch, error_on_empty)


def query(
    client: Any,
    condition: QueryConditionFunc,
    fetch: FetchItemsFunc,
    options: ReadOptions = DEFAULT_READ_OPTIONS,
    *,
    exclusive_start_key: StartKey = None,
    error_on_empty: bool = False,
) -> dict[str, Any]:
    table_name, req = _query_request(condition, options, exclusive_start_key)
    return _dispatch_page(client.query, req, table_name, fetch, error_on_empty)


def _follow_pages(
    page: Callable[[StartKey], dict[str, Any]],
    exclusive_start_key: StartKey,
) -> tuple[dict[str, Any], int, int]:
    key = exclusive_start_key
    pages = 0
    total = 0
    while True:
        resp = page(key)
        pages += 1
        total += len(resp.get("Items") or [])
        last_key = resp.get("LastEvaluatedKey")
        if not last_key:
            return resp, pages, total
        key = last_key


def scan_all(
    client: Any,
    condition: ScanFilterFunc,
    fetch: FetchItemsFunc,
    options: ReadOptions = DEFAULT_READ_OPTIONS,
    *,
    exclusive_start_key: StartKey = None,
    error_on_empty: bool = False,
) -> dict[str, Any]:
    """Scan every page, invoking ``fetch`` once per non-empty page.

    With ``error_on_empty`` the whole run raises ``ItemNotFoundError`` when no
    page returned any item.
    """

    def page(key: StartKey) -> dict[str, Any]:
        return scan(client, condition, fetch, options, exclusive_start_key=key)

    resp, pages, total = _follow_pages(page, exclusive_start_key)
    log.debug("scan_all: %d pages, %d items", pages, total)
    if error_on_empty and total == 0:
        raise ItemNotFoundError(resolve_scan(condition).table_name)
    return resp


def query_all(
    client: Any,
    condition: QueryConditionFunc,
    fetch: FetchItemsFunc,
    options: ReadOptions = DEFAULT_READ_OPTIONS,
    *,
    exclusive_start_key: StartKey = None,
    error_on_empty: bool = False,
) -> dict[str, Any]:
    def page(key: StartKey) -> dict[str, Any]:
        return query(client, condition, fetch, options, exclusive_start_key=key)

    resp, pages, total = _follow_pages(page, exclusive_start_key)
    log.debug("query_all: %d pages, %d items", pages, total)
    if error_on_empty and total == 0:
        raise ItemNotFoundError(resolve_query(condition).table_name)
    return resp


def scan_page[T](
    client: Any,
    condition: ScanFilterFunc,
    record_type: type[T],
    options: ReadOptions = DEFAULT_READ_OPTIONS,
    *,
    cursor: StartKey = None,
) -> Page[T]:
    out: list[T] = []

    def fetch(_: str, items: list[Item]) -> None:
        out.extend(unmarshal_items(items, record_type))

    resp = scan(client, condition, fetch, options, exclusive_start_key=cursor)
    return Page(items=out, next_cursor=next_cursor(resp))


def query_page[T](
    client: Any,
    condition: QueryConditionFunc,
    record_type: type[T],
    options: ReadOptions = DEFAULT_READ_OPTIONS,
    *,
    cursor: StartKey = None,
) -> Page[T]:
    out: list[T] = []

    def fetch(_: str, items: list[Item]) -> None:
        out.extend(unmarshal_items(items, record_type))

    resp = query(client, condition, fetch, options, exclusive_start_key=cursor)
    return Page(items=out, next_cursor=next_cursor(resp))

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from botocore.exceptions import ClientError

from .aws_errors import map_client_error
from .descriptors import WriteItemFunc, WriteOperation, resolve_write
from .errors import ConstructionError, ValidationError
from .options import DEFAULT_WRITE_OPTIONS, WriteOptions


def _request(op: WriteOperation, item_field: str, allowed: frozenset[str]) -> dict[str, Any]:
    req: dict[str, Any] = {"TableName": op.table_name, item_field: op.item}
    if op.expression is not None:
        try:
            req.update(op.expression.request_fields(allowed))
        except ValidationError as err:
            raise ConstructionError(str(err)) from err
    return req


def _call(client_call: Callable[..., Any], req: dict[str, Any]) -> dict[str, Any]:
    try:
        return dict(client_call(**req))
    except ClientError as err:
        raise map_client_error(err) from err


def put(
    client: Any,
    resolver: WriteItemFunc,
    options: WriteOptions = DEFAULT_WRITE_OPTIONS,
) -> dict[str, Any]:
    req = _request(resolve_write(resolver), "Item", frozenset({"condition"}))
    return _call(client.put_item, options.shape_put(req))


def update(
    client: Any,
    resolver: WriteItemFunc,
    options: WriteOptions = DEFAULT_WRITE_OPTIONS,
) -> dict[str, Any]:
    req = _request(resolve_write(resolver), "Key", frozenset({"update", "condition"}))
    if "UpdateExpression" not in req:
        raise ConstructionError("update requires an update expression")
    return _call(client.update_item, options.shape_update(req))


def delete(
    client: Any,
    resolver: WriteItemFunc,
    options: WriteOptions = DEFAULT_WRITE_OPTIONS,
) -> dict[str, Any]:
    req = _request(resolve_write(resolver), "Key", frozenset({"condition"}))
    return _call(client.delete_item, options.shape_delete(req))

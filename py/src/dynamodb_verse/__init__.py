from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from . import transactions
from .attributes import marshal_item, unmarshal_item, unmarshal_items, verse_field
from .batches import Batch, BatchBuilder, BatchGetBuilder, truncate
from .descriptors import (
    add_value,
    check_item,
    consistent_update_item,
    delete_item,
    delete_value,
    fetch_all,
    fetch_into,
    key,
    put_item,
    query_condition,
    remove_value,
    scan_filter,
    set_value,
    update_item,
)
from .errors import (
    AwsError,
    BatchRetryExceededError,
    ConditionFailedError,
    ConstructionError,
    ItemNotFoundError,
    NotFoundError,
    OperationCancelledError,
    OversizedRequestError,
    TableAlreadyExistsError,
    TransactionCanceledError,
    TransactionNotBeganError,
    ValidationError,
    VerseError,
)
from .expression import (
    Condition,
    ConditionGroup,
    ExpressionBuilder,
    KeyCondition,
    SortKeyCondition,
    UpdateBuilder,
    condition,
    projection,
)
from .monitor import DispatchMetric
from .options import BatchOptions, ReadOptions, TransactionOptions, WriteOptions
from .processors import MultiProcessor, SingleProcessor, new_processor
from .query import Page, decode_evaluated_key, encode_evaluated_key
from .reads import get, query, query_all, query_page, scan, scan_all, scan_page
from .transactions import TransactGetBuilder, TransactionBuilder
from .writes import delete, put, update

if TYPE_CHECKING:
    from .migrate import Migrator, parse_schema_documents
    from .runtime import (
        AwsCallMetric,
        ClientSettings,
        create_boto3_config,
        create_dynamodb_client,
        instrument_boto3_client,
    )
    from .schema import (
        AttributeSpec,
        KeySpec,
        SchemaBuilder,
        TableSchema,
        build_all,
        create_table,
        delete_table,
        ensure_table,
        secondary_index,
        update_table,
    )


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


def __getattr__(name: str) -> Any:
    if name in {
        "AttributeSpec",
        "KeySpec",
        "SchemaBuilder",
        "TableSchema",
        "build_all",
        "create_table",
        "delete_table",
        "ensure_table",
        "secondary_index",
        "update_table",
    }:
        from . import schema

        return getattr(schema, name)
    if name in {"Migrator", "parse_schema_documents"}:
        from . import migrate

        return getattr(migrate, name)
    if name in {
        "AwsCallMetric",
        "ClientSettings",
        "create_boto3_config",
        "create_dynamodb_client",
        "instrument_boto3_client",
    }:
        from . import runtime

        return getattr(runtime, name)
    raise AttributeError(name)


__all__ = [
    "AttributeSpec",
    "AwsCallMetric",
    "AwsError",
    "Batch",
    "BatchBuilder",
    "BatchGetBuilder",
    "BatchOptions",
    "BatchRetryExceededError",
    "ClientSettings",
    "Condition",
    "ConditionFailedError",
    "ConditionGroup",
    "ConstructionError",
    "DispatchMetric",
    "ExpressionBuilder",
    "ItemNotFoundError",
    "KeyCondition",
    "KeySpec",
    "Migrator",
    "MultiProcessor",
    "NotFoundError",
    "OperationCancelledError",
    "OversizedRequestError",
    "Page",
    "ReadOptions",
    "SchemaBuilder",
    "SingleProcessor",
    "SortKeyCondition",
    "TableAlreadyExistsError",
    "TableSchema",
    "TransactGetBuilder",
    "TransactionBuilder",
    "TransactionCanceledError",
    "TransactionNotBeganError",
    "TransactionOptions",
    "UpdateBuilder",
    "ValidationError",
    "VerseError",
    "WriteOptions",
    "__repo_version__",
    "__version__",
    "add_value",
    "build_all",
    "check_item",
    "condition",
    "consistent_update_item",
    "create_boto3_config",
    "create_dynamodb_client",
    "create_table",
    "decode_evaluated_key",
    "delete",
    "delete_item",
    "delete_table",
    "delete_value",
    "encode_evaluated_key",
    "ensure_table",
    "fetch_all",
    "fetch_into",
    "get",
    "instrument_boto3_client",
    "key",
    "marshal_item",
    "new_processor",
    "parse_schema_documents",
    "projection",
    "put",
    "put_item",
    "query",
    "query_all",
    "query_condition",
    "query_page",
    "remove_value",
    "scan",
    "scan_all",
    "scan_filter",
    "scan_page",
    "secondary_index",
    "set_value",
    "transactions",
    "truncate",
    "unmarshal_item",
    "unmarshal_items",
    "update",
    "update_item",
    "update_table",
    "verse_field",
]

from __future__ import annotations

import datetime as dt
import hashlib
import json
import logging
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from botocore.exceptions import ClientError

from .aws_errors import RESOURCE_NOT_FOUND, error_code, map_client_error
from .descriptors import put_item
from .errors import ValidationError
from .schema import (
    AttributeSpec,
    KeySpec,
    TableSchema,
    create_table,
    ensure_table,
    table_exists,
)
from .writes import put

log = logging.getLogger(__name__)

MIGRATION_TABLE = "dynamo_migrations"
CLOUDFORMATION_TABLE_TYPE = "AWS::DynamoDB::Table"
SCHEMA_SUFFIXES = (".json", ".yaml", ".yml")

MIGRATION_SCHEMA = TableSchema(
    table_name=MIGRATION_TABLE,
    attributes=(AttributeSpec.string("id"),),
    key_schema=(KeySpec.hash("id"),),
    billing_mode="PAY_PER_REQUEST",
)

type SaveFunc = Callable[[Any, str, Mapping[str, Any]], None]


@dataclass(frozen=True)
class SchemaDocument:
    name: str
    table: TableSchema
    records: tuple[dict[str, Any], ...] = ()


def _load(name: str, body: str | bytes) -> Any:
    try:
        if name.endswith(".json"):
            return json.loads(body)
        return yaml.safe_load(body)
    except (ValueError, yaml.YAMLError) as err:
        raise ValidationError(f"{name}: cannot parse schema document: {err}") from err


def _checksum(resource: Mapping[str, Any]) -> str:
    data = json.dumps(resource, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def parse_schema_documents(
    name: str,
    body: str | bytes,
    *,
    table_name_prefix: str = "",
) -> list[SchemaDocument]:
    """Parse a schema file into migration documents.

    Two shapes are accepted: a plain document with ``schema`` (table
    properties) and optional ``records``, or a CloudFormation template, in
    which case every ``AWS::DynamoDB::Table`` resource becomes one document
    named after the file, the table and a sha256 of the resource.
    """
    raw = _load(name, body)
    if raw is None:
        return []
    if not isinstance(raw, Mapping):
        raise ValidationError(f"{name}: schema document must be a mapping")

    if raw.get("AWSTemplateFormatVersion"):
        out: list[SchemaDocument] = []
        for resource in (raw.get("Resources") or {}).values():
            if not isinstance(resource, Mapping) or resource.get("Type") != CLOUDFORMATION_TABLE_TYPE:
                continue
            table = TableSchema.from_dict(
                resource.get("Properties") or {},
                table_name_prefix=table_name_prefix,
            )
            out.append(SchemaDocument(name=f"{name}_{table.table_name}:{_checksum(resource)}", table=table))
        return out

    schema_raw = raw.get("schema")
    if not isinstance(schema_raw, Mapping) or not schema_raw.get("TableName"):
        return []

    records = raw.get("records") or []
    if not isinstance(records, list) or not all(isinstance(r, Mapping) for r in records):
        raise ValidationError(f"{name}: records must be a list of mappings")

    return [
        SchemaDocument(
            name=name,
            table=TableSchema.from_dict(schema_raw, table_name_prefix=table_name_prefix),
            records=tuple(dict(r) for r in records),
        )
    ]


def expand_placeholders(record: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in record.items():
        if isinstance(v, str):
            token = v.strip()
            if token == "{{uuid()}}":
                v = str(uuid.uuid4())
            elif token == "{{now()}}":
                v = dt.datetime.now(dt.UTC).isoformat()
        elif isinstance(v, (dt.datetime, dt.date)):
            v = v.isoformat()
        out[str(k)] = v
    return out


def save_record(client: Any, table_name: str, record: Mapping[str, Any]) -> None:
    put(client, put_item(table_name, expand_placeholders(record)))
    log.debug("saved seed record into %s", table_name)


class Migrator:
    def __init__(
        self,
        client: Any,
        *paths: str | Path,
        table_name_prefix: str = "",
        wait_for_active: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._paths = tuple(Path(p) for p in paths)
        self._prefix = table_name_prefix
        self._wait = wait_for_active
        self._sleep = sleep
        self._ledger_ready = False

    def run(self, save: SaveFunc | None = save_record) -> list[str]:
        """Apply every schema file under the configured directories; returns applied document names."""
        applied: list[str] = []
        for directory in self._paths:
            if not directory.is_dir():
                raise ValidationError(f"migration path is not a directory: {directory}")
            for path in sorted(directory.iterdir()):
                if path.is_file() and path.suffix in SCHEMA_SUFFIXES:
                    applied.extend(self.apply_text(path.name, path.read_text(encoding="utf-8"), save))
        return applied

    def apply_text(self, name: str, body: str | bytes, save: SaveFunc | None = save_record) -> list[str]:
        applied: list[str] = []
        for doc in parse_schema_documents(name, body, table_name_prefix=self._prefix):
            if self.apply(doc, save):
                applied.append(doc.name)
        return applied

    def apply(self, doc: SchemaDocument, save: SaveFunc | None = save_record) -> bool:
        self._ensure_ledger()
        if self._migrated(doc.name):
            log.debug("%s already applied", doc.name)
            return False

        log.info("%s start", doc.name)
        status = ensure_table(self._client, doc.table, wait_for_active=self._wait, sleep=self._sleep)
        log.info("%s: table %s %s", doc.name, doc.table.full_name, status)
        if save is not None:
            for record in doc.records:
                save(self._client, doc.table.full_name, record)
        self._record(doc.name)
        log.info("%s end", doc.name)
        return True

    def _ensure_ledger(self) -> None:
        if self._ledger_ready:
            return
        if table_exists(self._client, MIGRATION_SCHEMA) is None:
            create_table(self._client, MIGRATION_SCHEMA, wait_for_active=self._wait, sleep=self._sleep)
        self._ledger_ready = True

    def _migrated(self, name: str) -> bool:
        try:
            resp = self._client.get_item(TableName=MIGRATION_TABLE, Key={"id": {"S": name}})
        except ClientError as err:
            if error_code(err) == RESOURCE_NOT_FOUND:
                return False
            raise map_client_error(err) from err
        return bool(resp.get("Item"))

    def _record(self, name: str) -> None:
        put(self._client, put_item(MIGRATION_TABLE, {"id": name}))

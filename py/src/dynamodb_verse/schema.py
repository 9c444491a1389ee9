from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Literal

from botocore.exceptions import ClientError

from .aws_errors import RESOURCE_IN_USE, RESOURCE_NOT_FOUND, error_code, map_client_error
from .errors import NotFoundError, TableAlreadyExistsError, ValidationError

log = logging.getLogger(__name__)

type BillingMode = Literal["PAY_PER_REQUEST", "PROVISIONED"]
type ScalarType = Literal["S", "N", "B"]
type KeyType = Literal["HASH", "RANGE"]
type ProjectionType = Literal["ALL", "KEYS_ONLY", "INCLUDE"]
type TableClass = Literal["STANDARD", "STANDARD_INFREQUENT_ACCESS"]

_BILLING_MODES = {"PAY_PER_REQUEST", "PROVISIONED"}


@dataclass(frozen=True)
class AttributeSpec:
    name: str
    type: ScalarType = "S"

    @staticmethod
    def string(name: str) -> AttributeSpec:
        return AttributeSpec(name=name, type="S")

    @staticmethod
    def number(name: str) -> AttributeSpec:
        return AttributeSpec(name=name, type="N")

    @staticmethod
    def binary(name: str) -> AttributeSpec:
        return AttributeSpec(name=name, type="B")

    @staticmethod
    def from_dict(raw: Mapping[str, Any]) -> AttributeSpec:
        attr_type = str(raw.get("AttributeType", "")).upper()
        if attr_type not in {"S", "N", "B"}:
            raise ValidationError(f"unsupported attribute type: {attr_type!r}")
        return AttributeSpec(name=str(raw["AttributeName"]), type=attr_type)  # type: ignore[arg-type]

    def to_request(self) -> dict[str, str]:
        return {"AttributeName": self.name, "AttributeType": self.type}


@dataclass(frozen=True)
class KeySpec:
    name: str
    key_type: KeyType = "HASH"

    @staticmethod
    def hash(name: str) -> KeySpec:
        return KeySpec(name=name, key_type="HASH")

    @staticmethod
    def range(name: str) -> KeySpec:
        return KeySpec(name=name, key_type="RANGE")

    @staticmethod
    def from_dict(raw: Mapping[str, Any]) -> KeySpec:
        key_type = str(raw.get("KeyType", "")).upper()
        if key_type not in {"HASH", "RANGE"}:
            raise ValidationError(f"unsupported key type: {key_type!r}")
        return KeySpec(name=str(raw["AttributeName"]), key_type=key_type)  # type: ignore[arg-type]

    def to_request(self) -> dict[str, str]:
        return {"AttributeName": self.name, "KeyType": self.key_type}


@dataclass(frozen=True)
class ProvisionedThroughput:
    read: int = 0
    write: int = 0

    @staticmethod
    def from_dict(raw: Mapping[str, Any] | None) -> ProvisionedThroughput | None:
        if not raw:
            return None
        return ProvisionedThroughput(
            read=int(raw.get("ReadCapacityUnits", 0)),
            write=int(raw.get("WriteCapacityUnits", 0)),
        )

    def is_set(self) -> bool:
        return self.read > 0

    def to_request(self) -> dict[str, int]:
        return {"ReadCapacityUnits": self.read, "WriteCapacityUnits": self.write}

    def differs_from(self, raw: Mapping[str, Any] | None) -> bool:
        raw = raw or {}
        read = int(raw.get("ReadCapacityUnits", 0))
        write = int(raw.get("WriteCapacityUnits", 0))
        return read != self.read or write != self.write


@dataclass(frozen=True)
class Projection:
    type: ProjectionType = "ALL"
    non_key_attributes: tuple[str, ...] = ()

    @staticmethod
    def all() -> Projection:
        return Projection(type="ALL")

    @staticmethod
    def keys_only() -> Projection:
        return Projection(type="KEYS_ONLY")

    @staticmethod
    def include(*attributes: str) -> Projection:
        return Projection(type="INCLUDE", non_key_attributes=tuple(attributes))

    @staticmethod
    def from_dict(raw: Mapping[str, Any] | None) -> Projection:
        if not raw:
            return Projection()
        proj_type = str(raw.get("ProjectionType", "ALL")).upper()
        if proj_type not in {"ALL", "KEYS_ONLY", "INCLUDE"}:
            raise ValidationError(f"unsupported projection type: {proj_type!r}")
        return Projection(
            type=proj_type,  # type: ignore[arg-type]
            non_key_attributes=tuple(str(a) for a in raw.get("NonKeyAttributes") or ()),
        )

    def to_request(self) -> dict[str, Any]:
        out: dict[str, Any] = {"ProjectionType": self.type}
        if self.type == "INCLUDE" and self.non_key_attributes:
            out["NonKeyAttributes"] = list(self.non_key_attributes)
        return out


@dataclass(frozen=True)
class SecondaryIndex:
    name: str
    keys: tuple[KeySpec, ...]
    projection: Projection = field(default_factory=Projection)
    throughput: ProvisionedThroughput | None = None

    @staticmethod
    def from_dict(raw: Mapping[str, Any]) -> SecondaryIndex:
        return SecondaryIndex(
            name=str(raw["IndexName"]),
            keys=tuple(KeySpec.from_dict(k) for k in raw.get("KeySchema") or ()),
            projection=Projection.from_dict(raw.get("Projection")),
            throughput=ProvisionedThroughput.from_dict(raw.get("ProvisionedThroughput")),
        )

    def to_global_request(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "IndexName": self.name,
            "KeySchema": [k.to_request() for k in self.keys],
            "Projection": self.projection.to_request(),
        }
        if self.throughput is not None and self.throughput.is_set():
            out["ProvisionedThroughput"] = self.throughput.to_request()
        return out

    def to_local_request(self) -> dict[str, Any]:
        return {
            "IndexName": self.name,
            "KeySchema": [k.to_request() for k in self.keys],
            "Projection": self.projection.to_request(),
        }


def secondary_index(
    name: str,
    hash_key: str,
    range_key: str | None = None,
    *,
    projection: Projection | None = None,
    throughput: ProvisionedThroughput | None = None,
) -> SecondaryIndex:
    keys = [KeySpec.hash(hash_key)]
    if range_key is not None:
        keys.append(KeySpec.range(range_key))
    return SecondaryIndex(
        name=name,
        keys=tuple(keys),
        projection=projection or Projection.all(),
        throughput=throughput,
    )


@dataclass(frozen=True)
class TimeToLiveSpec:
    attribute_name: str
    enabled: bool = True

    @staticmethod
    def from_dict(raw: Mapping[str, Any] | None) -> TimeToLiveSpec | None:
        if not raw:
            return None
        return TimeToLiveSpec(
            attribute_name=str(raw["AttributeName"]),
            enabled=bool(raw.get("Enabled", False)),
        )

    def to_request(self) -> dict[str, Any]:
        return {"AttributeName": self.attribute_name, "Enabled": self.enabled}


@dataclass(frozen=True)
class UpdatePlan:
    table_request: dict[str, Any] | None = None
    ttl_request: dict[str, Any] | None = None

    def is_empty(self) -> bool:
        return self.table_request is None and self.ttl_request is None


def _describe_body(description: Mapping[str, Any]) -> Mapping[str, Any]:
    table = description.get("Table")
    if isinstance(table, Mapping):
        return table
    return description


@dataclass(frozen=True)
class TableSchema:
    table_name: str
    attributes: tuple[AttributeSpec, ...] = ()
    key_schema: tuple[KeySpec, ...] = ()
    throughput: ProvisionedThroughput | None = None
    billing_mode: BillingMode | None = None
    global_secondary_indexes: tuple[SecondaryIndex, ...] = ()
    local_secondary_indexes: tuple[SecondaryIndex, ...] = ()
    table_class: TableClass | None = None
    time_to_live: TimeToLiveSpec | None = None
    table_name_prefix: str = ""

    @staticmethod
    def from_dict(raw: Mapping[str, Any], *, table_name_prefix: str = "") -> TableSchema:
        """Build a schema from CloudFormation-shaped ``AWS::DynamoDB::Table`` properties."""
        table_name = str(raw.get("TableName") or "").strip()
        if not table_name:
            raise ValidationError("TableName is required")

        billing_mode = raw.get("BillingMode") or None
        if billing_mode is not None and billing_mode not in _BILLING_MODES:
            raise ValidationError(f"unsupported BillingMode: {billing_mode!r}")

        return TableSchema(
            table_name=table_name,
            attributes=tuple(AttributeSpec.from_dict(a) for a in raw.get("AttributeDefinitions") or ()),
            key_schema=tuple(KeySpec.from_dict(k) for k in raw.get("KeySchema") or ()),
            throughput=ProvisionedThroughput.from_dict(raw.get("ProvisionedThroughput")),
            billing_mode=billing_mode,
            global_secondary_indexes=tuple(
                SecondaryIndex.from_dict(i) for i in raw.get("GlobalSecondaryIndexes") or ()
            ),
            local_secondary_indexes=tuple(
                SecondaryIndex.from_dict(i) for i in raw.get("LocalSecondaryIndexes") or ()
            ),
            table_class=raw.get("TableClass") or None,
            time_to_live=TimeToLiveSpec.from_dict(raw.get("TimeToLiveSpecification")),
            table_name_prefix=table_name_prefix,
        )

    @property
    def full_name(self) -> str:
        return self.table_name_prefix + self.table_name

    def with_prefix(self, prefix: str) -> TableSchema:
        return replace(self, table_name_prefix=prefix)

    def resolved_billing_mode(self) -> BillingMode:
        if self.billing_mode:
            return self.billing_mode
        if self.throughput is not None and self.throughput.is_set():
            return "PROVISIONED"
        return "PAY_PER_REQUEST"

    def validate(self) -> None:
        if not self.key_schema:
            raise ValidationError(f"{self.table_name}: KeySchema is required")
        hashes = [k for k in self.key_schema if k.key_type == "HASH"]
        if len(hashes) != 1:
            raise ValidationError(f"{self.table_name}: exactly one HASH key is required")

        defined = {a.name for a in self.attributes}
        for k in self.key_schema:
            if k.name not in defined:
                raise ValidationError(f"{self.table_name}: key attribute is not defined: {k.name}")
        for idx in (*self.global_secondary_indexes, *self.local_secondary_indexes):
            for k in idx.keys:
                if k.name not in defined:
                    raise ValidationError(f"{self.table_name}: index {idx.name} key is not defined: {k.name}")

        provisioned = self.throughput is not None and self.throughput.is_set()
        if self.resolved_billing_mode() == "PROVISIONED" and not provisioned:
            raise ValidationError(f"{self.table_name}: ProvisionedThroughput is required for PROVISIONED")

    def build_create_table_request(self) -> dict[str, Any]:
        self.validate()

        billing_mode = self.resolved_billing_mode()
        req: dict[str, Any] = {
            "TableName": self.full_name,
            "AttributeDefinitions": [a.to_request() for a in self.attributes],
            "KeySchema": [k.to_request() for k in self.key_schema],
            "BillingMode": billing_mode,
        }
        if billing_mode == "PROVISIONED" and self.throughput is not None:
            req["ProvisionedThroughput"] = self.throughput.to_request()
        if self.global_secondary_indexes:
            req["GlobalSecondaryIndexes"] = [i.to_global_request() for i in self.global_secondary_indexes]
        if self.local_secondary_indexes:
            req["LocalSecondaryIndexes"] = [i.to_local_request() for i in self.local_secondary_indexes]
        if self.table_class:
            req["TableClass"] = self.table_class
        return req

    def ttl_request(self) -> dict[str, Any] | None:
        if self.time_to_live is None:
            return None
        return {"TableName": self.full_name, "TimeToLiveSpecification": self.time_to_live.to_request()}

    def _global_index_updates(self, desc: Mapping[str, Any]) -> list[dict[str, Any]]:
        existing = {str(g["IndexName"]): g for g in desc.get("GlobalSecondaryIndexes") or ()}
        updates: list[dict[str, Any]] = []

        for idx in self.global_secondary_indexes:
            current = existing.pop(idx.name, None)
            if current is None:
                updates.append({"Create": idx.to_global_request()})
                continue
            if idx.throughput is not None and idx.throughput.is_set():
                if idx.throughput.differs_from(current.get("ProvisionedThroughput")):
                    updates.append(
                        {
                            "Update": {
                                "IndexName": idx.name,
                                "ProvisionedThroughput": idx.throughput.to_request(),
                            }
                        }
                    )

        for name in existing:
            updates.append({"Delete": {"IndexName": name}})
        return updates

    def plan_update(
        self,
        description: Mapping[str, Any],
        ttl_description: Mapping[str, Any] | None = None,
    ) -> UpdatePlan:
        """Diff this schema against a live ``DescribeTable`` result."""
        desc = _describe_body(description)
        req: dict[str, Any] = {}

        billing_mode = self.resolved_billing_mode()
        current_mode = (desc.get("BillingModeSummary") or {}).get("BillingMode") or "PROVISIONED"
        if billing_mode != current_mode:
            req["BillingMode"] = billing_mode

        if billing_mode == "PROVISIONED" and self.throughput is not None and self.throughput.is_set():
            if self.throughput.differs_from(desc.get("ProvisionedThroughput")):
                req["ProvisionedThroughput"] = self.throughput.to_request()

        gsi_updates = self._global_index_updates(desc)
        if gsi_updates:
            req["GlobalSecondaryIndexUpdates"] = gsi_updates
            if any("Create" in u for u in gsi_updates):
                req["AttributeDefinitions"] = [a.to_request() for a in self.attributes]

        if self.table_class:
            current_class = (desc.get("TableClassSummary") or {}).get("TableClass") or "STANDARD"
            if self.table_class != current_class:
                req["TableClass"] = self.table_class

        table_request = None
        if req:
            table_request = {"TableName": self.full_name, **req}

        ttl_request = None
        if self.time_to_live is not None:
            ttl_desc = ttl_description or {}
            ttl_desc = ttl_desc.get("TimeToLiveDescription", ttl_desc)
            status = str(ttl_desc.get("TimeToLiveStatus") or "DISABLED")
            enabled = status in {"ENABLED", "ENABLING"}
            if enabled != self.time_to_live.enabled:
                ttl_request = self.ttl_request()

        return UpdatePlan(table_request=table_request, ttl_request=ttl_request)


def table_exists(client: Any, schema: TableSchema) -> dict[str, Any] | None:
    try:
        resp = client.describe_table(TableName=schema.full_name)
    except ClientError as err:
        if error_code(err) == RESOURCE_NOT_FOUND:
            return None
        raise map_client_error(err) from err
    return dict(resp.get("Table") or {})


def _wait_for_table_active(
    client: Any,
    table_name: str,
    *,
    timeout_seconds: float,
    poll_interval_seconds: float,
    sleep: Callable[[float], None],
) -> None:
    deadline = time.monotonic() + timeout_seconds
    while time.monotonic() < deadline:
        try:
            resp = client.describe_table(TableName=table_name)
        except ClientError as err:
            if error_code(err) != RESOURCE_NOT_FOUND:
                raise map_client_error(err) from err
            resp = {}

        status = str(resp.get("Table", {}).get("TableStatus", ""))
        if status == "ACTIVE":
            return
        sleep(poll_interval_seconds)

    raise ValidationError(f"timed out waiting for table ACTIVE: {table_name}")


def _update_ttl(client: Any, req: Mapping[str, Any]) -> None:
    try:
        client.update_time_to_live(**req)
    except ClientError as err:
        raise map_client_error(err) from err


def create_table(
    client: Any,
    schema: TableSchema,
    *,
    wait_for_active: bool = True,
    wait_timeout_seconds: float = 300.0,
    poll_interval_seconds: float = 0.25,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, Any]:
    req = schema.build_create_table_request()
    try:
        resp = client.create_table(**req)
    except ClientError as err:
        if error_code(err) == RESOURCE_IN_USE:
            raise TableAlreadyExistsError(schema.full_name) from err
        raise map_client_error(err) from err
    log.info("created table %s", schema.full_name)

    if wait_for_active:
        _wait_for_table_active(
            client,
            schema.full_name,
            timeout_seconds=wait_timeout_seconds,
            poll_interval_seconds=poll_interval_seconds,
            sleep=sleep,
        )

    ttl = schema.ttl_request()
    if ttl is not None:
        _update_ttl(client, ttl)
    return dict(resp)


def update_table(
    client: Any,
    schema: TableSchema,
    description: Mapping[str, Any] | None = None,
) -> UpdatePlan:
    if description is None:
        description = table_exists(client, schema)
        if description is None:
            raise NotFoundError(f"table not found: {schema.full_name}")

    ttl_description = None
    if schema.time_to_live is not None:
        try:
            ttl_description = client.describe_time_to_live(TableName=schema.full_name)
        except ClientError as err:
            raise map_client_error(err) from err

    plan = schema.plan_update(description, ttl_description)
    if plan.is_empty():
        log.debug("table %s is up to date", schema.full_name)
        return plan

    if plan.table_request is not None:
        try:
            client.update_table(**plan.table_request)
        except ClientError as err:
            raise map_client_error(err) from err
        log.info("updated table %s", schema.full_name)

    if plan.ttl_request is not None:
        _update_ttl(client, plan.ttl_request)
    return plan


def delete_table(client: Any, schema: TableSchema, *, ignore_missing: bool = False) -> None:
    try:
        client.delete_table(TableName=schema.full_name)
    except ClientError as err:
        if ignore_missing and error_code(err) == RESOURCE_NOT_FOUND:
            return
        raise map_client_error(err) from err
    log.info("deleted table %s", schema.full_name)


def ensure_table(
    client: Any,
    schema: TableSchema,
    *,
    wait_for_active: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> Literal["created", "updated", "unchanged"]:
    description = table_exists(client, schema)
    if description is None:
        create_table(client, schema, wait_for_active=wait_for_active, sleep=sleep)
        return "created"
    plan = update_table(client, schema, description)
    return "unchanged" if plan.is_empty() else "updated"


class SchemaBuilder:
    def __init__(self, table_name: str) -> None:
        if not table_name:
            raise ValidationError("table_name is required")
        self._table_name = table_name
        self._attributes: tuple[AttributeSpec, ...] = ()
        self._keys: tuple[KeySpec, ...] = ()
        self._throughput: ProvisionedThroughput | None = None
        self._billing_mode: BillingMode | None = "PAY_PER_REQUEST"
        self._gsis: tuple[SecondaryIndex, ...] = ()
        self._lsis: tuple[SecondaryIndex, ...] = ()
        self._table_class: TableClass | None = None
        self._ttl: TimeToLiveSpec | None = None

    @property
    def table_name(self) -> str:
        return self._table_name

    def attributes(self, *attributes: AttributeSpec) -> SchemaBuilder:
        self._attributes = tuple(attributes)
        return self

    def keys(self, *keys: KeySpec) -> SchemaBuilder:
        self._keys = tuple(keys)
        return self

    def throughput(self, read: int, write: int) -> SchemaBuilder:
        self._throughput = ProvisionedThroughput(read=read, write=write)
        self._billing_mode = "PROVISIONED"
        return self

    def billing_mode(self, mode: BillingMode) -> SchemaBuilder:
        self._billing_mode = mode
        return self

    def global_secondary_index(self, *indexes: SecondaryIndex) -> SchemaBuilder:
        self._gsis = tuple(indexes)
        return self

    def local_secondary_index(self, *indexes: SecondaryIndex) -> SchemaBuilder:
        self._lsis = tuple(indexes)
        return self

    def table_class(self, table_class: TableClass) -> SchemaBuilder:
        self._table_class = table_class
        return self

    def time_to_live(self, attribute_name: str, enabled: bool = True) -> SchemaBuilder:
        self._ttl = TimeToLiveSpec(attribute_name=attribute_name, enabled=enabled)
        return self

    def schema(self, *, table_name_prefix: str = "") -> TableSchema:
        return TableSchema(
            table_name=self._table_name,
            attributes=self._attributes,
            key_schema=self._keys,
            throughput=self._throughput,
            billing_mode=self._billing_mode,
            global_secondary_indexes=self._gsis,
            local_secondary_indexes=self._lsis,
            table_class=self._table_class,
            time_to_live=self._ttl,
            table_name_prefix=table_name_prefix,
        )

    def build(
        self,
        client: Any,
        *,
        table_name_prefix: str = "",
        wait_for_active: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> dict[str, Any]:
        schema = self.schema(table_name_prefix=table_name_prefix)
        if table_exists(client, schema) is not None:
            raise TableAlreadyExistsError(schema.full_name)
        return create_table(client, schema, wait_for_active=wait_for_active, sleep=sleep)


def build_all(
    client: Any,
    builders: Sequence[SchemaBuilder],
    *,
    table_name_prefix: str = "",
    wait_for_active: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> list[dict[str, Any]]:
    return [
        b.build(client, table_name_prefix=table_name_prefix, wait_for_active=wait_for_active, sleep=sleep)
        for b in builders
    ]

from __future__ import annotations

from dataclasses import dataclass

import pytest

from dynamodb_verse import (
    Condition,
    ConstructionError,
    add_value,
    check_item,
    consistent_update_item,
    delete_item,
    fetch_all,
    fetch_into,
    key,
    put_item,
    remove_value,
    set_value,
    update_item,
)
from dynamodb_verse.descriptors import Deferred, Resolved, WriteOperation, resolve_get, resolve_write


@dataclass(frozen=True)
class Order:
    id: str
    total: int = 0


def test_put_item_marshals_lazily() -> None:
    record: dict = {"id": "o1"}
    resolver = put_item("orders", record)
    record["total"] = 3

    op = resolve_write(resolver)

    assert op.table_name == "orders"
    assert op.item == {"id": {"S": "o1"}, "total": {"N": "3"}}
    assert op.expression is None


def test_key_accepts_dataclass_and_projection() -> None:
    op = resolve_get(key("orders", Order(id="o1", total=1), "total"))

    assert op.key == {"id": {"S": "o1"}, "total": {"N": "1"}}
    assert op.projection == ("total",)


def test_key_rejects_scalars() -> None:
    with pytest.raises(ConstructionError, match="unsupported key type"):
        resolve_get(key("orders", "o1"))


def test_resolver_errors_become_construction_errors() -> None:
    def broken() -> WriteOperation:
        raise RuntimeError("boom")

    with pytest.raises(ConstructionError, match="boom"):
        resolve_write(broken)
    with pytest.raises(ConstructionError, match="table name"):
        resolve_write(lambda: WriteOperation(table_name="", item={}))
    with pytest.raises(ConstructionError, match="returned"):
        resolve_write(lambda: "nope")  # type: ignore[arg-type, return-value]


def test_delete_item_with_condition() -> None:
    op = resolve_write(delete_item(key("orders", {"id": "o1"}), Condition.exists("id")))

    assert op.item == {"id": {"S": "o1"}}
    assert op.expression is not None
    assert op.expression.condition == "attribute_exists(#n0)"


def test_update_item_collects_fields() -> None:
    op = resolve_write(
        update_item(
            key("orders", {"id": "o1"}),
            set_value("status", "paid"),
            add_value("total", 5),
            remove_value("draft"),
            condition=Condition.eq("status", "open"),
        )
    )

    assert op.expression is not None
    assert op.expression.update == "SET #n0 = :v0 REMOVE #n2 ADD #n1 :v1"
    assert op.expression.condition == "#n0 = :v2"
    assert op.expression.values[":v2"] == {"S": "open"}


def test_consistent_update_item_guards_version() -> None:
    op = resolve_write(consistent_update_item(key("orders", {"id": "o1"}), "version", 4, set_value("a", 1)))

    assert op.expression is not None
    assert op.expression.update == "SET #n0 = :v0, #n1 = :v1"
    assert op.expression.condition == "#n1 = :v2"
    assert op.expression.values[":v1"] == {"N": "5"}
    assert op.expression.values[":v2"] == {"N": "4"}


def test_check_item_and_deferred_resolution() -> None:
    checker = check_item(key("orders", {"id": "o1"}), Condition.exists("id"))
    pending = Deferred(kind="condition_check", resolver=checker)

    resolved = pending.resolve()

    assert isinstance(resolved, Resolved)
    assert resolved.kind == "condition_check"
    assert resolved.operation.table_name == "orders"


def test_fetch_helpers_unmarshal_records() -> None:
    one: list[Order] = []
    many: list[Order] = []

    fetch_into(Order, one)("orders", {"id": {"S": "o1"}, "total": {"N": "2"}})
    fetch_all(Order, many)("orders", [{"id": {"S": "o2"}}, {"id": {"S": "o3"}}])

    assert one == [Order(id="o1", total=2)]
    assert many == [Order(id="o2"), Order(id="o3")]

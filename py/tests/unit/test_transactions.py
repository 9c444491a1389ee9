from __future__ import annotations

import contextvars
import threading

import pytest

from dynamodb_verse import (
    Condition,
    ConditionFailedError,
    ConstructionError,
    DispatchMetric,
    OperationCancelledError,
    TransactGetBuilder,
    TransactionBuilder,
    TransactionCanceledError,
    TransactionNotBeganError,
    TransactionOptions,
    ValidationError,
    WriteOptions,
    check_item,
    delete_item,
    key,
    put_item,
    set_value,
    transactions,
    update_item,
)
from dynamodb_verse.attributes import Item
from dynamodb_verse.descriptors import WriteOperation
from dynamodb_verse.testkit import ANY, FakeDynamoDBClient, client_error


def _puts(n: int) -> list:
    return [put_item("ledger", {"id": f"e{i}"}) for i in range(n)]


def test_builder_shapes_every_write_kind() -> None:
    builder = (
        TransactionBuilder(write_options=WriteOptions(return_values_on_condition_check_failure="ALL_OLD"))
        .put(put_item("ledger", {"id": "e1"}))
        .update(update_item(key("accounts", {"id": "a"}), set_value("balance", 10)))
        .delete(delete_item(key("ledger", {"id": "e0"})))
        .condition_check(check_item(key("accounts", {"id": "b"}), Condition.exists("id")))
    )

    items = builder.transact_items()

    assert [next(iter(i)) for i in items] == ["Put", "Update", "Delete", "ConditionCheck"]
    assert items[0]["Put"]["Item"] == {"id": {"S": "e1"}}
    assert items[1]["Update"]["UpdateExpression"] == "SET #n0 = :v0"
    assert items[3]["ConditionCheck"]["ConditionExpression"] == "attribute_exists(#n0)"
    assert all(next(iter(i.values()))["ReturnValuesOnConditionCheckFailure"] == "ALL_OLD" for i in items)


def test_run_splits_into_sequential_groups() -> None:
    client = FakeDynamoDBClient()
    client.expect("transact_write_items", lambda req: _assert_size(req, 25), response={"n": 1})
    client.expect("transact_write_items", lambda req: _assert_size(req, 5), response={"n": 2})
    metrics: list[DispatchMetric] = []

    out = TransactionBuilder(monitor=metrics.append).put(*_puts(30)).run(client)

    assert out == [{"n": 1}, {"n": 2}]
    assert [m.size for m in metrics] == [25, 5]
    client.assert_no_pending()


def _assert_size(req: object, n: int) -> None:
    assert isinstance(req, dict)
    assert len(req["TransactItems"]) == n


def test_options_reach_the_request() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        {"TransactItems": ANY, "ClientRequestToken": "tok", "ReturnConsumedCapacity": "TOTAL"},
    )

    TransactionBuilder(
        options=TransactionOptions(client_request_token="tok", return_consumed_capacity="TOTAL")
    ).put(*_puts(1)).run(client)

    client.assert_no_pending()


def test_max_items_bounds() -> None:
    with pytest.raises(ValidationError):
        TransactionBuilder(max_items=26)

    builder = TransactionBuilder(max_items=2).put(*_puts(5))

    assert [len(g) for g in builder.groups()] == [2, 2, 1]


def test_condition_failure_is_mapped() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        error=client_error(
            "TransactionCanceledException",
            "Transaction cancelled",
            CancellationReasons=[{"Code": "None"}, {"Code": "ConditionalCheckFailed"}],
        ),
    )

    with pytest.raises(ConditionFailedError):
        TransactionBuilder().put(*_puts(2)).run(client)


def test_other_cancellations_keep_reason_codes() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        error=client_error(
            "TransactionCanceledException",
            "Transaction cancelled",
            CancellationReasons=[{"Code": "None"}, {"Code": "TransactionConflict"}],
        ),
    )

    with pytest.raises(TransactionCanceledError) as excinfo:
        TransactionBuilder().put(*_puts(1)).run(client)
    assert excinfo.value.reason_codes == ("TransactionConflict",)


def test_monitor_observes_the_failed_group() -> None:
    client = FakeDynamoDBClient()
    client.expect("transact_write_items")
    client.expect(
        "transact_write_items",
        error=client_error(
            "TransactionCanceledException",
            "Transaction cancelled",
            CancellationReasons=[{"Code": "ConditionalCheckFailed"}],
        ),
    )
    metrics: list[DispatchMetric] = []

    with pytest.raises(ConditionFailedError):
        TransactionBuilder(max_items=2, monitor=metrics.append).put(*_puts(3)).run(client)

    assert [(m.operation, m.size, m.ok) for m in metrics] == [
        ("transact_write_items", 2, True),
        ("transact_write_items", 1, False),
    ]
    assert isinstance(metrics[1].error, ConditionFailedError)
    assert metrics[1].table_names == ("ledger",)


def test_failed_group_stops_the_run() -> None:
    client = FakeDynamoDBClient()
    client.expect("transact_write_items")
    client.expect("transact_write_items", error=client_error("ValidationException", "bad"))

    with pytest.raises(ValidationError, match="bad"):
        TransactionBuilder(max_items=1).put(*_puts(3)).run(client)
    assert len(client.calls) == 2


def test_cancel_is_checked_between_groups() -> None:
    cancel = threading.Event()
    client = FakeDynamoDBClient()
    client.expect("transact_write_items", lambda _: cancel.set())

    with pytest.raises(OperationCancelledError):
        TransactionBuilder(max_items=1).put(*_puts(2)).run(client, cancel=cancel)
    assert len(client.calls) == 1


def test_deferred_operations_resolve_at_run_time() -> None:
    state = {"balance": 1}
    builder = TransactionBuilder().put(lambda: put_item("accounts", dict(state))(), deferred=True)
    state["balance"] = 9

    items = builder.transact_items()

    assert items[0]["Put"]["Item"]["balance"] == {"N": "9"}


def test_construction_errors_poison_the_builder() -> None:
    builder = TransactionBuilder().put(*_puts(1))

    with pytest.raises(ConstructionError, match="update expression"):
        builder.update(lambda: WriteOperation(table_name="t", item={"id": {"S": "x"}}), deferred=True).run(
            FakeDynamoDBClient()
        )

    assert builder.has_error()
    assert len(builder) == 0
    with pytest.raises(ConstructionError):
        builder.put(*_puts(1))


def test_transact_get_skips_missing_items() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_get_items",
        {
            "TransactItems": [
                {"Get": {"TableName": "accounts", "Key": {"id": {"S": "a"}}, "ProjectionExpression": "#n0"}},
                {"Get": {"TableName": "accounts", "Key": {"id": {"S": "b"}}}},
            ]
        },
        response={"Responses": [{"Item": {"id": {"S": "a"}}}, {}]},
    )
    fetched: list[tuple[str, Item]] = []

    TransactGetBuilder(key("accounts", {"id": "a"}, "id"), key("accounts", {"id": "b"})).run(
        client, lambda table, item: fetched.append((table, item))
    )

    assert fetched == [("accounts", {"id": {"S": "a"}})]


def test_transact_get_splits_at_100_keys() -> None:
    client = FakeDynamoDBClient()
    client.expect("transact_get_items", lambda req: _assert_size(req, 100))
    client.expect("transact_get_items", lambda req: _assert_size(req, 1))

    TransactGetBuilder(*(key("accounts", {"id": str(i)}) for i in range(101))).run(client, lambda t, i: None)

    client.assert_no_pending()


def test_ambient_transaction_requires_begin() -> None:
    def scenario() -> None:
        transactions.put(*_puts(1))
        with pytest.raises(TransactionNotBeganError):
            transactions.run(FakeDynamoDBClient())

    contextvars.copy_context().run(scenario)


def test_ambient_transaction_collects_and_resets() -> None:
    def scenario() -> None:
        first = transactions.begin(max_items=5)
        transactions.put(*_puts(2))
        transactions.delete(delete_item(key("ledger", {"id": "e0"})))
        transactions.update(update_item(key("ledger", {"id": "e1"}), set_value("a", 1)))

        client = FakeDynamoDBClient()
        client.expect("transact_write_items", lambda req: _assert_size(req, 4))
        transactions.run(client)

        fresh = transactions.current()
        assert fresh is not None and fresh is not first
        assert len(fresh) == 0

    contextvars.copy_context().run(scenario)


def test_transaction_context_manager_scopes_the_builder() -> None:
    assert transactions.current() is None

    with transactions.transaction() as tx:
        transactions.put(*_puts(3))
        assert transactions.current() is tx
        assert len(tx) == 3

    assert transactions.current() is None

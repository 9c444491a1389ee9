from __future__ import annotations

import pytest
from botocore.exceptions import ClientError

from dynamodb_verse import put, put_item
from dynamodb_verse.aws_errors import error_code
from dynamodb_verse.mocks import OPERATIONS
from dynamodb_verse.testkit import ANY, FakeDynamoDBClient, client_error, no_sleep


def test_fake_dynamodb_client_records_and_matches_put_item() -> None:
    client = FakeDynamoDBClient()
    client.expect("put_item", {"TableName": "notes", "Item": ANY})

    put(client, put_item("notes", {"id": "a"}))

    client.assert_no_pending()
    assert client.methods() == ["put_item"]


def test_fake_dynamodb_client_asserts_pending_calls() -> None:
    client = FakeDynamoDBClient()
    client.expect("query")
    with pytest.raises(AssertionError, match="pending expected calls"):
        client.assert_no_pending()


def test_fake_dynamodb_client_rejects_unexpected_calls() -> None:
    client = FakeDynamoDBClient()
    with pytest.raises(AssertionError, match="unexpected call: query"):
        client.query()


def test_fake_dynamodb_client_rejects_wrong_method_order() -> None:
    client = FakeDynamoDBClient()
    client.expect("scan")
    with pytest.raises(AssertionError, match="expected scan, got query"):
        client.query()


@pytest.mark.parametrize(
    ("expected", "req", "match"),
    [
        ({"a": 1}, {"a": 2}, "expected 1"),
        ({"a": 1}, {}, "missing key"),
        ({"a": {"b": 1}}, {"a": "nope"}, "expected dict"),
        ({"a": [1]}, {"a": "nope"}, "expected list"),
        ({"a": [1, 2]}, {"a": [1]}, "expected 2 items"),
        ({"a": [1]}, {"a": [2]}, "expected 1"),
    ],
)
def test_fake_dynamodb_client_strict_matching(expected: dict, req: dict, match: str) -> None:
    client = FakeDynamoDBClient()
    client.expect("query", expected)
    with pytest.raises(AssertionError, match=match):
        client.query(**req)


def test_fake_dynamodb_client_dispatch_helpers() -> None:
    methods = sorted(OPERATIONS)
    client = FakeDynamoDBClient()
    for method in methods:
        client.expect(method, response={"ok": True})

    for method in methods:
        assert getattr(client, method)() == {"ok": True}
    client.assert_no_pending()


def test_client_error_builds_service_errors() -> None:
    err = client_error("ConditionalCheckFailedException", operation="PutItem", CancellationReasons=[])

    assert isinstance(err, ClientError)
    assert error_code(err) == "ConditionalCheckFailedException"
    assert err.response["Error"]["Message"] == "ConditionalCheckFailedException"
    assert err.response["CancellationReasons"] == []
    assert no_sleep(1.0) is None


def test_fake_dynamodb_client_only_knows_dynamodb_operations() -> None:
    client = FakeDynamoDBClient()

    with pytest.raises(AttributeError):
        client.list_tables()
    with pytest.raises(ValueError, match="unknown DynamoDB operation"):
        client.expect("invoke")


def test_fake_dynamodb_client_reports_every_mismatch() -> None:
    client = FakeDynamoDBClient()
    client.expect("put_item", {"TableName": "notes", "Item": {"id": {"S": "a"}}})

    with pytest.raises(AssertionError, match=r"expected 'notes', got 'other'; .*missing key 'id'"):
        client.put_item(TableName="other", Item={})


def test_expect_batch_write_hands_requests_back_until_settled() -> None:
    client = FakeDynamoDBClient()
    client.expect_batch_write(unprocessed_rounds=1)
    items = {"notes": [{"PutRequest": {"Item": {"id": {"S": "a"}}}}]}

    assert client.batch_write_item(RequestItems=items) == {"UnprocessedItems": items}
    assert client.batch_write_item(RequestItems=items) == {"UnprocessedItems": {}}
    client.assert_no_pending()
    assert len(client.requests("batch_write_item")) == 2


def test_expect_batch_get_returns_keys_in_slices() -> None:
    client = FakeDynamoDBClient()
    client.expect_batch_get(1, keys_per_call=2)
    keys = [{"id": {"S": k}} for k in "abc"]

    resp = client.batch_get_item(RequestItems={"notes": {"Keys": keys, "ConsistentRead": True}})

    assert resp["Responses"] == {"notes": keys[:2]}
    assert resp["UnprocessedKeys"] == {"notes": {"Keys": keys[2:], "ConsistentRead": True}}

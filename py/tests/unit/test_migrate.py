from __future__ import annotations

import json
import re
import uuid
from pathlib import Path

import pytest

from dynamodb_verse import Migrator, ValidationError, parse_schema_documents
from dynamodb_verse.migrate import MIGRATION_TABLE, expand_placeholders
from dynamodb_verse.testkit import ANY, FakeDynamoDBClient, client_error

USERS_YAML = """
schema:
  TableName: users
  AttributeDefinitions:
    - AttributeName: id
      AttributeType: S
  KeySchema:
    - AttributeName: id
      KeyType: HASH
  BillingMode: PAY_PER_REQUEST
records:
  - id: admin
    token: "{{uuid()}}"
"""

TEMPLATE = {
    "AWSTemplateFormatVersion": "2010-09-09",
    "Resources": {
        "Orders": {
            "Type": "AWS::DynamoDB::Table",
            "Properties": {
                "TableName": "orders",
                "AttributeDefinitions": [{"AttributeName": "id", "AttributeType": "S"}],
                "KeySchema": [{"AttributeName": "id", "KeyType": "HASH"}],
                "BillingMode": "PAY_PER_REQUEST",
            },
        },
        "Bucket": {"Type": "AWS::S3::Bucket", "Properties": {}},
    },
}


def test_parse_plain_document() -> None:
    (doc,) = parse_schema_documents("users.yaml", USERS_YAML, table_name_prefix="dev_")

    assert doc.name == "users.yaml"
    assert doc.table.full_name == "dev_users"
    assert doc.records == ({"id": "admin", "token": "{{uuid()}}"},)


def test_parse_cloudformation_template() -> None:
    (doc,) = parse_schema_documents("stack.json", json.dumps(TEMPLATE))

    assert re.fullmatch(r"stack\.json_orders:[0-9a-f]{64}", doc.name)
    assert doc.table.table_name == "orders"
    assert doc.records == ()


def test_cloudformation_checksum_tracks_resource_changes() -> None:
    (before,) = parse_schema_documents("stack.json", json.dumps(TEMPLATE))
    changed = json.loads(json.dumps(TEMPLATE))
    changed["Resources"]["Orders"]["Properties"]["TableClass"] = "STANDARD_INFREQUENT_ACCESS"
    (after,) = parse_schema_documents("stack.json", json.dumps(changed))

    assert before.name != after.name


@pytest.mark.parametrize(
    ("name", "body"),
    [
        ("bad.json", "{not json"),
        ("bad.yaml", "- just\n- a list\n"),
        ("bad.yaml", "schema:\n  TableName: t\nrecords: nope\n"),
    ],
)
def test_parse_rejects_malformed_documents(name: str, body: str) -> None:
    with pytest.raises(ValidationError):
        parse_schema_documents(name, body)


def test_documents_without_schema_are_ignored() -> None:
    assert parse_schema_documents("empty.yaml", "") == []
    assert parse_schema_documents("notes.yaml", "title: nothing here\n") == []


def test_expand_placeholders() -> None:
    out = expand_placeholders({"id": "{{uuid()}}", "at": " {{now()}} ", "n": 1})

    uuid.UUID(out["id"])
    assert out["at"].endswith("+00:00")
    assert out["n"] == 1


def _expect_apply(client: FakeDynamoDBClient, name: str, table: str) -> None:
    client.expect("get_item", {"TableName": MIGRATION_TABLE, "Key": {"id": {"S": name}}})
    client.expect("describe_table", {"TableName": table}, error=client_error("ResourceNotFoundException"))
    client.expect("create_table", {"TableName": table})


def test_migrator_applies_document_once() -> None:
    client = FakeDynamoDBClient()
    ledger = {"Table": {"TableStatus": "ACTIVE"}}
    client.expect("describe_table", {"TableName": MIGRATION_TABLE}, response=ledger)
    _expect_apply(client, "users.yaml", "dev_users")
    client.expect("put_item", lambda req: _assert_seed(req))
    client.expect("put_item", {"TableName": MIGRATION_TABLE, "Item": {"id": {"S": "users.yaml"}}})
    client.expect("get_item", response={"Item": {"id": {"S": "users.yaml"}}})

    migrator = Migrator(client, table_name_prefix="dev_", wait_for_active=False)
    first = migrator.apply_text("users.yaml", USERS_YAML)
    second = migrator.apply_text("users.yaml", USERS_YAML)

    assert first == ["users.yaml"]
    assert second == []
    client.assert_no_pending()


def _assert_seed(req: dict) -> None:
    assert req["TableName"] == "dev_users"
    assert req["Item"]["id"] == {"S": "admin"}
    uuid.UUID(req["Item"]["token"]["S"])


def test_migrator_creates_ledger_and_runs_directory_in_order(tmp_path: Path) -> None:
    (tmp_path / "b_users.yaml").write_text(USERS_YAML, encoding="utf-8")
    (tmp_path / "a_stack.json").write_text(json.dumps(TEMPLATE), encoding="utf-8")
    (tmp_path / "README.md").write_text("ignored", encoding="utf-8")

    client = FakeDynamoDBClient()
    missing = client_error("ResourceNotFoundException")
    client.expect("describe_table", {"TableName": MIGRATION_TABLE}, error=missing)
    client.expect("create_table", {"TableName": MIGRATION_TABLE, "BillingMode": "PAY_PER_REQUEST"})
    client.expect("get_item", {"TableName": MIGRATION_TABLE, "Key": ANY})
    client.expect("describe_table", {"TableName": "orders"}, error=client_error("ResourceNotFoundException"))
    client.expect("create_table", {"TableName": "orders"})
    client.expect("put_item", {"TableName": MIGRATION_TABLE})
    _expect_apply(client, "b_users.yaml", "users")
    client.expect("put_item", {"TableName": MIGRATION_TABLE})

    applied = Migrator(client, tmp_path, wait_for_active=False).run(save=None)

    assert applied[0].startswith("a_stack.json_orders:")
    assert applied[1] == "b_users.yaml"
    client.assert_no_pending()


def test_migrator_updates_existing_tables() -> None:
    client = FakeDynamoDBClient()
    client.expect("describe_table", {"TableName": MIGRATION_TABLE}, response={"Table": {}})
    client.expect("get_item", response={})
    client.expect(
        "describe_table",
        {"TableName": "users"},
        response={"Table": {"BillingModeSummary": {"BillingMode": "PROVISIONED"}}},
    )
    client.expect("update_table", {"TableName": "users", "BillingMode": "PAY_PER_REQUEST"})
    client.expect("put_item", {"TableName": MIGRATION_TABLE})

    assert Migrator(client).apply_text("users.yaml", USERS_YAML, save=None) == ["users.yaml"]
    client.assert_no_pending()


def test_migrator_requires_directories(tmp_path: Path) -> None:
    with pytest.raises(ValidationError, match="not a directory"):
        Migrator(FakeDynamoDBClient(), tmp_path / "missing").run()

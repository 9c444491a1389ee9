from __future__ import annotations

import logging
import os
import uuid
from dataclasses import dataclass

from dynamodb_verse import (
    AttributeSpec,
    BatchBuilder,
    ClientSettings,
    ExpressionBuilder,
    KeyCondition,
    KeySpec,
    ReadOptions,
    SchemaBuilder,
    SortKeyCondition,
    create_dynamodb_client,
    delete_table,
    put_item,
    query_condition,
    query_page,
)


@dataclass(frozen=True)
class Note:
    pk: str
    sk: str
    value: int = 0


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "dummy")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "dummy")
    settings = ClientSettings(region=os.environ.get("AWS_REGION", "us-east-1"), local=True)
    client = create_dynamodb_client(settings)

    builder = (
        SchemaBuilder(f"verse_example_{uuid.uuid4().hex[:12]}")
        .attributes(AttributeSpec.string("pk"), AttributeSpec.string("sk"))
        .keys(KeySpec.hash("pk"), KeySpec.range("sk"))
    )
    schema = builder.schema()
    builder.build(client)

    try:
        BatchBuilder().put(
            *(put_item(schema.table_name, Note(pk="A", sk=f"{i:03d}", value=i)) for i in range(60))
        ).run(client)

        expr = (
            ExpressionBuilder()
            .with_key_condition(KeyCondition("pk", "A", "sk", SortKeyCondition.begins_with("0")))
            .build()
        )
        cursor = None
        while True:
            page = query_page(
                client,
                query_condition(schema.table_name, expr),
                Note,
                ReadOptions(limit=25),
                cursor=cursor,
            )
            print("page:", [n.sk for n in page.items])
            if page.next_cursor is None:
                break
            cursor = page.next_cursor
    finally:
        delete_table(client, schema, ignore_missing=True)


if __name__ == "__main__":
    main()

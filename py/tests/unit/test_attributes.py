from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal

import pytest

from dynamodb_verse import ValidationError, marshal_item, unmarshal_item, unmarshal_items, verse_field
from dynamodb_verse.attributes import field_mappings, prepare_record, serialize


@dataclass(frozen=True)
class Account:
    id: str
    balance: int = 0
    ratio: float = 0.0
    nickname: str = verse_field(name="nick", omitempty=True, default="")
    scratch: str = verse_field(ignore=True, default="")
    tags: set[str] = verse_field(omitempty=True, default_factory=set)


@dataclass(frozen=True)
class Stamped:
    id: str
    stamp: str = ""

    def before_put(self) -> Stamped:
        return replace(self, stamp="stamped")


@dataclass
class Loaded:
    id: str
    loaded: bool = False

    def after_fetch(self) -> None:
        self.loaded = True


def test_marshal_item_honours_field_options() -> None:
    item = marshal_item(Account(id="a1", balance=10, ratio=1.5, scratch="nope"))

    assert item == {"id": {"S": "a1"}, "balance": {"N": "10"}, "ratio": {"N": "1.5"}}


def test_marshal_item_renames_non_empty_fields() -> None:
    item = marshal_item(Account(id="a1", nickname="bob", tags={"x"}))

    assert item["nick"] == {"S": "bob"}
    assert item["tags"] == {"SS": ["x"]}


def test_marshal_item_accepts_mappings() -> None:
    assert marshal_item({"id": "a1", "n": 2}) == {"id": {"S": "a1"}, "n": {"N": "2"}}


def test_marshal_item_rejects_unsupported_records() -> None:
    with pytest.raises(ValidationError):
        marshal_item(object())


def test_serialize_rejects_unsupported_values() -> None:
    with pytest.raises(ValidationError):
        serialize(object())


def test_unmarshal_item_coerces_numbers() -> None:
    item = {"id": {"S": "a1"}, "balance": {"N": "7"}, "ratio": {"N": "0.25"}, "nick": {"S": "bob"}}

    got = unmarshal_item(item, Account)

    assert got == Account(id="a1", balance=7, ratio=0.25, nickname="bob")
    assert isinstance(got.balance, int)


def test_unmarshal_item_into_dict() -> None:
    got = unmarshal_item({"id": {"S": "a1"}, "n": {"N": "3"}}, dict)

    assert got == {"id": "a1", "n": Decimal("3")}


def test_unmarshal_item_missing_required_field() -> None:
    with pytest.raises(ValidationError):
        unmarshal_item({"balance": {"N": "1"}}, Account)


def test_field_mappings_require_dataclass() -> None:
    with pytest.raises(ValidationError, match="dataclass"):
        field_mappings(int)


def test_hooks_run_around_marshalling() -> None:
    assert prepare_record(Stamped(id="s")).stamp == "stamped"
    assert prepare_record(Account(id="a")) == Account(id="a")

    got = unmarshal_items([{"id": {"S": "l1"}}, {"id": {"S": "l2"}}], Loaded)

    assert [g.loaded for g in got] == [True, True]

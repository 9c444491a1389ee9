from __future__ import annotations

import base64
import binascii
import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .attributes import AttributeValue, Item
from .errors import ValidationError


@dataclass(frozen=True)
class Page[T]:
    items: list[T]
    next_cursor: str | None


def _value_to_json(name: str, av: Mapping[str, Any]) -> dict[str, str]:
    if "S" in av:
        return {"t": "s", "v": str(av["S"])}
    if "N" in av:
        return {"t": "n", "v": str(av["N"])}
    if "BOOL" in av:
        return {"t": "b", "v": "true" if av["BOOL"] else "false"}
    if "B" in av:
        return {"t": "bin", "v": base64.b64encode(bytes(av["B"])).decode("ascii")}
    raise ValidationError(f"evaluated key attribute {name!r} has unsupported type: {sorted(av)}")


def _value_from_json(name: str, enc: Any) -> AttributeValue:
    if not isinstance(enc, dict):
        raise ValidationError(f"evaluated key attribute {name!r} is invalid")
    kind = enc.get("t")
    value = enc.get("v")
    if not isinstance(value, str):
        raise ValidationError(f"evaluated key attribute {name!r} has no value")
    if kind == "s":
        return {"S": value}
    if kind == "n":
        return {"N": value}
    if kind == "b":
        return {"BOOL": value == "true"}
    if kind == "bin":
        try:
            return {"B": base64.b64decode(value, validate=True)}
        except binascii.Error as err:
            raise ValidationError(f"evaluated key attribute {name!r} is not base64: {err}") from err
    raise ValidationError(f"evaluated key attribute {name!r} has unsupported type: {kind!r}")


def encode_evaluated_key(key: Mapping[str, Mapping[str, Any]] | None) -> str:
    if not key:
        return ""

    payload = {str(k): _value_to_json(str(k), key[k]) for k in sorted(key)}
    data = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def decode_evaluated_key(cursor: str) -> Item:
    raw = str(cursor or "").strip()
    if not raw:
        raise ValidationError("evaluated key is empty")

    padding = "=" * (-len(raw) % 4)
    try:
        data = base64.urlsafe_b64decode(raw + padding).decode("utf-8")
        parsed = json.loads(data)
    except (binascii.Error, UnicodeDecodeError, ValueError) as err:
        raise ValidationError(f"evaluated key is malformed: {err}") from err

    if not isinstance(parsed, dict):
        raise ValidationError("evaluated key must decode to an object")
    return {str(k): _value_from_json(str(k), parsed[k]) for k in sorted(parsed)}


def next_cursor(response: Mapping[str, Any]) -> str | None:
    last_key = response.get("LastEvaluatedKey")
    if not last_key:
        return None
    return encode_evaluated_key(last_key)


def start_key(value: str | Mapping[str, Any] | None) -> Item | None:
    if value is None:
        return None
    if isinstance(value, str):
        if not value:
            return None
        return decode_evaluated_key(value)
    return {str(k): dict(v) for k, v in value.items()}

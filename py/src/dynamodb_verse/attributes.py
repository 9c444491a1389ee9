from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from decimal import Decimal
from functools import cache
from types import UnionType
from typing import (
    Any,
    Protocol,
    Union,
    cast,
    get_args,
    get_origin,
    get_type_hints,
    runtime_checkable,
)

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer

from .errors import ValidationError

type AttributeValue = dict[str, Any]
type Item = dict[str, AttributeValue]

_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


@runtime_checkable
class BeforePut(Protocol):
    def before_put(self) -> Any: ...


@runtime_checkable
class AfterFetch(Protocol):
    def after_fetch(self) -> None: ...


@dataclass(frozen=True)
class FieldMapping:
    python_name: str
    attribute_name: str
    omitempty: bool


def verse_field(
    *,
    name: str | None = None,
    omitempty: bool = False,
    ignore: bool = False,
    default: Any = MISSING,
    default_factory: Any = MISSING,
) -> Any:
    if default is not MISSING and default_factory is not MISSING:
        raise ValueError("verse_field: cannot set both default and default_factory")

    verse: dict[str, Any] = {"omitempty": omitempty, "ignore": ignore}
    if name is not None:
        verse["name"] = name

    return field(default=default, default_factory=default_factory, metadata={"dynamodbav": verse})


@cache
def field_mappings(record_type: type) -> tuple[FieldMapping, ...]:
    if not is_dataclass(record_type):
        raise ValidationError(f"record type must be a dataclass: {record_type.__name__}")

    out: list[FieldMapping] = []
    for dc_field in fields(record_type):
        opts = cast(dict[str, Any], dc_field.metadata.get("dynamodbav", {}))
        if opts.get("ignore", False):
            continue
        out.append(
            FieldMapping(
                python_name=dc_field.name,
                attribute_name=cast(str, opts.get("name", dc_field.name)),
                omitempty=bool(opts.get("omitempty", False)),
            )
        )
    return tuple(out)


@cache
def _type_hints(record_type: type) -> dict[str, Any]:
    try:
        return get_type_hints(record_type)
    except Exception:
        return dict(getattr(record_type, "__annotations__", {}))


@cache
def before_put_hook(record_type: type) -> Callable[[Any], Any] | None:
    if issubclass(record_type, BeforePut):
        return cast(Callable[[Any], Any], record_type.before_put)
    return None


@cache
def after_fetch_hook(record_type: type) -> Callable[[Any], None] | None:
    if issubclass(record_type, AfterFetch):
        return cast(Callable[[Any], None], record_type.after_fetch)
    return None


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, bytearray)) and len(value) == 0:
        return True
    if isinstance(value, (list, dict, set, tuple)) and len(value) == 0:
        return True
    return False


def _to_native(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, Mapping):
        return {str(k): _to_native(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_native(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return {_to_native(v) for v in value}
    return value


def serialize(value: Any) -> AttributeValue:
    try:
        return cast(AttributeValue, _serializer.serialize(_to_native(value)))
    except TypeError as err:
        raise ValidationError(str(err)) from err


def deserialize(av: Mapping[str, Any]) -> Any:
    try:
        return _deserializer.deserialize(dict(av))
    except TypeError as err:
        raise ValidationError(str(err)) from err


def serialize_values(values: Mapping[str, Any]) -> dict[str, AttributeValue]:
    return {k: serialize(v) for k, v in values.items()}


def marshal_item(record: Any) -> Item:
    if isinstance(record, Mapping):
        return {str(k): serialize(v) for k, v in record.items()}

    if not is_dataclass(record) or isinstance(record, type):
        raise ValidationError(f"cannot marshal record of type {type(record).__name__}")

    out: Item = {}
    for mapping in field_mappings(type(record)):
        value = getattr(record, mapping.python_name)
        if mapping.omitempty and _is_empty(value):
            continue
        out[mapping.attribute_name] = serialize(value)
    return out


def _coerce_value(value: Any, annotation: Any) -> Any:
    if value is None:
        return None

    if get_origin(annotation) in {Union, UnionType}:
        non_none = [a for a in get_args(annotation) if a is not type(None)]  # noqa: E721
        if len(non_none) == 1:
            annotation = non_none[0]

    if annotation is int and isinstance(value, Decimal):
        return int(value)
    if annotation is float and isinstance(value, Decimal):
        return float(value)

    origin = get_origin(annotation)
    if origin is set and isinstance(value, set):
        (elem_type,) = get_args(annotation) or (Any,)
        return {_coerce_value(v, elem_type) for v in value}
    if origin is list and isinstance(value, list):
        (elem_type,) = get_args(annotation) or (Any,)
        return [_coerce_value(v, elem_type) for v in value]

    return value


def unmarshal_item[T](item: Mapping[str, Any], record_type: type[T]) -> T:
    if record_type is dict:
        return cast(T, {k: deserialize(v) for k, v in item.items()})

    annotations = _type_hints(record_type)
    kwargs: dict[str, Any] = {}
    for mapping in field_mappings(record_type):
        if mapping.attribute_name not in item:
            continue
        raw = deserialize(item[mapping.attribute_name])
        kwargs[mapping.python_name] = _coerce_value(raw, annotations.get(mapping.python_name, Any))

    try:
        record = record_type(**kwargs)
    except TypeError as err:
        raise ValidationError(str(err)) from err

    hook = after_fetch_hook(record_type)
    if hook is not None:
        hook(record)
    return record


def unmarshal_items[T](items: Sequence[Mapping[str, Any]], record_type: type[T]) -> list[T]:
    return [unmarshal_item(item, record_type) for item in items]


def prepare_record(record: Any) -> Any:
    hook = before_put_hook(type(record))
    if hook is None:
        return record
    return hook(record)

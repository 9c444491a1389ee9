from __future__ import annotations

from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Literal

from .attributes import AttributeValue, serialize
from .errors import ValidationError

type LogicalOp = Literal["AND", "OR"]


@dataclass(frozen=True)
class Condition:
    name: str
    op: str
    values: tuple[Any, ...] = ()

    @staticmethod
    def eq(name: str, value: Any) -> Condition:
        return Condition(name=name, op="=", values=(value,))

    @staticmethod
    def ne(name: str, value: Any) -> Condition:
        return Condition(name=name, op="!=", values=(value,))

    @staticmethod
    def lt(name: str, value: Any) -> Condition:
        return Condition(name=name, op="<", values=(value,))

    @staticmethod
    def lte(name: str, value: Any) -> Condition:
        return Condition(name=name, op="<=", values=(value,))

    @staticmethod
    def gt(name: str, value: Any) -> Condition:
        return Condition(name=name, op=">", values=(value,))

    @staticmethod
    def gte(name: str, value: Any) -> Condition:
        return Condition(name=name, op=">=", values=(value,))

    @staticmethod
    def between(name: str, low: Any, high: Any) -> Condition:
        return Condition(name=name, op="between", values=(low, high))

    @staticmethod
    def begins_with(name: str, prefix: Any) -> Condition:
        return Condition(name=name, op="begins_with", values=(prefix,))

    @staticmethod
    def contains(name: str, value: Any) -> Condition:
        return Condition(name=name, op="contains", values=(value,))

    @staticmethod
    def in_(name: str, values: Sequence[Any]) -> Condition:
        return Condition(name=name, op="in", values=(list(values),))

    @staticmethod
    def exists(name: str) -> Condition:
        return Condition(name=name, op="exists")

    @staticmethod
    def not_exists(name: str) -> Condition:
        return Condition(name=name, op="not_exists")


@dataclass(frozen=True)
class ConditionGroup:
    op: LogicalOp
    conditions: tuple[ConditionExpression, ...]

    @staticmethod
    def and_(*conditions: ConditionExpression) -> ConditionGroup:
        return ConditionGroup(op="AND", conditions=tuple(conditions))

    @staticmethod
    def or_(*conditions: ConditionExpression) -> ConditionGroup:
        return ConditionGroup(op="OR", conditions=tuple(conditions))


type ConditionExpression = Condition | ConditionGroup


@dataclass(frozen=True)
class SortKeyCondition:
    op: str
    values: tuple[Any, ...]

    @staticmethod
    def eq(value: Any) -> SortKeyCondition:
        return SortKeyCondition(op="=", values=(value,))

    @staticmethod
    def lt(value: Any) -> SortKeyCondition:
        return SortKeyCondition(op="<", values=(value,))

    @staticmethod
    def lte(value: Any) -> SortKeyCondition:
        return SortKeyCondition(op="<=", values=(value,))

    @staticmethod
    def gt(value: Any) -> SortKeyCondition:
        return SortKeyCondition(op=">", values=(value,))

    @staticmethod
    def gte(value: Any) -> SortKeyCondition:
        return SortKeyCondition(op=">=", values=(value,))

    @staticmethod
    def between(low: Any, high: Any) -> SortKeyCondition:
        return SortKeyCondition(op="between", values=(low, high))

    @staticmethod
    def begins_with(prefix: Any) -> SortKeyCondition:
        return SortKeyCondition(op="begins_with", values=(prefix,))


@dataclass(frozen=True)
class KeyCondition:
    partition_name: str
    partition_value: Any
    sort_name: str | None = None
    sort: SortKeyCondition | None = None


class UpdateBuilder:
    def __init__(self) -> None:
        self._updates: list[tuple[str, tuple[Any, ...]]] = []

    def __len__(self) -> int:
        return len(self._updates)

    def set(self, name: str, value: Any) -> UpdateBuilder:
        self._updates.append(("SET", (name, value)))
        return self

    def set_if_not_exists(self, name: str, default_value: Any) -> UpdateBuilder:
        self._updates.append(("SET_IF_NOT_EXISTS", (name, default_value)))
        return self

    def add(self, name: str, value: Any) -> UpdateBuilder:
        self._updates.append(("ADD", (name, value)))
        return self

    def increment(self, name: str) -> UpdateBuilder:
        return self.add(name, 1)

    def decrement(self, name: str) -> UpdateBuilder:
        return self.add(name, -1)

    def remove(self, name: str) -> UpdateBuilder:
        self._updates.append(("REMOVE", (name,)))
        return self

    def delete(self, name: str, value: Any) -> UpdateBuilder:
        self._updates.append(("DELETE", (name, value)))
        return self

    def append_to_list(self, name: str, values: list[Any]) -> UpdateBuilder:
        self._updates.append(("APPEND_LIST", (name, list(values))))
        return self

    def prepend_to_list(self, name: str, values: list[Any]) -> UpdateBuilder:
        self._updates.append(("PREPEND_LIST", (name, list(values))))
        return self

    def remove_from_list_at(self, name: str, index: int) -> UpdateBuilder:
        self._updates.append(("REMOVE_LIST_AT", (name, index)))
        return self

    def set_list_element(self, name: str, index: int, value: Any) -> UpdateBuilder:
        self._updates.append(("SET_LIST_ELEMENT", (name, index, value)))
        return self

    def _build(self, refs: _Placeholders) -> str:
        set_parts: list[str] = []
        remove_parts: list[str] = []
        add_parts: list[str] = []
        delete_parts: list[str] = []

        def normalize_set(value: Any) -> set[Any]:
            if isinstance(value, (set, frozenset)):
                return set(value)
            if isinstance(value, (list, tuple)):
                return set(value)
            return {value}

        def list_index(index: Any) -> int:
            if not isinstance(index, int) or isinstance(index, bool) or index < 0:
                raise ValidationError("list index must be a non-negative integer")
            return index

        for kind, args in self._updates:
            if kind == "SET":
                name, value = args
                set_parts.append(f"{refs.name(name)} = {refs.value(value)}")
                continue

            if kind == "SET_IF_NOT_EXISTS":
                name, default_value = args
                ref = refs.name(name)
                set_parts.append(f"{ref} = if_not_exists({ref}, {refs.value(default_value)})")
                continue

            if kind == "REMOVE":
                (name,) = args
                remove_parts.append(refs.name(name))
                continue

            if kind == "ADD":
                name, value = args
                if isinstance(value, (set, frozenset, list, tuple)):
                    add_parts.append(f"{refs.name(name)} {refs.value(normalize_set(value))}")
                else:
                    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
                        raise ValidationError("ADD requires a numeric or set value")
                    add_parts.append(f"{refs.name(name)} {refs.value(value)}")
                continue

            if kind == "DELETE":
                name, value = args
                delete_parts.append(f"{refs.name(name)} {refs.value(normalize_set(value))}")
                continue

            if kind in {"APPEND_LIST", "PREPEND_LIST"}:
                name, values_list = args
                ref = refs.name(name)
                vref = refs.value(values_list)
                if kind == "APPEND_LIST":
                    set_parts.append(f"{ref} = list_append({ref}, {vref})")
                else:
                    set_parts.append(f"{ref} = list_append({vref}, {ref})")
                continue

            if kind == "REMOVE_LIST_AT":
                name, index = args
                remove_parts.append(f"{refs.name(name)}[{list_index(index)}]")
                continue

            if kind == "SET_LIST_ELEMENT":
                name, index, value = args
                set_parts.append(f"{refs.name(name)}[{list_index(index)}] = {refs.value(value)}")
                continue

            raise ValidationError(f"unsupported update operation: {kind}")

        expr_parts: list[str] = []
        if set_parts:
            expr_parts.append("SET " + ", ".join(set_parts))
        if remove_parts:
            expr_parts.append("REMOVE " + ", ".join(remove_parts))
        if add_parts:
            expr_parts.append("ADD " + ", ".join(add_parts))
        if delete_parts:
            expr_parts.append("DELETE " + ", ".join(delete_parts))
        if not expr_parts:
            raise ValidationError("no updates provided")
        return " ".join(expr_parts)


_REQUEST_KEYS = {
    "key_condition": "KeyConditionExpression",
    "condition": "ConditionExpression",
    "update": "UpdateExpression",
    "filter": "FilterExpression",
    "projection": "ProjectionExpression",
}


@dataclass(frozen=True)
class Expression:
    condition: str | None = None
    update: str | None = None
    filter: str | None = None
    key_condition: str | None = None
    projection: str | None = None
    names: Mapping[str, str] = field(default_factory=dict)
    values: Mapping[str, AttributeValue] = field(default_factory=dict)

    def request_fields(self, allowed: Collection[str]) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for part, key in _REQUEST_KEYS.items():
            value = getattr(self, part)
            if value is None:
                continue
            if part not in allowed:
                raise ValidationError(f"{part} expression is not supported for this request")
            out[key] = value
        if self.names:
            out["ExpressionAttributeNames"] = dict(self.names)
        if self.values:
            out["ExpressionAttributeValues"] = dict(self.values)
        return out


EMPTY_EXPRESSION = Expression()


class _Placeholders:
    def __init__(self) -> None:
        self.names: dict[str, str] = {}
        self.values: dict[str, AttributeValue] = {}
        self._name_refs: dict[str, str] = {}

    def name(self, path: str) -> str:
        path = str(path or "").strip()
        if not path:
            raise ValidationError("attribute name is required")

        refs: list[str] = []
        for part in path.split("."):
            if not part:
                raise ValidationError(f"invalid attribute path: {path}")
            ref = self._name_refs.get(part)
            if ref is None:
                ref = f"#n{len(self._name_refs)}"
                self._name_refs[part] = ref
                self.names[ref] = part
            refs.append(ref)
        return ".".join(refs)

    def value(self, value: Any) -> str:
        ref = f":v{len(self.values)}"
        self.values[ref] = serialize(value)
        return ref


def _build_condition_term(cond: Condition, refs: _Placeholders) -> str:
    op = str(cond.op or "").strip().upper()
    name = refs.name(cond.name)
    vals = cond.values

    def single() -> str:
        if len(vals) != 1:
            raise ValidationError(f"{cond.op} requires one value")
        return refs.value(vals[0])

    if op in {"=", "EQ"}:
        return f"{name} = {single()}"
    if op in {"!=", "<>", "NE"}:
        return f"{name} <> {single()}"
    if op in {"<", "LT"}:
        return f"{name} < {single()}"
    if op in {"<=", "LE"}:
        return f"{name} <= {single()}"
    if op in {">", "GT"}:
        return f"{name} > {single()}"
    if op in {">=", "GE"}:
        return f"{name} >= {single()}"
    if op == "BETWEEN":
        if len(vals) != 2:
            raise ValidationError("BETWEEN requires two values")
        left = refs.value(vals[0])
        right = refs.value(vals[1])
        return f"{name} BETWEEN {left} AND {right}"
    if op == "IN":
        if len(vals) != 1:
            raise ValidationError("IN requires a single sequence")
        in_values = vals[0]
        if not isinstance(in_values, Sequence) or isinstance(in_values, (str, bytes, bytearray)):
            raise ValidationError("IN requires a sequence of values")
        if not in_values:
            raise ValidationError("IN requires at least one value")
        if len(in_values) > 100:
            raise ValidationError("IN supports maximum 100 values")
        return f"{name} IN (" + ", ".join(refs.value(v) for v in in_values) + ")"
    if op == "BEGINS_WITH":
        return f"begins_with({name}, {single()})"
    if op == "CONTAINS":
        return f"contains({name}, {single()})"
    if op in {"EXISTS", "ATTRIBUTE_EXISTS"}:
        if vals:
            raise ValidationError("EXISTS does not take a value")
        return f"attribute_exists({name})"
    if op in {"NOT_EXISTS", "ATTRIBUTE_NOT_EXISTS"}:
        if vals:
            raise ValidationError("NOT_EXISTS does not take a value")
        return f"attribute_not_exists({name})"

    raise ValidationError(f"unsupported condition operator: {cond.op}")


def _build_condition(expr: ConditionExpression, refs: _Placeholders) -> str:
    if isinstance(expr, ConditionGroup):
        parts = [_build_condition(c, refs) for c in expr.conditions]
        parts = [p for p in parts if p]
        if not parts:
            return ""
        if len(parts) == 1:
            return parts[0]
        return "(" + f" {expr.op} ".join(parts) + ")"

    if not isinstance(expr, Condition):
        raise ValidationError("invalid condition expression")
    return _build_condition_term(expr, refs)


def _build_key_condition(cond: KeyCondition, refs: _Placeholders) -> str:
    if cond.partition_value is None:
        raise ValidationError("partition value is required")

    out = f"{refs.name(cond.partition_name)} = {refs.value(cond.partition_value)}"
    if cond.sort is None:
        return out
    if not cond.sort_name:
        raise ValidationError("sort key condition requires sort_name")

    sk = refs.name(cond.sort_name)
    op = cond.sort.op
    vals = cond.sort.values
    if op in {"=", "<", "<=", ">", ">="}:
        if len(vals) != 1:
            raise ValidationError("invalid sort key condition")
        return f"{out} AND {sk} {op} {refs.value(vals[0])}"
    if op == "between":
        if len(vals) != 2:
            raise ValidationError("invalid sort key condition")
        return f"{out} AND {sk} BETWEEN {refs.value(vals[0])} AND {refs.value(vals[1])}"
    if op == "begins_with":
        if len(vals) != 1:
            raise ValidationError("invalid sort key condition")
        return f"{out} AND begins_with({sk}, {refs.value(vals[0])})"
    raise ValidationError(f"unsupported sort key operator: {op}")


class ExpressionBuilder:
    def __init__(self) -> None:
        self._condition: ConditionExpression | None = None
        self._update: UpdateBuilder | None = None
        self._filter: ConditionExpression | None = None
        self._key_condition: KeyCondition | None = None
        self._projection: tuple[str, ...] = ()

    def with_condition(self, condition: ConditionExpression) -> ExpressionBuilder:
        self._condition = condition
        return self

    def with_update(self, update: UpdateBuilder) -> ExpressionBuilder:
        self._update = update
        return self

    def with_filter(self, condition: ConditionExpression) -> ExpressionBuilder:
        self._filter = condition
        return self

    def with_key_condition(self, condition: KeyCondition) -> ExpressionBuilder:
        self._key_condition = condition
        return self

    def with_projection(self, *names: str) -> ExpressionBuilder:
        self._projection = tuple(names)
        return self

    def build(self) -> Expression:
        refs = _Placeholders()

        key_condition = None
        if self._key_condition is not None:
            key_condition = _build_key_condition(self._key_condition, refs)

        update = None
        if self._update is not None:
            update = self._update._build(refs)

        condition = None
        if self._condition is not None:
            condition = _build_condition(self._condition, refs) or None

        filter_expr = None
        if self._filter is not None:
            filter_expr = _build_condition(self._filter, refs) or None

        projection = None
        if self._projection:
            projection = ", ".join(refs.name(n) for n in self._projection)

        return Expression(
            condition=condition,
            update=update,
            filter=filter_expr,
            key_condition=key_condition,
            projection=projection,
            names=refs.names,
            values=refs.values,
        )


def condition(cond: ConditionExpression) -> Expression:
    return ExpressionBuilder().with_condition(cond).build()


def projection(*names: str) -> Expression:
    return ExpressionBuilder().with_projection(*names).build()

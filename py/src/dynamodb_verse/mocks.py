from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from functools import partial
from typing import Any

OPERATIONS = frozenset(
    {
        "get_item",
        "put_item",
        "update_item",
        "delete_item",
        "query",
        "scan",
        "batch_get_item",
        "batch_write_item",
        "transact_get_items",
        "transact_write_items",
        "create_table",
        "update_table",
        "delete_table",
        "describe_table",
        "describe_time_to_live",
        "update_time_to_live",
    }
)


class _AnySentinel:
    def __repr__(self) -> str:  # pragma: no cover
        return "ANY"


ANY: Any = _AnySentinel()

type Matcher = Mapping[str, Any] | Callable[[Mapping[str, Any]], None]
type Responder = Callable[[Mapping[str, Any]], Mapping[str, Any]]


def _mismatches(expected: Any, actual: Any, path: str) -> Iterator[str]:
    if expected is ANY:
        return
    if isinstance(expected, dict):
        if not isinstance(actual, dict):
            yield f"{path}: expected dict, got {type(actual).__name__}"
            return
        for name, want in expected.items():
            if name in actual:
                yield from _mismatches(want, actual[name], f"{path}.{name}")
            else:
                yield f"{path}: missing key {name!r}"
    elif isinstance(expected, list):
        if not isinstance(actual, list):
            yield f"{path}: expected list, got {type(actual).__name__}"
        elif len(expected) != len(actual):
            yield f"{path}: expected {len(expected)} items, got {len(actual)}"
        else:
            for i, want in enumerate(expected):
                yield from _mismatches(want, actual[i], f"{path}[{i}]")
    elif expected != actual:
        yield f"{path}: expected {expected!r}, got {actual!r}"


def _unprocessed_items(req: Mapping[str, Any]) -> Mapping[str, Any]:
    return {"UnprocessedItems": req.get("RequestItems", {})}


def _keys_in_slices(per_call: int) -> Responder:
    def respond(req: Mapping[str, Any]) -> Mapping[str, Any]:
        responses: dict[str, list[Any]] = {}
        unprocessed: dict[str, Any] = {}
        for table, entry in req.get("RequestItems", {}).items():
            keys = list(entry.get("Keys", []))
            responses[table] = [dict(k) for k in keys[:per_call]]
            if keys[per_call:]:
                unprocessed[table] = {**entry, "Keys": keys[per_call:]}
        return {"Responses": responses, "UnprocessedKeys": unprocessed}

    return respond


@dataclass(frozen=True)
class ExpectedCall:
    method: str
    expected: Matcher | None = None
    response: Mapping[str, Any] | Responder | None = None
    error: Exception | None = None

    def check(self, req: Mapping[str, Any]) -> None:
        if callable(self.expected):
            self.expected(req)
        elif self.expected is not None:
            problems = list(_mismatches(dict(self.expected), dict(req), self.method))
            if problems:
                raise AssertionError("; ".join(problems))

    def answer(self, req: Mapping[str, Any]) -> dict[str, Any]:
        if self.error is not None:
            raise self.error
        if callable(self.response):
            return dict(self.response(req))
        return dict(self.response or {})


class FakeDynamoDBClient:
    """Scripted stand-in for a boto3 DynamoDB client.

    Every name in ``OPERATIONS`` is callable with keyword arguments, like the
    real client. Calls are matched in order against the queued expectations;
    dict matchers are partial (extra request keys are allowed) and ``ANY``
    matches anything. A response may be a callable building the reply from
    the request, which is how the batch helpers script unprocessed work.
    """

    def __init__(self) -> None:
        self._queue: deque[ExpectedCall] = deque()
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def __getattr__(self, name: str) -> Callable[..., dict[str, Any]]:
        if name not in OPERATIONS:
            raise AttributeError(name)
        return partial(self._handle, name)

    def expect(
        self,
        method: str,
        expected: Matcher | None = None,
        *,
        response: Mapping[str, Any] | Responder | None = None,
        error: Exception | None = None,
    ) -> None:
        if method not in OPERATIONS:
            raise ValueError(f"unknown DynamoDB operation: {method}")
        self._queue.append(ExpectedCall(method=method, expected=expected, response=response, error=error))

    def expect_batch_write(
        self,
        *,
        unprocessed_rounds: int = 0,
        settle: bool = True,
        expected: Matcher | None = None,
    ) -> None:
        """Queue batch writes that hand every request back ``unprocessed_rounds`` times.

        With ``settle`` a final submission accepting everything is queued too.
        """
        for _ in range(unprocessed_rounds):
            self.expect("batch_write_item", expected, response=_unprocessed_items)
        if settle:
            self.expect("batch_write_item", expected, response={"UnprocessedItems": {}})

    def expect_batch_get(self, calls: int, *, keys_per_call: int = 1) -> None:
        """Queue ``calls`` batch gets, each returning the first ``keys_per_call`` keys
        of every table as items and leaving the rest in ``UnprocessedKeys``."""
        for _ in range(calls):
            self.expect("batch_get_item", response=_keys_in_slices(keys_per_call))

    def assert_no_pending(self) -> None:
        if self._queue:
            raise AssertionError(f"pending expected calls: {list(self._queue)!r}")

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]

    def requests(self, method: str) -> list[dict[str, Any]]:
        return [req for name, req in self.calls if name == method]

    def _handle(self, method: str, **req: Any) -> dict[str, Any]:
        self.calls.append((method, dict(req)))
        if not self._queue:
            raise AssertionError(f"unexpected call: {method}")

        call = self._queue.popleft()
        if call.method != method:
            raise AssertionError(f"expected {call.method}, got {method}")
        call.check(req)
        return call.answer(req)

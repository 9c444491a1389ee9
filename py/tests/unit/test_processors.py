from __future__ import annotations

import threading

import pytest

from dynamodb_verse import (
    AwsError,
    BatchBuilder,
    DispatchMetric,
    MultiProcessor,
    SingleProcessor,
    TransactionBuilder,
    ValidationError,
    delete_item,
    key,
    new_processor,
    put_item,
    set_value,
    update_item,
)
from dynamodb_verse.processors import MAX_PROCESSOR_SIZE
from dynamodb_verse.testkit import client_error


class _ThreadSafeClient:
    def __init__(self, *, fail_table: str | None = None) -> None:
        self._lock = threading.Lock()
        self._fail_table = fail_table
        self.batches: list[dict] = []
        self.transactions: list[dict] = []
        self.rejected: list[dict] = []

    def batch_write_item(self, *, RequestItems):  # noqa: N803
        if self._fail_table in RequestItems:
            with self._lock:
                self.rejected.append(RequestItems)
            raise client_error("InternalServerError", "boom", "BatchWriteItem")
        with self._lock:
            self.batches.append(RequestItems)
        return {"UnprocessedItems": {}}

    def transact_write_items(self, *, TransactItems):  # noqa: N803
        with self._lock:
            self.transactions.append({"TransactItems": TransactItems})
        return {}


def _ids(requests: list[dict]) -> list[str]:
    return [r["PutRequest"]["Item"]["id"]["S"] for r in requests]


def test_single_processor_delegates_to_one_builder() -> None:
    client = _ThreadSafeClient()
    processor = new_processor()

    processor.put(put_item("t", {"id": "a"})).delete(delete_item(key("t", {"id": "b"})))
    processor.run(client)

    assert isinstance(processor, SingleProcessor)
    assert len(client.batches) == 1
    assert len(client.batches[0]["t"]) == 2


def test_multi_processor_round_robins_calls() -> None:
    processor = new_processor(3)
    for i in range(9):
        processor.put(put_item("t", {"id": str(i)}))

    assert isinstance(processor, MultiProcessor)
    assert [len(b) for b in processor.builders] == [3, 3, 3]  # type: ignore[arg-type]


def test_multi_processor_runs_every_builder() -> None:
    client = _ThreadSafeClient()
    processor = new_processor(4)
    for i in range(40):
        processor.put(put_item("t", {"id": str(i)}))

    processor.run(client)

    assert sum(len(b["t"]) for b in client.batches) == 40
    assert len(client.batches) == 4


def test_processor_size_is_capped() -> None:
    processor = new_processor(MAX_PROCESSOR_SIZE + 5)

    assert len(processor.builders) == MAX_PROCESSOR_SIZE


def test_multi_processor_requires_two_builders() -> None:
    with pytest.raises(ValidationError):
        MultiProcessor([BatchBuilder()])


def test_first_failure_cancels_siblings_and_is_raised() -> None:
    client = _ThreadSafeClient(fail_table="bad")
    cancel = threading.Event()
    processor = new_processor(3)
    for i in range(9):
        processor.put(put_item("bad" if i % 3 == 1 else "good", {"id": str(i)}))

    assert [len(b) for b in processor.builders] == [3, 3, 3]  # type: ignore[arg-type]
    with pytest.raises(AwsError, match="boom"):
        processor.run(client, cancel=cancel)

    assert cancel.is_set()
    assert [_ids(req["bad"]) for req in client.rejected] == [["1", "4", "7"]]
    assert all(_ids(batch["good"]) in (["0", "3", "6"], ["2", "5", "8"]) for batch in client.batches)


def test_update_requires_capable_builder() -> None:
    with pytest.raises(ValidationError, match="does not support update"):
        new_processor().update(update_item(key("t", {"id": "a"}), set_value("n", 1)))

    client = _ThreadSafeClient()
    processor = new_processor(2, factory=TransactionBuilder)
    processor.update(update_item(key("t", {"id": "a"}), set_value("n", 1)))
    processor.put(put_item("t", {"id": "b"}))
    processor.run(client)

    assert len(client.transactions) == 2


def test_monitor_is_shared_by_all_builders() -> None:
    metrics: list[DispatchMetric] = []
    lock = threading.Lock()

    def record(metric: DispatchMetric) -> None:
        with lock:
            metrics.append(metric)

    processor = new_processor(2, monitor=record)
    processor.put(put_item("t", {"id": "a"}))
    processor.put(put_item("t", {"id": "b"}))
    processor.run(_ThreadSafeClient())

    assert sorted(m.size for m in metrics) == [1, 1]

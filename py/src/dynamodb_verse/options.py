from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

from .errors import ValidationError

type ReturnConsumedCapacity = Literal["INDEXES", "TOTAL", "NONE"]
type ReturnItemCollectionMetrics = Literal["SIZE", "NONE"]
type ReturnValues = Literal["NONE", "ALL_OLD", "UPDATED_OLD", "ALL_NEW", "UPDATED_NEW"]
type ReturnValuesOnConditionCheckFailure = Literal["ALL_OLD", "NONE"]
type Select = Literal["ALL_ATTRIBUTES", "ALL_PROJECTED_ATTRIBUTES", "SPECIFIC_ATTRIBUTES", "COUNT"]


@dataclass(frozen=True)
class BatchOptions:
    max_retry: int = 3
    interval: float = 1.0
    max_interval: float = 60.0
    return_consumed_capacity: ReturnConsumedCapacity | None = None

    def __post_init__(self) -> None:
        if self.max_retry < 1:
            raise ValidationError("max_retry must be >= 1")
        if self.interval < 0:
            raise ValidationError("interval must be >= 0")
        if self.max_interval < self.interval:
            raise ValidationError("max_interval must be >= interval")

    def backoff_seconds(self, attempt: int) -> float:
        seconds = self.interval * (2.0 ** (attempt - 1))
        if seconds > self.max_interval:
            return self.max_interval
        return seconds

    def shape(self, req: dict[str, Any]) -> dict[str, Any]:
        if self.return_consumed_capacity is not None:
            req["ReturnConsumedCapacity"] = self.return_consumed_capacity
        return req


DEFAULT_BATCH_OPTIONS = BatchOptions()


@dataclass(frozen=True)
class ReadOptions:
    consistent_read: bool | None = None
    return_consumed_capacity: ReturnConsumedCapacity | None = None
    limit: int | None = None
    scan_index_forward: bool | None = None
    select: Select | None = None
    segment: int | None = None
    total_segments: int | None = None

    def __post_init__(self) -> None:
        if self.limit is not None and self.limit <= 0:
            raise ValidationError("limit must be > 0")
        if (self.segment is None) != (self.total_segments is None):
            raise ValidationError("segment and total_segments must be set together")
        if self.total_segments is not None:
            if self.total_segments <= 0:
                raise ValidationError("total_segments must be > 0")
            if self.segment is None or not 0 <= self.segment < self.total_segments:
                raise ValidationError("segment must be in [0, total_segments)")

    def _common(self, req: dict[str, Any]) -> dict[str, Any]:
        if self.consistent_read is not None:
            req["ConsistentRead"] = self.consistent_read
        if self.return_consumed_capacity is not None:
            req["ReturnConsumedCapacity"] = self.return_consumed_capacity
        return req

    def shape_get_item(self, req: dict[str, Any]) -> dict[str, Any]:
        return self._common(req)

    def shape_query(self, req: dict[str, Any]) -> dict[str, Any]:
        self._common(req)
        if self.limit is not None:
            req["Limit"] = self.limit
        if self.scan_index_forward is not None:
            req["ScanIndexForward"] = self.scan_index_forward
        if self.select is not None:
            req["Select"] = self.select
        return req

    def shape_scan(self, req: dict[str, Any]) -> dict[str, Any]:
        self._common(req)
        if self.limit is not None:
            req["Limit"] = self.limit
        if self.select is not None:
            req["Select"] = self.select
        if self.total_segments is not None:
            req["Segment"] = self.segment
            req["TotalSegments"] = self.total_segments
        return req


DEFAULT_READ_OPTIONS = ReadOptions()


@dataclass(frozen=True)
class WriteOptions:
    return_values: ReturnValues | None = None
    return_consumed_capacity: ReturnConsumedCapacity | None = None
    return_item_collection_metrics: ReturnItemCollectionMetrics | None = None
    return_values_on_condition_check_failure: ReturnValuesOnConditionCheckFailure | None = None

    def _common(self, req: dict[str, Any]) -> dict[str, Any]:
        if self.return_consumed_capacity is not None:
            req["ReturnConsumedCapacity"] = self.return_consumed_capacity
        if self.return_item_collection_metrics is not None:
            req["ReturnItemCollectionMetrics"] = self.return_item_collection_metrics
        if self.return_values_on_condition_check_failure is not None:
            req["ReturnValuesOnConditionCheckFailure"] = self.return_values_on_condition_check_failure
        return req

    def shape_put(self, req: dict[str, Any]) -> dict[str, Any]:
        if self.return_values not in {None, "NONE", "ALL_OLD"}:
            raise ValidationError(f"put does not support return_values={self.return_values}")
        if self.return_values is not None:
            req["ReturnValues"] = self.return_values
        return self._common(req)

    def shape_update(self, req: dict[str, Any]) -> dict[str, Any]:
        if self.return_values is not None:
            req["ReturnValues"] = self.return_values
        return self._common(req)

    def shape_delete(self, req: dict[str, Any]) -> dict[str, Any]:
        if self.return_values not in {None, "NONE", "ALL_OLD"}:
            raise ValidationError(f"delete does not support return_values={self.return_values}")
        if self.return_values is not None:
            req["ReturnValues"] = self.return_values
        return self._common(req)

    def shape_transact_item(self, req: dict[str, Any]) -> dict[str, Any]:
        if self.return_values_on_condition_check_failure is not None:
            req["ReturnValuesOnConditionCheckFailure"] = self.return_values_on_condition_check_failure
        return req


DEFAULT_WRITE_OPTIONS = WriteOptions()


@dataclass(frozen=True)
class TransactionOptions:
    client_request_token: str | None = None
    return_consumed_capacity: ReturnConsumedCapacity | None = None
    return_item_collection_metrics: ReturnItemCollectionMetrics | None = None

    def shape_transact_write(self, req: dict[str, Any]) -> dict[str, Any]:
        if self.client_request_token:
            req["ClientRequestToken"] = self.client_request_token
        if self.return_consumed_capacity is not None:
            req["ReturnConsumedCapacity"] = self.return_consumed_capacity
        if self.return_item_collection_metrics is not None:
            req["ReturnItemCollectionMetrics"] = self.return_item_collection_metrics
        return req

    def shape_transact_get(self, req: dict[str, Any]) -> dict[str, Any]:
        if self.return_consumed_capacity is not None:
            req["ReturnConsumedCapacity"] = self.return_consumed_capacity
        return req


DEFAULT_TRANSACTION_OPTIONS = TransactionOptions()

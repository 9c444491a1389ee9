from __future__ import annotations


class VerseError(Exception):
    pass


class ValidationError(VerseError):
    pass


class OversizedRequestError(ValidationError):
    def __init__(self, *, operation: str, size: int, limit: int) -> None:
        super().__init__(f"{operation}: request size exceeds {limit} items (got {size})")
        self.operation = operation
        self.size = size
        self.limit = limit


class ConstructionError(VerseError):
    pass


class ConditionFailedError(VerseError):
    pass


class NotFoundError(VerseError):
    pass


class ItemNotFoundError(NotFoundError):
    def __init__(self, table_name: str) -> None:
        super().__init__(f"requested resource not found: {table_name}: record not found")
        self.table_name = table_name


class BatchRetryExceededError(VerseError):
    def __init__(self, *, operation: str, table_names: tuple[str, ...], unprocessed_count: int) -> None:
        tables = ",".join(table_names)
        super().__init__(
            f"{operation}: max retry exceeded for {tables} (unprocessed={unprocessed_count})"
        )
        self.operation = operation
        self.table_names = table_names
        self.unprocessed_count = unprocessed_count


class TransactionCanceledError(VerseError):
    def __init__(self, *, message: str, reason_codes: tuple[str, ...]) -> None:
        super().__init__(message)
        self.reason_codes = reason_codes


class TransactionNotBeganError(VerseError):
    def __init__(self) -> None:
        super().__init__("transaction not began")


class OperationCancelledError(VerseError):
    pass


class TableAlreadyExistsError(VerseError):
    def __init__(self, table_name: str) -> None:
        super().__init__(f"table already exists: {table_name}")
        self.table_name = table_name


class AwsError(VerseError):
    def __init__(self, *, code: str, message: str, operation: str = "") -> None:
        prefix = f"{operation}: " if operation else ""
        super().__init__(f"{prefix}{code}: {message}")
        self.code = code
        self.message = message
        self.operation = operation

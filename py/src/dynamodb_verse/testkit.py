from __future__ import annotations

from typing import Any

from botocore.exceptions import ClientError

from .mocks import ANY, FakeDynamoDBClient


def no_sleep(_: float) -> None:
    return None


def client_error(code: str, message: str = "", operation: str = "DynamoDB", **extra: Any) -> ClientError:
    """Build a botocore ``ClientError`` the way the service would raise it."""
    response: dict[str, Any] = {"Error": {"Code": code, "Message": message or code}}
    response.update(extra)
    return ClientError(response, operation)  # type: ignore[arg-type]


__all__ = [
    "ANY",
    "FakeDynamoDBClient",
    "client_error",
    "no_sleep",
]

from __future__ import annotations

from collections.abc import Callable

from botocore.exceptions import ClientError

from .errors import AwsError, ConditionFailedError, NotFoundError, ValidationError, VerseError

RESOURCE_NOT_FOUND = "ResourceNotFoundException"
RESOURCE_IN_USE = "ResourceInUseException"

# Service codes with a dedicated error type; everything else becomes AwsError.
_TRANSLATIONS: dict[str, Callable[[str], VerseError]] = {
    "ConditionalCheckFailedException": lambda message: ConditionFailedError(message or "condition failed"),
    "ValidationException": ValidationError,
    RESOURCE_NOT_FOUND: lambda message: NotFoundError(message or "resource not found"),
}


def error_code(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Code", ""))


def error_message(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Message", ""))


def map_client_error(err: ClientError) -> VerseError:
    """Translate a botocore ``ClientError`` into this package's error types."""
    code = error_code(err)
    translate = _TRANSLATIONS.get(code)
    if translate is not None:
        return translate(error_message(err))
    return AwsError(
        code=code or "UnknownError",
        message=error_message(err) or str(err),
        operation=getattr(err, "operation_name", "") or "",
    )

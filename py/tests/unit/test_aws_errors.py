from __future__ import annotations

import pytest

from dynamodb_verse import AwsError, ConditionFailedError, NotFoundError, ValidationError
from dynamodb_verse.aws_errors import error_code, error_message, map_client_error
from dynamodb_verse.testkit import client_error


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("ConditionalCheckFailedException", ConditionFailedError),
        ("ValidationException", ValidationError),
        ("ResourceNotFoundException", NotFoundError),
    ],
)
def test_known_service_codes_get_their_own_type(code: str, expected: type[Exception]) -> None:
    assert isinstance(map_client_error(client_error(code, "nope")), expected)


def test_other_codes_become_aws_errors_naming_the_operation() -> None:
    throttled = client_error("ProvisionedThroughputExceededException", "slow down", "BatchWriteItem")
    err = map_client_error(throttled)

    assert isinstance(err, AwsError)
    assert err.code == "ProvisionedThroughputExceededException"
    assert err.operation == "BatchWriteItem"
    assert str(err) == "BatchWriteItem: ProvisionedThroughputExceededException: slow down"


def test_error_fields_are_read_from_the_response() -> None:
    err = client_error("ThrottlingException", "rate exceeded")

    assert error_code(err) == "ThrottlingException"
    assert error_message(err) == "rate exceeded"

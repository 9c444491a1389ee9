from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, cast

import boto3
from botocore.config import Config

from .errors import ValidationError

log = logging.getLogger(__name__)

DEFAULT_REGION = "ap-northeast-1"
LOCAL_ENDPOINT = "http://localhost:8000"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AwsCallMetric:
    service: str
    operation: str
    seconds: float
    ok: bool


@dataclass(frozen=True)
class ClientSettings:
    region: str = DEFAULT_REGION
    endpoint: str | None = None
    profile: str | None = None
    local: bool = False
    debug: bool = False

    @staticmethod
    def from_env(environ: Mapping[str, str] = os.environ) -> ClientSettings:
        region = environ.get("AWS_REGION") or environ.get("AWS_DEFAULT_REGION") or DEFAULT_REGION
        return ClientSettings(
            region=region,
            endpoint=environ.get("AWS_DYNAMODB_ENDPOINT") or None,
            profile=environ.get("AWS_PROFILE") or None,
            debug=(environ.get("AWS_DEBUG_LOG") or "").strip().lower() in _TRUTHY,
        )

    def resolved_endpoint(self) -> str | None:
        if self.local:
            return LOCAL_ENDPOINT
        return self.endpoint


def create_boto3_config(
    *,
    connect_timeout: float = 1.0,
    read_timeout: float = 3.0,
    max_attempts: int = 3,
) -> Config:
    return Config(
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
        retries={"max_attempts": max_attempts, "mode": "adaptive"},
    )


class _InstrumentedClient:
    def __init__(self, client: Any, service: str, on_call: Callable[[AwsCallMetric], None]) -> None:
        self._client = client
        self._service = service
        self._on_call = on_call

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._client, name)
        if name.startswith("_") or not callable(attr):
            return attr

        def wrapped(*args: Any, **kwargs: Any) -> Any:
            start = time.monotonic()
            try:
                out = attr(*args, **kwargs)
            except Exception:
                self._on_call(
                    AwsCallMetric(
                        service=self._service,
                        operation=name,
                        seconds=time.monotonic() - start,
                        ok=False,
                    )
                )
                raise

            self._on_call(
                AwsCallMetric(
                    service=self._service,
                    operation=name,
                    seconds=time.monotonic() - start,
                    ok=True,
                )
            )
            return out

        return wrapped


def instrument_boto3_client(
    client: Any,
    *,
    service: str,
    on_call: Callable[[AwsCallMetric], None],
) -> Any:
    return _InstrumentedClient(client, service, on_call)


def create_dynamodb_client(
    settings: ClientSettings | None = None,
    *,
    session: Any | None = None,
    config: Config | None = None,
    metrics: Callable[[AwsCallMetric], None] | None = None,
) -> Any:
    """Build a low-level DynamoDB client from ``settings`` (or the environment)."""
    settings = settings or ClientSettings.from_env()

    if settings.debug:
        boto3.set_stream_logger("botocore", logging.DEBUG)

    sess = session or boto3.session.Session(profile_name=settings.profile, region_name=settings.region)
    if cast(Any, sess).get_credentials() is None:
        if settings.profile:
            raise ValidationError(f"profile {settings.profile!r} is not defined in the credentials file")
        raise ValidationError("default settings are not defined in the credentials file")

    endpoint = settings.resolved_endpoint()
    if endpoint:
        log.debug("dynamodb endpoint=%s", endpoint)

    client = cast(Any, sess).client(
        "dynamodb",
        region_name=settings.region,
        endpoint_url=endpoint,
        config=config,
    )
    if metrics is not None:
        client = instrument_boto3_client(client, service="dynamodb", on_call=metrics)
    return client

"""Request and outcome models for the client layer."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Annotated

import httpx
from pydantic import BaseModel, ConfigDict, Field

from qbcli.client.constants import (
    DEFAULT_API_VERSION,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
    MAX_RETRY_AFTER_SECONDS,
)
from qbcli.client.errors import FatalError, RequestError, TransientError
from qbcli.retry import RetryConfig


class ClientConfig(BaseModel):
    """Configuration for the API client.

    Every client setting lives in this one validated record.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    api_version: Annotated[str, Field(min_length=1, pattern=r"^v\d+$")] = (
        DEFAULT_API_VERSION
    )
    request_timeout_seconds: Annotated[float, Field(gt=0.0, le=3600.0)] = (
        DEFAULT_REQUEST_TIMEOUT_SECONDS
    )
    force_auth: bool = Field(
        default=False, description="Skip the token cache and always log in"
    )
    retry: RetryConfig = Field(default_factory=RetryConfig)
    max_retry_after_seconds: Annotated[float, Field(ge=0.0, le=86400.0)] = (
        MAX_RETRY_AFTER_SECONDS
    )
    user_agent: Annotated[str, Field(min_length=1, max_length=200)] = (
        DEFAULT_USER_AGENT
    )


@dataclass(frozen=True)
class ApiRequest:
    """One API call as supplied by a caller.

    ``path`` is relative to the API base endpoint; ``payload`` is already
    encoded.
    """

    method: str
    path: str
    params: Mapping[str, str] | None = None
    payload: bytes | None = None
    content_type: str | None = None

    def __str__(self) -> str:
        return f"{self.method} {self.path}"


@dataclass(frozen=True)
class Success:
    """2xx response: raw body plus status metadata."""

    status_code: int
    body: bytes
    url: str
    headers: httpx.Headers = field(default_factory=httpx.Headers, repr=False)

    @property
    def text(self) -> str:
        """Decode the body as UTF-8, replacing invalid bytes."""
        return self.body.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class Transient:
    """Retryable failure, optionally with a server-suggested delay."""

    error: TransientError
    retry_after: float | None = None


@dataclass(frozen=True)
class Fatal:
    """Failure that must abort the operation."""

    error: FatalError


RequestOutcome = Success | Transient | Fatal


def unwrap_outcome(outcome: RequestOutcome) -> Success:
    """Return a successful outcome or raise its error.

    Args:
        outcome: Classified request outcome.

    Returns:
        The Success variant.

    Raises:
        RequestError: The transient or fatal error of the outcome.
    """
    if isinstance(outcome, Success):
        return outcome
    error: RequestError = outcome.error
    raise error

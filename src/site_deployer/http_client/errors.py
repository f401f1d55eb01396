"""Classification of GitHub REST API failures."""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping, Optional

import httpx

from ..errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    GitHubAPIError,
    NotFoundError,
    RateLimitedError,
    ServerError,
    UnknownAPIError,
    ValidationError,
)


def _int_header(headers: Mapping[str, str], name: str) -> Optional[int]:
    value = headers.get(name)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class RateLimitSnapshot:
    """Rate limit headers of one response. Only used to size retry delays."""

    limit: Optional[int]
    remaining: Optional[int]
    reset_at_epoch_seconds: Optional[int]

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> Optional["RateLimitSnapshot"]:
        limit = _int_header(headers, "X-RateLimit-Limit")
        remaining = _int_header(headers, "X-RateLimit-Remaining")
        reset = _int_header(headers, "X-RateLimit-Reset")
        if limit is None and remaining is None and reset is None:
            return None
        return cls(limit=limit, remaining=remaining, reset_at_epoch_seconds=reset)

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0

    def seconds_until_reset(self, now: float) -> Optional[float]:
        if self.reset_at_epoch_seconds is None:
            return None
        return max(0.0, self.reset_at_epoch_seconds - now)


def retry_after_seconds(
    headers: Mapping[str, str], now: Optional[float] = None
) -> Optional[float]:
    """
    Delay GitHub asks for before retrying.

    ``Retry-After`` wins; otherwise an exhausted rate limit's reset time.
    """
    retry_after = headers.get("Retry-After")
    if retry_after is not None:
        try:
            return max(0.0, float(retry_after))
        except ValueError:
            pass

    snapshot = RateLimitSnapshot.from_headers(headers)
    if snapshot is not None and snapshot.exhausted:
        return snapshot.seconds_until_reset(time.time() if now is None else now)
    return None


def _provider_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        message = body.get("message") or ""
        errors = body.get("errors")
        if errors:
            details = []
            for item in errors:
                if isinstance(item, dict):
                    details.append(item.get("message") or item.get("code") or str(item))
                else:
                    details.append(str(item))
            message = f"{message} ({'; '.join(details)})" if message else "; ".join(details)
        return message
    return response.text


def classify_response(
    response: httpx.Response, clock: Callable[[], float] = time.time
) -> GitHubAPIError:
    """
    Map a non-2xx GitHub response onto the error taxonomy.

    Args:
        response: The failed response
        clock: Wall-clock source used to size rate limit delays

    Returns:
        The GitHubAPIError subclass matching the failure
    """
    status = response.status_code
    headers = response.headers
    detail = response.text
    provider_message = _provider_message(response)
    lower = provider_message.lower()
    retry_after = retry_after_seconds(headers, now=clock())

    if status == 401:
        return AuthenticationError(
            "GitHub: Unauthorized. Please sign in again.", status, detail
        )

    snapshot = RateLimitSnapshot.from_headers(headers)
    rate_limited = status == 429 or (
        status == 403
        and (
            (snapshot is not None and snapshot.exhausted)
            or "Retry-After" in headers
            or "rate limit" in lower
        )
    )
    if rate_limited:
        when = ""
        if snapshot is not None and snapshot.reset_at_epoch_seconds:
            reset_at = datetime.fromtimestamp(snapshot.reset_at_epoch_seconds)
            when = f" Try again at {reset_at.strftime('%H:%M:%S')}."
        return RateLimitedError(
            "GitHub: Rate limit exceeded." + when, status, detail, retry_after
        )

    if status == 403:
        return ForbiddenError(
            "GitHub: Access forbidden. Check repository permissions or scopes.",
            status,
            detail,
        )
    if status == 404:
        return NotFoundError("GitHub: Resource not found.", status, detail)
    if status == 409:
        return ConflictError(
            f"GitHub: Conflict. {provider_message}".strip(), status, detail
        )
    if status == 422:
        return ValidationError(
            f"GitHub: Validation error. {provider_message}".strip(), status, detail
        )
    if status >= 500:
        return ServerError(
            "GitHub: Temporary server error. Please retry.", status, detail, retry_after
        )
    return UnknownAPIError(f"GitHub error {status}: {provider_message}", status, detail)

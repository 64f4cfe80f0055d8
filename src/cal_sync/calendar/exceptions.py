"""Calendar API exceptions, status classification, and retry.

Exception hierarchy::

    CalendarAPIError          (base for all Calendar API errors)
    +-- CalendarAuthError     (authentication / 401 failures)
    +-- CalendarRateLimitError (HTTP 429 rate-limit responses)
    +-- CalendarNotFoundError (HTTP 404/410, the event is gone remotely)
    +-- CalendarServerError   (HTTP 5xx)

:func:`classify_status` maps an HTTP status (from a single request or from
one part of a batch response) onto the failure taxonomy used by the sync
engine.  :func:`with_retry` wraps single-request client methods.
"""

from __future__ import annotations

import functools
import logging
import time
from collections.abc import Callable
from typing import Any, Literal, TypeVar

from googleapiclient.errors import HttpError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

StatusClass = Literal["ok", "transient", "not_found", "client"]

# Statuses worth one inline wait-and-retry of a whole batch chunk.
RETRYABLE_BATCH_STATUSES: frozenset[int] = frozenset({502, 503})


class CalendarAPIError(Exception):
    """Base exception for Google Calendar API errors.

    Attributes:
        status_code: HTTP status code, or ``None`` for transport errors.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CalendarAuthError(CalendarAPIError):
    """Authentication failed or could not be refreshed (HTTP 401)."""

    def __init__(self, message: str = "Calendar authentication failed") -> None:
        super().__init__(message, status_code=401)


class CalendarRateLimitError(CalendarAPIError):
    def __init__(self, message: str = "Calendar API rate limit exceeded") -> None:
        super().__init__(message, status_code=429)


class CalendarNotFoundError(CalendarAPIError):
    """The event no longer exists remotely (HTTP 404 or 410)."""

    def __init__(self, message: str = "Calendar resource not found", status_code: int = 404) -> None:
        super().__init__(message, status_code=status_code)


class CalendarServerError(CalendarAPIError):
    """The API answered with a 5xx status."""


def classify_status(status: int) -> StatusClass:
    """Classify an HTTP status for the sync engine.

    ``0`` (no response at all), 429, and any 5xx are transient; 404 and 410
    mean the event was removed externally; other 4xx are client errors.
    """
    if 200 <= status < 300:
        return "ok"
    if status in (404, 410):
        return "not_found"
    if status == 0 or status == 429 or status >= 500:
        return "transient"
    return "client"


_DEFAULT_MAX_RETRIES = 3
_DEFAULT_BASE_DELAY = 1.0  # seconds
_AUTH_RETRY_LIMIT = 1


def error_for_status(status: int, message: str) -> CalendarAPIError:
    """Build the exception matching *status*."""
    if status in (404, 410):
        return CalendarNotFoundError(message, status_code=status)
    if status == 429:
        return CalendarRateLimitError(message)
    if status == 401:
        return CalendarAuthError(message)
    if status >= 500:
        return CalendarServerError(message, status_code=status)
    return CalendarAPIError(message, status_code=status)


def with_retry(
    max_retries: int = _DEFAULT_MAX_RETRIES,
    base_delay: float = _DEFAULT_BASE_DELAY,
) -> Callable[[F], F]:
    """Retry a Calendar API method on transient failures.

    - HTTP 429 and network errors (``OSError``, ``TimeoutError``):
      exponential backoff, up to *max_retries*.
    - HTTP 401: call ``self._refresh_credentials()`` if present, retry once.
    - HTTP 404/410: raise :class:`CalendarNotFoundError` immediately.
    - Anything else: raise the classified error immediately.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            auth_retries = 0

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except HttpError as exc:
                    cal_error = error_for_status(exc.resp.status, str(exc))

                    if isinstance(cal_error, CalendarRateLimitError) and attempt < max_retries:
                        delay = base_delay * (2**attempt)
                        logger.warning(
                            "Rate limited (429), retrying in %.1fs (attempt %d/%d)",
                            delay,
                            attempt + 1,
                            max_retries,
                        )
                        time.sleep(delay)
                        continue

                    if isinstance(cal_error, CalendarAuthError) and auth_retries < _AUTH_RETRY_LIMIT:
                        auth_retries += 1
                        instance = args[0] if args else None
                        refresh = getattr(instance, "_refresh_credentials", None)
                        if callable(refresh):
                            logger.warning("Auth expired (401), refreshing credentials")
                            try:
                                refresh()
                            except Exception as refresh_exc:
                                raise CalendarAuthError(
                                    f"Token refresh failed: {refresh_exc}"
                                ) from refresh_exc
                            continue

                    logger.error("Calendar API error (HTTP %s): %s", cal_error.status_code, exc)
                    raise cal_error from exc

                except (OSError, TimeoutError) as exc:
                    if attempt >= max_retries:
                        raise CalendarAPIError(
                            f"Network error after {max_retries} retries: {exc}"
                        ) from exc
                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Network error, retrying in %.1fs (attempt %d/%d): %s",
                        delay,
                        attempt + 1,
                        max_retries,
                        exc,
                    )
                    time.sleep(delay)

            raise CalendarAPIError("Retry loop exhausted unexpectedly")  # pragma: no cover

        return wrapper  # type: ignore[return-value]

    return decorator

"""HTTP utilities shared by outbound clients."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Type

import httpx

from app.core.errors import TransientUpstreamError


@contextmanager
def transport_errors_as(
    error_cls: Type[TransientUpstreamError], operation: str
) -> Iterator[None]:
    """
    Re-raise httpx timeouts and connection failures as a retryable broker error.

    No retry happens here: callers own their retry policy.
    """
    try:
        yield
    except httpx.TimeoutException as exc:
        raise error_cls(f"{operation} timed out.") from exc
    except httpx.TransportError as exc:
        raise error_cls(f"{operation} failed: {exc.__class__.__name__}.") from exc


__all__ = ["transport_errors_as"]

"""
Logging utilities for the FastAPI application and helper scripts.

Provides a consistent logging format and a masking helper so secrets only
ever reach logs or diagnostics as a prefix/suffix and a length.
"""

import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )


def mask_secret(value: str | None, *, visible: int = 4) -> str:
    """Render a secret for diagnostics without revealing it."""
    if not value:
        return ""
    if len(value) <= visible * 2:
        return f"len={len(value)}"
    return f"{value[:visible]}…{value[-visible:]} (len={len(value)})"


__all__ = ["configure_logging", "mask_secret"]

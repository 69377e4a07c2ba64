"""Print a fresh set of plugin OAuth credentials in ``.env`` format.

Example::

    python -m scripts.generate_plugin_credentials >> .env
"""

from __future__ import annotations

import argparse
import secrets
import sys


def generate_credentials(prefix: str = "aa-plugin") -> dict[str, str]:
    """Return new client id, client secret and token signing secret."""
    return {
        "PLUGIN_CLIENT_ID": f"{prefix}-{secrets.token_hex(8)}",
        "PLUGIN_CLIENT_SECRET": secrets.token_urlsafe(32),
        "PLUGIN_TOKEN_SECRET": secrets.token_urlsafe(48),
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Generate plugin OAuth client credentials.")
    parser.add_argument(
        "--prefix",
        default="aa-plugin",
        help="Prefix for the generated client id (default: aa-plugin).",
    )
    args = parser.parse_args(argv)

    for key, value in generate_credentials(args.prefix).items():
        print(f"{key}={value}")
    return 0


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())

"""Check that a deployment's environment is complete before starting the broker.

Settings are loaded the same way the application loads them, from the process
environment plus an optional ``.env`` file::

    python -m scripts.check_env --env-file /srv/broker/.env

Each known variable is listed as set or unset (secrets masked). With
``APP_ENV=production``, settings that would fall back to the Google client
secret or to the local SQLite store are reported as errors.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Iterable, Mapping, Optional

from pydantic import ValidationError

from app.core.config import AppSettings, load_settings
from app.core.logging import mask_secret

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_PRODUCTION_ERROR = 4
EXIT_RUNTIME_ERROR = 5

REQUIRED_VARIABLES: Mapping[str, str] = {
    "GOOGLE_CLIENT_ID": "Google OAuth client ID",
    "GOOGLE_CLIENT_SECRET": "Google OAuth client secret",
    "GOOGLE_REDIRECT_URI": "Google OAuth redirect URI",
}

OPTIONAL_VARIABLES: Mapping[str, str] = {
    "TOKEN_ENCRYPTION_SECRET": "Key material for stored Google tokens",
    "APP_STATE_SECRET": "Fallback signing secret for plugin bearer tokens",
    "KV_REST_API_URL": "Redis REST endpoint shared by all instances",
    "KV_REST_API_TOKEN": "Redis REST token",
    "PLUGIN_CLIENT_ID": "Assistant plugin OAuth client ID",
    "PLUGIN_CLIENT_SECRET": "Assistant plugin OAuth client secret",
    "PLUGIN_TOKEN_SECRET": "Signing secret for plugin bearer tokens",
    "PREMIUM_URL": "Upgrade link returned with plan limit errors",
}

_SECRET_MARKERS = ("SECRET", "TOKEN", "KEY")


def _display(name: str, value: object) -> str:
    text = str(value)
    if any(marker in name for marker in _SECRET_MARKERS):
        return mask_secret(text)
    return text


def _variable_values(settings: AppSettings) -> dict[str, Optional[object]]:
    """Resolved value for every listed variable, ``None`` when unset."""
    return {
        "GOOGLE_CLIENT_ID": settings.google.client_id,
        "GOOGLE_CLIENT_SECRET": settings.google.client_secret,
        "GOOGLE_REDIRECT_URI": settings.google.redirect_uri,
        "TOKEN_ENCRYPTION_SECRET": settings.security.token_encryption_secret,
        "APP_STATE_SECRET": settings.security.state_secret,
        "KV_REST_API_URL": settings.store.rest_url,
        "KV_REST_API_TOKEN": settings.store.rest_token,
        "PLUGIN_CLIENT_ID": settings.plugin.client_id,
        "PLUGIN_CLIENT_SECRET": settings.plugin.client_secret,
        "PLUGIN_TOKEN_SECRET": settings.plugin.token_secret,
        "PREMIUM_URL": settings.usage.upgrade_url,
    }


def _production_findings(settings: AppSettings) -> list[str]:
    """List settings that are acceptable locally but not in production."""
    if not settings.is_production:
        return []
    findings = []
    if not settings.security.token_encryption_secret:
        findings.append("TOKEN_ENCRYPTION_SECRET is unset; tokens would be keyed by the Google client secret.")
    if not settings.store.remote_configured:
        findings.append("KV_REST_API_URL/KV_REST_API_TOKEN are unset; the local SQLite store is not shared.")
    if settings.plugin.client_id:
        if not settings.plugin.client_secret:
            findings.append("PLUGIN_CLIENT_ID is set without PLUGIN_CLIENT_SECRET.")
        if not (settings.plugin.token_secret or settings.security.state_secret):
            findings.append(
                "PLUGIN_TOKEN_SECRET and APP_STATE_SECRET are unset; "
                "plugin bearer tokens would be signed with the Google client secret."
            )
    if settings.usage.allow_plan_override:
        findings.append("ALLOW_PLAN_OVERRIDE is enabled; it is ignored in production.")
    return findings


def _print_section(title: str, names: Iterable[str], values: Mapping[str, Optional[object]]) -> None:
    print(title)
    for name in names:
        value = values.get(name)
        if value in (None, ""):
            print(f"  [ ] {name}: {REQUIRED_VARIABLES.get(name) or OPTIONAL_VARIABLES[name]}")
        else:
            print(f"  [x] {name} = {_display(name, value)}")


def _print_report(settings: AppSettings) -> None:
    values = _variable_values(settings)
    print(f"Environment: {settings.environment}")
    _print_section("Required:", REQUIRED_VARIABLES, values)
    _print_section("Optional:", OPTIONAL_VARIABLES, values)
    print(f"Store: {'rest' if settings.store.remote_configured else 'sqlite'}")
    usage = settings.usage
    print(
        "Free plan: "
        f"{usage.free_ga4_reports_per_month} reports/month, "
        f"{usage.free_property_limit} properties, "
        f"{usage.free_lookback_days or 'unlimited'} days lookback"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate broker settings for the current environment."
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        type=Path,
        help="Path to the environment file (default: .env in the working directory).",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    env_file: Path = args.env_file

    if not env_file.exists():
        print(
            f"Environment file {env_file} does not exist. "
            "Ensure the path is correct or create it before running this tool.",
            file=sys.stderr,
        )
        return EXIT_RUNTIME_ERROR

    try:
        settings = load_settings(str(env_file))
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR

    _print_report(settings)

    findings = _production_findings(settings)
    if findings:
        print("Production configuration problems:", file=sys.stderr)
        for finding in findings:
            print(f"  - {finding}", file=sys.stderr)
        return EXIT_PRODUCTION_ERROR
    return EXIT_OK


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())

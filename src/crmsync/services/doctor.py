from __future__ import annotations

import platform
import sys

from crmsync.config import Settings
from crmsync.core.db import CrmRepository


def run_doctor_checks(settings: Settings) -> list[dict[str, str]]:
    checks: list[dict[str, str]] = []

    checks.append(
        {
            "check": "python_version",
            "status": "ok" if sys.version_info >= (3, 11) else "warn",
            "detail": platform.python_version(),
        }
    )

    checks.append(
        {
            "check": "db_parent",
            "status": "ok" if settings.db_path.parent.exists() else "warn",
            "detail": str(settings.db_path.parent),
        }
    )

    if settings.db_path.exists():
        try:
            with CrmRepository(settings.db_path) as repository:
                pending = repository.pending_migrations()
            checks.append(
                {
                    "check": "db_migrations",
                    "status": "warn" if pending else "ok",
                    "detail": f"pending: {', '.join(pending)}" if pending else "up to date",
                }
            )
        except Exception as exc:  # noqa: BLE001
            checks.append({"check": "db_migrations", "status": "warn", "detail": str(exc)})
    else:
        checks.append(
            {
                "check": "db_migrations",
                "status": "warn",
                "detail": "database not initialized, run `crmsync init`",
            }
        )

    oauth_configured = bool(settings.google_client_id and settings.google_client_secret)
    checks.append(
        {
            "check": "google_oauth_client",
            "status": "ok" if oauth_configured else "warn",
            "detail": "GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET " + ("set" if oauth_configured else "missing"),
        }
    )

    checks.append(
        {
            "check": "google_client_secret_file",
            "status": "ok" if settings.google_client_secret_path.exists() else "warn",
            "detail": str(settings.google_client_secret_path),
        }
    )

    checks.append(
        {
            "check": "summarizer_api_key",
            "status": "ok" if settings.summarizer_api_key else "warn",
            "detail": f"{settings.summarizer_model} @ {settings.summarizer_url}"
            if settings.summarizer_api_key
            else "NOVITA_API_KEY is not set",
        }
    )

    return checks

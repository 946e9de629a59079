"""
Configuration for the admissions desktop application.

Module level constants hold the fixed limits of the remote sync layer.
Values that vary per installation (server URL, per-install secret,
stored credential, auto-sync flags) live in the ``settings`` table and
are read through :class:`SyncConfig`. A handful of environment
variables allow overriding the defaults without touching the database.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, Optional

DB_PATH = os.environ.get("ADMISSION_DESK_DB", "admission.db")

REQUEST_TIMEOUT_SECONDS = 60
CONNECT_TIMEOUT_SECONDS = 10
DEFAULT_INTERVAL_MINUTES = 5
LOG_BUFFER_SIZE = 200
LOG_STATUS_TAIL = 50
BODY_EXCERPT_CHARS = 200
USER_AGENT = "AdmissionDesk/2.0"

DEFAULT_SERVER_URL = os.environ.get("ADMISSION_DESK_SERVER_URL", "http://localhost:3000")
DEFAULT_ADMIN_SECRET = os.environ.get("ADMISSION_DESK_SECRET", "")
DEFAULT_ADMIN_USER = os.environ.get("ADMISSION_DESK_USER", "")
DEFAULT_ADMIN_PASSWORD = os.environ.get("ADMISSION_DESK_PASSWORD", "")

# Settings keys
KEY_SERVER_URL = "sync.server_url"
KEY_ADMIN_SECRET = "sync.admin_secret"
KEY_AUTH_TOKEN = "sync.auth_token"
KEY_AUTO_SYNC = "sync.auto_sync"
KEY_INTERVAL = "sync.interval_minutes"
KEY_ENABLED = "sync.enabled"
KEY_LAST_SYNC = "sync.last_sync"

KEY_PROJ_WEIGHT = "evaluation.proj_weight"
KEY_INT_WEIGHT = "evaluation.int_weight"
KEY_LANG_WEIGHT = "evaluation.lang_weight"
KEY_MIN_SCORE = "evaluation.min_score"

DEFAULT_SETTINGS: Dict[str, str] = {
    "app.name": "Admission Desk",
    "app.institution": "Universidade",
    "registration.open": "0",
    "registration.start_date": "",
    "registration.end_date": "",
    KEY_PROJ_WEIGHT: "4",
    KEY_INT_WEIGHT: "5",
    KEY_LANG_WEIGHT: "1",
    KEY_MIN_SCORE: "7.0",
    "lines": '["Linha 1", "Linha 2"]',
}


@dataclass
class SyncConfig:
    """Sync parameters resolved from the settings map."""

    server_url: str
    admin_secret: str
    auth_token: str
    auto_sync: bool
    interval_minutes: int
    enabled: bool
    last_sync: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Dict[str, str]) -> "SyncConfig":
        try:
            interval = int(settings.get(KEY_INTERVAL) or DEFAULT_INTERVAL_MINUTES)
        except ValueError:
            interval = DEFAULT_INTERVAL_MINUTES
        return cls(
            server_url=settings.get(KEY_SERVER_URL) or DEFAULT_SERVER_URL,
            admin_secret=settings.get(KEY_ADMIN_SECRET) or DEFAULT_ADMIN_SECRET,
            auth_token=settings.get(KEY_AUTH_TOKEN) or "",
            # Both flags are on unless explicitly disabled
            auto_sync=settings.get(KEY_AUTO_SYNC) != "0",
            interval_minutes=max(1, interval),
            enabled=settings.get(KEY_ENABLED) != "0",
            last_sync=settings.get(KEY_LAST_SYNC) or None,
        )

    def as_dict(self) -> Dict[str, object]:
        return {
            "serverUrl": self.server_url,
            "hasSecret": bool(self.admin_secret),
            "authenticated": bool(self.auth_token),
            "autoSync": self.auto_sync,
            "intervalMinutes": self.interval_minutes,
            "enabled": self.enabled,
        }

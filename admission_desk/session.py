"""
Bearer credential management.

A stored credential is used optimistically. Only when an operation is
answered with 401 is the credential discarded and exactly one fresh
login performed before the operation is retried once; a second
consecutive 401 is a hard failure.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

from admission_desk.config import KEY_AUTH_TOKEN, KEY_ENABLED
from admission_desk.database import DatabaseManager
from admission_desk.errors import AuthenticationError, ConfigurationError, Unauthorized
from admission_desk.transport import TransportClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionManager:
    """Acquire, persist and refresh the bearer credential."""

    def __init__(
        self,
        db: DatabaseManager,
        admin_secret: str,
        username: str,
        password: str,
        transport: Optional[TransportClient] = None,
    ) -> None:
        self.db = db
        self.admin_secret = admin_secret
        self.username = username
        self.password = password
        self.transport = transport

    @property
    def token(self) -> str:
        return self.db.get_settings().get(KEY_AUTH_TOKEN) or ""

    def clear_token(self) -> None:
        self.db.update_settings({KEY_AUTH_TOKEN: ""})

    def login(self, username: Optional[str] = None, password: Optional[str] = None) -> str:
        """Exchange username/password for a credential and persist it."""
        if not self.admin_secret:
            raise ConfigurationError("Server URL and admin secret are required")
        if username is not None:
            self.username = username
        if password is not None:
            self.password = password
        # Never send a stale credential along with the login request
        self.clear_token()
        result = self.transport.post(
            f"/secret/{self.admin_secret}/login",
            {"username": self.username, "password": self.password},
        )
        token = result.get("token") if isinstance(result, dict) else None
        if not token:
            raise AuthenticationError("Token not received, check the credentials")
        self.db.update_settings({KEY_AUTH_TOKEN: token, KEY_ENABLED: "1"})
        logger.info("Authenticated as %s", self.username)
        return token

    def ensure_authenticated(self) -> str:
        """Return the stored credential, logging in first when there is none."""
        return self.token or self.login()

    def call(self, operation: Callable[[], T]) -> T:
        """Run ``operation`` with a valid credential, re-authenticating once on 401."""
        self.ensure_authenticated()
        try:
            return operation()
        except Unauthorized as first:
            logger.info("Credential refused (%s), re-authenticating", first)
        self.login()
        try:
            return operation()
        except Unauthorized as second:
            self.clear_token()
            raise AuthenticationError(f"Still unauthorised after re-login: {second}") from second

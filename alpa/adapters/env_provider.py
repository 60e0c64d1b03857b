from __future__ import annotations

import logging
import os
from typing import Optional

from pydantic import SecretStr

from alpa.ports.credentials_provider import CredentialProvider
from alpa.stream.credentials import Credentials
from alpa.stream.errors import MissingCredentialsError

_LOGGER = logging.getLogger(__name__)

ENV_API_KEY = "APCA_API_KEY_ID"
ENV_API_SECRET = "APCA_API_SECRET_KEY"
ENV_USE_PAPER = "APCA_USE_PAPER"


class MissingSecretError(ValueError):
    """
    Raised when a logical secret cannot be resolved from options or the environment.
    """

    def __init__(self, secret_name: str) -> None:
        super().__init__(secret_name)
        self.secret_name = secret_name

    def __str__(self) -> str:
        return f"Secret '{self.secret_name}' is unavailable"


class EnvCredentialProvider(CredentialProvider):
    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        use_paper: Optional[bool] = None,
    ) -> None:
        """
        Resolve credentials from explicit options first, then the environment.

        Every resolve() re-reads the environment so rotated keys are picked up
        on the next connection attempt.
        """

        # logical secret name -> environment variable
        self._allowed: dict[str, str] = {
            "api_key": ENV_API_KEY,
            "api_secret": ENV_API_SECRET,
        }
        self._explicit: dict[str, Optional[str]] = {
            "api_key": api_key,
            "api_secret": api_secret,
        }
        self._use_paper = use_paper

    def get(self, secret_name: str) -> str:
        """Resolve a logical secret name to a concrete value."""

        if secret_name not in self._allowed:
            raise MissingSecretError(secret_name)

        explicit = self._explicit.get(secret_name)
        if explicit:
            source = "options"
            value = explicit
        else:
            source = "env"
            value = os.environ.get(self._allowed[secret_name], "")
            if not value:
                raise MissingSecretError(secret_name)

        _LOGGER.debug(
            "secret_resolved",
            extra={
                "event": "secret_resolved",
                "secret_name": secret_name,
                "source": source,
            },
        )
        return value

    def use_paper(self) -> bool:
        """Explicit flag, else APCA_USE_PAPER ("true"/"false"), else paper."""
        if self._use_paper is not None:
            return self._use_paper
        raw = os.environ.get(ENV_USE_PAPER, "").strip().lower()
        if raw == "false":
            return False
        if raw and raw != "true":
            _LOGGER.warning(
                "invalid_use_paper_flag",
                extra={"event": "invalid_use_paper_flag", "value": raw},
            )
        return True

    def resolve(self) -> Credentials:
        missing: list[str] = []
        values: dict[str, str] = {}
        for name in ("api_key", "api_secret"):
            try:
                values[name] = self.get(name)
            except MissingSecretError:
                missing.append(name)

        if missing:
            raise MissingCredentialsError(
                f"Missing credentials: {', '.join(missing)}",
                missing=missing,
                component="EnvCredentialProvider",
            )

        return Credentials(
            api_key=SecretStr(values["api_key"]),
            api_secret=SecretStr(values["api_secret"]),
            use_paper=self.use_paper(),
        )


class StaticCredentialProvider(CredentialProvider):
    """Always returns the same credentials. Useful in tests and notebooks."""

    def __init__(self, credentials: Credentials) -> None:
        self._credentials = credentials

    def resolve(self) -> Credentials:
        if not self._credentials.is_complete:
            raise MissingCredentialsError(component="StaticCredentialProvider")
        return self._credentials

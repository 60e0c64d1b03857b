"""
Credential model and redaction for the streaming client.

Secrets are held as pydantic SecretStr so any repr/str/log of a Credentials
instance, or of connection state that contains one, prints a mask instead of
the value. After a successful handshake the connection swaps its live copy
for redacted() so even get_secret_value() yields only the marker.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, SecretStr

REDACTED = "**redacted**"


class Credentials(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    api_key: SecretStr = Field(description="API key id")
    api_secret: SecretStr = Field(description="API secret key")
    use_paper: bool = Field(default=True, description="Paper trading endpoint when True")

    @property
    def is_complete(self) -> bool:
        return bool(self.api_key.get_secret_value()) and bool(self.api_secret.get_secret_value())

    @property
    def is_redacted(self) -> bool:
        return (
            self.api_key.get_secret_value() == REDACTED
            and self.api_secret.get_secret_value() == REDACTED
        )

    def redacted(self) -> Credentials:
        """Copy with key and secret overwritten by the opaque marker."""
        return self.model_copy(
            update={"api_key": SecretStr(REDACTED), "api_secret": SecretStr(REDACTED)}
        )

    def auth_message(self) -> dict[str, str]:
        """The first outbound frame on every new transport connection."""
        return {
            "action": "auth",
            "key": self.api_key.get_secret_value(),
            "secret": self.api_secret.get_secret_value(),
        }

"""
Unit tests for Credentials and redaction.
"""

import pytest
from pydantic import SecretStr, ValidationError

from alpa.stream.credentials import REDACTED, Credentials


class TestCredentials:
    @pytest.fixture
    def credentials(self) -> Credentials:
        return Credentials(api_key="AKTEST", api_secret="s3cr3t", use_paper=False)

    def test_secrets_hidden_in_repr_and_str(self, credentials: Credentials) -> None:
        """Test a debug dump never shows the secret values."""
        for text in (repr(credentials), str(credentials), str(credentials.model_dump())):
            assert "AKTEST" not in text
            assert "s3cr3t" not in text

    def test_auth_message(self, credentials: Credentials) -> None:
        assert credentials.auth_message() == {"action": "auth", "key": "AKTEST", "secret": "s3cr3t"}

    def test_redacted_copy(self, credentials: Credentials) -> None:
        redacted = credentials.redacted()

        assert redacted.is_redacted
        assert redacted.api_key.get_secret_value() == REDACTED
        assert redacted.api_secret.get_secret_value() == REDACTED
        assert redacted.use_paper is False
        # original untouched
        assert credentials.api_key.get_secret_value() == "AKTEST"

    def test_is_complete(self) -> None:
        assert Credentials(api_key=SecretStr("k"), api_secret=SecretStr("s")).is_complete
        assert not Credentials(api_key="k", api_secret="").is_complete

    def test_default_is_paper(self) -> None:
        assert Credentials(api_key="k", api_secret="s").use_paper is True

    def test_frozen(self, credentials: Credentials) -> None:
        with pytest.raises(ValidationError):
            credentials.use_paper = True  # type: ignore[misc]

    def test_extra_fields_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Credentials(api_key="k", api_secret="s", token="x")  # type: ignore[call-arg]

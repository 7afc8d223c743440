"""Tests for authentication providers."""

import base64
import unittest

import pytest

from traccarkit import TRACCAR, AuthConfig
from traccarkit._auth import (
    AuthProvider,
    BasicAuthProvider,
    Credentials,
    InMemorySecretStore,
    StoredCredentialsAuthProvider,
    TokenAuthProvider,
    create_auth_provider,
)
from traccarkit._errors import AuthenticationError


def decode_basic(header: str) -> str:
    assert header.startswith("Basic ")
    return base64.b64decode(header[len("Basic "):]).decode()


class TestCredentials:
    """Tests for the Credentials dataclass."""

    def test_requires_username_and_password(self):
        with pytest.raises(AssertionError, match="username cannot be empty"):
            Credentials("", "secret")
        with pytest.raises(AssertionError, match="password cannot be empty"):
            Credentials("admin@example.com", "")

    def test_repr_masks_password(self):
        credentials = Credentials("admin@example.com", "super-secret")

        assert "super-secret" not in repr(credentials)
        assert "admin@example.com" in repr(credentials)


class TestBasicAuthProvider:
    """Tests for BasicAuthProvider."""

    def test_builds_basic_header(self):
        auth = BasicAuthProvider("admin@example.com", "secret")

        header = auth.get_auth_headers()["Authorization"]

        assert decode_basic(header) == "admin@example.com:secret"

    def test_exposes_credentials_and_no_token(self):
        auth = BasicAuthProvider("admin@example.com", "secret")

        assert auth.get_credentials() == Credentials("admin@example.com", "secret")
        assert auth.get_token() is None


class TestTokenAuthProvider:
    """Tests for TokenAuthProvider."""

    def test_builds_bearer_header(self):
        auth = TokenAuthProvider("my-token")

        assert auth.get_auth_headers() == {"Authorization": "Bearer my-token"}
        assert auth.get_token() == "my-token"
        assert auth.get_credentials() is None

    def test_rejects_empty_token(self):
        with pytest.raises(AssertionError):
            TokenAuthProvider("")


class TestStoredCredentialsAuthProvider:
    """Tests for credentials persisted in a SecretStore."""

    def test_save_and_forget(self):
        store = InMemorySecretStore()
        auth = StoredCredentialsAuthProvider(store)

        assert auth.has_credentials() is False

        auth.save(Credentials("admin@example.com", "secret"))
        assert auth.has_credentials() is True
        assert decode_basic(auth.get_auth_headers()["Authorization"]) == "admin@example.com:secret"

        auth.forget()
        assert auth.has_credentials() is False
        assert store.read(StoredCredentialsAuthProvider.USERNAME_KEY) is None

    def test_reads_credentials_lazily(self):
        store = InMemorySecretStore()
        auth = StoredCredentialsAuthProvider(store)

        store.write(StoredCredentialsAuthProvider.USERNAME_KEY, "late@example.com")
        store.write(StoredCredentialsAuthProvider.PASSWORD_KEY, "pw")

        assert auth.get_credentials() == Credentials("late@example.com", "pw")

    def test_missing_credentials_raise_authentication_error(self):
        auth = StoredCredentialsAuthProvider(InMemorySecretStore())

        with pytest.raises(AuthenticationError, match="log in"):
            auth.get_auth_headers()

    def test_partial_credentials_are_ignored(self):
        store = InMemorySecretStore({StoredCredentialsAuthProvider.USERNAME_KEY: "admin@example.com"})

        assert StoredCredentialsAuthProvider(store).get_credentials() is None


class TestCreateAuthProvider(unittest.TestCase):
    """Tests for create_auth_provider."""

    def setUp(self):
        TRACCAR.reset()

    def tearDown(self):
        TRACCAR.reset()

    def test_token_wins(self):
        """Should prefer the API token over username/password."""
        config = AuthConfig(username="admin@example.com", password="secret", token="tok")

        auth = create_auth_provider(config)

        self.assertIsInstance(auth, TokenAuthProvider)

    def test_username_password(self):
        """Should create a BasicAuthProvider from username/password."""
        auth = create_auth_provider(AuthConfig(username="admin@example.com", password="secret"))

        self.assertIsInstance(auth, BasicAuthProvider)

    def test_falls_back_to_secret_store(self):
        """Should use the secret store when nothing is configured."""
        auth = create_auth_provider(AuthConfig(), secret_store=InMemorySecretStore())

        self.assertIsInstance(auth, StoredCredentialsAuthProvider)

    def test_raises_when_nothing_configured(self):
        """Should raise ValueError without any credential source."""
        with self.assertRaises(ValueError) as ctx:
            create_auth_provider(AuthConfig())

        self.assertIn("TRACCAR_AUTH_TOKEN", str(ctx.exception))

    def test_uses_global_config_by_default(self):
        """Should read TRACCAR.config.auth when no config is given."""
        TRACCAR.configure(auth={"token": "global-token"}, allow_env_override=False)

        auth = create_auth_provider()

        self.assertIsInstance(auth, AuthProvider)
        self.assertEqual(auth.get_token(), "global-token")

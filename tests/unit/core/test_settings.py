"""Unit tests for Settings loading and validation."""

import os

import pytest
from pydantic import ValidationError

from adgroupsync.core.config import LocalizedNames, ServerConfig, Settings, TransportMethod
from adgroupsync.core.config.settings import DEFAULT_LDAP_READ_TIMEOUT_SECS


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep host environment variables out of the settings under test."""
    for key in list(os.environ):
        if key.startswith("ADGROUPSYNC_"):
            monkeypatch.delenv(key)


class TestCredentials:
    def test_falls_back_to_defaults(self):
        settings = Settings(
            servers=[{"host": "dc1.example.com"}],
            default_user="EXAMPLE\\svc",
            default_password="secret",
        )

        assert settings.credentials_for(settings.servers[0]) == ("EXAMPLE\\svc", "secret")

    def test_server_values_win(self):
        settings = Settings(
            servers=[{"host": "dc1.example.com", "user": "admin", "password": "pw"}],
            default_user="EXAMPLE\\svc",
            default_password="secret",
        )

        assert settings.credentials_for(settings.servers[0]) == ("admin", "pw")

    def test_missing_user(self):
        with pytest.raises(ValidationError, match="user not specified for host dc1.example.com"):
            Settings(servers=[{"host": "dc1.example.com", "password": "pw"}])

    def test_missing_password(self):
        with pytest.raises(ValidationError, match="password not specified for host dc1"):
            Settings(servers=[{"host": "dc1", "user": "admin"}])

    def test_no_servers_needs_no_credentials(self):
        assert Settings().servers == []


class TestServerConfig:
    @pytest.mark.parametrize("method", ["ssl", "SSL", " Ssl "])
    def test_method_any_case(self, method):
        assert ServerConfig(host="dc1", method=method).method == TransportMethod.SSL

    def test_defaults(self):
        server = ServerConfig(host="dc1")

        assert server.port == 389
        assert server.method == TransportMethod.STANDARD

    def test_unknown_method(self):
        with pytest.raises(ValidationError):
            ServerConfig(host="dc1", method="kerberos")

    def test_redacted_hides_password(self):
        dump = ServerConfig(host="dc1", user="admin", password="pw").redacted()

        assert dump["password"] == "XXXXXX"
        assert dump["user"] == "admin"
        assert "pw" not in str(dump.values())


class TestDefaults:
    def test_read_timeout_default(self):
        assert Settings().ldap_read_timeout_secs == DEFAULT_LDAP_READ_TIMEOUT_SECS == 90

    @pytest.mark.parametrize("value", [0, "0", "", "  "])
    def test_blank_or_zero_timeout_uses_default(self, value):
        assert Settings(ldap_read_timeout_secs=value).ldap_read_timeout_secs == 90

    def test_explicit_timeout(self):
        assert Settings(ldap_read_timeout_secs=15).ldap_read_timeout_secs == 15

    def test_localized_defaults(self):
        localized = Settings().localized

        assert localized == LocalizedNames()
        assert localized.everyone == "Everyone"
        assert localized.nt_authority == "NT Authority"
        assert localized.builtin == "BUILTIN"
        assert Settings().namespace == "Default"
        assert Settings().feed_builtin_groups is False


class TestEnvironment:
    def test_nested_values_from_env(self, monkeypatch):
        monkeypatch.setenv("ADGROUPSYNC_NAMESPACE", "Corp")
        monkeypatch.setenv("ADGROUPSYNC_LOCALIZED__EVERYONE", "Tout le monde")
        monkeypatch.setenv(
            "ADGROUPSYNC_SERVERS", '[{"host": "dc1.example.com", "method": "ssl", "port": 636}]'
        )
        monkeypatch.setenv("ADGROUPSYNC_DEFAULT_USER", "svc")
        monkeypatch.setenv("ADGROUPSYNC_DEFAULT_PASSWORD", "secret")

        settings = Settings()

        assert settings.namespace == "Corp"
        assert settings.localized.everyone == "Tout le monde"
        assert settings.servers[0].port == 636
        assert settings.servers[0].method == TransportMethod.SSL

"""Tests for the config module."""

import tempfile
from pathlib import Path

import pytest
import yaml

from conversation_sync.config import (
    ImapConfig,
    PostgresConfig,
    ServiceConfig,
    StoreBackend,
    StoreConfig,
    SyncConfig,
    TenantConfig,
    load_config,
)


class TestImapConfig:
    """Test cases for the ImapConfig class."""

    def test_init(self):
        """Test ImapConfig initialization."""
        config = ImapConfig(
            host="imap.example.com",
            port=993,
            username="test@example.com",
            password="password",
        )

        assert config.use_ssl is True
        assert config.verify_tls is True
        assert config.connection_timeout == 30
        assert config.greeting_timeout == 30
        assert config.mailbox == "INBOX"
        assert config.fetch_batch_size == 25

    def test_from_dict_port_defaults(self):
        data = {
            "host": "imap.example.com",
            "username": "test@example.com",
            "password": "password",
        }
        assert ImapConfig.from_dict(data).port == 993
        assert ImapConfig.from_dict({**data, "use_ssl": False}).port == 143
        assert ImapConfig.from_dict({**data, "port": 1993}).port == 1993

    def test_host_derived_from_return_url(self):
        config = ImapConfig.from_dict(
            {
                "return_url": "https://www.example.org/contact",
                "username": "test@example.org",
                "password": "password",
            }
        )
        assert config.host == "mail.example.org"

    def test_from_dict_with_env_password(self, monkeypatch):
        """Test creating ImapConfig with password from environment variable."""
        monkeypatch.setenv("IMAP_PASSWORD", "env_password")
        monkeypatch.setenv("TENANT_A_PASSWORD", "tenant_password")

        data = {"host": "imap.example.com", "username": "test@example.com"}
        assert ImapConfig.from_dict(data).password == "env_password"

        named = ImapConfig.from_dict({**data, "password_env": "TENANT_A_PASSWORD"})
        assert named.password == "tenant_password"

        explicit = ImapConfig.from_dict({**data, "password": "dict_password"})
        assert explicit.password == "dict_password"

    def test_missing_password_is_allowed(self, monkeypatch):
        monkeypatch.delenv("IMAP_PASSWORD", raising=False)
        config = ImapConfig.from_dict(
            {"host": "imap.example.com", "username": "test@example.com"}
        )
        assert config.password is None

    def test_from_dict_missing_required_fields(self):
        with pytest.raises(KeyError):
            ImapConfig.from_dict({"host": "imap.example.com", "password": "password"})

        with pytest.raises(ValueError):
            ImapConfig.from_dict({"username": "test@example.com", "password": "password"})

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            ImapConfig(
                host="imap.example.com",
                port=993,
                username="test@example.com",
                fetch_batch_size=0,
            )


class TestStoreConfig:
    def test_backend_from_string(self):
        assert StoreBackend.from_string("PostgreSQL") is StoreBackend.POSTGRES
        assert StoreBackend.from_string(" sqlite ") is StoreBackend.SQLITE
        with pytest.raises(ValueError):
            StoreBackend.from_string("mongodb")

    def test_defaults_to_sqlite(self, monkeypatch):
        monkeypatch.delenv("STORE_BACKEND", raising=False)
        config = StoreConfig.from_dict({})
        assert config.backend is StoreBackend.SQLITE
        assert config.postgres is None

    def test_postgres_env_fallback(self, monkeypatch):
        monkeypatch.setenv("POSTGRES_HOST", "db.internal")
        monkeypatch.setenv("POSTGRES_PASSWORD", "secret")

        config = StoreConfig.from_dict({"backend": "postgres"})

        assert config.backend is StoreBackend.POSTGRES
        assert config.postgres.host == "db.internal"
        assert config.postgres.password == "secret"
        assert config.postgres.port == 5432

    def test_postgres_dict_takes_precedence(self, monkeypatch):
        monkeypatch.setenv("POSTGRES_HOST", "db.internal")
        config = PostgresConfig.from_dict({"host": "db.local", "max_pool_size": 4})
        assert config.host == "db.local"
        assert config.max_pool_size == 4


class TestServiceConfig:
    def _data(self):
        return {
            "tenants": [
                {
                    "tenant_id": "acme",
                    "imap": {
                        "host": "imap.acme.test",
                        "username": "inbox@acme.test",
                        "password": "pw",
                        "mailbox": "Support",
                    },
                }
            ],
            "store": {"backend": "sqlite", "sqlite": {"path": "/tmp/acme.db"}},
            "sync": {"interval_seconds": 60, "preview_limit": 5},
        }

    def test_from_dict(self):
        config = ServiceConfig.from_dict(self._data())

        tenant = config.get_tenant("acme")
        assert isinstance(tenant, TenantConfig)
        assert tenant.imap.mailbox == "Support"
        assert config.store.sqlite.path == "/tmp/acme.db"
        assert config.sync.interval_seconds == 60
        assert config.sync.preview_limit == 5
        assert config.sync.snippet_length == 150

    def test_missing_tenants(self):
        with pytest.raises(ValueError):
            ServiceConfig.from_dict({})

    def test_duplicate_tenants(self):
        data = self._data()
        data["tenants"].append(data["tenants"][0])
        with pytest.raises(ValueError):
            ServiceConfig.from_dict(data)

    def test_missing_tenant_id(self):
        data = self._data()
        del data["tenants"][0]["tenant_id"]
        with pytest.raises(ValueError):
            ServiceConfig.from_dict(data)

    def test_unknown_tenant(self):
        with pytest.raises(KeyError):
            ServiceConfig.from_dict(self._data()).get_tenant("nobody")

    def test_invalid_sync(self):
        with pytest.raises(ValueError):
            SyncConfig(interval_seconds=0)


class TestLoadConfig:
    def test_load_from_file(self):
        data = TestServiceConfig()._data()
        with tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=False) as f:
            yaml.safe_dump(data, f)
            path = f.name

        try:
            config = load_config(path)
        finally:
            Path(path).unlink()

        assert config.tenants[0].tenant_id == "acme"

    def test_load_from_env(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("IMAP_HOST", "imap.env.test")
        monkeypatch.setenv("IMAP_USERNAME", "env@env.test")
        monkeypatch.setenv("IMAP_PASSWORD", "pw")
        monkeypatch.setenv("TENANT_ID", "env-tenant")
        monkeypatch.delenv("IMAP_PORT", raising=False)
        monkeypatch.delenv("STORE_BACKEND", raising=False)

        config = load_config(str(tmp_path / "missing.yaml"))

        tenant = config.get_tenant("env-tenant")
        assert tenant.imap.host == "imap.env.test"
        assert tenant.imap.port == 993
        assert config.store.backend is StoreBackend.SQLITE

    def test_no_config_and_no_env(self, monkeypatch, tmp_path):
        monkeypatch.delenv("IMAP_HOST", raising=False)
        monkeypatch.delenv("IMAP_RETURN_URL", raising=False)

        with pytest.raises(ValueError):
            load_config(str(tmp_path / "missing.yaml"))

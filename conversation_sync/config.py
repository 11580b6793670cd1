"""Configuration handling for the conversation sync service."""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import yaml  # type: ignore
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


# Load environment variables from .env file if it exists
load_dotenv()


def _host_from_return_url(return_url: Optional[str]) -> str:
    """Derive ``mail.<domain>`` from a tenant's return URL."""
    if not return_url:
        return ""
    parsed = urlparse(return_url if "://" in return_url else f"https://{return_url}")
    domain = (parsed.hostname or "").lower()
    if domain.startswith("www."):
        domain = domain[4:]
    return f"mail.{domain}" if domain else ""


@dataclass
class ImapConfig:
    """IMAP server configuration."""

    host: str
    port: int
    username: str
    password: Optional[str] = None
    use_ssl: bool = True
    verify_tls: bool = True
    connection_timeout: float = 30.0
    greeting_timeout: float = 30.0
    mailbox: str = "INBOX"
    fetch_batch_size: int = 25

    def __post_init__(self):
        if not self.host:
            raise ValueError("IMAP host is required (imap.host or imap.return_url)")
        if not self.username:
            raise ValueError("IMAP username is required (imap.username)")
        if self.fetch_batch_size < 1:
            raise ValueError(
                f"fetch_batch_size must be at least 1, got {self.fetch_batch_size}"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ImapConfig":
        """Create configuration from dictionary."""
        # Password can be specified in environment variable
        password_env = data.get("password_env")
        password = (
            data.get("password")
            or (os.environ.get(password_env) if password_env else None)
            or os.environ.get("IMAP_PASSWORD")
        )
        if not password:
            logger.warning("IMAP password not configured - mailbox sync will fail")

        host = data.get("host") or _host_from_return_url(data.get("return_url"))
        use_ssl = data.get("use_ssl", True)

        return cls(
            host=host,
            port=int(data.get("port") or (993 if use_ssl else 143)),
            username=data["username"],
            password=password,
            use_ssl=use_ssl,
            verify_tls=data.get("verify_tls", True),
            connection_timeout=float(data.get("connection_timeout", 30)),
            greeting_timeout=float(data.get("greeting_timeout", 30)),
            mailbox=data.get("mailbox", "INBOX"),
            fetch_batch_size=int(data.get("fetch_batch_size", 25)),
        )


@dataclass
class TenantConfig:
    """A mailbox owner. Every store operation is scoped to ``tenant_id``."""

    tenant_id: str
    imap: ImapConfig

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TenantConfig":
        tenant_id = str(data.get("tenant_id") or "").strip()
        if not tenant_id:
            raise ValueError("Missing required 'tenant_id' for tenant configuration")
        return cls(tenant_id=tenant_id, imap=ImapConfig.from_dict(data.get("imap", {})))


class StoreBackend(Enum):
    """Message store backend type."""

    SQLITE = "sqlite"
    POSTGRES = "postgres"

    @classmethod
    def from_string(cls, value: str) -> "StoreBackend":
        normalized = value.lower().strip()
        if normalized in ("postgres", "postgresql"):
            return cls.POSTGRES
        if normalized in ("sqlite", "sqlite3"):
            return cls.SQLITE
        raise ValueError(
            f"Invalid store backend '{value}'. Must be 'sqlite' or 'postgres'."
        )


@dataclass
class SqliteConfig:
    path: str = "config/conversations.db"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SqliteConfig":
        return cls(
            path=data.get("path")
            or os.environ.get("SQLITE_PATH", "config/conversations.db")
        )


@dataclass
class PostgresConfig:
    """PostgreSQL database configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "conversations"
    user: str = "conversations"
    password: str = ""
    ssl_mode: str = "prefer"
    min_pool_size: int = 1
    max_pool_size: int = 10

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PostgresConfig":
        return cls(
            host=data.get("host") or os.environ.get("POSTGRES_HOST", "localhost"),
            port=int(data.get("port") or os.environ.get("POSTGRES_PORT", "5432")),
            database=data.get("database")
            or os.environ.get("POSTGRES_DATABASE", "conversations"),
            user=data.get("user") or os.environ.get("POSTGRES_USER", "conversations"),
            password=data.get("password") or os.environ.get("POSTGRES_PASSWORD", ""),
            ssl_mode=data.get("ssl_mode", "prefer"),
            min_pool_size=int(data.get("min_pool_size", 1)),
            max_pool_size=int(data.get("max_pool_size", 10)),
        )


@dataclass
class StoreConfig:
    """Message store configuration."""

    backend: StoreBackend = StoreBackend.SQLITE
    sqlite: SqliteConfig = field(default_factory=SqliteConfig)
    postgres: Optional[PostgresConfig] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StoreConfig":
        backend_str = data.get("backend") or os.environ.get("STORE_BACKEND", "sqlite")
        backend = StoreBackend.from_string(backend_str)

        postgres_config = None
        if backend is StoreBackend.POSTGRES or data.get("postgres"):
            postgres_config = PostgresConfig.from_dict(data.get("postgres", {}))

        return cls(
            backend=backend,
            sqlite=SqliteConfig.from_dict(data.get("sqlite", {})),
            postgres=postgres_config,
        )


@dataclass
class SyncConfig:
    interval_seconds: int = 300
    preview_limit: int = 10
    snippet_length: int = 150

    def __post_init__(self):
        if self.interval_seconds < 1:
            raise ValueError("sync.interval_seconds must be at least 1")
        if self.preview_limit < 1:
            raise ValueError("sync.preview_limit must be at least 1")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncConfig":
        return cls(
            interval_seconds=int(data.get("interval_seconds", 300)),
            preview_limit=int(data.get("preview_limit", 10)),
            snippet_length=int(data.get("snippet_length", 150)),
        )


@dataclass
class ServiceConfig:
    """Top level service configuration."""

    tenants: List[TenantConfig]
    store: StoreConfig = field(default_factory=StoreConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    def __post_init__(self):
        if not self.tenants:
            raise ValueError("At least one tenant must be configured")
        seen = set()
        for tenant in self.tenants:
            if tenant.tenant_id in seen:
                raise ValueError(f"Duplicate tenant_id '{tenant.tenant_id}'")
            seen.add(tenant.tenant_id)

    def get_tenant(self, tenant_id: str) -> TenantConfig:
        for tenant in self.tenants:
            if tenant.tenant_id == tenant_id:
                return tenant
        raise KeyError(f"Unknown tenant '{tenant_id}'")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceConfig":
        """Create configuration from dictionary."""
        if "tenants" not in data:
            raise ValueError(
                "Missing required 'tenants' configuration. "
                "Please list at least one tenant with tenant_id and imap settings"
            )

        return cls(
            tenants=[TenantConfig.from_dict(t) for t in data["tenants"] or []],
            store=StoreConfig.from_dict(data.get("store", {})),
            sync=SyncConfig.from_dict(data.get("sync", {})),
        )


def load_config(config_path: Optional[str] = None) -> ServiceConfig:
    """Load configuration from file or environment variables.

    Args:
        config_path: Path to configuration file

    Returns:
        Service configuration

    Raises:
        ValueError: If configuration is invalid or missing
    """
    default_locations = [
        Path("/app/config/config.yaml"),
        Path("/app/config/config.yml"),
        Path("config/config.yaml"),
        Path("config/config.yml"),
        Path("config.yaml"),
        Path("config.yml"),
        Path("~/.config/conversation-sync/config.yaml"),
        Path("/etc/conversation-sync/config.yaml"),
    ]

    config_data: Dict[str, Any] = {}

    if config_path:
        try:
            with open(config_path, "r") as f:
                config_data = yaml.safe_load(f) or {}
            logger.info(f"Loaded configuration from {config_path}")
        except FileNotFoundError:
            logger.warning(f"Configuration file not found: {config_path}")
    else:
        for path in default_locations:
            expanded_path = path.expanduser()
            if expanded_path.exists():
                with open(expanded_path, "r") as f:
                    config_data = yaml.safe_load(f) or {}
                logger.info(f"Loaded configuration from {expanded_path}")
                break

    if not config_data:
        logger.info("No configuration file found, using environment variables")
        if not os.environ.get("IMAP_HOST") and not os.environ.get("IMAP_RETURN_URL"):
            raise ValueError(
                "No configuration file found and IMAP_HOST environment variable not set"
            )

        config_data = {
            "tenants": [
                {
                    "tenant_id": os.environ.get("TENANT_ID", "default"),
                    "imap": {
                        "host": os.environ.get("IMAP_HOST"),
                        "return_url": os.environ.get("IMAP_RETURN_URL"),
                        "port": int(os.environ.get("IMAP_PORT", "0")) or None,
                        "username": os.environ.get("IMAP_USERNAME"),
                        "password": os.environ.get("IMAP_PASSWORD"),
                        "use_ssl": os.environ.get("IMAP_USE_SSL", "true").lower()
                        == "true",
                        "verify_tls": os.environ.get("IMAP_VERIFY_TLS", "true").lower()
                        == "true",
                        "mailbox": os.environ.get("IMAP_MAILBOX", "INBOX"),
                    },
                }
            ],
            "store": {
                "backend": os.environ.get("STORE_BACKEND", "sqlite"),
            },
        }

    try:
        return ServiceConfig.from_dict(config_data)
    except KeyError as e:
        raise ValueError(f"Missing required configuration: {e}")

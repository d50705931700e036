import pytest

import tunnel
from config import Settings


def test_database_url_prefers_explicit_url(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///dev.db")
    assert Settings().database_url() == "sqlite:///dev.db"


def test_database_url_from_parts(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("DB_USER", "app")
    monkeypatch.setenv("DB_PASSWORD", "pw")
    monkeypatch.setenv("DB_HOST", "db.internal")
    monkeypatch.setenv("DB_PORT", "6543")
    monkeypatch.setenv("DB_NAME", "movies")
    settings = Settings()
    assert settings.database_url() == "postgresql+psycopg2://app:pw@db.internal:6543/movies"
    # through a tunnel the database is reached on the local forwarded port
    assert settings.database_url(port_override=40001) == "postgresql+psycopg2://app:pw@127.0.0.1:40001/movies"


def test_database_url_requires_configuration(monkeypatch):
    for name in ("DATABASE_URL", "DB_USER", "DB_NAME"):
        monkeypatch.delenv(name, raising=False)
    with pytest.raises(ValueError):
        Settings().database_url()


def test_integer_settings_are_validated(monkeypatch):
    monkeypatch.setenv("DB_POOL_SIZE", "lots")
    with pytest.raises(ValueError):
        Settings()


def test_production_flag_and_cors(monkeypatch):
    monkeypatch.setenv("APP_ENV", "Production")
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example,")
    settings = Settings()
    assert settings.is_production
    assert settings.CORS_ORIGINS == ["https://a.example", "https://b.example"]


class FakeForwarder:
    started = 0

    def __init__(self, *args, **kwargs):
        self.kwargs = kwargs
        self.is_active = False
        self.local_bind_port = 40123

    def start(self):
        FakeForwarder.started += 1
        self.is_active = True

    def stop(self):
        self.is_active = False


def test_tunnel_requires_credentials(monkeypatch):
    monkeypatch.setattr(tunnel.settings, "SSH_HOST", "bastion.example")
    monkeypatch.setattr(tunnel.settings, "SSH_PASSWORD", None)
    monkeypatch.setattr(tunnel.settings, "SSH_PRIVATE_KEY", None)
    with pytest.raises(RuntimeError, match="Provide SSH_PASSWORD or SSH_PRIVATE_KEY"):
        tunnel.ensure_ssh_tunnel()


def test_tunnel_starts_once_and_closes(monkeypatch):
    monkeypatch.setattr(tunnel, "SSHTunnelForwarder", FakeForwarder)
    monkeypatch.setattr(tunnel, "_cleanup_attached", True)
    monkeypatch.setattr(tunnel.settings, "SSH_HOST", "bastion.example")
    monkeypatch.setattr(tunnel.settings, "SSH_PASSWORD", "secret")
    monkeypatch.setattr(tunnel.settings, "SSH_PRIVATE_KEY", None)
    FakeForwarder.started = 0

    assert tunnel.ensure_ssh_tunnel() == 40123
    assert tunnel.ensure_ssh_tunnel() == 40123
    assert FakeForwarder.started == 1

    tunnel.close_ssh_tunnel()
    assert tunnel._forwarder is None

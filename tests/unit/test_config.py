"""Tests for configuration loading."""

from boshrestore.config import load_config
from boshrestore.transports import get_transport
from boshrestore.transports.redis import RedisTransport


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: testhost
    port: 1234
backend: director
director:
  url: https://10.0.0.6:25555
  username: admin
polling:
  interval: 2
  timeouts:
    attach_disk: 120
plans:
  - id: plan-small
    jobs: [postgresql]
    pre_warming_errand: pre-warm
"""
    )
    monkeypatch.setenv("BOSH_RESTORE_CONFIG", str(config_path))
    monkeypatch.delenv("BOSH_RESTORE_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    config = load_config()
    assert config.transport.backend == "redis"
    assert config.transport.redis.host == "testhost"
    assert config.backend == "director"
    assert config.director.username == "admin"
    assert config.polling.interval == 2
    assert config.polling.timeout_for("attach_disk") == 120
    # operations missing from the file keep their defaults
    assert config.polling.timeout_for("run_errand") == 3600.0
    assert config.get_plan("plan-small").pre_warming_errand == "pre-warm"
    assert config.get_plan("plan-large") is None
    assert config.database_url is None


def test_database_url_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("BOSH_RESTORE_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.delenv("BOSH_RESTORE_DATABASE_URL", raising=False)
    monkeypatch.setenv("DATABASE_URL", "sqlite:///tmp/restores.db")
    assert load_config().database_url == "sqlite:///tmp/restores.db"

    monkeypatch.setenv("BOSH_RESTORE_DATABASE_URL", "postgresql://db/restores")
    assert load_config().database_url == "postgresql://db/restores"


def test_get_transport_uses_config(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
transport:
  backend: redis
  redis:
    host: confighost
    port: 6380
"""
    )
    monkeypatch.setenv("BOSH_RESTORE_CONFIG", str(config_path))
    monkeypatch.delenv("BOSH_RESTORE_TRANSPORT", raising=False)

    transport = get_transport()
    assert isinstance(transport, RedisTransport)
    assert transport.host == "confighost"
    assert transport.port == 6380

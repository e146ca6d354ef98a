import tomllib

from routerbridge.chat_proxy import config_loader
from routerbridge.chat_proxy.config import ProxyConfig


def test_load_proxy_config_creates_file(tmp_path, monkeypatch):
    config_path = tmp_path / "proxy.toml"
    monkeypatch.setenv(config_loader.CONFIG_FILE_ENV, str(config_path))

    cfg = config_loader.load_proxy_config()

    assert config_path.exists()
    assert cfg.port == 9000
    assert cfg.upstream_endpoint == "https://openrouter.ai/api/v1"
    assert cfg.mocked_model == "gpt-4o"
    assert cfg.heartbeat_interval_s == 15.0
    assert cfg.config_file_path == str(config_path)


def test_written_file_is_sectioned(tmp_path):
    config_path = tmp_path / "nested" / "proxy.toml"
    config_loader.write_config(ProxyConfig(port=9100, title="bridge"), config_path)

    data = tomllib.loads(config_path.read_text())

    assert data["server"]["port"] == 9100
    assert data["upstream"]["title"] == "bridge"
    assert data["timeouts"]["backend_timeout_ms"] == 300_000
    assert "config_file_path" not in data["server"]


def test_file_values_are_read(tmp_path, monkeypatch):
    config_path = tmp_path / "proxy.toml"
    config_path.write_text(
        '[server]\nport = 9200\nmocked_model = "gpt-4o-mini"\n'
        '[timeouts]\nheartbeat_interval_s = 5\n'
    )
    monkeypatch.setenv(config_loader.CONFIG_FILE_ENV, str(config_path))

    cfg = config_loader.load_proxy_config()

    assert cfg.port == 9200
    assert cfg.mocked_model == "gpt-4o-mini"
    assert cfg.heartbeat_interval_s == 5.0
    assert isinstance(cfg.heartbeat_interval_s, float)


def test_env_overrides_take_precedence(tmp_path, monkeypatch):
    config_path = tmp_path / "proxy.toml"
    monkeypatch.setenv(config_loader.CONFIG_FILE_ENV, str(config_path))
    config_loader.write_config(ProxyConfig(port=9101), config_path)

    monkeypatch.setenv("CHAT_PROXY_PORT", "9010")
    monkeypatch.setenv("CHAT_PROXY_UPSTREAM_ENDPOINT", "http://localhost:8080/v1")

    cfg = config_loader.load_proxy_config()
    file_cfg = config_loader.load_file_config()
    env_overrides = config_loader.list_env_overrides()

    assert file_cfg["port"] == 9101
    assert cfg.port == 9010  # environment wins at runtime
    assert cfg.upstream_endpoint == "http://localhost:8080/v1"
    assert env_overrides["CHAT_PROXY_PORT"] == "9010"


def test_invalid_env_value_is_ignored(tmp_path, monkeypatch):
    monkeypatch.setenv(config_loader.CONFIG_FILE_ENV, str(tmp_path / "proxy.toml"))
    monkeypatch.setenv("CHAT_PROXY_PORT", "not-a-port")

    assert config_loader.load_proxy_config().port == 9000


def test_debug_env_alias(tmp_path, monkeypatch):
    monkeypatch.setenv(config_loader.CONFIG_FILE_ENV, str(tmp_path / "proxy.toml"))
    monkeypatch.setenv("DEBUG", "true")

    assert config_loader.load_proxy_config().debug is True

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class ProxyConfig:
    host: str = "127.0.0.1"
    port: int = 9000
    upstream_endpoint: str = "https://openrouter.ai/api/v1"
    # The only model id clients may request; remapped to the active upstream model.
    mocked_model: str = "gpt-4o"
    client_key_prefix: str = "sk-"
    backend_timeout_ms: int = 300_000
    heartbeat_interval_s: float = 15.0
    log_path: str = "logs/chat_proxy.jsonl"
    max_log_bytes: int = 25_000_000
    debug: bool = False
    # Attribution headers sent with every upstream request
    referer: str = "http://127.0.0.1:9000"
    title: str = "routerbridge"
    organization: str = "routerbridge"
    config_file_path: Optional[str] = None

    @classmethod
    def load(cls) -> "ProxyConfig":
        from .config_loader import load_proxy_config

        return load_proxy_config()

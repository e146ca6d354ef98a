import httpx
import pytest

from fakes import API_KEY, UPSTREAM, UPSTREAM_MODEL
from routerbridge.chat_proxy.app import create_app
from routerbridge.chat_proxy.config import ProxyConfig
from routerbridge.chat_proxy.logging_utils import JsonlLogger
from routerbridge.chat_proxy.runtime_config import RuntimeConfigStore


@pytest.fixture
def proxy_config(tmp_path):
    return ProxyConfig(log_path=str(tmp_path / "logs" / "chat_proxy.jsonl"))


@pytest.fixture
def make_proxy(proxy_config):
    """Return a factory building an app whose upstream is ``handler``.

    Every upstream request is appended to the returned list so tests can
    inspect what the proxy sent.
    """

    def factory(handler, model=UPSTREAM_MODEL, cfg=None):
        sent = []

        def recording(request: httpx.Request):
            sent.append(request)
            return handler(request)

        cfg = cfg or proxy_config
        store = RuntimeConfigStore(UPSTREAM, model, API_KEY)
        app = create_app(
            cfg,
            store,
            transport=httpx.MockTransport(recording),
            request_log=JsonlLogger(cfg.log_path),
        )
        return app, store, sent

    return factory

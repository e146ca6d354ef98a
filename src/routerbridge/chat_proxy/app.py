from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response

from . import __version__
from .config import ProxyConfig
from .credentials import load_credentials, mask_api_key
from .errors import AuthError, DecodeError, ProxyError, UpstreamError, err_not_found
from .forwarder import ChatForwarder
from .logging_utils import JsonlLogger
from .runtime_config import RuntimeConfigStore
from .streaming import RelayResponse

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, GET, OPTIONS",
    "Access-Control-Allow-Headers": "Origin, Content-Type, Accept, Authorization",
    "Access-Control-Expose-Headers": "Content-Length",
    "Access-Control-Allow-Credentials": "true",
}

_FALLBACK_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"]


async def _json_body(request: Request):
    try:
        return await request.json()
    except ValueError as exc:
        raise DecodeError("Invalid JSON body", client_side=True) from exc


def create_app(
    cfg: Optional[ProxyConfig] = None,
    store: Optional[RuntimeConfigStore] = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    request_log: JsonlLogger | None = None,
) -> FastAPI:
    """Build the proxy application.

    Without an explicit ``store`` the upstream credentials are loaded from the
    environment, which raises ``StartupError`` when they are missing or bad.
    ``transport`` replaces the network for the upstream client.
    """

    cfg = cfg or ProxyConfig.load()
    if store is None:
        creds = load_credentials()
        store = RuntimeConfigStore(cfg.upstream_endpoint, creds.model, creds.api_key)
    if request_log is None:
        request_log = JsonlLogger(cfg.log_path, cfg.max_log_bytes)
    forwarder = ChatForwarder(cfg, store, request_log, transport=transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        snapshot = store.read()
        logger.info("Starting proxy on %s:%d", cfg.host, cfg.port)
        logger.info("Upstream endpoint: %s", snapshot.endpoint)
        logger.info("Upstream model: %s", snapshot.model)
        logger.info("API key: %s", mask_api_key(snapshot.api_key))
        if cfg.host not in ("127.0.0.1", "localhost"):
            logger.warning("Listening on %s; only key shape is checked, not identity", cfg.host)
        try:
            yield
        finally:
            await forwarder.aclose()

    app = FastAPI(title="routerbridge chat proxy", version=__version__, lifespan=lifespan)
    app.state.cfg = cfg
    app.state.store = store
    app.state.forwarder = forwarder

    @app.middleware("http")
    async def cors(request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=200, headers=CORS_HEADERS)
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError):
        if isinstance(exc, UpstreamError) and exc.raw_body is not None:
            return Response(
                content=exc.raw_body,
                status_code=exc.status_code,
                media_type=exc.content_type,
            )
        return JSONResponse(status_code=exc.status_code, content=exc.detail)

    def require_client_key(request: Request) -> str:
        header = request.headers.get("authorization", "")
        if not header.startswith("Bearer "):
            raise AuthError("Missing or invalid Authorization header")
        key = header[len("Bearer ") :].strip()
        if not key.startswith(cfg.client_key_prefix):
            raise AuthError("Invalid API key format")
        return key

    @app.get("/health")
    async def health():
        return JSONResponse(content=await forwarder.probe_health())

    @app.get("/v1/config")
    async def read_config():
        return {"model": store.read().model}

    @app.post("/v1/config")
    async def update_config(request: Request):
        body = await _json_body(request)
        model = body.get("model") if isinstance(body, dict) else None
        snapshot = store.update(model)
        return {"status": "success", "model": snapshot.model}

    @app.get("/v1/models")
    async def models(request: Request):
        status, body, content_type = await forwarder.list_models(request.url.query)
        return Response(content=body, status_code=status, media_type=content_type)

    @app.post("/v1/chat/completions")
    async def chat_completions(request: Request, _key: str = Depends(require_client_key)):
        payload = await _json_body(request)
        outcome = await forwarder.handle_chat(payload, request.url.query)
        if outcome.relay is not None:
            return RelayResponse(outcome.relay)
        return JSONResponse(status_code=outcome.status_code, content=outcome.body)

    # Registered last so it only sees requests no route above accepted.
    @app.api_route("/{path:path}", methods=_FALLBACK_METHODS, include_in_schema=False)
    async def not_found(path: str):
        raise err_not_found("/" + path)

    return app

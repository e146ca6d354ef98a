from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from . import __version__
from .body_reader import TieredBufferPool, default_pool, read_body
from .config import ProxyConfig
from .errors import (
    ProxyError,
    TransportError,
    UpstreamError,
    ValidationError,
    err_upstream_unavailable,
)
from .logging_utils import JsonlLogger
from .models import ChatCompletionRequest
from .rewriter import (
    parse_upstream_error,
    parse_upstream_response,
    response_payload,
    rewrite_request,
    rewrite_response,
)
from .runtime_config import RuntimeConfigStore, RuntimeSnapshot
from .streaming import StreamRelay

logger = logging.getLogger(__name__)

# Only encodings body_reader can decode.
ACCEPT_ENCODING = "gzip, br"


@dataclass
class ChatOutcome:
    status_code: int
    body: Optional[Dict[str, Any]] = None
    relay: Optional[StreamRelay] = None


def _truncate(text: str, limit: int = 2000) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


class ChatForwarder:
    """Sends rewritten requests upstream and shapes what comes back."""

    def __init__(
        self,
        cfg: ProxyConfig,
        store: RuntimeConfigStore,
        request_log: JsonlLogger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        pool: TieredBufferPool | None = None,
    ):
        self.cfg = cfg
        self.store = store
        self.request_log = request_log
        self.pool = pool or default_pool
        self.client = httpx.AsyncClient(
            timeout=cfg.backend_timeout_ms / 1000, transport=transport
        )

    def upstream_headers(
        self,
        snapshot: RuntimeSnapshot,
        stream: bool = False,
        provider_header: str | None = None,
    ) -> Dict[str, str]:
        # Built from scratch; nothing from the inbound request is copied.
        headers = {
            "Authorization": f"Bearer {snapshot.api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream" if stream else "application/json",
            "Accept-Encoding": ACCEPT_ENCODING,
            "User-Agent": f"routerbridge/{__version__}",
            "HTTP-Referer": self.cfg.referer,
            "X-Title": self.cfg.title,
            "OpenAI-Organization": self.cfg.organization,
        }
        if provider_header:
            headers["X-Model-Provider"] = provider_header
        return headers

    @staticmethod
    def _target_url(snapshot: RuntimeSnapshot, path: str, query: str = "") -> str:
        url = snapshot.endpoint.rstrip("/") + path
        return f"{url}?{query}" if query else url

    async def _send(self, request: httpx.Request) -> httpx.Response:
        try:
            return await self.client.send(request, stream=True)
        except httpx.HTTPError as exc:
            logger.error("Error forwarding request to %s: %s", request.url, exc)
            raise TransportError(hint=str(exc)) from exc

    async def _get(self, snapshot: RuntimeSnapshot, path: str, query: str = ""):
        request = self.client.build_request(
            "GET",
            self._target_url(snapshot, path, query),
            headers=self.upstream_headers(snapshot),
        )
        response = await self._send(request)
        try:
            body = await read_body(response, self.pool)
        finally:
            await response.aclose()
        return response, body

    def _record(self, started: float, status: int, **fields: Any):
        if self.request_log is None:
            return
        self.request_log.record_request(
            path="/v1/chat/completions", status=status, started=started, **fields
        )

    async def handle_chat(self, payload: Any, query: str = "") -> ChatOutcome:
        started = time.monotonic()
        requested = payload.get("model") if isinstance(payload, dict) else None
        snapshot = self.store.read()
        try:
            outcome = await self._handle_chat(payload, query, snapshot)
        except ProxyError as exc:
            self._record(
                started,
                exc.status_code,
                model=requested,
                upstream_model=snapshot.model,
                error=exc.message,
            )
            raise
        self._record(
            started,
            outcome.status_code,
            model=requested,
            upstream_model=snapshot.model,
            stream=outcome.relay is not None,
            generation=snapshot.generation,
        )
        return outcome

    async def _handle_chat(
        self, payload: Any, query: str, snapshot: RuntimeSnapshot
    ) -> ChatOutcome:
        if not isinstance(payload, dict):
            raise ValidationError("Error parsing request", hint="Body must be a JSON object")
        try:
            request = ChatCompletionRequest.model_validate(payload)
        except PydanticValidationError as exc:
            first = exc.errors()[0] if exc.errors() else {}
            loc = ".".join(str(part) for part in first.get("loc", ()))
            raise ValidationError(
                "Error parsing request", hint=f"{loc}: {first.get('msg', '')}".strip(": ")
            ) from exc

        upstream_req, policy = rewrite_request(request, snapshot, self.cfg.mocked_model)
        body = upstream_req.to_payload()
        logger.info(
            "Forwarding %s -> %s (stream=%s)",
            request.model,
            upstream_req.model,
            upstream_req.stream,
        )
        if self.cfg.debug:
            logger.debug("Upstream request body: %s", _truncate(json.dumps(body)))

        outbound = self.client.build_request(
            "POST",
            self._target_url(snapshot, "/chat/completions", query),
            json=body,
            headers=self.upstream_headers(snapshot, upstream_req.stream, policy.header),
        )
        response = await self._send(outbound)
        handed_off = False
        try:
            if response.status_code >= 400:
                raw = await read_body(response, self.pool)
                logger.warning(
                    "Upstream returned %d: %s",
                    response.status_code,
                    _truncate(raw.decode("utf-8", errors="replace"), 500),
                )
                raise parse_upstream_error(
                    response.status_code, raw, response.headers.get("content-type")
                )

            if upstream_req.stream:
                relay = StreamRelay(response, heartbeat_interval=self.cfg.heartbeat_interval_s)
                handed_off = True
                return ChatOutcome(response.status_code, relay=relay)

            raw = await read_body(response, self.pool)
            if self.cfg.debug:
                logger.debug(
                    "Upstream response body: %s",
                    _truncate(raw.decode("utf-8", errors="replace")),
                )
            parsed = parse_upstream_response(raw)
            result = rewrite_response(parsed, self.cfg.mocked_model)
            return ChatOutcome(response.status_code, body=response_payload(result))
        finally:
            if not handed_off:
                await response.aclose()

    async def probe_health(self) -> Dict[str, str]:
        snapshot = self.store.read()
        try:
            response, _ = await self._get(snapshot, "/models")
        except TransportError as exc:
            raise err_upstream_unavailable() from exc
        if response.status_code != 200:
            raise UpstreamError(
                response.status_code, f"Upstream returned status {response.status_code}"
            )
        return {"status": "ok", "endpoint": snapshot.endpoint}

    async def list_models(self, query: str = "") -> tuple[int, bytes, str]:
        """Return upstream's model list untouched, with its status and content type."""

        snapshot = self.store.read()
        response, body = await self._get(snapshot, "/models", query)
        if response.status_code != 200:
            raise parse_upstream_error(
                response.status_code, body, response.headers.get("content-type")
            )
        content_type = response.headers.get("content-type", "application/json")
        return response.status_code, body, content_type

    async def aclose(self):
        await self.client.aclose()

from __future__ import annotations

from typing import Any

from fastapi import HTTPException


class ProxyError(HTTPException):
    def __init__(
        self,
        status_code: int,
        err_type: str,
        message: str,
        hint: str | None = None,
        code: Any = None,
    ):
        payload = {
            "error": {
                "type": err_type,
                "code": status_code if code is None else code,
                "message": message,
            }
        }
        if hint:
            payload["error"]["hint"] = hint
        self.message = message
        super().__init__(status_code=status_code, detail=payload)


class ValidationError(ProxyError):
    """Bad or missing client input."""

    def __init__(self, message: str, hint: str | None = None):
        super().__init__(400, "invalid_request", message, hint)


class AuthError(ProxyError):
    def __init__(self, message: str):
        super().__init__(401, "unauthorized", message)


class UnsupportedModelError(ProxyError):
    def __init__(self, model: str, supported: str):
        super().__init__(
            400,
            "unsupported_model",
            f"Model {model} not supported. Use {supported} instead.",
        )
        self.model = model


class UpstreamError(ProxyError):
    """Non-2xx answer from upstream, surfaced with upstream's own status.

    When the upstream body could not be parsed, ``raw_body`` holds it and is
    returned to the client unchanged under upstream's ``content_type``.
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        err_type: str | None = None,
        code: Any = None,
        raw_body: bytes | None = None,
        content_type: str | None = None,
    ):
        super().__init__(
            status_code, err_type or "upstream_error", message, code=code
        )
        self.raw_body = raw_body
        self.content_type = content_type


class TransportError(ProxyError):
    def __init__(self, message: str = "Error forwarding request", hint: str | None = None):
        super().__init__(502, "upstream_unreachable", message, hint)


class DecodeError(ProxyError):
    """Malformed JSON or undecodable compression.

    Client-side problems map to 400, upstream-side ones to 500.
    """

    def __init__(self, message: str, *, client_side: bool = False):
        super().__init__(400 if client_side else 500, "decode_error", message)


def err_not_found(path: str) -> ProxyError:
    return ProxyError(404, "not_found", f"No route for {path}")


def err_upstream_unavailable(message: str = "Connection failed") -> ProxyError:
    return ProxyError(503, "upstream_unavailable", message)

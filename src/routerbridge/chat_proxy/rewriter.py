"""Request and response rewriting between the client and upstream dialects."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .errors import DecodeError, UnsupportedModelError, UpstreamError
from .models import (
    ChatChoice,
    ChatCompletionRequest,
    ChatCompletionResponse,
    ToolSpec,
    UpstreamChatRequest,
    UpstreamChatResponse,
)
from .normalization import convert_tool_choice, filter_tool_calls, translate_messages
from .providers import ProviderPolicy, policy_for_model
from .runtime_config import RuntimeSnapshot

logger = logging.getLogger(__name__)


def rewrite_request(
    request: ChatCompletionRequest,
    snapshot: RuntimeSnapshot,
    mocked_model: str,
) -> tuple[UpstreamChatRequest, ProviderPolicy]:
    """Build the upstream request for a validated client request.

    The mocked model check runs before anything else so a rejected request
    never reaches upstream.
    """

    if request.model != mocked_model:
        raise UnsupportedModelError(request.model, mocked_model)

    policy = policy_for_model(snapshot.model)
    upstream = UpstreamChatRequest(
        model=snapshot.model,
        messages=translate_messages(request.messages),
        stream=bool(request.stream),
        temperature=policy.temperature(request.temperature),
        max_tokens=policy.max_tokens(request.max_tokens),
    )

    if request.tools:
        upstream.tools = [tool.model_copy(deep=True) for tool in request.tools]
    elif request.functions:
        upstream.tools = [ToolSpec(type="function", function=fn) for fn in request.functions]
    if upstream.tools:
        choice = convert_tool_choice(request.tool_choice)
        if choice:
            upstream.tool_choice = choice

    logger.debug(
        "Rewrote request: model=%s provider=%s stream=%s messages=%d tools=%d",
        upstream.model,
        policy.family,
        upstream.stream,
        len(upstream.messages),
        len(upstream.tools or []),
    )
    return upstream, policy


def parse_upstream_response(body: bytes) -> UpstreamChatResponse:
    try:
        return UpstreamChatResponse.model_validate_json(body)
    except PydanticValidationError as exc:
        logger.error("Failed to parse upstream response: %s", exc.errors()[:1])
        raise DecodeError("Error parsing response") from exc


def parse_upstream_error(
    status_code: int, body: bytes, content_type: str | None = None
) -> UpstreamError:
    """Turn a non-2xx upstream answer into an error carrying upstream's status."""

    try:
        data: Any = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        data = None

    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict):
        return UpstreamError(
            status_code,
            str(err.get("message") or f"Upstream returned status {status_code}"),
            err_type=err.get("type") if isinstance(err.get("type"), str) else None,
            code=err.get("code"),
        )
    # Unstructured bodies go back to the client as-is.
    return UpstreamError(
        status_code,
        f"Upstream returned status {status_code}",
        raw_body=body,
        content_type=content_type,
    )


def _error_status(code: Any) -> int:
    try:
        status = int(code)
    except (TypeError, ValueError):
        return 502
    return status if 400 <= status <= 599 else 502


def rewrite_response(
    parsed: UpstreamChatResponse, mocked_model: str
) -> ChatCompletionResponse:
    """Rewrite an upstream completion into the client dialect.

    Choices keep their order and count. The model id always reads as the
    mocked model, and tool-call stubs with empty names are removed.
    """

    if parsed.error is not None:
        raise UpstreamError(
            _error_status(parsed.error.code),
            parsed.error.message or "Upstream returned an error",
            err_type=parsed.error.type,
            code=parsed.error.code,
        )

    choices = []
    for choice in parsed.choices:
        message = choice.message.model_copy(deep=True)
        message.tool_calls = filter_tool_calls(message.tool_calls)
        choices.append(
            ChatChoice(index=choice.index, message=message, finish_reason=choice.finish_reason)
        )

    return ChatCompletionResponse(
        id=parsed.id,
        object=parsed.object or "chat.completion",
        created=parsed.created,
        model=mocked_model,
        choices=choices,
        usage=parsed.usage,
    )


def response_payload(response: ChatCompletionResponse) -> dict:
    return response.model_dump(exclude_none=True)


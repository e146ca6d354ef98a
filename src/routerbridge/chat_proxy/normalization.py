from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional

from .models import ChatMessage, ToolCall

logger = logging.getLogger(__name__)

_PASSTHROUGH_CHOICES = {"auto", "none"}


def _truncate(text: Any, max_len: int = 50) -> str:
    text = text if isinstance(text, str) else str(text)
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


def translate_messages(messages: Iterable[ChatMessage]) -> List[ChatMessage]:
    """Map client messages onto the upstream schema.

    Assistant tool calls are re-tagged as ``function`` calls with id, name and
    arguments untouched, and the legacy ``function`` role becomes ``tool``.
    Order is conversation history, so nothing is dropped or reordered; empty
    tool-call names are left for upstream to reject.
    """

    converted: List[ChatMessage] = []
    for idx, msg in enumerate(messages):
        out = msg.model_copy(deep=True)
        if out.role == "assistant" and out.tool_calls:
            out.tool_calls = [
                ToolCall(id=tc.id, type="function", function=tc.function)
                for tc in out.tool_calls
            ]
            logger.debug(
                "Message %d: assistant with %d tool call(s)", idx, len(out.tool_calls)
            )
        elif out.role == "function":
            out.role = "tool"
            logger.debug("Message %d: function response converted to tool", idx)
        logger.debug(
            "Message %d - role: %s, content: %s", idx, out.role, _truncate(out.content)
        )
        converted.append(out)
    return converted


def convert_tool_choice(choice: Any) -> str:
    """Reduce a client ``tool_choice`` to what upstream accepts.

    Upstream cannot pin a specific function, so a function-targeted directive
    degrades to ``"auto"``. An empty result means the field is omitted.
    """

    if choice is None:
        return ""
    if isinstance(choice, str):
        return choice if choice in _PASSTHROUGH_CHOICES else ""
    if isinstance(choice, dict) and choice.get("type") == "function":
        return "auto"
    return ""


def filter_tool_calls(tool_calls: Optional[List[ToolCall]]) -> Optional[List[ToolCall]]:
    """Drop upstream tool-call stubs without a function name."""

    if not tool_calls:
        return tool_calls
    kept = []
    for idx, tc in enumerate(tool_calls):
        if not tc.function.name:
            logger.warning("Dropping tool call %d (id=%r) with empty function name", idx, tc.id)
            continue
        kept.append(tc)
    return kept or None

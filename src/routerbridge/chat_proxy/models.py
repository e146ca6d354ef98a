from __future__ import annotations

import json
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

Role = Literal["system", "user", "assistant", "tool", "function"]


def _coerce_str(val: Any) -> str:
    """Coerce None to empty string and structured values to JSON text."""
    if val is None:
        return ""
    if isinstance(val, str):
        return val
    if isinstance(val, (dict, list)):
        return json.dumps(val, ensure_ascii=False)
    return str(val)


class ToolCallFunction(BaseModel):
    name: str = ""
    arguments: str = ""  # JSON-encoded string

    @field_validator("name", "arguments", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> str:
        return _coerce_str(value)


class ToolCall(BaseModel):
    id: str = ""
    type: str = "function"
    function: ToolCallFunction = Field(default_factory=ToolCallFunction)


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    role: Role
    # Text for plain chat; list-of-parts content is passed through untouched.
    content: Union[str, List[Any]] = ""
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    @field_validator("content", mode="before")
    @classmethod
    def _null_content(cls, value: Any) -> Any:
        return "" if value is None else value


class ChoiceMessage(ChatMessage):
    # Upstream occasionally omits the role on completed messages.
    role: str = "assistant"


class FunctionSpec(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    description: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None


class ToolSpec(BaseModel):
    model_config = ConfigDict(extra="allow")

    type: str = "function"
    function: FunctionSpec


class ChatCompletionRequest(BaseModel):
    """Inbound request in the OpenAI chat-completion dialect."""

    model_config = ConfigDict(extra="allow")

    model: str = ""
    messages: List[ChatMessage] = Field(default_factory=list)
    stream: Optional[bool] = False
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    tools: Optional[List[ToolSpec]] = None
    functions: Optional[List[FunctionSpec]] = None
    tool_choice: Optional[Any] = None  # "auto" | "none" | {"type": "function", ...}


class UpstreamChatRequest(BaseModel):
    """Outbound request in the OpenRouter dialect."""

    model: str
    messages: List[ChatMessage]
    stream: bool = False
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    tools: Optional[List[ToolSpec]] = None
    tool_choice: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        # Unset sampling params must be absent, not null or zero.
        return self.model_dump(exclude_none=True)


class Usage(BaseModel):
    model_config = ConfigDict(extra="allow")

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatChoice(BaseModel):
    index: int = 0
    message: ChoiceMessage = Field(default_factory=ChoiceMessage)
    finish_reason: str = ""

    @field_validator("finish_reason", mode="before")
    @classmethod
    def _null_reason(cls, value: Any) -> str:
        return _coerce_str(value)


class UpstreamErrorBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: str = ""
    type: Optional[str] = None
    code: Optional[Any] = None


class UpstreamChatResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = ""
    object: Optional[str] = None
    created: int = 0
    model: str = ""
    choices: List[ChatChoice] = Field(default_factory=list)
    usage: Usage = Field(default_factory=Usage)
    error: Optional[UpstreamErrorBody] = None

    @field_validator("usage", mode="before")
    @classmethod
    def _null_usage(cls, value: Any) -> Any:
        return {} if value is None else value


class ChatCompletionResponse(BaseModel):
    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: List[ChatChoice]
    usage: Usage

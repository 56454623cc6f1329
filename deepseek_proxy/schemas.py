"""Pydantic models for the OpenAI-style wire shapes the proxy accepts."""
from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict

Role = Literal["system", "user", "assistant", "tool", "function"]


class InboundToolCall(BaseModel):
    model_config = ConfigDict(extra="allow")
    id: Optional[str] = None
    type: Optional[str] = None
    function: Any = None


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="allow")
    role: Role
    content: Any = None
    tool_calls: Optional[List[InboundToolCall]] = None


class ChatCompletionsRequest(BaseModel):
    # Extras carry temperature, max_tokens and any other pass-through field verbatim.
    model_config = ConfigDict(extra="allow")
    model: Any = None
    messages: List[ChatMessage]
    tools: Any = None
    functions: Any = None
    tool_choice: Any = None
    stream: Any = None


class ToolCall(BaseModel):
    id: Optional[str] = None
    type: Literal["function"] = "function"
    function: Any = None


class Tool(BaseModel):
    type: Literal["function"] = "function"
    function: Any


class ModelEntry(BaseModel):
    id: str
    object: str = "model"
    created: int
    owned_by: str


class ModelsList(BaseModel):
    object: str = "list"
    data: List[ModelEntry]

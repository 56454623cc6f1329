"""Pure conversions between the OpenAI request shape and the DeepSeek one.

Nothing in here performs I/O; every function takes plain data (or the
pydantic models from :mod:`.schemas`) and returns plain JSON-ready data.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Iterable, Union

from pydantic import ValidationError

from .errors import InvalidRequest, MalformedUpstreamResponse, UnsupportedModel
from .schemas import ChatCompletionsRequest, ChatMessage, Tool, ToolCall

_SUPPORTED_TOOL_CHOICES = ("auto", "none")


@dataclass(frozen=True)
class LegacyFunctions:
    """Tools declared through the deprecated top-level ``functions`` list."""

    functions: list[Any]


@dataclass(frozen=True)
class ModernTools:
    """Whatever the request carried under ``tools`` (possibly nothing)."""

    tools: Any


ToolSource = Union[LegacyFunctions, ModernTools]


def parse_request_body(raw: bytes) -> dict[str, Any]:
    """Decode the inbound body; it must be a JSON object."""
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidRequest("Invalid JSON format") from exc
    if not isinstance(body, dict):
        raise InvalidRequest("Invalid JSON format")
    return body


def validate_model(model: Any, public_model: str) -> None:
    if not model:
        raise InvalidRequest("Missing model parameter")
    if model != public_model:
        raise UnsupportedModel(f"Unsupported model: {model}")


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts)


def parse_chat_request(body: dict[str, Any]) -> ChatCompletionsRequest:
    try:
        return ChatCompletionsRequest.model_validate(body)
    except ValidationError as exc:
        raise InvalidRequest(f"Invalid request body: {_describe_validation_error(exc)}") from exc


def _translate_message(message: ChatMessage) -> dict[str, Any]:
    out = message.model_dump(exclude_unset=True)
    out["role"] = "tool" if message.role == "function" else message.role
    out.pop("tool_calls", None)
    if message.tool_calls is not None:
        out["tool_calls"] = [
            ToolCall(id=call.id, function=call.function).model_dump(exclude_none=True)
            for call in message.tool_calls
        ]
    return out


def translate_messages(messages: Iterable[ChatMessage | dict[str, Any]]) -> list[dict[str, Any]]:
    """Map each message to the upstream shape.

    Legacy ``function`` roles become ``tool``; ``tool_calls`` entries are
    rebuilt as ``{id, type: "function", function}``. A message without
    ``tool_calls`` keeps the key absent. Running the result through this
    function again yields the same list.
    """
    return [_translate_message(ChatMessage.model_validate(message)) for message in messages]


def resolve_tool_source(request: ChatCompletionsRequest) -> ToolSource:
    functions = request.functions
    if isinstance(functions, list) and functions:
        return LegacyFunctions(functions=list(functions))
    return ModernTools(tools=request.tools)


def translate_tools(request: ChatCompletionsRequest) -> Any:
    source = resolve_tool_source(request)
    if isinstance(source, LegacyFunctions):
        return [Tool(function=fn).model_dump() for fn in source.functions]
    return source.tools


def translate_tool_choice(choice: Any) -> str:
    if isinstance(choice, str):
        return choice if choice in _SUPPORTED_TOOL_CHOICES else "auto"
    if isinstance(choice, dict) and choice.get("type") == "function":
        return "auto"
    # Any other object collapses to an empty string; existing clients rely on it.
    return ""


def _tool_choice_present(choice: Any) -> bool:
    # An empty object still counts as a choice and collapses to "".
    return isinstance(choice, (dict, list)) or bool(choice)


def build_upstream_request(request: ChatCompletionsRequest, upstream_model: str) -> dict[str, Any]:
    """Shallow-merge the inbound body with the translated fields."""
    upstream = request.model_dump(exclude_unset=True)
    upstream["model"] = upstream_model
    upstream["messages"] = translate_messages(request.messages)

    tools = translate_tools(request)
    if tools is not None:
        upstream["tools"] = tools

    if _tool_choice_present(request.tool_choice):
        upstream["tool_choice"] = translate_tool_choice(request.tool_choice)
    return upstream


def rewrite_response_model(raw: bytes, public_model: str) -> dict[str, Any]:
    """Parse a buffered upstream body and advertise the public model id."""
    try:
        response = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedUpstreamResponse("Response parse failed") from exc
    if not isinstance(response, dict):
        raise MalformedUpstreamResponse("Response parse failed")
    response["model"] = public_model
    return response

"""Tests for the pure request/response conversions."""

from __future__ import annotations

import pytest

from deepseek_proxy.errors import InvalidRequest, MalformedUpstreamResponse, UnsupportedModel
from deepseek_proxy.translate import (
    LegacyFunctions,
    ModernTools,
    build_upstream_request,
    parse_chat_request,
    parse_request_body,
    resolve_tool_source,
    rewrite_response_model,
    translate_messages,
    translate_tool_choice,
    translate_tools,
    validate_model,
)


def _request(**fields):
    body = {"model": "gpt-4o", "messages": [{"role": "user", "content": "hi"}]}
    body.update(fields)
    return parse_chat_request(body)


class TestToolChoice:
    @pytest.mark.parametrize(
        ("choice", "expected"),
        [
            ("auto", "auto"),
            ("none", "none"),
            ("stop", "auto"),
            ("required", "auto"),
            ({"type": "function", "function": {"name": "x"}}, "auto"),
            ({"type": "other"}, ""),
            ({}, ""),
        ],
    )
    def test_translate(self, choice, expected):
        assert translate_tool_choice(choice) == expected


class TestTools:
    def test_functions_become_tools(self):
        request = _request(functions=[{"name": "f"}])
        assert translate_tools(request) == [{"type": "function", "function": {"name": "f"}}]

    def test_functions_win_over_tools(self):
        request = _request(
            functions=[{"name": "legacy"}],
            tools=[{"type": "function", "function": {"name": "modern"}}],
        )
        assert isinstance(resolve_tool_source(request), LegacyFunctions)
        assert translate_tools(request) == [{"type": "function", "function": {"name": "legacy"}}]

    def test_empty_functions_falls_back_to_tools(self):
        tools = [{"type": "function", "function": {"name": "modern"}}]
        request = _request(functions=[], tools=tools)
        assert resolve_tool_source(request) == ModernTools(tools=tools)
        assert translate_tools(request) == tools

    def test_no_tools_at_all(self):
        assert translate_tools(_request()) is None


class TestMessages:
    def test_function_role_becomes_tool(self):
        out = translate_messages([{"role": "function", "name": "f", "content": "42"}])
        assert out == [{"role": "tool", "name": "f", "content": "42"}]

    def test_tool_role_unchanged_and_fields_kept(self):
        message = {"role": "tool", "tool_call_id": "call_1", "content": "ok"}
        assert translate_messages([message]) == [message]

    def test_absent_tool_calls_stay_absent(self):
        out = translate_messages([{"role": "assistant", "content": "hello"}])
        assert "tool_calls" not in out[0]

    def test_null_tool_calls_dropped(self):
        out = translate_messages([{"role": "assistant", "content": None, "tool_calls": None}])
        assert out == [{"role": "assistant", "content": None}]

    def test_tool_calls_rebuilt(self):
        out = translate_messages(
            [
                {
                    "role": "assistant",
                    "content": None,
                    "tool_calls": [
                        {
                            "index": 0,
                            "id": "call_1",
                            "type": "function",
                            "function": {"name": "lookup", "arguments": '{"q": 1}'},
                        }
                    ],
                }
            ]
        )
        assert out[0]["tool_calls"] == [
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": "lookup", "arguments": '{"q": 1}'},
            }
        ]

    def test_idempotent(self):
        messages = [
            {"role": "system", "content": "be brief"},
            {"role": "function", "name": "f", "content": "1"},
            {
                "role": "assistant",
                "content": None,
                "tool_calls": [{"id": "c", "function": {"name": "f", "arguments": "{}"}}],
            },
        ]
        once = translate_messages(messages)
        assert translate_messages(once) == once

    def test_unknown_role_rejected(self):
        with pytest.raises(InvalidRequest):
            parse_chat_request({"model": "gpt-4o", "messages": [{"role": "robot", "content": "x"}]})


class TestBuildUpstreamRequest:
    def test_passthrough_and_model(self):
        upstream = build_upstream_request(
            _request(temperature=1, max_tokens=64, user="abc", stream=True), "deepseek-chat"
        )
        assert upstream["model"] == "deepseek-chat"
        assert upstream["temperature"] == 1
        assert upstream["max_tokens"] == 64
        assert upstream["user"] == "abc"
        assert upstream["stream"] is True
        assert upstream["messages"] == [{"role": "user", "content": "hi"}]

    def test_optional_fields_not_invented(self):
        upstream = build_upstream_request(_request(), "deepseek-chat")
        assert set(upstream) == {"model", "messages"}

    def test_functions_body_yields_tools(self):
        upstream = build_upstream_request(_request(functions=[{"name": "f"}]), "deepseek-chat")
        assert upstream["tools"] == [{"type": "function", "function": {"name": "f"}}]

    def test_tool_choice_translated(self):
        upstream = build_upstream_request(_request(tool_choice={"type": "other"}), "deepseek-chat")
        assert upstream["tool_choice"] == ""

    def test_empty_tool_choice_object_collapses(self):
        upstream = build_upstream_request(_request(tool_choice={}), "deepseek-chat")
        assert upstream["tool_choice"] == ""

    @pytest.mark.parametrize("choice", ["", False, None])
    def test_falsy_scalar_tool_choice_passes_through(self, choice):
        upstream = build_upstream_request(_request(tool_choice=choice), "deepseek-chat")
        assert upstream["tool_choice"] == choice

    def test_missing_messages_rejected(self):
        with pytest.raises(InvalidRequest):
            parse_chat_request({"model": "gpt-4o"})


class TestValidation:
    def test_missing_model(self):
        with pytest.raises(InvalidRequest, match="Missing model parameter"):
            validate_model(None, "gpt-4o")

    def test_other_model(self):
        with pytest.raises(UnsupportedModel, match="deepseek-chat"):
            validate_model("deepseek-chat", "gpt-4o")

    def test_public_model_accepted(self):
        validate_model("gpt-4o", "gpt-4o")

    @pytest.mark.parametrize("raw", [b"", b"{not json", b"[1, 2]", b'"text"'])
    def test_body_must_be_json_object(self, raw):
        with pytest.raises(InvalidRequest, match="Invalid JSON format"):
            parse_request_body(raw)


class TestRewriteResponseModel:
    def test_model_replaced(self):
        body = rewrite_response_model(b'{"id": "x", "model": "deepseek-chat"}', "gpt-4o")
        assert body == {"id": "x", "model": "gpt-4o"}

    @pytest.mark.parametrize("raw", [b"", b"<html>", b"[]"])
    def test_malformed(self, raw):
        with pytest.raises(MalformedUpstreamResponse):
            rewrite_response_model(raw, "gpt-4o")

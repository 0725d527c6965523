"""
Tests for the core message, tool call and event types.
"""
import json

import pytest

from copilot_runtime.errors import ToolArgumentError
from copilot_runtime.types import (
    Attachment,
    CompletionResult,
    Message,
    Role,
    StreamEvent,
    StreamEventType,
    ToolCall,
    ToolCallDelta,
    Usage,
    normalize_messages,
    strip_data_uri,
    to_data_uri,
    to_jsonable,
)


class TestMessage:
    def test_constructors(self):
        assert Message.user("hi").role is Role.USER
        assert Message.system("rules").role is Role.SYSTEM
        assert Message.assistant("ok").tool_calls is None
        result = Message.tool_result("call_1", "sunny", name="get_weather")
        assert (result.role, result.tool_call_id, result.name) == (Role.TOOL, "call_1", "get_weather")

    def test_role_string_is_coerced(self):
        assert Message(role="assistant", content="x").role is Role.ASSISTANT

    def test_lists_become_tuples(self):
        call = ToolCall(id="c1", name="t", arguments="{}")

        message = Message(role=Role.ASSISTANT, tool_calls=[call])

        assert message.tool_calls == (call,)
        hash(message)

    def test_frozen(self):
        message = Message.user("hi")

        with pytest.raises(AttributeError):
            message.content = "changed"

    def test_to_dict(self):
        message = Message.assistant("Checking.", [ToolCall(id="c1", name="get_weather", arguments='{"city": "Oslo"}')])

        assert message.to_dict() == {
            "role": "assistant",
            "content": "Checking.",
            "tool_calls": [
                {"id": "c1", "type": "function", "function": {"name": "get_weather", "arguments": '{"city": "Oslo"}'}}
            ],
        }

    def test_from_dict_restores_message(self):
        original = Message.user("Look", [Attachment(type="image", data="AAAA", mime_type="image/jpeg")])

        assert Message.from_dict(original.to_dict()) == original

    def test_from_dict_accepts_camel_case_mime_type(self):
        message = Message.from_dict({
            "role": "user",
            "content": "x",
            "attachments": [{"type": "image", "data": "AAAA", "mimeType": "image/gif"}],
        })

        assert message.attachments[0].mime_type == "image/gif"

    def test_image_attachments(self):
        message = Message.user(
            "x",
            [Attachment(type="file", data="UEsD"), Attachment(type="image", data="AAAA")],
        )

        assert message.has_image_attachments
        assert [a.data for a in message.image_attachments] == ["AAAA"]
        assert not Message.user("plain").has_image_attachments


class TestAttachment:
    def test_media_type_prefers_declared(self):
        assert Attachment(type="image", data="data:image/png;base64,AA", mime_type="image/webp").media_type == "image/webp"

    def test_media_type_from_data_uri(self):
        assert Attachment(type="image", data="data:image/jpeg;base64,AA").media_type == "image/jpeg"

    def test_media_type_default(self):
        assert Attachment(type="image", data="AA").media_type == "image/png"

    def test_data_uri_helpers(self):
        assert strip_data_uri("data:image/png;base64,AAAA") == "AAAA"
        assert strip_data_uri("AAAA") == "AAAA"
        assert to_data_uri("AAAA", "image/gif") == "data:image/gif;base64,AAAA"
        assert to_data_uri("data:image/png;base64,AAAA", "image/gif") == "data:image/png;base64,AAAA"

    def test_payload_and_uri(self):
        attachment = Attachment(type="image", data="data:image/jpeg;base64,BBBB")

        assert attachment.base64_payload() == "BBBB"
        assert attachment.data_uri() == "data:image/jpeg;base64,BBBB"


class TestToolCall:
    def test_parse_arguments(self):
        assert ToolCall(id="c", name="t", arguments='{"a": 1}').parse_arguments() == {"a": 1}

    @pytest.mark.parametrize("arguments", ["", "   "])
    def test_empty_arguments(self, arguments):
        assert ToolCall(id="c", name="t", arguments=arguments).parse_arguments() == {}

    def test_invalid_json(self):
        with pytest.raises(ToolArgumentError, match="Invalid JSON") as exc_info:
            ToolCall(id="c", name="t", arguments="{oops").parse_arguments()

        assert exc_info.value.raw_arguments == "{oops"
        assert exc_info.value.tool_name == "t"

    def test_non_object(self):
        with pytest.raises(ToolArgumentError, match="got list"):
            ToolCall(id="c", name="t", arguments="[1, 2]").parse_arguments()

    def test_delta_to_dict(self):
        assert ToolCallDelta(id="c", index=0, name="t").to_dict() == {"id": "c", "index": 0, "name": "t"}
        assert ToolCallDelta(id="c", index=1, arguments_delta="{").to_dict() == {
            "id": "c",
            "index": 1,
            "arguments_delta": "{",
        }


class TestUsage:
    def test_add(self):
        total = Usage(1, 2, 3) + Usage(10, 20, 30)

        assert total == Usage(11, 22, 33)

    def test_from_dict_defaults(self):
        assert Usage.from_dict({"input_tokens": 4}) == Usage(input_tokens=4)


class TestStreamEvent:
    def test_terminal_types(self):
        assert StreamEventType.DONE.is_terminal
        assert StreamEventType.ERROR.is_terminal
        assert not StreamEventType.USAGE.is_terminal

    def test_text_payload(self):
        assert StreamEvent(type=StreamEventType.TEXT_DELTA, data="Hi").payload() == {"text": "Hi"}

    def test_empty_payload(self):
        assert StreamEvent(type=StreamEventType.META).payload() == {}

    def test_structured_payload(self):
        event = StreamEvent(type=StreamEventType.DONE, data=CompletionResult(content="Hi", usage=Usage(1, 1, 2)))

        payload = event.payload()

        assert payload["content"] == "Hi"
        assert payload["usage"] == {"input_tokens": 1, "output_tokens": 1, "total_tokens": 2}
        json.dumps(payload)

    def test_error_factory(self):
        event = StreamEvent.error("boom", status=503, provider="openai")

        assert event.is_terminal
        assert event.data == {"status": 503, "message": "boom", "provider": "openai"}

    def test_to_sse(self):
        frame = StreamEvent(type=StreamEventType.USAGE, data=Usage(1, 2, 3)).to_sse()

        assert frame == 'event: usage\ndata: {"input_tokens":1,"output_tokens":2,"total_tokens":3}\n\n'

    def test_to_jsonable(self):
        assert to_jsonable({"role": Role.USER, "items": (1, {2})}) == {"role": "user", "items": [1, [2]]}


class TestCompletionResult:
    def test_ok(self):
        assert CompletionResult(content="x").ok
        assert not CompletionResult(status=429, error="slow down").ok

    def test_to_message(self):
        call = ToolCall(id="c", name="t", arguments="{}")

        message = CompletionResult(content=None, tool_calls=[call]).to_message()

        assert message.role is Role.ASSISTANT
        assert message.tool_calls == (call,)


class TestNormalizeMessages:
    def test_string(self):
        assert normalize_messages("hi") == [Message.user("hi")]

    def test_single_dict_and_message(self):
        assert normalize_messages({"role": "system", "content": "s"}) == [Message.system("s")]
        message = Message.user("x")
        assert normalize_messages(message) == [message]

    def test_mixed_sequence(self):
        messages = normalize_messages(["a", {"role": "assistant", "content": "b"}, Message.user("c")])

        assert [(m.role, m.content) for m in messages] == [
            (Role.USER, "a"),
            (Role.ASSISTANT, "b"),
            (Role.USER, "c"),
        ]

    @pytest.mark.parametrize("bad", [42, [1], None])
    def test_unsupported(self, bad):
        with pytest.raises(TypeError):
            normalize_messages(bad)

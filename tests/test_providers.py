"""Tests for the provider adapters and provider resolution."""

import asyncio
import json
import threading

import pytest
from botocore.exceptions import ClientError

from agent.bedrock import BedrockProvider, _complete_turns
from agent.claude_cli import ClaudeCliProvider
from agent.providers import ProviderError, ProviderOptions, resolve_provider
from agent.stream import CancelToken

BEDROCK_MODEL = "us.anthropic.claude-sonnet-4-5-20250929-v1:0"


class RecordingSink:
    def __init__(self):
        self.events = []

    def emit(self, event_type, content="", data=None):
        self.events.append((event_type, content, data))
        return True

    def types(self):
        return [t for t, _, _ in self.events]

    def data_of(self, event_type):
        return [d for t, _, d in self.events if t == event_type]


class FakeBedrockClient:
    """Replays one scripted list of stream events per invoke call."""

    def __init__(self, turns=None, error=None):
        self.turns = list(turns or [])
        self.error = error
        self.requests = []

    def invoke_model_with_response_stream(self, modelId, body, contentType, accept):
        self.requests.append(json.loads(body))
        if self.error is not None:
            raise self.error
        events = self.turns.pop(0)
        return {"body": [{"chunk": {"bytes": json.dumps(e).encode()}} for e in events]}


class StalledBody:
    """Yields its events, then blocks like a connection that stopped sending."""

    def __init__(self, events):
        self.events = events
        self.release = threading.Event()

    def __iter__(self):
        for e in self.events:
            yield {"chunk": {"bytes": json.dumps(e).encode()}}
        self.release.wait(5)


class StalledClient:
    def __init__(self, body):
        self.body = body

    def invoke_model_with_response_stream(self, modelId, body, contentType, accept):
        return {"body": self.body}


def _text_turn(*chunks, input_tokens=10, output_tokens=5):
    events = [
        {"type": "message_start", "message": {"usage": {"input_tokens": input_tokens}}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "text", "text": ""}},
    ]
    events += [{"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": c}} for c in chunks]
    events += [
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": output_tokens}},
        {"type": "message_stop"},
    ]
    return events


def _tool_turn(tool_id, name, tool_input):
    raw = json.dumps(tool_input)
    return [
        {"type": "message_start", "message": {"usage": {"input_tokens": 20}}},
        {"type": "content_block_start", "index": 0,
         "content_block": {"type": "tool_use", "id": tool_id, "name": name, "input": {}}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", "partial_json": raw[:5]}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "input_json_delta", "partial_json": raw[5:]}},
        {"type": "content_block_stop", "index": 0},
        {"type": "message_delta", "delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 7}},
    ]


def _options(tmp_path, creation_mode=False):
    return ProviderOptions(project_cwd=str(tmp_path), target_port=3000, cancel=CancelToken(),
                           creation_mode=creation_mode)


# =============================================================================
# Bedrock
# =============================================================================


class TestBedrockProvider:

    async def test_text_turn(self, tmp_path):
        client = FakeBedrockClient([_text_turn("Hello", " world")])
        provider = BedrockProvider(BEDROCK_MODEL, "bedrock", client=client)
        sink = RecordingSink()

        responses = await provider.stream_response(sink, [{"role": "user", "content": "hi"}], _options(tmp_path))

        assert responses == [{"role": "assistant", "content": [{"type": "text", "text": "Hello world"}]}]
        assert sink.types() == ["text", "text", "result"]
        assert sink.data_of("text")[0] == {"model": BEDROCK_MODEL}
        result = sink.data_of("result")[0]
        assert result["input_tokens"] == 10
        assert result["output_tokens"] == 5
        assert result["num_turns"] == 1
        assert client.requests[0]["anthropic_version"] == "bedrock-2023-05-31"
        assert str(tmp_path) in client.requests[0]["system"]

    async def test_tool_loop(self, tmp_path):
        client = FakeBedrockClient([
            _tool_turn("tu_1", "Write", {"path": "hello.txt", "content": "hi"}),
            _text_turn("Created hello.txt"),
        ])
        provider = BedrockProvider(BEDROCK_MODEL, "bedrock", client=client)
        sink = RecordingSink()

        responses = await provider.stream_response(
            sink, [{"role": "user", "content": "make a file"}], _options(tmp_path, creation_mode=True),
        )

        assert (tmp_path / "hello.txt").read_text() == "hi"
        assert [m["role"] for m in responses] == ["assistant", "user", "assistant"]
        assert responses[1]["content"][0]["tool_use_id"] == "tu_1"
        assert sink.data_of("tool_use") == [{"tool": "Write", "input": {"path": "hello.txt", "content": "hi"}, "id": "tu_1"}]
        tool_result = sink.data_of("tool_result")[0]
        assert tool_result["tool_use_id"] == "tu_1"
        assert tool_result["is_error"] is False
        assert sink.data_of("result")[0]["num_turns"] == 2
        # The second request carried the tool result back to the model
        assert client.requests[1]["messages"][-1]["content"][0]["type"] == "tool_result"

    async def test_client_error_becomes_error_event(self, tmp_path):
        error = ClientError({"Error": {"Code": "ThrottlingException", "Message": "slow down"}},
                            "InvokeModelWithResponseStream")
        provider = BedrockProvider(BEDROCK_MODEL, "bedrock", client=FakeBedrockClient(error=error))
        sink = RecordingSink()

        responses = await provider.stream_response(sink, [{"role": "user", "content": "hi"}], _options(tmp_path))

        assert responses == []
        assert sink.types() == ["error"]
        assert "slow down" in sink.data_of("error")[0]["message"]

    async def test_unexpected_client_failure_ends_stream(self, tmp_path):
        client = FakeBedrockClient(error=RuntimeError("connection reset"))
        provider = BedrockProvider(BEDROCK_MODEL, "bedrock", client=client)
        sink = RecordingSink()

        responses = await asyncio.wait_for(
            provider.stream_response(sink, [{"role": "user", "content": "hi"}], _options(tmp_path)), 2,
        )

        assert responses == []
        assert sink.types() == ["error"]
        assert "connection reset" in sink.data_of("error")[0]["message"]

    async def test_cancel_wakes_a_stalled_stream(self, tmp_path, until):
        body = StalledBody(_text_turn("partial")[:3])
        provider = BedrockProvider(BEDROCK_MODEL, "bedrock", client=StalledClient(body))
        options = _options(tmp_path)
        sink = RecordingSink()

        task = asyncio.create_task(
            provider.stream_response(sink, [{"role": "user", "content": "hi"}], options),
        )
        await until(lambda: "text" in sink.types())
        options.cancel.cancel()
        try:
            responses = await asyncio.wait_for(task, 2)
        finally:
            body.release.set()
            await asyncio.sleep(0.05)

        assert responses == []
        assert "result" not in sink.types()

    async def test_cancelled_before_start_emits_no_result(self, tmp_path):
        provider = BedrockProvider(BEDROCK_MODEL, "bedrock", client=FakeBedrockClient([_text_turn("late")]))
        options = _options(tmp_path)
        options.cancel.cancel()
        sink = RecordingSink()

        responses = await provider.stream_response(sink, [{"role": "user", "content": "hi"}], options)
        assert responses == []
        assert "result" not in sink.types()


def test_complete_turns_drops_unanswered_tool_use():
    tool_call = {"role": "assistant", "content": [{"type": "tool_use", "id": "t", "name": "Read", "input": {}}]}
    tool_reply = {"role": "user", "content": [{"type": "tool_result", "tool_use_id": "t", "content": "x"}]}
    answer = {"role": "assistant", "content": [{"type": "text", "text": "done"}]}

    assert _complete_turns([tool_call, tool_reply, answer]) == [tool_call, tool_reply, answer]
    assert _complete_turns([tool_call, tool_reply]) == []
    assert _complete_turns([answer, tool_call]) == [answer]


# =============================================================================
# Claude CLI
# =============================================================================


class TestClaudeCliProvider:

    def test_build_command(self, tmp_path):
        provider = ClaudeCliProvider("sonnet", "claude-cli", binary="claude")
        cmd = provider.build_command("fix it", _options(tmp_path))

        assert cmd[:3] == ["claude", "-p", "fix it"]
        assert cmd[cmd.index("--output-format") + 1] == "stream-json"
        assert cmd[cmd.index("--model") + 1] == "sonnet"
        assert cmd[cmd.index("--permission-mode") + 1] == "acceptEdits"
        assert "--resume" not in cmd

    def test_build_command_resumes_and_bypasses_in_creation_mode(self, tmp_path):
        provider = ClaudeCliProvider("sonnet", "claude-cli", binary="claude")
        provider.session_id = "sess-1"
        cmd = provider.build_command("scaffold", _options(tmp_path, creation_mode=True))

        assert cmd[cmd.index("--permission-mode") + 1] == "bypassPermissions"
        assert cmd[cmd.index("--resume") + 1] == "sess-1"

    def test_handle_messages(self):
        provider = ClaudeCliProvider("sonnet", "claude-cli")
        sink = RecordingSink()
        state = {"text": [], "result": None}

        provider._handle_message(sink, {"type": "system", "subtype": "init", "session_id": "abc"}, state)
        provider._handle_message(sink, {"type": "assistant", "message": {"content": [
            {"type": "text", "text": "Reading"},
            {"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "a.js"}},
        ]}}, state)
        provider._handle_message(sink, {"type": "user", "message": {"content": [
            {"type": "tool_result", "tool_use_id": "t1", "content": [{"type": "text", "text": "body"}]},
        ]}}, state)
        provider._handle_message(sink, {"type": "result", "subtype": "success", "num_turns": 2}, state)

        assert provider.session_id == "abc"
        assert sink.types() == ["text", "tool_use", "tool_result"]
        assert sink.data_of("tool_result")[0]["content"] == "body"
        assert state["text"] == ["Reading"]
        assert state["result"]["num_turns"] == 2

    async def test_missing_binary(self, tmp_path):
        provider = ClaudeCliProvider("sonnet", "claude-cli", binary="sidecar-no-such-binary")
        sink = RecordingSink()
        with pytest.raises(ProviderError):
            await provider.stream_response(sink, [{"role": "user", "content": "hi"}], _options(tmp_path))
        assert sink.types() == ["error"]


# =============================================================================
# Resolution
# =============================================================================


class TestResolveProvider:

    def test_known_models(self):
        assert isinstance(resolve_provider("sonnet", "claude-cli"), ClaudeCliProvider)
        assert isinstance(resolve_provider(BEDROCK_MODEL, None), BedrockProvider)

    def test_provider_mismatch(self):
        with pytest.raises(ProviderError):
            resolve_provider("sonnet", "bedrock")

    def test_unknown_model_without_provider(self):
        with pytest.raises(ProviderError):
            resolve_provider("gpt-9", None)

    def test_unknown_provider(self):
        with pytest.raises(ProviderError):
            resolve_provider("custom-model", "nowhere")

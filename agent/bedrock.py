"""
Amazon Bedrock provider.

Streams Claude responses from ``invoke_model_with_response_stream`` and runs
the requested tools between turns until the model stops asking for them.
"""

import asyncio
import json
import logging
import threading
import time
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from agent.prompts import build_system_prompt
from agent.providers import ProviderError, ProviderOptions, StreamProvider
from config import aws_config, model_config
from tools import TOOL_DEFINITIONS, ToolContext, execute_tool

logger = logging.getLogger(__name__)

_ANTHROPIC_VERSION = "bedrock-2023-05-31"
# Queue marker for the end of the response stream
_STREAM_DONE = object()


def create_bedrock_client(region: Optional[str] = None) -> Any:
    """Create and configure the Bedrock runtime client"""
    try:
        session_kwargs: Dict[str, Any] = {"region_name": region or aws_config.region}
        if aws_config.has_profile():
            session_kwargs["profile_name"] = aws_config.profile_name
        elif aws_config.has_explicit_credentials():
            session_kwargs["aws_access_key_id"] = aws_config.access_key_id
            session_kwargs["aws_secret_access_key"] = aws_config.secret_access_key
            if aws_config.has_session_token():
                session_kwargs["aws_session_token"] = aws_config.session_token
        session = boto3.Session(**session_kwargs)
        return session.client("bedrock-runtime")
    except NoCredentialsError:
        raise ProviderError("AWS credentials not configured.")
    except BotoCoreError as e:
        raise ProviderError(f"Failed to initialize Bedrock client: {e}")


def _hand_off(loop: asyncio.AbstractEventLoop, queue: asyncio.Queue, item: Any) -> None:
    # The loop may already be gone when an abandoned reader finishes
    if not loop.is_closed():
        loop.call_soon_threadsafe(queue.put_nowait, item)


def _read_stream(client: Any, model_id: str, body: Dict[str, Any],
                 queue: asyncio.Queue, loop: asyncio.AbstractEventLoop,
                 stop: threading.Event) -> None:
    """Thread: iterate the Bedrock event stream and hand chunks to the event loop."""
    try:
        response = client.invoke_model_with_response_stream(
            modelId=model_id,
            body=json.dumps(body),
            contentType="application/json",
            accept="application/json",
        )
        for event in response["body"]:
            if stop.is_set():
                break
            chunk = json.loads(event["chunk"]["bytes"])
            _hand_off(loop, queue, chunk)
    except ClientError as e:
        message = e.response.get("Error", {}).get("Message", str(e))
        _hand_off(loop, queue, ProviderError(f"Streaming error: {message}"))
    except (BotoCoreError, ValueError, KeyError) as e:
        _hand_off(loop, queue, ProviderError(f"Streaming error: {e}"))
    except Exception as e:
        logger.exception("Unexpected error reading the Bedrock stream")
        _hand_off(loop, queue, ProviderError(f"Streaming error: {e}"))
    finally:
        _hand_off(loop, queue, _STREAM_DONE)


async def _next_item(queue: asyncio.Queue, cancel: Any) -> Any:
    """Next queued chunk, or _STREAM_DONE as soon as the stream is cancelled."""
    if cancel is None:
        return await queue.get()
    getter = asyncio.ensure_future(queue.get())
    cancelled = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({getter, cancelled}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for fut in (getter, cancelled):
            if not fut.done():
                fut.cancel()
    if getter.done() and not getter.cancelled():
        return getter.result()
    return _STREAM_DONE


def _complete_turns(responses: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Longest prefix that ends on an assistant message with no unanswered tool calls."""
    end = 0
    for i, msg in enumerate(responses):
        if msg["role"] != "assistant":
            continue
        blocks = msg["content"] if isinstance(msg["content"], list) else []
        if not any(b.get("type") == "tool_use" for b in blocks):
            end = i + 1
    return responses[:end]


class BedrockProvider(StreamProvider):
    """Claude on Amazon Bedrock with a local tool loop."""

    def __init__(self, model_id: str, provider_id: str, confirmations: Any = None,
                 client: Any = None):
        super().__init__(model_id, provider_id)
        self.confirmations = confirmations
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = create_bedrock_client()
        return self._client

    def _request_body(self, messages: List[Dict[str, Any]], system_prompt: str) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "anthropic_version": _ANTHROPIC_VERSION,
            "max_tokens": model_config.max_tokens,
            "system": system_prompt,
            "messages": messages,
            "tools": TOOL_DEFINITIONS,
        }
        if model_config.temperature is not None:
            body["temperature"] = model_config.temperature
        return body

    async def _stream_turn(self, sink: Any, messages: List[Dict[str, Any]],
                           system_prompt: str, options: ProviderOptions) -> Dict[str, Any]:
        """Stream one model turn. Returns the assistant message plus stop reason and usage."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        stop = threading.Event()
        body = self._request_body(messages, system_prompt)
        reader = threading.Thread(
            target=_read_stream, args=(self.client, self.model_id, body, queue, loop, stop), daemon=True,
        )
        reader.start()

        blocks: List[Dict[str, Any]] = []
        current: Optional[Dict[str, Any]] = None
        partial_json = ""
        stop_reason = None
        usage = {"input_tokens": 0, "output_tokens": 0}

        try:
            while True:
                item = await _next_item(queue, options.cancel)
                if item is _STREAM_DONE:
                    break
                if isinstance(item, Exception):
                    raise item
                if options.cancelled:
                    break

                event_type = item.get("type", "")
                if event_type == "message_start":
                    msg_usage = item.get("message", {}).get("usage", {})
                    usage["input_tokens"] += msg_usage.get("input_tokens", 0)
                elif event_type == "content_block_start":
                    block = item.get("content_block", {})
                    if block.get("type") == "tool_use":
                        current = {"type": "tool_use", "id": block.get("id", ""),
                                   "name": block.get("name", ""), "input": {}}
                        partial_json = ""
                    else:
                        current = {"type": "text", "text": ""}
                elif event_type == "content_block_delta":
                    delta = item.get("delta", {})
                    if delta.get("type") == "text_delta" and current is not None:
                        text = delta.get("text", "")
                        if text:
                            current["text"] += text
                            sink.emit("text", text, {"model": self.model_id})
                    elif delta.get("type") == "input_json_delta":
                        partial_json += delta.get("partial_json", "")
                elif event_type == "content_block_stop":
                    if current is not None:
                        if current["type"] == "tool_use":
                            try:
                                current["input"] = json.loads(partial_json) if partial_json else {}
                            except ValueError:
                                current["input"] = {}
                        if current["type"] != "text" or current["text"]:
                            blocks.append(current)
                    current = None
                elif event_type == "message_delta":
                    stop_reason = item.get("delta", {}).get("stop_reason")
                    usage["output_tokens"] += item.get("usage", {}).get("output_tokens", 0)
        finally:
            stop.set()

        return {
            "message": {"role": "assistant", "content": blocks},
            "stop_reason": stop_reason,
            "usage": usage,
        }

    async def _run_tools(self, sink: Any, tool_uses: List[Dict[str, Any]],
                         options: ProviderOptions) -> List[Dict[str, Any]]:
        ctx = ToolContext(
            cwd=options.project_cwd,
            emit=sink.emit,
            confirmations=self.confirmations,
            confirm_bash=not options.creation_mode,
            confirm_file_writes=not options.creation_mode,
            restart_dev_server=options.restart_dev_server,
        )
        results = []
        for tu in tool_uses:
            if options.cancelled:
                break
            sink.emit("tool_use", "", {"tool": tu["name"], "input": tu["input"], "id": tu["id"]})
            result = await execute_tool(tu["name"], tu["input"], ctx)
            text = result.to_text()
            sink.emit("tool_result", "", {
                "tool_use_id": tu["id"], "tool": tu["name"],
                "content": text, "is_error": not result.success,
            })
            results.append({
                "type": "tool_result", "tool_use_id": tu["id"],
                "content": text, "is_error": not result.success,
            })
        return results

    async def stream_response(self, sink: Any, messages: List[Dict[str, Any]],
                              options: ProviderOptions) -> List[Dict[str, Any]]:
        start = time.time()
        system_prompt = build_system_prompt(options.project_cwd, options.target_port, options.creation_mode)
        conversation = list(messages)
        responses: List[Dict[str, Any]] = []
        totals = {"input_tokens": 0, "output_tokens": 0}
        num_turns = 0

        try:
            while num_turns < model_config.max_tool_iterations:
                turn = await self._stream_turn(sink, conversation, system_prompt, options)
                num_turns += 1
                totals["input_tokens"] += turn["usage"]["input_tokens"]
                totals["output_tokens"] += turn["usage"]["output_tokens"]
                if options.cancelled:
                    break

                assistant = turn["message"]
                if not assistant["content"]:
                    break
                conversation.append(assistant)
                responses.append(assistant)

                tool_uses = [b for b in assistant["content"] if b["type"] == "tool_use"]
                if turn["stop_reason"] != "tool_use" or not tool_uses:
                    break

                tool_results = await self._run_tools(sink, tool_uses, options)
                if options.cancelled:
                    break
                tool_message = {"role": "user", "content": tool_results}
                conversation.append(tool_message)
                responses.append(tool_message)
            else:
                logger.warning("Bedrock tool loop hit the iteration cap (%d)", model_config.max_tool_iterations)
        except ProviderError as e:
            logger.error("Bedrock stream failed: %s", e)
            sink.emit("error", "", {"message": str(e)})
            return _complete_turns(responses)

        if options.cancelled:
            return _complete_turns(responses)

        sink.emit("result", "", {
            "subtype": "success",
            "duration_ms": int((time.time() - start) * 1000),
            "num_turns": num_turns,
            "result": "completed",
            "is_error": False,
            "input_tokens": totals["input_tokens"],
            "output_tokens": totals["output_tokens"],
        })
        return _complete_turns(responses)

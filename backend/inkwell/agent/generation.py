"""Generation capability: the LLM provider behind a small protocol.

The dispatcher only knows ``GenerationClient.generate``. The Anthropic client
below converts the provider-neutral message list into Messages API blocks,
streams text deltas through ``on_chunk`` and reports usage and tool calls.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

import anthropic

from inkwell.core.errors import GenerationProviderError, GenerationTimeoutError
from inkwell.models.generation import Usage

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], None]


@dataclass
class RequestedToolCall:
    """A tool call the model asked for in its response."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class GenerationRequest:
    instructions: str | None
    messages: list[dict[str, Any]]
    tools: list[dict[str, Any]] = field(default_factory=list)
    tool_choice: str | None = None  # "auto" | "none" | "any"
    stream: bool = True
    model: str | None = None
    max_tokens: int | None = None
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class GenerationResult:
    content: str = ""
    tool_calls: list[RequestedToolCall] = field(default_factory=list)
    finish_reason: str | None = None
    usage: Usage = field(default_factory=Usage)
    provider_id: str | None = None
    model: str | None = None
    raw_request: dict[str, Any] | None = None
    raw_response: dict[str, Any] | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


class GenerationClient(Protocol):
    def generate(
        self, request: GenerationRequest, on_chunk: ChunkCallback | None = None
    ) -> GenerationResult: ...


def to_anthropic_messages(messages: list[dict[str, Any]]) -> tuple[str, list[dict[str, Any]]]:
    """Split neutral messages into (system text, Anthropic message list).

    Tool results become ``tool_result`` blocks on a user turn, assistant tool
    calls become ``tool_use`` blocks, and consecutive turns with the same role
    are merged because the Messages API requires alternation.
    """
    system_parts: list[str] = []
    converted: list[dict[str, Any]] = []

    for message in messages:
        role = message["role"]
        if role == "system":
            if message.get("content"):
                system_parts.append(message["content"])
            continue

        blocks: list[dict[str, Any]] = []
        if role == "tool":
            blocks.append({
                "type": "tool_result",
                "tool_use_id": message.get("tool_call_id"),
                "content": message.get("content") or "",
            })
            role = "user"
        else:
            for part in message.get("content_parts") or []:
                if part.get("type") == "image":
                    blocks.append({
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": part.get("media_type", "image/png"),
                            "data": part["data"],
                        },
                    })
                elif part.get("type") == "text" and part.get("text"):
                    blocks.append({"type": "text", "text": part["text"]})
            if message.get("content"):
                blocks.append({"type": "text", "text": message["content"]})
            for tool_call in message.get("tool_calls") or []:
                blocks.append({
                    "type": "tool_use",
                    "id": tool_call["id"],
                    "name": tool_call["name"],
                    "input": tool_call.get("arguments") or {},
                })

        if not blocks:
            continue
        if converted and converted[-1]["role"] == role:
            converted[-1]["content"].extend(blocks)
        else:
            converted.append({"role": role, "content": blocks})

    return "\n\n".join(system_parts), converted


def to_anthropic_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Convert ``{name, description, parameters}`` schemas to Anthropic tools."""
    return [
        {
            "name": tool["name"],
            "description": tool.get("description", ""),
            "input_schema": tool.get("parameters") or {"type": "object", "properties": {}},
        }
        for tool in tools
    ]


class AnthropicGenerationClient:
    """Generation client backed by the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str | None,
        model: str,
        max_tokens: int = 2048,
        timeout: float = 120.0,
    ):
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._client: anthropic.Anthropic | None = None

    @property
    def client(self) -> anthropic.Anthropic:
        if self._client is None:
            if not self.api_key:
                raise GenerationProviderError("Anthropic API key not configured")
            self._client = anthropic.Anthropic(api_key=self.api_key, timeout=self.timeout, max_retries=1)
        return self._client

    def build_kwargs(self, request: GenerationRequest) -> dict[str, Any]:
        system_from_messages, messages = to_anthropic_messages(request.messages)
        system = "\n\n".join(part for part in (request.instructions, system_from_messages) if part)

        kwargs: dict[str, Any] = {
            "model": request.model or self.model,
            "max_tokens": request.max_tokens or self.max_tokens,
            "messages": messages,
        }
        if system:
            kwargs["system"] = system
        if request.tools:
            kwargs["tools"] = to_anthropic_tools(request.tools)
            if request.tool_choice:
                kwargs["tool_choice"] = {"type": request.tool_choice}
        if "temperature" in request.options:
            kwargs["temperature"] = request.options["temperature"]
        return kwargs

    def generate(
        self, request: GenerationRequest, on_chunk: ChunkCallback | None = None
    ) -> GenerationResult:
        kwargs = self.build_kwargs(request)

        try:
            if request.stream:
                with self.client.messages.stream(**kwargs) as stream:
                    for event in stream:
                        if event.type != "content_block_delta":
                            continue
                        delta = event.delta
                        if getattr(delta, "type", None) == "text_delta" and on_chunk:
                            on_chunk(delta.text)
                    final_message = stream.get_final_message()
            else:
                final_message = self.client.messages.create(**kwargs)
        except anthropic.APITimeoutError as e:
            raise GenerationTimeoutError(f"Generation timed out: {e}") from e
        except anthropic.APIError as e:
            raise GenerationProviderError(f"Generation provider error: {e}") from e

        return self._to_result(final_message, kwargs)

    def _to_result(self, message: Any, kwargs: dict[str, Any]) -> GenerationResult:
        text_parts: list[str] = []
        tool_calls: list[RequestedToolCall] = []
        for block in message.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(RequestedToolCall(id=block.id, name=block.name, arguments=dict(block.input or {})))

        usage = Usage()
        if getattr(message, "usage", None):
            usage = Usage(
                input_tokens=message.usage.input_tokens,
                output_tokens=message.usage.output_tokens,
                cached_tokens=getattr(message.usage, "cache_read_input_tokens", None),
            )

        logger.info(
            f"📊 Generation {message.id}: {usage.input_tokens} in, {usage.output_tokens} out, "
            f"stop_reason={message.stop_reason}, tool_calls={len(tool_calls)}"
        )

        return GenerationResult(
            content="".join(text_parts),
            tool_calls=tool_calls,
            finish_reason=message.stop_reason,
            usage=usage,
            provider_id=message.id,
            model=message.model,
            raw_request=_redact_request(kwargs),
            raw_response=message.model_dump(mode="json"),
        )


def _redact_request(kwargs: dict[str, Any]) -> dict[str, Any]:
    """Request snapshot without base64 image payloads."""
    snapshot = dict(kwargs)
    messages = []
    for message in kwargs.get("messages", []):
        blocks = []
        for block in message.get("content", []):
            if block.get("type") == "image":
                block = {"type": "image", "source": {"type": "base64", "media_type": block["source"]["media_type"], "data": "[omitted]"}}
            blocks.append(block)
        messages.append({"role": message["role"], "content": blocks})
    snapshot["messages"] = messages
    return snapshot

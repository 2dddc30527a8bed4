"""Language-model access behind a small streaming interface.

The orchestrator only sees model events; the OpenAI Responses API is one
implementation, created once at startup and passed in explicitly.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Type, TypeVar

from openai import AsyncOpenAI, OpenAIError
from openai.types.shared_params.reasoning import Reasoning
from pydantic import BaseModel

from ..config import AppConfig
from ..errors import ModelInferenceError

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ReasoningDelta:
    text: str


@dataclass(frozen=True)
class ToolCallRequest:
    call_id: str
    name: str
    arguments: Dict[str, Any]


@dataclass(frozen=True)
class StepFinish:
    output_items: List[Any] = field(default_factory=list)
    finish_reason: str = "stop"


ModelEvent = TextDelta | ReasoningDelta | ToolCallRequest | StepFinish


def parse_tool_call(call: Any) -> tuple[str, str, Dict[str, Any]]:
    call_id = str(call.call_id)
    name = str(call.name)
    raw_args = call.arguments
    if isinstance(raw_args, str):
        try:
            args = json.loads(raw_args) if raw_args.strip() else {}
        except json.JSONDecodeError:
            logger.warning("Tool call %s has malformed arguments: %r", name, raw_args)
            args = {}
    else:
        args = dict(raw_args or {})
    return call_id, name, args if isinstance(args, dict) else {}


class ModelProvider:
    """Opaque inference capability: messages and tool schemas in, events out."""

    def stream_step(
        self,
        model_id: str,
        input_items: List[Any],
        tools: List[Dict[str, Any]],
        instructions: str,
    ) -> AsyncIterator[ModelEvent]:
        raise NotImplementedError

    async def generate_text(self, model_id: str, prompt: str, instructions: str = "") -> str:
        raise NotImplementedError

    async def generate_object(self, model_id: str, prompt: str, schema: Type[SchemaT]) -> SchemaT:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class OpenAIModelProvider(ModelProvider):
    def __init__(self, config: AppConfig, client: Optional[AsyncOpenAI] = None) -> None:
        self.config = config
        self._client = client

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            api_key = os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ModelInferenceError("OPENAI_API_KEY is not set.")
            self._client = AsyncOpenAI(api_key=api_key, base_url=self.config.openai_base_url)
        return self._client

    def _resolve(self, model_id: str) -> tuple[str, Optional[str]]:
        spec = self.config.models.get(model_id)
        if spec is None:
            return model_id, None
        return spec.model, spec.reasoning_effort

    async def stream_step(
        self,
        model_id: str,
        input_items: List[Any],
        tools: List[Dict[str, Any]],
        instructions: str,
    ) -> AsyncIterator[ModelEvent]:
        model, reasoning_effort = self._resolve(model_id)
        kwargs: Dict[str, Any] = {
            "model": model,
            "input": input_items,
            "instructions": instructions,
            "max_output_tokens": self.config.max_output_tokens,
            "stream": True,
        }
        if tools:
            kwargs["tools"] = tools
        if reasoning_effort:
            kwargs["reasoning"] = Reasoning(effort=reasoning_effort, summary="auto")

        logger.debug("Creating response with model=%s tools=%d", model, len(tools))
        output_items: List[Any] = []
        finish_reason = "stop"
        try:
            stream = await self._get_client().responses.create(**kwargs)
            async for event in stream:
                if event.type == "response.output_text.delta":
                    yield TextDelta(event.delta)
                elif event.type in ("response.reasoning_summary_text.delta", "response.reasoning_text.delta"):
                    yield ReasoningDelta(event.delta)
                elif event.type == "response.output_item.done" and event.item.type == "function_call":
                    call_id, name, args = parse_tool_call(event.item)
                    finish_reason = "tool-calls"
                    yield ToolCallRequest(call_id=call_id, name=name, arguments=args)
                elif event.type in ("response.completed", "response.incomplete"):
                    output_items = [item.model_dump(exclude_none=True) for item in event.response.output]
                    if event.type == "response.incomplete":
                        finish_reason = "length"
                elif event.type == "response.failed":
                    error = getattr(event.response, "error", None)
                    raise ModelInferenceError(getattr(error, "message", None) or "Model response failed")
                elif event.type == "error":
                    raise ModelInferenceError(event.message or "Model stream error")
        except OpenAIError as exc:
            raise ModelInferenceError(str(exc)) from exc

        yield StepFinish(output_items=output_items, finish_reason=finish_reason)

    async def generate_text(self, model_id: str, prompt: str, instructions: str = "") -> str:
        model, _ = self._resolve(model_id)
        kwargs: Dict[str, Any] = {"model": model, "input": prompt}
        if instructions:
            kwargs["instructions"] = instructions
        try:
            response = await self._get_client().responses.create(**kwargs)
        except OpenAIError as exc:
            raise ModelInferenceError(str(exc)) from exc
        return response.output_text

    async def generate_object(self, model_id: str, prompt: str, schema: Type[SchemaT]) -> SchemaT:
        model, _ = self._resolve(model_id)
        try:
            response = await self._get_client().responses.parse(
                model=model,
                input=prompt,
                text_format=schema,
            )
        except OpenAIError as exc:
            raise ModelInferenceError(str(exc)) from exc
        if response.output_parsed is None:
            raise ModelInferenceError("Model returned no structured output")
        return response.output_parsed

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


def chat_models(config: AppConfig) -> List[Dict[str, str]]:
    return [
        {"id": spec.id, "name": spec.name, "description": spec.description}
        for spec in config.chat_models()
    ]

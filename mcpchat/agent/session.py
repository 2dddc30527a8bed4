import asyncio
import logging
import uuid
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List, Optional, Tuple

from ..config import DEFAULT_SYSTEM_PROMPT
from ..errors import ModelInferenceError
from ..schemas import ChatMessage
from ..tools import ProviderStatus, ToolRegistry
from .models import ModelProvider, ReasoningDelta, StepFinish, TextDelta, ToolCallRequest
from .persister import MessagePersister

logger = logging.getLogger(__name__)

_END = object()


class TurnState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    TOOL_EXECUTING = "tool-executing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class CancellationToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


async def _read(stream: AsyncIterator[Any]) -> Any:
    try:
        return await stream.__anext__()
    except StopAsyncIteration:
        return _END


async def _next_event(stream: AsyncIterator[Any], cancel: CancellationToken) -> Any:
    """Next model event, or _END once the stream is exhausted or the token is set."""
    if cancel.cancelled:
        return _END
    read = asyncio.ensure_future(_read(stream))
    stop = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({read, stop}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        stop.cancel()
        if not read.done():
            read.cancel()
            try:
                await read
            except asyncio.CancelledError:
                pass
    if read.cancelled():
        return _END
    return read.result()


def history_to_input(messages: List[ChatMessage]) -> List[Dict[str, Any]]:
    # System prompts come from configuration; tool parts are not replayed.
    items: List[Dict[str, Any]] = []
    for message in messages:
        if message.role not in ("user", "assistant"):
            continue
        text = message.text()
        if not text:
            continue
        items.append({"role": message.role, "content": text})
    return items


@dataclass
class ChatTurn:
    chat_id: str
    history: List[ChatMessage]
    registry: ToolRegistry
    model_provider: ModelProvider
    model_id: str
    persister: MessagePersister
    instructions: str = DEFAULT_SYSTEM_PROMPT
    max_steps: int = 5
    statuses: List[ProviderStatus] = field(default_factory=list)
    state: TurnState = TurnState.IDLE
    assistant_message_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    parts: List[Dict[str, Any]] = field(default_factory=list)

    async def run(self, cancel: Optional[CancellationToken] = None) -> str:
        reply = ""
        async for event in self.stream_run(cancel):
            if event["type"] == "text-delta":
                reply += event["textDelta"]
        return reply

    async def stream_run(self, cancel: Optional[CancellationToken] = None) -> AsyncGenerator[Dict[str, Any], None]:
        cancel = cancel or CancellationToken()
        if self.state is not TurnState.IDLE:
            raise RuntimeError(f"Turn for chat {self.chat_id} already ran (state={self.state.value})")

        yield {"type": "providers", "providers": [status.to_dict() for status in self.statuses]}

        input_items: List[Any] = history_to_input(self.history)
        tools = self.registry.list_for_responses()
        finish_reason = "stop"

        try:
            for step in range(self.max_steps):
                self._transition(TurnState.REQUESTING)
                calls: List[ToolCallRequest] = []
                finish = StepFinish()

                stream = self.model_provider.stream_step(self.model_id, input_items, tools, self.instructions)
                async with aclosing(stream):
                    while True:
                        event = await _next_event(stream, cancel)
                        if event is _END or cancel.cancelled:
                            break
                        if self.state is TurnState.REQUESTING:
                            self._transition(TurnState.STREAMING)

                        if isinstance(event, TextDelta):
                            self._append_part("text", event.text)
                            yield {"type": "text-delta", "textDelta": event.text}
                        elif isinstance(event, ReasoningDelta):
                            self._append_part("reasoning", event.text)
                            yield {"type": "reasoning-delta", "textDelta": event.text}
                        elif isinstance(event, ToolCallRequest):
                            calls.append(event)
                            yield {
                                "type": "tool-call",
                                "toolCallId": event.call_id,
                                "toolName": event.name,
                                "args": event.arguments,
                            }
                        elif isinstance(event, StepFinish):
                            finish = event

                if cancel.cancelled:
                    self._cancelled()
                    return

                input_items.extend(finish.output_items)
                finish_reason = finish.finish_reason

                if calls:
                    self._transition(TurnState.TOOL_EXECUTING)
                    results = await self._execute_tools(calls)
                    if cancel.cancelled:
                        # Drained tool results are dropped with the turn.
                        self._cancelled()
                        return
                    for call, (output, is_error) in zip(calls, results):
                        self.parts.append(
                            {
                                "type": "tool-invocation",
                                "toolInvocation": {
                                    "state": "result",
                                    "toolCallId": call.call_id,
                                    "toolName": call.name,
                                    "args": call.arguments,
                                    "result": output,
                                },
                            }
                        )
                        yield {
                            "type": "tool-result",
                            "toolCallId": call.call_id,
                            "toolName": call.name,
                            "result": output,
                            "isError": is_error,
                        }
                        input_items.append({"type": "function_call_output", "call_id": call.call_id, "output": output})

                is_continued = bool(calls) and step + 1 < self.max_steps
                yield {"type": "step-finish", "step": step, "finishReason": finish_reason, "isContinued": is_continued}
                if not is_continued:
                    break
        except (asyncio.CancelledError, GeneratorExit):
            self._cancelled()
            raise
        except ModelInferenceError as exc:
            self._failed(exc)
            yield {"type": "error", "error": exc.message}
            return
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure in chat %s", self.chat_id)
            self._failed(exc)
            yield {"type": "error", "error": "An error occurred while generating the response."}
            return

        self._transition(TurnState.COMPLETED)
        persisted = self.persister.save_assistant_message(self.chat_id, self.assistant_message_id, self.parts)
        logger.info("Chat %s turn completed (persisted=%s)", self.chat_id, persisted)
        yield {"type": "finish", "messageId": self.assistant_message_id, "finishReason": finish_reason}

    def _transition(self, state: TurnState) -> None:
        logger.debug("Chat %s: %s -> %s", self.chat_id, self.state.value, state.value)
        self.state = state

    def _cancelled(self) -> None:
        if self.state not in (TurnState.COMPLETED, TurnState.FAILED, TurnState.CANCELLED):
            self._transition(TurnState.CANCELLED)
            logger.info("Chat %s turn cancelled", self.chat_id)

    def _failed(self, exc: BaseException) -> None:
        self._transition(TurnState.FAILED)
        logger.error("Chat %s turn failed: %s", self.chat_id, exc)

    def _append_part(self, kind: str, text: str) -> None:
        if self.parts and self.parts[-1]["type"] == kind:
            self.parts[-1]["text"] += text
        else:
            self.parts.append({"type": kind, "text": text})

    async def _execute_tools(self, calls: List[ToolCallRequest]) -> List[Tuple[str, bool]]:
        task = asyncio.ensure_future(asyncio.gather(*(self._invoke(call) for call in calls)))
        # Shielded so a cancelled turn still lets in-flight tool calls finish.
        return list(await asyncio.shield(task))

    async def _invoke(self, call: ToolCallRequest) -> Tuple[str, bool]:
        if call.name not in self.registry:
            return f"Tool '{call.name}' is not available.", True

        schema = self.registry.get(call.name).descriptor.json_schema()
        missing = [
            name for name in schema.get("required", [])
            if name not in call.arguments or call.arguments[name] in (None, "")
        ]
        if missing:
            return f"Missing required arguments for {call.name}: {', '.join(missing)}. Please retry with values.", True

        logger.debug("Executing tool %s args=%s", call.name, call.arguments)
        try:
            return await self.registry.execute(call.name, call.arguments), False
        except Exception as exc:  # noqa: BLE001
            logger.warning("Tool %s failed: %s", call.name, exc)
            return f"Error executing tool {call.name}: {exc}", True

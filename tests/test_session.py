import asyncio

from conftest import STALL, FakeClient, ScriptedModelProvider, fake_connector, tool
from mcpchat.agent import CancellationToken, ChatManager, TurnState
from mcpchat.agent.models import StepFinish, TextDelta, ToolCallRequest
from mcpchat.errors import ModelInferenceError
from mcpchat.schemas import ChatMessage, ChatRequest
from mcpchat.storage import ChatStore, ProviderStore

WEATHER_URL = "http://weather.example.com/sse"


def _run(coro):
    return asyncio.run(coro)


def _request(text: str = "What's the weather in Helsinki?", chat_id: str = "chat-1") -> ChatRequest:
    return ChatRequest(id=chat_id, messages=[ChatMessage(id=f"{chat_id}-m1", role="user", content=text)])


def _weather_call(call_id: str = "call_1", **args) -> ToolCallRequest:
    return ToolCallRequest(call_id=call_id, name="getWeather", arguments=args or {"latitude": 60.17, "longitude": 24.94})


def _manager(db, config, steps, clients=None) -> ChatManager:
    return ChatManager(config, db, ScriptedModelProvider(steps), fake_connector(clients or {}))


def _register_weather(db, user_id: str = "u1") -> FakeClient:
    ProviderStore(db).create(user_id=user_id, name="Weather", url=WEATHER_URL)
    return FakeClient(
        [tool("getWeather", "Current weather", latitude="number", longitude="number")],
        results={"getWeather": lambda args: '{"temperature": 12}'},
    )


async def _collect(turn, cancel=None):
    return [event async for event in turn.stream_run(cancel)]


def test_weather_turn_streams_tool_call_and_persists_one_message(db, config) -> None:
    client = _register_weather(db)
    steps = [
        [_weather_call(), StepFinish(finish_reason="tool-calls")],
        [TextDelta("It is 12°C "), TextDelta("in Helsinki."), StepFinish()],
    ]
    manager = _manager(db, config, steps, {WEATHER_URL: client})

    async def main():
        turn = await manager.start_turn("u1", _request())
        return turn, await _collect(turn)

    turn, events = _run(main())
    types = [event["type"] for event in events]

    assert types[0] == "providers"
    assert events[0]["providers"][0]["status"] == "succeeded"
    assert types.count("tool-call") == 1
    assert events[types.index("tool-call")]["toolName"] == "getWeather"
    assert types.index("tool-call") < types.index("tool-result") < types.index("text-delta")
    assert types[-1] == "finish"
    assert client.calls == [("getWeather", {"latitude": 60.17, "longitude": 24.94})]
    assert turn.state is TurnState.COMPLETED

    messages = ChatStore(db).get_messages("chat-1")
    assert [message.role for message in messages] == ["user", "assistant"]
    assistant = messages[1]
    assert assistant.id == events[-1]["messageId"]
    assert assistant.parts[0]["type"] == "tool-invocation"
    assert assistant.parts[0]["toolInvocation"]["result"] == '{"temperature": 12}'
    assert assistant.parts[-1] == {"type": "text", "text": "It is 12°C in Helsinki."}


def test_tool_results_are_fed_back_to_the_model(db, config) -> None:
    client = _register_weather(db)
    provider = ScriptedModelProvider([[_weather_call(), StepFinish(finish_reason="tool-calls")], [TextDelta("ok ")]])
    manager = ChatManager(config, db, provider, fake_connector({WEATHER_URL: client}))

    async def main():
        turn = await manager.start_turn("u1", _request())
        return await _collect(turn)

    _run(main())
    second_input = provider.calls[1]["input"]
    assert {"type": "function_call_output", "call_id": "call_1", "output": '{"temperature": 12}'} in second_input
    assert [t["name"] for t in provider.calls[0]["tools"]] == ["getWeather"]


def test_cancel_mid_stream_persists_nothing(db, config) -> None:
    steps = [[TextDelta("Hel"), TextDelta("lo "), TextDelta("there"), StepFinish()]]
    manager = _manager(db, config, steps)
    cancel = CancellationToken()

    async def main():
        turn = await manager.start_turn("u1", _request())
        events = []
        async for event in turn.stream_run(cancel):
            events.append(event)
            if event["type"] == "text-delta":
                cancel.cancel()
        return turn, events

    turn, events = _run(main())
    assert [event["type"] for event in events] == ["providers", "text-delta"]
    assert turn.state is TurnState.CANCELLED
    assert [message.role for message in ChatStore(db).get_messages("chat-1")] == ["user"]


def test_closing_the_stream_persists_nothing(db, config) -> None:
    steps = [[TextDelta("Hel"), TextDelta("lo "), StepFinish()]]
    manager = _manager(db, config, steps)

    async def main():
        turn = await manager.start_turn("u1", _request())
        stream = turn.stream_run()
        await stream.__anext__()
        await stream.__anext__()
        await stream.aclose()
        return turn

    turn = _run(main())
    assert turn.state is TurnState.CANCELLED
    assert len(ChatStore(db).get_messages("chat-1")) == 1


def test_model_error_yields_single_error_event(db, config) -> None:
    steps = [[TextDelta("partial "), ModelInferenceError("upstream unavailable")]]
    manager = _manager(db, config, steps)

    async def main():
        turn = await manager.start_turn("u1", _request())
        return turn, await _collect(turn)

    turn, events = _run(main())
    errors = [event for event in events if event["type"] == "error"]
    assert len(errors) == 1
    assert errors[0]["error"] == "upstream unavailable"
    assert events[-1]["type"] == "error"
    assert turn.state is TurnState.FAILED
    assert [message.role for message in ChatStore(db).get_messages("chat-1")] == ["user"]


def test_step_limit_stops_tool_loop(db, config) -> None:
    client = _register_weather(db)
    steps = [[_weather_call(f"call_{i}"), StepFinish(finish_reason="tool-calls")] for i in range(5)]
    provider = ScriptedModelProvider(steps)
    manager = ChatManager(config, db, provider, fake_connector({WEATHER_URL: client}))

    async def main():
        turn = await manager.start_turn("u1", _request())
        return await _collect(turn)

    events = _run(main())
    step_events = [event for event in events if event["type"] == "step-finish"]
    assert len(provider.calls) == config.max_steps
    assert [event["isContinued"] for event in step_events] == [True, True, False]
    assert events[-1]["type"] == "finish"


def test_unknown_tool_and_missing_arguments_become_error_results(db, config) -> None:
    steps = [
        [
            ToolCallRequest(call_id="c1", name="doesNotExist", arguments={}),
            ToolCallRequest(call_id="c2", name="getWeather", arguments={"latitude": 1.0}),
            StepFinish(finish_reason="tool-calls"),
        ],
        [TextDelta("Sorry "), StepFinish()],
    ]
    manager = _manager(db, config, steps)

    async def main():
        turn = await manager.start_turn("u1", _request())
        return await _collect(turn)

    results = [event for event in _run(main()) if event["type"] == "tool-result"]
    assert [result["isError"] for result in results] == [True, True]
    assert "not available" in results[0]["result"]
    assert "longitude" in results[1]["result"]


def test_failed_provider_is_reported_but_turn_continues(db, config) -> None:
    ProviderStore(db).create(user_id="u1", name="Down", url="http://down.example.com/sse")
    manager = _manager(db, config, [[TextDelta("Hi "), StepFinish()]])

    async def main():
        turn = await manager.start_turn("u1", _request("hello"))
        return await _collect(turn)

    events = _run(main())
    assert events[0]["providers"][0]["status"] == "failed"
    assert events[-1]["type"] == "finish"


def test_run_returns_concatenated_text(db, config) -> None:
    manager = _manager(db, config, [[TextDelta("Hello "), TextDelta("world"), StepFinish()]])

    async def main():
        turn = await manager.start_turn("u1", _request("hi"))
        return await turn.run()

    assert _run(main()) == "Hello world"


def test_cancel_while_tools_run_drops_results(db, config) -> None:
    cancel = CancellationToken()
    ProviderStore(db).create(user_id="u1", name="Weather", url=WEATHER_URL)

    def weather(args):
        cancel.cancel()
        return '{"temperature": 12}'

    client = FakeClient(
        [tool("getWeather", "Current weather", latitude="number", longitude="number")],
        results={"getWeather": weather},
    )
    provider = ScriptedModelProvider([[_weather_call(), StepFinish(finish_reason="tool-calls")], [TextDelta("never ")]])
    manager = ChatManager(config, db, provider, fake_connector({WEATHER_URL: client}))

    async def main():
        turn = await manager.start_turn("u1", _request())
        return turn, await _collect(turn, cancel)

    turn, events = _run(main())
    types = [event["type"] for event in events]

    assert types == ["providers", "tool-call"]
    assert len(client.calls) == 1
    assert len(provider.calls) == 1
    assert turn.state is TurnState.CANCELLED
    assert [message.role for message in ChatStore(db).get_messages("chat-1")] == ["user"]


def test_cancel_interrupts_a_stalled_model_stream(db, config) -> None:
    manager = _manager(db, config, [[TextDelta("Hello "), STALL, TextDelta("never"), StepFinish()]])
    cancel = CancellationToken()

    async def main():
        turn = await manager.start_turn("u1", _request())
        events = []

        async def consume():
            async for event in turn.stream_run(cancel):
                events.append(event)

        task = asyncio.create_task(consume())
        while len(events) < 2:
            await asyncio.sleep(0)
        # Let the reader block on the stalled model before cancelling.
        await asyncio.sleep(0.05)
        cancel.cancel()
        await asyncio.wait_for(task, timeout=2)
        return turn, events

    turn, events = _run(main())
    assert [event["type"] for event in events] == ["providers", "text-delta"]
    assert turn.state is TurnState.CANCELLED
    assert [message.role for message in ChatStore(db).get_messages("chat-1")] == ["user"]

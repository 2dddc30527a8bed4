"""Run one chat turn through ChatManager directly (no HTTP).
Run with: uv run python examples/backend_example.py
"""
import asyncio
import uuid

from mcpchat.agent import ChatManager, OpenAIModelProvider
from mcpchat.config import load_app_config
from mcpchat.schemas import ChatMessage, ChatRequest
from mcpchat.storage import Database
from mcpchat.tools import ProviderConnector


async def main() -> None:
    # Uses config/config.toml and an in-memory database.
    config = load_app_config()
    db = Database("sqlite://")
    db.create_all()
    model_provider = OpenAIModelProvider(config)
    manager = ChatManager(config, db, model_provider, ProviderConnector(config.provider_timeout))

    request = ChatRequest(
        id=str(uuid.uuid4()),
        messages=[ChatMessage(id=str(uuid.uuid4()), role="user", content="What is the weather in Helsinki?")],
    )
    turn = await manager.start_turn("demo-user", request)
    reply = await turn.run()
    print("Reply:\n", reply)
    print("\nStored messages:", len(manager.history("demo-user", request.id)))
    await model_provider.close()


if __name__ == "__main__":
    asyncio.run(main())

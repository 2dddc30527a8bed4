import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import APIRouter, Body, Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from .agent import CancellationToken, ChatManager, ChatTurn, ModelProvider, OpenAIModelProvider, chat_models
from .config import AppConfig, load_app_config
from .errors import AuthorizationError, ChatServiceError, NotFoundError, ValidationError
from .providers import ProviderRegistry
from .schemas import ChatRequest, ProviderRequest
from .storage import Database, ProviderStore
from .tools import ProviderConnector
from .utils import WordChunker

logger = logging.getLogger(__name__)


def current_user(request: Request) -> str:
    header = request.app.state.config.user_header
    user_id = request.headers.get(header)
    if not user_id:
        raise AuthorizationError("Unauthorized")
    return user_id


def _sse(event: Dict[str, Any]) -> Dict[str, str]:
    return {"event": event["type"], "data": json.dumps(event)}


async def stream_events(turn: ChatTurn, cancel: CancellationToken) -> AsyncGenerator[Dict[str, str], None]:
    """SSE messages for one turn, with text deltas coalesced into words."""
    chunker = WordChunker()
    try:
        async for event in turn.stream_run(cancel):
            if event["type"] == "text-delta":
                for chunk in chunker.feed(event["textDelta"]):
                    yield _sse({"type": "text-delta", "textDelta": chunk})
                continue
            for chunk in chunker.flush():
                yield _sse({"type": "text-delta", "textDelta": chunk})
            yield _sse(event)
    except asyncio.CancelledError:
        # Client went away.
        cancel.cancel()
        raise


def build_router() -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @router.get("/api/models")
    async def list_models(request: Request) -> dict:
        config: AppConfig = request.app.state.config
        return {"default": config.default_model, "models": chat_models(config)}

    @router.post("/api/chat")
    async def chat(
        request: Request,
        payload: ChatRequest = Body(...),
        user_id: str = Depends(current_user),
    ) -> EventSourceResponse:
        manager: ChatManager = request.app.state.manager
        turn = await manager.start_turn(user_id, payload)
        return EventSourceResponse(stream_events(turn, CancellationToken()))

    @router.delete("/api/chat")
    async def delete_chat(
        request: Request,
        id: Optional[str] = None,
        user_id: str = Depends(current_user),
    ) -> JSONResponse:
        if not id:
            raise NotFoundError("Chat not found")
        request.app.state.manager.delete_chat(user_id, id)
        return JSONResponse({"success": True, "id": id})

    @router.get("/api/chats")
    async def list_chats(request: Request, user_id: str = Depends(current_user)) -> List[dict]:
        return request.app.state.manager.list_chats(user_id)

    @router.get("/api/chat/{chat_id}")
    async def get_chat(request: Request, chat_id: str, user_id: str = Depends(current_user)) -> JSONResponse:
        messages = request.app.state.manager.history(user_id, chat_id)
        return JSONResponse({"chatId": chat_id, "messages": messages})

    @router.post("/api/providers/validate")
    async def validate_provider(
        request: Request,
        payload: ProviderRequest,
        user_id: str = Depends(current_user),
    ) -> JSONResponse:
        registry: ProviderRegistry = request.app.state.providers
        report = await registry.validate(payload.url, payload.type)
        return JSONResponse(report.to_dict())

    @router.post("/api/providers")
    async def register_provider(
        request: Request,
        payload: ProviderRequest,
        user_id: str = Depends(current_user),
    ) -> JSONResponse:
        registry: ProviderRegistry = request.app.state.providers
        data = await registry.register(user_id, payload.url, payload.type)
        return JSONResponse(data, status_code=201)

    @router.get("/api/providers")
    async def list_providers(request: Request, user_id: str = Depends(current_user)) -> List[dict]:
        return request.app.state.providers.list(user_id)

    @router.post("/api/providers/{provider_id}/toggle")
    async def toggle_provider(request: Request, provider_id: str, user_id: str = Depends(current_user)) -> JSONResponse:
        return JSONResponse({"success": True, "data": request.app.state.providers.toggle(user_id, provider_id)})

    @router.delete("/api/providers/{provider_id}")
    async def delete_provider(request: Request, provider_id: str, user_id: str = Depends(current_user)) -> JSONResponse:
        return JSONResponse({"success": True, "data": request.app.state.providers.delete(user_id, provider_id)})

    @router.get("/api/tools")
    async def list_tools(request: Request, user_id: str = Depends(current_user)) -> dict:
        return request.app.state.providers.tool_summary(user_id)

    return router


def create_app(
    config: Optional[AppConfig] = None,
    *,
    db: Optional[Database] = None,
    model_provider: Optional[ModelProvider] = None,
    connector: Optional[ProviderConnector] = None,
) -> FastAPI:
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config = config or load_app_config()
    db = db or Database(config.database_url)
    db.create_all()
    model_provider = model_provider or OpenAIModelProvider(config)
    connector = connector or ProviderConnector(config.provider_timeout, tool_timeout=config.tool_timeout)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(
            "Serving %d chat models, provider timeout %.1fs, max steps %d",
            len(config.chat_models()),
            config.provider_timeout,
            config.max_steps,
        )
        try:
            yield
        finally:
            await model_provider.close()
            db.dispose()

    app = FastAPI(title="mcpchat", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.db = db
    app.state.manager = ChatManager(config, db, model_provider, connector)
    app.state.providers = ProviderRegistry(ProviderStore(db), connector, model_provider, config)

    @app.exception_handler(ChatServiceError)
    async def handle_service_error(_: Request, exc: ChatServiceError) -> JSONResponse:
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(_: Request, exc: RequestValidationError) -> JSONResponse:
        error = ValidationError("Invalid request", details={"errors": jsonable_encoder(exc.errors())})
        return JSONResponse(error.to_dict(), status_code=error.status_code)

    app.include_router(build_router())
    return app


# Local dev server: uvicorn mcpchat.main:create_app --factory --reload
def run() -> None:
    uvicorn.run(
        "mcpchat.main:create_app",
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=bool(os.getenv("RELOAD", False)),
    )


if __name__ == "__main__":
    run()

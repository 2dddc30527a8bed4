import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from dotenv import load_dotenv

DEFAULT_SYSTEM_PROMPT = (
    "You are a friendly assistant. Keep your answers concise and helpful. "
    "Use the provided tools when they improve factual accuracy. "
    "If a tool call fails, explain the failure and continue."
)

DEFAULT_MODELS: Dict[str, Dict[str, Any]] = {
    "chat-model": {
        "model": "gpt-4.1",
        "name": "Chat model (GPT-4.1)",
        "description": "Main model for general-purpose chats",
    },
    "chat-model-reasoning": {
        "model": "o4-mini",
        "name": "Reasoning model (o4-mini)",
        "description": "Uses advanced reasoning",
        "reasoning_effort": "medium",
    },
    "gpt-4.1-mini": {
        "model": "gpt-4.1-mini",
        "name": "GPT-4.1 Mini",
        "description": "OpenAI GPT-4.1 Mini",
    },
    "title-model": {
        "model": "gpt-4.1",
        "name": "Title model",
        "description": "Generates chat titles",
        "hidden": True,
    },
}


@dataclass(frozen=True)
class ModelSpec:
    id: str
    model: str
    name: str
    description: str = ""
    reasoning_effort: Optional[str] = None
    hidden: bool = False


@dataclass
class AppConfig:
    default_model: str = "chat-model"
    title_model: str = "title-model"
    describer_model: str = "gpt-4.1"
    openai_base_url: Optional[str] = None
    max_steps: int = 5
    max_output_tokens: int = 2048
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    models: Dict[str, ModelSpec] = field(default_factory=dict)
    provider_timeout: float = 5.0
    tool_timeout: float = 30.0
    provider_concurrency: int = 4
    default_transport: str = "sse"
    allowed_transports: Tuple[str, ...] = ("sse", "http")
    database_url: str = "sqlite:///./mcpchat.db"
    user_header: str = "X-User-Id"

    def __post_init__(self) -> None:
        if not self.models:
            self.models = _models_from_config(DEFAULT_MODELS)

    def chat_models(self) -> List[ModelSpec]:
        return [spec for spec in self.models.values() if not spec.hidden]


def _load_toml(path: Path) -> Dict[str, Any]:
    # Let errors propagate if the file is malformed.
    return tomllib.loads(path.read_text())


def _models_from_config(raw: Dict[str, Any]) -> Dict[str, ModelSpec]:
    models: Dict[str, ModelSpec] = {}
    for model_id, item in raw.items():
        if not isinstance(item, dict):
            raise TypeError(f"models.{model_id} must be a table, got {type(item).__name__}")
        if not item.get("model"):
            raise ValueError(f"models.{model_id} missing non-empty 'model'")
        models[model_id] = ModelSpec(
            id=model_id,
            model=str(item["model"]),
            name=str(item.get("name") or model_id),
            description=str(item.get("description", "")),
            reasoning_effort=item.get("reasoning_effort") or None,
            hidden=bool(item.get("hidden", False)),
        )
    return models


def load_prompts_config(path: str | None = None) -> Dict[str, str]:
    config_path = Path(path or os.getenv("PROMPTS_CONFIG_FILE", "config/prompts.toml"))
    if not config_path.exists():
        return {"system": DEFAULT_SYSTEM_PROMPT}
    prompts_cfg = _load_toml(config_path).get("prompts", {})
    return {"system": prompts_cfg.get("system", DEFAULT_SYSTEM_PROMPT)}


def load_app_config(path: str | None = None) -> AppConfig:
    load_dotenv()

    config_path = Path(path or os.getenv("APP_CONFIG_FILE", "config/config.toml"))
    data = _load_toml(config_path) if config_path.exists() else {}

    app_cfg = data.get("app", {})
    providers_cfg = data.get("providers", {})
    database_cfg = data.get("database", {})
    auth_cfg = data.get("auth", {})

    defaults = AppConfig()
    # prompts.toml sits next to the main config file unless overridden.
    prompts_path = os.getenv("PROMPTS_CONFIG_FILE") or str(config_path.with_name("prompts.toml"))
    models = _models_from_config(data["models"]) if data.get("models") else defaults.models

    config = AppConfig(
        default_model=app_cfg.get("default_model", defaults.default_model),
        title_model=app_cfg.get("title_model", defaults.title_model),
        describer_model=app_cfg.get("describer_model", defaults.describer_model),
        openai_base_url=app_cfg.get("openai_base_url") or None,
        max_steps=int(app_cfg.get("max_steps", defaults.max_steps)),
        max_output_tokens=int(app_cfg.get("max_output_tokens", defaults.max_output_tokens)),
        system_prompt=load_prompts_config(prompts_path)["system"],
        models=models,
        provider_timeout=float(providers_cfg.get("timeout", defaults.provider_timeout)),
        tool_timeout=float(providers_cfg.get("tool_timeout", defaults.tool_timeout)),
        provider_concurrency=int(providers_cfg.get("concurrency", defaults.provider_concurrency)),
        default_transport=providers_cfg.get("default_transport", defaults.default_transport),
        allowed_transports=tuple(providers_cfg.get("allowed_transports", defaults.allowed_transports)),
        database_url=os.getenv("DATABASE_URL") or database_cfg.get("url", defaults.database_url),
        user_header=auth_cfg.get("user_header", defaults.user_header),
    )

    if config.default_model not in config.models:
        raise ValueError(f"app.default_model '{config.default_model}' is not defined under [models]")
    if config.max_steps < 1:
        raise ValueError("app.max_steps must be at least 1")
    if config.default_transport not in config.allowed_transports:
        raise ValueError(
            f"providers.default_transport '{config.default_transport}' is not in providers.allowed_transports"
        )
    return config

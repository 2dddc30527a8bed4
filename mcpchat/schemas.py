from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(..., min_length=1, description="Client-generated message identifier")
    role: Literal["user", "assistant", "system", "tool"]
    content: str = Field("", description="Plain-text content, used when no parts are given")
    parts: List[Dict[str, Any]] = Field(default_factory=list, description="Ordered content parts")
    attachments: List[Dict[str, Any]] = Field(
        default_factory=list,
        validation_alias=AliasChoices("attachments", "experimental_attachments"),
    )

    def normalized_parts(self) -> List[Dict[str, Any]]:
        if self.parts:
            return [dict(part) for part in self.parts]
        if self.content:
            return [{"type": "text", "text": self.content}]
        return []

    def text(self) -> str:
        texts = [
            str(part.get("text", ""))
            for part in self.normalized_parts()
            if part.get("type") == "text" and part.get("text")
        ]
        return "".join(texts)


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, description="Chat identifier")
    messages: List[ChatMessage] = Field(default_factory=list, description="Full history including the new message")
    selected_chat_model: Optional[str] = Field(
        None,
        alias="selectedChatModel",
        description="Model id from the chat model catalogue",
    )


class ProviderRequest(BaseModel):
    url: str = Field("", description="Provider endpoint")
    type: Optional[Literal["sse", "stdio", "http"]] = Field(None, description="Transport kind")

"""Request and response models for the HTTP API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from agent_chat.agent.tool_servers import validate_transport
from agent_chat.types import OpenAPIIntegration


class AgentCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value


class AgentUpdateRequest(BaseModel):
    name: str | None = None
    description: str | None = None


class OpenAPICreateRequest(BaseModel):
    name: str = Field(min_length=1)
    schema_url: str = Field(min_length=1)
    api_url: str = Field(min_length=1)


class OpenAPIUpdateRequest(BaseModel):
    name: str | None = None
    schema_url: str | None = None
    api_url: str | None = None


class ToolServerCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    transport: str
    url: str = Field(min_length=1)

    @field_validator("transport")
    @classmethod
    def _known_transport(cls, value: str) -> str:
        return validate_transport(value)


class ToolServerUpdateRequest(BaseModel):
    name: str | None = None
    transport: str | None = None
    url: str | None = None

    @field_validator("transport")
    @classmethod
    def _known_transport(cls, value: str | None) -> str | None:
        return validate_transport(value) if value else None


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)

    @field_validator("message")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    top_k: int = Field(default=5, ge=1, le=20)


def openapi_payload(integration: OpenAPIIntegration) -> dict[str, Any]:
    return {
        "id": integration.id,
        "agent_id": integration.agent_id,
        "name": integration.name,
        "schema_url": integration.schema_url,
        "api_url": integration.api_url,
        "tools": [tool.to_openai_tool() for tool in integration.tools],
        "created_at": integration.created_at,
    }

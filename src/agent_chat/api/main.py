"""FastAPI entrypoint wiring storage, ingestion, retrieval and the chat loop."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from agent_chat.agent.tool_servers import load_tool_server_tools
from agent_chat.agent.tools import ToolServerLoader
from agent_chat.api.routes import Services, router
from agent_chat.config import Settings, configure_logging
from agent_chat.errors import APIError, ConfigurationError, ErrorCode
from agent_chat.ingest.chunker import RecursiveChunker
from agent_chat.ingest.embedder import Embedder, HashingEmbedder, OpenAIEmbedder
from agent_chat.ingest.parser import ExtractorRegistry
from agent_chat.ingest.pipeline import IngestPipeline
from agent_chat.retrieval.retriever import DocumentRetriever
from agent_chat.store import SqliteStore

logger = logging.getLogger(__name__)


def _create_llm(settings: Settings) -> Any:
    if not settings.openai_api_key:
        return None

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(model=settings.llm_model, api_key=settings.openai_api_key, temperature=0)


def _create_embedder(settings: Settings) -> Embedder:
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; using the local hashing embedder")
        return HashingEmbedder()
    return OpenAIEmbedder(model=settings.embeddings_model, api_key=settings.openai_api_key)


def create_app(
    settings: Settings | None = None,
    *,
    store: SqliteStore | None = None,
    llm: Any = None,
    embedder: Embedder | None = None,
    http_client: httpx.AsyncClient | None = None,
    tool_server_loader: ToolServerLoader | None = None,
) -> FastAPI:
    """Build the application; collaborators not passed in are created from `settings`."""

    settings = settings or Settings()
    configure_logging(settings.log_level)

    store = store or SqliteStore(settings.database_path)
    embedder = embedder or _create_embedder(settings)
    http_client = http_client or httpx.AsyncClient(timeout=settings.tool_timeout_seconds)
    services = Services(
        settings=settings,
        store=store,
        retriever=DocumentRetriever(store, embedder, settings.retrieval),
        ingest_pipeline=IngestPipeline(
            ExtractorRegistry(), RecursiveChunker(settings.chunking), embedder, store
        ),
        http_client=http_client,
        tool_server_loader=tool_server_loader or load_tool_server_tools,
        llm=llm if llm is not None else _create_llm(settings),
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        await services.http_client.aclose()

    app = FastAPI(title="Agent Chat", version="0.1.0", lifespan=lifespan)
    app.state.services = services
    app.include_router(router)

    @app.exception_handler(APIError)
    async def _api_error(_: Request, exc: APIError) -> JSONResponse:
        if exc.detail:
            logger.info(f"{exc.code.value}: {exc.detail}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.code.value})

    @app.exception_handler(RequestValidationError)
    async def _validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        logger.info(f"Rejected request: {exc.errors()}")
        return JSONResponse(status_code=400, content={"error": ErrorCode.INVALID_REQUEST.value})

    @app.exception_handler(ConfigurationError)
    async def _configuration_error(_: Request, exc: ConfigurationError) -> JSONResponse:
        logger.info(f"Rejected configuration: {exc}")
        return JSONResponse(status_code=400, content={"error": ErrorCode.INVALID_REQUEST.value})

    @app.exception_handler(Exception)
    async def _unhandled(_: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500, content={"error": ErrorCode.INTERNAL_SERVER_ERROR.value}
        )

    return app


def main() -> None:
    settings = Settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


from dataclasses import dataclass

from fastapi import Depends, Request

from knowledge_hub.service.embedder import Embedder
from knowledge_hub.service.ingestion import IngestionPipeline
from knowledge_hub.service.llm import build_generator
from knowledge_hub.service.mcp_gateway import ToolGateway
from knowledge_hub.service.rag_chat import ChatEngine
from knowledge_hub.service.vector_store import VectorStore


@dataclass
class Services:
    store: VectorStore
    pipeline: IngestionPipeline
    chat_engine: ChatEngine
    gateway: ToolGateway


def build_services(settings, session_factory, embedder=None, generator=None) -> Services:
    """Khởi tạo các service một lần lúc startup (không dùng singleton ẩn)."""
    store = VectorStore(session_factory, dimension=settings.EMBEDDING_DIM)
    embedder = embedder or Embedder(settings.GOOGLE_API_KEY, settings.EMBEDDING_MODEL, settings.EMBEDDING_DIM)
    generator = generator or build_generator(settings)

    return Services(
        store=store,
        pipeline=IngestionPipeline(
            store,
            embedder,
            chunk_size=settings.CHUNK_SIZE,
            overlap=settings.CHUNK_OVERLAP,
            batch_size=settings.EMBED_BATCH_SIZE,
        ),
        chat_engine=ChatEngine(
            store,
            embedder,
            generator,
            threshold=settings.CHAT_MATCH_THRESHOLD,
            limit=settings.CHAT_MATCH_COUNT,
            temperature=settings.CHAT_TEMPERATURE,
        ),
        gateway=ToolGateway(
            store,
            embedder,
            threshold=settings.TOOL_MATCH_THRESHOLD,
            limit=settings.TOOL_MATCH_COUNT,
            keepalive_seconds=settings.MCP_KEEPALIVE_SECONDS,
        ),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_store(services: Services = Depends(get_services)) -> VectorStore:
    return services.store


def get_pipeline(services: Services = Depends(get_services)) -> IngestionPipeline:
    return services.pipeline


def get_chat_engine(services: Services = Depends(get_services)) -> ChatEngine:
    return services.chat_engine


def get_gateway(services: Services = Depends(get_services)) -> ToolGateway:
    return services.gateway

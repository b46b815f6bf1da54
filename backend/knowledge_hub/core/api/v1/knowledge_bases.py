
import json
import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, Response, UploadFile, status
from fastapi.responses import StreamingResponse

from knowledge_hub.core.api.deps import get_pipeline, get_store
from knowledge_hub.core.config import get_settings
from knowledge_hub.core.exceptions import KnowledgeHubError
from knowledge_hub.core.rate_limit import limiter
from knowledge_hub.schemas.knowledge import (
    DeleteDocumentResponse,
    DocumentResponse,
    IngestResponse,
    KnowledgeBaseCreate,
    KnowledgeBaseResponse,
    KnowledgeBaseUpdate,
)
from knowledge_hub.service.ingestion import IngestionPipeline, IngestProgress
from knowledge_hub.service.vector_store import VectorStore

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()


async def read_upload(file: UploadFile) -> bytes:
    payload = await file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(payload) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"File quá lớn (tối đa {settings.MAX_UPLOAD_BYTES // 1024} KB)")
    return payload


# ---------------------------------------------------------------------------
# Knowledge bases
# ---------------------------------------------------------------------------

@router.get("", response_model=List[KnowledgeBaseResponse])
async def list_knowledge_bases(store: VectorStore = Depends(get_store)):
    return await store.list_knowledge_bases()


@router.post("", response_model=KnowledgeBaseResponse, status_code=status.HTTP_201_CREATED)
async def create_knowledge_base(body: KnowledgeBaseCreate, store: VectorStore = Depends(get_store)):
    return await store.create_knowledge_base(body.title, body.description, body.icon)


@router.get("/{kb_id}", response_model=KnowledgeBaseResponse)
async def get_knowledge_base(kb_id: UUID, store: VectorStore = Depends(get_store)):
    return await store.get_knowledge_base(kb_id)


@router.patch("/{kb_id}", response_model=KnowledgeBaseResponse)
async def update_knowledge_base(kb_id: UUID, body: KnowledgeBaseUpdate, store: VectorStore = Depends(get_store)):
    return await store.update_knowledge_base(kb_id, title=body.title, description=body.description, icon=body.icon)


@router.delete("/{kb_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_knowledge_base(kb_id: UUID, store: VectorStore = Depends(get_store)):
    await store.delete_knowledge_base(kb_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Documents (nhóm chunk theo file nguồn)
# ---------------------------------------------------------------------------

@router.get("/{kb_id}/documents", response_model=List[DocumentResponse])
async def list_documents(kb_id: UUID, store: VectorStore = Depends(get_store)):
    await store.get_knowledge_base(kb_id)
    groups = await store.list_documents(kb_id)
    return [
        DocumentResponse(id=g.id, name=g.source, size=g.size, uploaded_at=g.uploaded_at, chunk_count=g.chunk_count)
        for g in groups
    ]


@router.post("/{kb_id}/documents", response_model=IngestResponse)
@limiter.limit(settings.UPLOAD_RATE_LIMIT)
async def upload_document(
    request: Request,
    kb_id: UUID,
    file: UploadFile = File(...),
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    """Upload file text -> chunk -> embed -> lưu. Trả về số chunk đã lưu."""
    payload = await read_upload(file)
    result = await pipeline.ingest(kb_id, file.filename or "Untitled", payload, file.content_type)
    return IngestResponse(
        success=result.success,
        inserted_count=result.inserted_count,
        chunk_count=result.chunk_count,
        failed_count=result.failed_count,
        source=result.source,
    )


@router.post("/{kb_id}/documents/stream", response_description="Stream NDJSON")
@limiter.limit(settings.UPLOAD_RATE_LIMIT)
async def upload_document_stream(
    request: Request,
    kb_id: UUID,
    file: UploadFile = File(...),
    pipeline: IngestionPipeline = Depends(get_pipeline),
):
    """
    Trả về StreamingResponse (NDJSON).
    Line 1..n: {"type": "progress", "data": 10}
    Line cuối: {"type": "result", "data": {...}} hoặc {"type": "error", "data": "..."}
    """
    payload = await read_upload(file)
    filename = file.filename or "Untitled"
    content_type = file.content_type

    async def event_generator():
        try:
            async for event in pipeline.ingest_stream(kb_id, filename, payload, content_type):
                if isinstance(event, IngestProgress):
                    yield json.dumps({"type": "progress", "data": event.percent}) + "\n"
                else:
                    data = {
                        "success": event.success,
                        "inserted_count": event.inserted_count,
                        "chunk_count": event.chunk_count,
                        "failed_count": event.failed_count,
                        "source": event.source,
                    }
                    yield json.dumps({"type": "result", "data": data}) + "\n"
        except KnowledgeHubError as e:
            logger.warning("Streaming ingestion of '%s' failed: %s", filename, e.message)
            yield json.dumps({"type": "error", "data": e.message}, ensure_ascii=False) + "\n"

    return StreamingResponse(event_generator(), media_type="application/x-ndjson")


@router.delete("/{kb_id}/documents", response_model=DeleteDocumentResponse)
async def delete_document_by_source(
    kb_id: UUID,
    source: str = Query(..., min_length=1),
    store: VectorStore = Depends(get_store),
):
    deleted = await store.delete_chunks_by_source(kb_id, source)
    return DeleteDocumentResponse(source=source, deleted_count=deleted)


@router.delete("/{kb_id}/documents/{chunk_id}", response_model=DeleteDocumentResponse)
async def delete_document(kb_id: UUID, chunk_id: UUID, store: VectorStore = Depends(get_store)):
    deleted = await store.delete_document(kb_id, chunk_id)
    return DeleteDocumentResponse(deleted_count=deleted)

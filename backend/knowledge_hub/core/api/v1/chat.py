
import json
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from knowledge_hub.core.api.deps import get_chat_engine
from knowledge_hub.core.config import get_settings
from knowledge_hub.core.exceptions import ValidationError
from knowledge_hub.core.rate_limit import limiter
from knowledge_hub.schemas.chat import ChatRequest, RetrievedSource
from knowledge_hub.service.rag_chat import CHAT_ERROR_MESSAGE, ChatEngine

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()


def ndjson(kind: str, data) -> str:
    return json.dumps({"type": kind, "data": data}, ensure_ascii=False) + "\n"


async def stream_deltas(events):
    # Lỗi sau khi đã bắt đầu stream -> một dòng "error" thay vì HTTP status
    try:
        async for event in events:
            if event.type == "delta" and event.text:
                yield ndjson("content", event.text)
    except Exception as e:
        logger.error("Chat stream failed: %s", e)
        yield ndjson("error", CHAT_ERROR_MESSAGE)


@router.post("/system", response_description="Stream NDJSON")
@limiter.limit(settings.CHAT_RATE_LIMIT)
async def chat_with_system(request: Request, body: ChatRequest, engine: ChatEngine = Depends(get_chat_engine)):
    """Hỏi đáp về chính hệ thống, không truy xuất tài liệu."""
    if not body.message.strip():
        raise ValidationError("Tin nhắn không được để trống")

    async def event_generator():
        yield ndjson("sources", [])
        async for line in stream_deltas(engine.stream_system(body.message)):
            yield line

    return StreamingResponse(event_generator(), media_type="application/x-ndjson")


@router.post("/{kb_id}", response_description="Stream NDJSON")
@limiter.limit(settings.CHAT_RATE_LIMIT)
async def chat_with_stream(request: Request, kb_id: UUID, body: ChatRequest, engine: ChatEngine = Depends(get_chat_engine)):
    """
    Trả về StreamingResponse (NDJSON).
    Line 1: {"type": "sources", "data": [...]}
    Line 2+: {"type": "content", "data": "chunk..."}
    Lỗi giữa chừng: {"type": "error", "data": "..."}
    """
    events = engine.stream(kb_id, body.message)

    # Retrieve trước khi mở stream: kho không tồn tại / embedding lỗi -> HTTP error
    first = await events.__anext__()
    sources = [RetrievedSource.from_chunk(s).model_dump(mode="json") for s in first.sources]

    async def event_generator():
        yield ndjson("sources", sources)
        async for line in stream_deltas(events):
            yield line

    return StreamingResponse(event_generator(), media_type="application/x-ndjson")

"""
Retrieval-augmented chat.

ChatEngine.stream() là primitive chính: phát một event "sources" rồi các event
"delta" (đoạn text tăng dần). Dạng chuỗi tích lũy (cumulative) chỉ dùng ở
ChatEngine.chat() và ChatSession cho phía giao diện.
"""

import inspect
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, List, Optional

from knowledge_hub.core.exceptions import GenerationFailure, ValidationError
from knowledge_hub.service.vector_store import ScoredChunk, VectorStore

logger = logging.getLogger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"

NO_CONTEXT_NOTICE = (
    "Không tìm thấy tài liệu liên quan trong kho kiến thức này. "
    "Hãy trả lời người dùng rằng bạn không tìm thấy thông tin trong tài liệu, không được bịa đặt."
)

GROUNDING_TEMPLATE = """Bạn là trợ lý AI thông minh.
Nhiệm vụ của bạn là trả lời câu hỏi dựa trên CÁC TÀI LIỆU CUNG CẤP dưới đây.
Nếu thông tin không có trong tài liệu, hãy nói rõ là "Tôi không tìm thấy thông tin trong tài liệu này".
Đừng bịa đặt thông tin.

Tài liệu tham khảo:
{context}
"""

SYSTEM_ASSISTANT_INSTRUCTION = """Bạn là trợ lý ảo của hệ thống "Knowledge Hub".

Thông tin về hệ thống này:
- Chức năng chính: Quản lý kho kiến thức (Knowledge Base), tải lên tài liệu (.txt, .md) và Chat RAG (Retrieval-Augmented Generation).
- Hướng dẫn sử dụng: Người dùng tạo kho kiến thức, upload file, sau đó chat với tài liệu trong kho đó.

Nhiệm vụ của bạn:
- Trả lời các câu hỏi về cách sử dụng hệ thống.
- Giải thích các thuật ngữ công nghệ nếu được hỏi (RAG, Vector, Embedding).
- Nếu người dùng hỏi về nội dung tài liệu riêng của họ, hướng dẫn họ mở kho kiến thức tương ứng để chat.
"""

CHAT_ERROR_MESSAGE = "Xin lỗi, đã có lỗi xảy ra khi xử lý câu hỏi của bạn. Vui lòng thử lại."


@dataclass
class ChatEvent:
    type: str  # "sources" | "delta"
    text: str = ""
    sources: List[ScoredChunk] = field(default_factory=list)


@dataclass
class ChatMessage:
    role: str  # "user" | "assistant"
    content: str
    sources: List[ScoredChunk] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_streaming: bool = False
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


def build_grounding_instruction(sources: List[ScoredChunk]) -> str:
    if not sources:
        return GROUNDING_TEMPLATE.format(context=NO_CONTEXT_NOTICE)
    context = CONTEXT_SEPARATOR.join(
        f"[Source: {s.source or 'Unknown'}]\n{s.content}" for s in sources
    )
    return GROUNDING_TEMPLATE.format(context=context)


class ChatEngine:
    def __init__(
        self,
        store: VectorStore,
        embedder,
        generator,
        threshold: float = 0.5,
        limit: int = 5,
        temperature: float = 0.3,
    ):
        self.store = store
        self.embedder = embedder
        self.generator = generator
        self.threshold = threshold
        self.limit = limit
        self.temperature = temperature

    async def retrieve(self, kb_id: uuid.UUID, query: str) -> List[ScoredChunk]:
        await self.store.get_knowledge_base(kb_id)
        query_vector = await self.embedder.embed(query)
        return await self.store.similarity_search(kb_id, query_vector, self.threshold, self.limit)

    async def stream(self, kb_id: uuid.UUID, query: str) -> AsyncIterator[ChatEvent]:
        if not query or not query.strip():
            raise ValidationError("Query must not be empty")

        sources = await self.retrieve(kb_id, query)
        logger.info("Retrieved %d sources for query in %s", len(sources), kb_id)
        yield ChatEvent(type="sources", sources=sources)

        instruction = build_grounding_instruction(sources)
        async for delta in self._generate(query, instruction):
            yield ChatEvent(type="delta", text=delta)

    async def stream_system(self, query: str) -> AsyncIterator[ChatEvent]:
        """Chat về chính hệ thống, không truy xuất tài liệu."""
        if not query or not query.strip():
            raise ValidationError("Query must not be empty")
        async for delta in self._generate(query, SYSTEM_ASSISTANT_INSTRUCTION, temperature=0.7):
            yield ChatEvent(type="delta", text=delta)

    async def _generate(self, query: str, instruction: str, temperature: Optional[float] = None) -> AsyncIterator[str]:
        try:
            async for delta in self.generator.stream(
                query,
                system_instruction=instruction,
                temperature=self.temperature if temperature is None else temperature,
            ):
                if delta:
                    yield delta
        except GenerationFailure:
            raise
        except Exception as e:
            raise GenerationFailure(f"Generation failed: {e}") from e

    async def chat(self, kb_id: uuid.UUID, query: str, on_token: Callable[[str, List[ScoredChunk]], object]) -> str:
        """Gọi on_token(câu trả lời tích lũy, sources) mỗi khi có đoạn text mới."""
        answer = ""
        sources: List[ScoredChunk] = []
        async for event in self.stream(kb_id, query):
            if event.type == "sources":
                sources = event.sources
                continue
            answer += event.text
            outcome = on_token(answer, sources)
            if inspect.isawaitable(outcome):
                await outcome
        return answer


class ChatSession:
    """Lịch sử chat tạm thời (không lưu DB) cho một phiên."""

    def __init__(self, engine: ChatEngine, kb_id: Optional[uuid.UUID] = None):
        self.engine = engine
        self.kb_id = kb_id
        self.messages: List[ChatMessage] = []

    async def ask(self, query: str) -> AsyncIterator[ChatMessage]:
        self.messages.append(ChatMessage(role="user", content=query))
        reply = ChatMessage(role="assistant", content="", is_streaming=True)
        self.messages.append(reply)

        if self.kb_id is None:
            events = self.engine.stream_system(query)
        else:
            events = self.engine.stream(self.kb_id, query)

        try:
            async for event in events:
                if event.type == "sources":
                    reply.sources = event.sources
                else:
                    reply.content += event.text
                yield reply
        except Exception as e:
            # Giữ lượt chat trong lịch sử dưới dạng thông báo lỗi ngắn
            logger.error("Chat turn failed: %s", e)
            reply.content = CHAT_ERROR_MESSAGE
            reply.is_streaming = False
            yield reply
            return

        reply.is_streaming = False
        yield reply

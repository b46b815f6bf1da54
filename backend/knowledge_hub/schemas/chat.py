
from pydantic import BaseModel, Field
from uuid import UUID
from typing import Optional

class ChatRequest(BaseModel):
    message: str = Field(..., max_length=4000)

class SourceMetadata(BaseModel):
    source: str
    size: Optional[str] = None

# Nguồn trích dẫn gắn vào câu trả lời
class RetrievedSource(BaseModel):
    id: UUID
    content: str
    similarity: float
    metadata: SourceMetadata

    @classmethod
    def from_chunk(cls, chunk) -> "RetrievedSource":
        return cls(
            id=chunk.id,
            content=chunk.content,
            similarity=chunk.similarity,
            metadata=SourceMetadata(**chunk.metadata),
        )


from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Optional

# Schema tạo kho kiến thức
class KnowledgeBaseCreate(BaseModel):
    title: str = Field(..., max_length=200)
    description: str = ""
    icon: str = "book"

# Schema cập nhật (chỉ các trường được gửi lên)
class KnowledgeBaseUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = None
    icon: Optional[str] = None

class KnowledgeBaseResponse(BaseModel):
    id: UUID
    title: str
    description: str
    icon: str
    created_at: Optional[datetime] = None
    document_count: int = 0

    class Config:
        from_attributes = True

# "Tài liệu" hiển thị cho người dùng = nhóm chunk theo tên file
class DocumentResponse(BaseModel):
    id: UUID
    name: str
    size: Optional[str] = None
    uploaded_at: Optional[datetime] = None
    chunk_count: int
    status: str = "ready"

class IngestResponse(BaseModel):
    success: bool
    inserted_count: int
    chunk_count: int
    failed_count: int
    source: str

class DeleteDocumentResponse(BaseModel):
    source: Optional[str] = None
    deleted_count: int

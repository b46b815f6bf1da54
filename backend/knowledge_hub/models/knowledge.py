
import uuid
from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey, Uuid, func
from sqlalchemy.orm import relationship
from pgvector.sqlalchemy import Vector
from knowledge_hub.core.config import get_settings
from knowledge_hub.database.postgre import Base

settings = get_settings()

class KnowledgeBase(Base):
    __tablename__ = "knowledge_bases"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    icon = Column(String, nullable=False, default="book")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Xóa kho kiến thức -> xóa toàn bộ chunk
    chunks = relationship("DocumentChunk", back_populates="knowledge_base", cascade="all, delete-orphan", passive_deletes=True)

class DocumentChunk(Base):
    __tablename__ = "documents"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    knowledge_base_id = Column(Uuid(as_uuid=True), ForeignKey("knowledge_bases.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    source = Column(String, nullable=False, index=True) # Tên file gốc, VD: "giao_trinh.md"
    size = Column(String, nullable=True) # VD: "12.4 KB"
    chunk_index = Column(Integer, nullable=False, default=0)
    embedding = Column(Vector(settings.EMBEDDING_DIM))
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    knowledge_base = relationship("KnowledgeBase", back_populates="chunks")

"""
Ingestion pipeline: đọc file -> chia chunk -> embedding theo batch -> ghi store.

Tiến độ (0-100) được báo qua callback:
    10  đọc file xong
    20  chia chunk xong
    20-80  tuyến tính theo từng batch embedding
    90  ghi store xong
    100 hoàn tất
"""

import asyncio
import inspect
import logging
import math
import os
import uuid
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Union

from knowledge_hub.core.exceptions import EmbeddingUnavailable, EmptyDocument, UnsupportedFormat
from knowledge_hub.service.chunker import chunk_text, DEFAULT_CHUNK_SIZE, DEFAULT_CHUNK_OVERLAP
from knowledge_hub.service.embedder import Embedder
from knowledge_hub.service.vector_store import ChunkRecord, VectorStore, utcnow

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], Union[None, Awaitable[None]]]

DEFAULT_BATCH_SIZE = 5

# Định dạng nhị phân core không tự parse (PDF cần backend xử lý riêng)
BINARY_EXTENSIONS = {
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".odt",
    ".zip", ".gz", ".tar", ".rar", ".7z",
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp",
    ".mp3", ".wav", ".ogg", ".mp4", ".mov", ".avi",
    ".exe", ".bin",
}
BINARY_CONTENT_TYPES = ("application/pdf", "application/msword", "application/zip", "image/", "audio/", "video/")


@dataclass
class IngestResult:
    source: str
    chunk_count: int
    inserted_count: int
    failed_count: int

    @property
    def success(self) -> bool:
        return self.inserted_count > 0


@dataclass
class IngestProgress:
    percent: int


def format_size(num_bytes: int) -> str:
    return f"{num_bytes / 1024:.1f} KB"


def decode_text(filename: str, payload: bytes, content_type: Optional[str] = None) -> str:
    """Giải mã nội dung file dạng text UTF-8; định dạng nhị phân bị từ chối."""
    extension = os.path.splitext(filename or "")[1].lower()
    if extension in BINARY_EXTENSIONS:
        raise UnsupportedFormat(f"'{filename}' is a {extension} file; only UTF-8 text files (.txt, .md, ...) are supported")
    if content_type and content_type.lower().startswith(BINARY_CONTENT_TYPES):
        raise UnsupportedFormat(f"Content type '{content_type}' is not supported; upload a UTF-8 text file")
    if b"\x00" in payload:
        raise UnsupportedFormat(f"'{filename}' looks like a binary file")
    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise UnsupportedFormat(f"'{filename}' is not valid UTF-8 text") from e
    return text.lstrip("\ufeff")


class IngestionPipeline:
    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        overlap: int = DEFAULT_CHUNK_OVERLAP,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.store = store
        self.embedder = embedder
        self.chunk_size = chunk_size
        self.overlap = overlap
        self.batch_size = max(1, batch_size)

    async def ingest(
        self,
        kb_id: uuid.UUID,
        filename: str,
        payload: bytes,
        content_type: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> IngestResult:
        async def report(percent: int):
            if on_progress is None:
                return
            outcome = on_progress(percent)
            if inspect.isawaitable(outcome):
                await outcome

        # 1. Đọc file
        await self.store.get_knowledge_base(kb_id)
        text = decode_text(filename, payload, content_type)
        await report(10)

        if not text.strip():
            raise EmptyDocument(f"'{filename}' is empty")

        # 2. Chia chunk
        chunks = chunk_text(text, self.chunk_size, self.overlap)
        await report(20)
        logger.info("Ingesting '%s' into %s: %d chunks", filename, kb_id, len(chunks))

        # 3. Embedding theo batch: tuần tự giữa các batch, song song trong batch
        size_label = format_size(len(payload))
        records: List[ChunkRecord] = []
        errors: List[Exception] = []
        total = len(chunks)
        for i in range(0, total, self.batch_size):
            batch = chunks[i:i + self.batch_size]
            results = await asyncio.gather(
                *(self.embedder.embed(content) for content in batch),
                return_exceptions=True,
            )
            for offset, (content, outcome) in enumerate(zip(batch, results)):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    errors.append(outcome)
                    logger.warning("Dropping chunk %d of '%s': %s", i + offset, filename, outcome)
                    continue
                records.append(
                    ChunkRecord(
                        knowledge_base_id=kb_id,
                        content=content,
                        source=filename,
                        size=size_label,
                        chunk_index=i + offset,
                        embedding=outcome,
                        created_at=utcnow(),
                    )
                )

            progress = 20 + math.floor((i + self.batch_size) / total * 60)
            await report(min(progress, 80))

        if not records:
            retryable = any(getattr(e, "retryable", False) for e in errors)
            raise EmbeddingUnavailable(f"Could not embed any chunk of '{filename}': {errors[-1]}", retryable=retryable)

        # 4. Ghi xuống store trong một lần gọi
        inserted = await self.store.insert_chunks(records)
        await report(90)

        logger.info("Ingested '%s' into %s: %d stored, %d dropped", filename, kb_id, inserted, len(errors))
        await report(100)
        return IngestResult(source=filename, chunk_count=total, inserted_count=inserted, failed_count=len(errors))

    async def ingest_stream(
        self,
        kb_id: uuid.UUID,
        filename: str,
        payload: bytes,
        content_type: Optional[str] = None,
    ) -> AsyncIterator[Union[IngestProgress, IngestResult]]:
        """
        Chạy ingest() và phát từng mốc tiến độ, cuối cùng là IngestResult.
        Lỗi của ingest() được raise lại sau khi đã phát các mốc trước đó.
        Đóng generator giữa chừng sẽ hủy task ingest.
        """
        queue: asyncio.Queue = asyncio.Queue()

        task = asyncio.create_task(
            self.ingest(kb_id, filename, payload, content_type, on_progress=queue.put_nowait)
        )
        task.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while True:
                percent = await queue.get()
                if percent is None:
                    break
                yield IngestProgress(percent)
            yield task.result()
        finally:
            if not task.done():
                task.cancel()

"""Tests for the ingestion pipeline."""

import asyncio
import uuid

import pytest

from knowledge_hub.core.exceptions import EmbeddingUnavailable, EmptyDocument, NotFound, UnsupportedFormat
from knowledge_hub.service.ingestion import (
    IngestionPipeline,
    IngestProgress,
    IngestResult,
    decode_text,
    format_size,
)

from conftest import FakeEmbedder


def words(n: int, prefix: str = "w") -> str:
    return " ".join(f"{prefix}{i}" for i in range(n))


@pytest.fixture
def pipeline(store, embedder):
    return IngestionPipeline(store, embedder, chunk_size=100, overlap=20, batch_size=2)


async def test_ingest_stores_every_chunk_and_reports_progress(pipeline, store, kb):
    text = words(80)  # ~310 ký tự -> 4 chunk
    progress = []

    result = await pipeline.ingest(kb.id, "notes.txt", text.encode("utf-8"), on_progress=progress.append)

    assert result.success
    assert result.chunk_count == result.inserted_count == 4
    assert result.failed_count == 0
    assert progress[:2] == [10, 20]
    assert progress[-2:] == [90, 100]
    assert progress == sorted(progress)
    assert all(20 <= p <= 80 for p in progress[2:-2])

    groups = await store.list_documents(kb.id)
    assert [(g.source, g.chunk_count, g.size) for g in groups] == [("notes.txt", 4, format_size(len(text)))]


async def test_async_progress_callback_is_awaited(pipeline, kb):
    seen = []

    async def on_progress(percent):
        seen.append(percent)

    await pipeline.ingest(kb.id, "a.md", b"# Title\n\nbody", on_progress=on_progress)
    assert seen[0] == 10 and seen[-1] == 100


async def test_failed_chunks_are_dropped(store, kb):
    embedder = FakeEmbedder(fail_on={"BROKEN": False})
    pipeline = IngestionPipeline(store, embedder, chunk_size=100, overlap=0, batch_size=5)
    text = "a" * 99 + " " + "BROKEN" + "b" * 94 + "c" * 100

    result = await pipeline.ingest(kb.id, "mixed.txt", text.encode())

    assert result.chunk_count == 3
    assert result.inserted_count == 2
    assert result.failed_count == 1
    assert result.success


async def test_all_chunks_failing_raises(store, kb):
    embedder = FakeEmbedder(fail_on={"x": True})
    pipeline = IngestionPipeline(store, embedder, chunk_size=100, overlap=0)

    with pytest.raises(EmbeddingUnavailable) as exc_info:
        await pipeline.ingest(kb.id, "x.txt", b"x" * 250)

    assert exc_info.value.retryable is True
    assert await store.list_documents(kb.id) == []


async def test_blank_document_is_rejected(pipeline, kb, embedder):
    with pytest.raises(EmptyDocument):
        await pipeline.ingest(kb.id, "blank.txt", b"   \n\t  ")
    assert embedder.calls == []


async def test_unknown_knowledge_base(pipeline):
    with pytest.raises(NotFound):
        await pipeline.ingest(uuid.uuid4(), "a.txt", b"hello")


@pytest.mark.parametrize(
    "filename,payload,content_type",
    [
        ("report.pdf", b"%PDF-1.7 ...", None),
        ("notes.txt", b"%PDF-1.7 ...", "application/pdf"),
        ("photo.txt", b"\x89PNG\x00\x00", None),
        ("latin1.txt", "café".encode("latin-1"), "text/plain"),
    ],
)
def test_decode_rejects_binary_payloads(filename, payload, content_type):
    with pytest.raises(UnsupportedFormat):
        decode_text(filename, payload, content_type)


def test_decode_strips_bom():
    assert decode_text("a.md", "\ufeff# Tiêu đề".encode("utf-8")) == "# Tiêu đề"


async def test_ingest_stream_yields_progress_then_result(pipeline, kb):
    events = [e async for e in pipeline.ingest_stream(kb.id, "s.txt", words(40).encode())]

    assert all(isinstance(e, IngestProgress) for e in events[:-1])
    assert [e.percent for e in events[:2]] == [10, 20]
    assert events[-2].percent == 100
    assert isinstance(events[-1], IngestResult)
    assert events[-1].inserted_count == events[-1].chunk_count


async def test_ingest_stream_reraises_after_progress(pipeline, kb):
    events = []
    with pytest.raises(EmptyDocument):
        async for event in pipeline.ingest_stream(kb.id, "blank.txt", b"   "):
            events.append(event)

    assert [e.percent for e in events] == [10]


async def test_concurrent_ingests_then_deletes_on_one_base(pipeline, store, kb):
    names = [f"doc{i}.txt" for i in range(5)]
    texts = [words(60 + 10 * i, prefix=f"d{i}_") for i in range(5)]

    results = await asyncio.gather(
        *(pipeline.ingest(kb.id, name, text.encode()) for name, text in zip(names, texts))
    )

    assert all(r.failed_count == 0 and r.inserted_count == r.chunk_count for r in results)
    total = sum(r.inserted_count for r in results)
    groups = {g.source: g.chunk_count for g in await store.list_documents(kb.id)}
    assert groups == {r.source: r.inserted_count for r in results}
    assert (await store.get_knowledge_base(kb.id)).document_count == 5

    deleted = await asyncio.gather(*(store.delete_chunks_by_source(kb.id, name) for name in names))

    assert sum(deleted) == total
    assert list(deleted) == [r.inserted_count for r in results]
    assert await store.list_documents(kb.id) == []
    assert (await store.get_knowledge_base(kb.id)).document_count == 0

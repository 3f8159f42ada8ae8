import asyncio

import pytest
from pydantic import ValidationError

from app.services.llm.base import LLMError
from app.services.rag.document_processor import DocumentContent, DocumentMetadata, Section
from app.services.rag.embeddings import (
    ChunkMetadata,
    Embedder,
    EmbeddingChunk,
    build_chunks,
    cosine_similarity,
    dump_chunks,
    find_similar_chunks,
    get_text_splitter,
    load_chunks,
)


def make_chunk(chunk_id, embedding, page=1):
    return EmbeddingChunk(
        id=chunk_id,
        content=f"content {chunk_id}",
        embedding=embedding,
        metadata=ChunkMetadata(source_id=1, page=page, section_type="body", chunk_index=0),
    )


def test_cosine_similarity():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([1, 1], [-1, -1]) == pytest.approx(-1.0)
    assert cosine_similarity([0, 0], [1, 1]) == 0.0


def test_cosine_similarity_rejects_mismatched_lengths():
    with pytest.raises(ValueError):
        cosine_similarity([1, 2, 3], [1, 2])


def test_find_similar_chunks_ranks_and_truncates():
    chunks = [make_chunk("a", [0, 1]), make_chunk("b", [1, 0]), make_chunk("c", [1, 1])]
    ranked = find_similar_chunks([1, 0], chunks, top_k=2)
    assert [c.id for c, _ in ranked] == ["b", "c"]
    assert ranked[0][1] == pytest.approx(1.0)


def test_find_similar_chunks_ties_keep_input_order():
    chunks = [make_chunk("first", [1, 0]), make_chunk("second", [2, 0])]
    assert [c.id for c, _ in find_similar_chunks([1, 0], chunks)] == ["first", "second"]


def test_chunk_json_round_trip_and_bad_blob():
    chunks = [make_chunk("1_1_0_0", [0.5, 0.25], page=3)]
    assert load_chunks(dump_chunks(chunks)) == chunks
    with pytest.raises(ValidationError):
        load_chunks('[{"id": 1}]')


def test_splitter_respects_chunk_size():
    splitter = get_text_splitter(chunk_size=50, chunk_overlap=10)
    pieces = splitter.split_text("word " * 60)
    assert len(pieces) > 1
    assert all(len(p) <= 50 for p in pieces)


def test_build_chunks_ids_and_metadata(fake_embeddings):
    content = DocumentContent(
        text="",
        pages=2,
        metadata=DocumentMetadata(title="Botany", author="Green"),
        sections=[
            Section(page=1, content="Plants need light", type="body", confidence=0.6),
            Section(page=2, content="Water moves up", type="heading", confidence=0.7),
        ],
    )
    embedder = Embedder(embeddings=fake_embeddings, batch_size=1)

    chunks = asyncio.run(build_chunks(content, 7, embedder, get_text_splitter(100, 0)))

    assert [c.id for c in chunks] == ["7_1_0_0", "7_2_1_0"]
    assert chunks[1].metadata.section_type == "heading"
    assert chunks[1].metadata.title == "Botany"
    assert chunks[0].embedding == fake_embeddings.vector("Plants need light")
    # batch_size=1 means one API call per chunk
    assert len(fake_embeddings.document_calls) == 2


def test_build_chunks_with_no_text_skips_embedding(fake_embeddings):
    content = DocumentContent(text="", pages=0, metadata=DocumentMetadata(), sections=[])
    chunks = asyncio.run(build_chunks(content, 1, Embedder(embeddings=fake_embeddings)))
    assert chunks == []
    assert fake_embeddings.document_calls == []


def test_build_chunks_rejects_short_embedding_response():
    class ShortEmbeddings:
        async def aembed_documents(self, texts):
            return []

    content = DocumentContent(
        text="",
        pages=1,
        metadata=DocumentMetadata(),
        sections=[Section(page=1, content="text", type="body", confidence=0.6)],
    )
    with pytest.raises(LLMError):
        asyncio.run(build_chunks(content, 1, Embedder(embeddings=ShortEmbeddings())))

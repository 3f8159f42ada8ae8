"""
Chunk Embedding and Similarity

How a processed document becomes searchable:
1. SPLIT  - each section is cut into overlapping chunks with
            RecursiveCharacterTextSplitter (paragraph, sentence, word boundaries)
2. EMBED  - chunks are sent to the OpenAI embedding model in small batches
3. STORE  - the chunk list (text + vector + metadata) is serialised to JSON
            and saved on the source row; there is no vector database

Query time is a brute-force cosine scan over those stored vectors.
"""

import asyncio
import logging
import math
from collections.abc import Sequence
from functools import lru_cache

from langchain_openai import OpenAIEmbeddings
from langchain_text_splitters import RecursiveCharacterTextSplitter
from openai import OpenAIError
from pydantic import BaseModel, TypeAdapter

from app.core.config import get_settings
from app.services.llm.base import LLMError
from app.services.rag.document_processor import DocumentContent

logger = logging.getLogger(__name__)

# Pause between embedding batches to stay under rate limits
BATCH_DELAY_SECONDS = 0.1


class ChunkMetadata(BaseModel):
    source_id: int
    page: int
    section_type: str
    chunk_index: int
    title: str | None = None
    author: str | None = None


class EmbeddingChunk(BaseModel):
    id: str
    content: str
    embedding: list[float]
    metadata: ChunkMetadata


_chunk_list_adapter = TypeAdapter(list[EmbeddingChunk])


def dump_chunks(chunks: list[EmbeddingChunk]) -> str:
    return _chunk_list_adapter.dump_json(chunks).decode("utf-8")


def load_chunks(blob: str) -> list[EmbeddingChunk]:
    """Parse a stored chunk list; raises pydantic.ValidationError on bad data."""
    return _chunk_list_adapter.validate_json(blob)


# ── Splitting ─────────────────────────────────────────────────────────────────


def get_text_splitter(
    chunk_size: int | None = None, chunk_overlap: int | None = None
) -> RecursiveCharacterTextSplitter:
    settings = get_settings()
    return RecursiveCharacterTextSplitter(
        chunk_size=chunk_size or settings.chunk_size,
        chunk_overlap=chunk_overlap if chunk_overlap is not None else settings.chunk_overlap,
        separators=["\n\n", "\n", ". ", " ", ""],
        length_function=len,
    )


# ── Embedding ─────────────────────────────────────────────────────────────────


class Embedder:
    """Batched wrapper around OpenAIEmbeddings that reports failures as LLMError."""

    def __init__(self, embeddings=None, batch_size: int | None = None):
        settings = get_settings()
        self.embeddings = embeddings or OpenAIEmbeddings(
            model=settings.embedding_model,
            openai_api_key=settings.openai_api_key,
        )
        self.batch_size = batch_size or settings.embedding_batch_size

    async def embed_documents(self, texts: Sequence[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = list(texts[start : start + self.batch_size])
            try:
                vectors.extend(await self.embeddings.aembed_documents(batch))
            except OpenAIError as e:
                logger.error("[RAG] Embedding batch %d failed: %s", start // self.batch_size, e)
                raise LLMError(f"Embedding request failed: {e}") from e
            if start + self.batch_size < len(texts):
                await asyncio.sleep(BATCH_DELAY_SECONDS)
        return vectors

    async def embed_query(self, text: str) -> list[float]:
        try:
            return await self.embeddings.aembed_query(text)
        except OpenAIError as e:
            logger.error("[RAG] Query embedding failed: %s", e)
            raise LLMError(f"Embedding request failed: {e}") from e


@lru_cache()
def get_embedder() -> Embedder:
    return Embedder()


async def build_chunks(
    content: DocumentContent,
    source_id: int,
    embedder: Embedder,
    splitter: RecursiveCharacterTextSplitter | None = None,
) -> list[EmbeddingChunk]:
    """
    Split every section and embed the pieces.

    Chunk ids are ``{source_id}_{page}_{section_index}_{chunk_index}``.
    """
    splitter = splitter or get_text_splitter()

    pending: list[tuple[int, int, str]] = []  # (section_index, chunk_index, text)
    for section_index, section in enumerate(content.sections):
        for chunk_index, text in enumerate(splitter.split_text(section.content)):
            pending.append((section_index, chunk_index, text))

    if not pending:
        return []

    vectors = await embedder.embed_documents([text for _, _, text in pending])
    if len(vectors) != len(pending):
        raise LLMError(f"Expected {len(pending)} embeddings, got {len(vectors)}")

    chunks = []
    for (section_index, chunk_index, text), vector in zip(pending, vectors):
        section = content.sections[section_index]
        chunks.append(
            EmbeddingChunk(
                id=f"{source_id}_{section.page}_{section_index}_{chunk_index}",
                content=text,
                embedding=vector,
                metadata=ChunkMetadata(
                    source_id=source_id,
                    page=section.page,
                    section_type=section.type,
                    chunk_index=chunk_index,
                    title=content.metadata.title,
                    author=content.metadata.author,
                ),
            )
        )

    logger.info("[RAG] Built %d chunk(s) for source %d", len(chunks), source_id)
    return chunks


# ── Similarity ────────────────────────────────────────────────────────────────


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Vectors must have the same length ({len(a)} != {len(b)})")

    dot = math.fsum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(math.fsum(x * x for x in a))
    norm_b = math.sqrt(math.fsum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def find_similar_chunks(
    query_embedding: Sequence[float],
    chunks: Sequence[EmbeddingChunk],
    top_k: int = 5,
) -> list[tuple[EmbeddingChunk, float]]:
    """Rank chunks by similarity to the query; equal scores keep input order."""
    scored = [(chunk, cosine_similarity(query_embedding, chunk.embedding)) for chunk in chunks]
    scored.sort(key=lambda item: item[1], reverse=True)
    return scored[:top_k]

"""
RAG Retriever Service

Finds source passages relevant to a query for one skill.

How retrieval works:
1. Load every ``completed`` source linked to the skill.
2. Embed the query text once.
3. Rank each source's stored chunks by cosine similarity and keep its top few.
4. Merge across sources, re-rank, and keep the overall top-K.

Sources whose stored chunk JSON cannot be parsed, or whose vectors do not
match the query dimension (the embedding model changed since processing),
are logged and skipped.
"""

import logging

from pydantic import BaseModel, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.skill import skills_sources
from app.models.source import ProcessingStatus, Source
from app.services.rag.embeddings import Embedder, find_similar_chunks, load_chunks

logger = logging.getLogger(__name__)


class RetrievedChunk(BaseModel):
    source_id: int
    source_title: str
    source_author: str | None = None
    page: int
    section_type: str
    content: str
    similarity: float


async def get_processed_sources(db: AsyncSession, skill_id: int) -> list[Source]:
    """Completed sources linked to a skill, newest first."""
    result = await db.execute(
        select(Source)
        .join(skills_sources, skills_sources.c.source_id == Source.id)
        .where(
            skills_sources.c.skill_id == skill_id,
            Source.processing_status == ProcessingStatus.COMPLETED,
        )
        .order_by(Source.created_at.desc(), Source.id.desc())
    )
    return list(result.scalars().all())


def rank_source_chunks(
    sources: list[Source],
    query_embedding: list[float],
    per_source_k: int = 5,
    top_k: int = 10,
) -> list[RetrievedChunk]:
    """Per-source top-k, merged and re-ranked across sources."""
    candidates: list[RetrievedChunk] = []

    for source in sources:
        if not source.content_embeddings:
            continue
        try:
            chunks = load_chunks(source.content_embeddings)
        except ValidationError as e:
            logger.warning("[RAG] Skipping source %d: unparseable embeddings (%s)", source.id, e.error_count())
            continue
        try:
            ranked = find_similar_chunks(query_embedding, chunks, per_source_k)
        except ValueError as e:
            logger.warning("[RAG] Skipping source %d: %s", source.id, e)
            continue

        for chunk, similarity in ranked:
            candidates.append(
                RetrievedChunk(
                    source_id=source.id,
                    source_title=source.title,
                    source_author=source.authors,
                    page=chunk.metadata.page,
                    section_type=chunk.metadata.section_type,
                    content=chunk.content,
                    similarity=similarity,
                )
            )

    candidates.sort(key=lambda c: c.similarity, reverse=True)
    return candidates[:top_k]


async def retrieve_skill_context(
    db: AsyncSession,
    embedder: Embedder,
    skill_id: int,
    query_text: str,
    per_source_k: int = 5,
    top_k: int = 10,
) -> list[RetrievedChunk]:
    """
    Retrieve the passages of a skill's sources most similar to ``query_text``.

    Returns an empty list without calling the embedding API when the skill
    has no processed sources.
    """
    sources = await get_processed_sources(db, skill_id)
    if not sources:
        logger.info("[RAG] Skill %d has no processed sources", skill_id)
        return []

    query_embedding = await embedder.embed_query(query_text)
    chunks = rank_source_chunks(sources, query_embedding, per_source_k, top_k)
    logger.info("[RAG] Retrieved %d chunk(s) for skill %d", len(chunks), skill_id)
    return chunks

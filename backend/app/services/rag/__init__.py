"""
RAG (Retrieval-Augmented Generation) Pipeline

Grounds AI-generated content in uploaded source documents by:
1. Extracting sections from PDF/DOCX sources
2. Chunking and embedding them, stored as JSON on the source row
3. Ranking stored chunks against a query with brute-force cosine similarity
"""

from app.services.rag.embeddings import Embedder, get_embedder, cosine_similarity, find_similar_chunks
from app.services.rag.retriever import RetrievedChunk, retrieve_skill_context

__all__ = [
    "Embedder",
    "get_embedder",
    "cosine_similarity",
    "find_similar_chunks",
    "RetrievedChunk",
    "retrieve_skill_context",
]

"""
Source Document Processor

Loads an uploaded PDF or DOCX with the LangChain community loaders and
breaks each page into typed sections (title, heading, list, body) using
simple line heuristics. The sections feed the chunking/embedding step in
``embeddings.py``.

Loading is synchronous (PyMuPDF / docx2txt); callers on the event loop
should run ``extract_document`` in a worker thread.
"""

import logging
import re
from pathlib import Path
from typing import Literal

from langchain_community.document_loaders import Docx2txtLoader, PyMuPDFLoader
from pydantic import BaseModel

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

SUPPORTED_CONTENT_TYPES = {
    PDF_CONTENT_TYPE: ".pdf",
    DOCX_CONTENT_TYPE: ".docx",
}

SectionType = Literal["title", "heading", "list", "body"]

SECTION_CONFIDENCE: dict[str, float] = {
    "title": 0.8,
    "heading": 0.7,
    "list": 0.6,
    "body": 0.6,
}

TITLE_PATTERNS = [
    re.compile(r"^[A-Z][A-Z\s]{3,}$"),  # ALL CAPS
    re.compile(r"^[A-Z][a-z]+(\s+[A-Z][a-z]+)*$"),  # Title Case
    re.compile(r"^[0-9]+\.\s+[A-Z]"),  # Numbered title
]

HEADING_PATTERNS = [
    re.compile(r"^[A-Z][A-Z\s]{2,}$"),
    re.compile(r"^[0-9]+\.[0-9]*\s+[A-Z]"),
    re.compile(r"^[A-Z][a-z]+(\s+[A-Z][a-z]+)*$"),
]

LIST_PATTERNS = [
    re.compile(r"^[-•*]\s"),  # Bullets
    re.compile(r"^[0-9]+[.)]\s"),  # Numbered items
    re.compile(r"^[a-z]\)\s"),  # Lettered items
]


class Section(BaseModel):
    page: int
    content: str
    type: SectionType
    confidence: float


class DocumentMetadata(BaseModel):
    title: str | None = None
    author: str | None = None


class DocumentContent(BaseModel):
    text: str
    pages: int
    metadata: DocumentMetadata
    sections: list[Section]


class UnsupportedDocumentError(ValueError):
    pass


# ── Line heuristics ───────────────────────────────────────────────────────────


def is_title(line: str) -> bool:
    return len(line) < 100 and any(p.match(line) for p in TITLE_PATTERNS)


def is_heading(line: str) -> bool:
    return len(line) < 80 and any(p.match(line) for p in HEADING_PATTERNS)


def is_list_item(line: str) -> bool:
    return any(p.match(line) for p in LIST_PATTERNS)


def classify_line(line: str) -> SectionType:
    # List markers win over the numbered-title pattern ("1. First step")
    if is_list_item(line) and not re.match(r"^[0-9]+\.\s+[A-Z][A-Z\s]+$", line):
        return "list"
    if is_title(line):
        return "title"
    if is_heading(line):
        return "heading"
    return "body"


def analyze_page(text: str, page: int) -> list[Section]:
    """
    Group the non-empty lines of one page into sections.

    Titles and headings always open a new section and absorb the body text
    that follows them; consecutive list items are kept together.
    """
    sections: list[Section] = []
    current_lines: list[str] = []
    current_type: SectionType = "body"

    def flush():
        content = "\n".join(current_lines).strip()
        if content:
            sections.append(
                Section(
                    page=page,
                    content=content,
                    type=current_type,
                    confidence=SECTION_CONFIDENCE[current_type],
                )
            )

    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            continue

        line_type = classify_line(line)
        if line_type in ("title", "heading"):
            flush()
            current_lines = [line]
            current_type = line_type
        elif line_type == "list":
            if current_type != "list":
                flush()
                current_lines = []
                current_type = "list"
            current_lines.append(line)
        else:
            if current_type == "list":
                flush()
                current_lines = []
                current_type = "body"
            current_lines.append(line)

    flush()
    return sections


# ── Loading ───────────────────────────────────────────────────────────────────


def _loader_for(file_path: str, content_type: str | None):
    suffix = Path(file_path).suffix.lower()
    if content_type == PDF_CONTENT_TYPE or suffix == ".pdf":
        return PyMuPDFLoader(file_path)
    if content_type == DOCX_CONTENT_TYPE or suffix == ".docx":
        return Docx2txtLoader(file_path)
    raise UnsupportedDocumentError(f"Unsupported document type: {content_type or suffix}")


def extract_document(
    file_path: str,
    content_type: str | None = None,
    title: str | None = None,
    author: str | None = None,
) -> DocumentContent:
    """
    Load a PDF/DOCX file and analyse it into sections.

    ``title``/``author`` override whatever the file's own metadata says;
    the uploader's catalogue entry is more reliable than PDF properties.
    """
    loader = _loader_for(file_path, content_type)
    docs = loader.load()

    sections: list[Section] = []
    page_texts: list[str] = []
    for index, doc in enumerate(docs):
        # PyMuPDF pages are 0-based; a DOCX loads as a single document
        page = int(doc.metadata.get("page", index)) + 1
        text = clean_text(doc.page_content)
        page_texts.append(text)
        sections.extend(analyze_page(text, page))

    first_meta = docs[0].metadata if docs else {}
    metadata = DocumentMetadata(
        title=title or first_meta.get("title") or None,
        author=author or first_meta.get("author") or None,
    )

    logger.info(
        "[RAG] Extracted %d page(s), %d section(s) from %s",
        len(docs),
        len(sections),
        Path(file_path).name,
    )

    return DocumentContent(
        text="\n".join(page_texts),
        pages=len(docs),
        metadata=metadata,
        sections=sections,
    )


# ── Text utilities ────────────────────────────────────────────────────────────


def clean_text(text: str) -> str:
    """Collapse runs of whitespace, keeping single line breaks."""
    lines = [re.sub(r"[ \t\f\v]+", " ", line).strip() for line in text.splitlines()]
    return "\n".join(line for line in lines if line)

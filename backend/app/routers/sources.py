"""
Sources Router

Reference documents (PDF/DOCX) shared across the platform. Uploading stores
the file, creates the record and kicks off the processing job that
extracts, chunks and embeds the text for skill-grounded generation.
"""

from datetime import datetime
import logging

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    UploadFile,
    status,
)
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field
from sqlalchemy import select, insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import get_settings
from app.core.database import get_db, get_session_factory
from app.models.skill import skills_sources
from app.models.source import Source, ProcessingStatus
from app.models.user import User, UserRole
from app.routers.auth import StaffUser
from app.routers.common import Page, Pagination, paginate, get_or_404
from app.routers.skills import get_scoped_skill
from app.services.background_jobs import JobRegistry, ProcessingJob, get_job_registry, process_source
from app.services.rag.document_processor import SUPPORTED_CONTENT_TYPES
from app.services.rag.embeddings import Embedder, get_embedder
from app.services.storage import LocalStorage, get_storage

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)


# Schemas
class SourceResponse(BaseModel):
    id: int
    title: str
    authors: str | None
    publication_year: int | None
    file_name: str | None
    file_size: int | None
    content_type: str | None
    processing_status: ProcessingStatus
    upload_date: datetime | None
    is_custom: bool
    created_by: int | None
    created_at: datetime

    class Config:
        from_attributes = True


class UploadResponse(BaseModel):
    source: SourceResponse
    job_id: str


class SourceUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=500)
    authors: str | None = Field(None, max_length=500)
    publication_year: int | None = Field(None, ge=1000, le=9999)


class LinkSourcesRequest(BaseModel):
    skill_id: int
    source_ids: list[int] = Field(min_length=1)


def _ensure_can_modify(source: Source, user: User) -> None:
    if user.role != UserRole.ADMIN and source.created_by != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only the uploader or an administrator can modify this source",
        )


def _submit_job(
    background_tasks: BackgroundTasks,
    source_id: int,
    registry: JobRegistry,
    session_factory: async_sessionmaker[AsyncSession],
    storage: LocalStorage,
    embedder: Embedder,
) -> ProcessingJob:
    job = registry.create_job(source_id)
    background_tasks.add_task(process_source, job.id, registry, session_factory, storage, embedder)
    return job


# Endpoints
@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_source(
    current_user: StaffUser,
    background_tasks: BackgroundTasks,
    title: str = Form(..., min_length=1, max_length=500),
    authors: str | None = Form(None),
    publication_year: int | None = Form(None),
    skill_id: int | None = Form(None),
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    storage: LocalStorage = Depends(get_storage),
    registry: JobRegistry = Depends(get_job_registry),
    embedder: Embedder = Depends(get_embedder),
):
    """Upload a PDF or DOCX source and queue it for processing."""
    if file.content_type not in SUPPORTED_CONTENT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid file type. Only PDF and DOCX files are allowed.",
        )

    data = await file.read()
    if not data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Uploaded file is empty",
        )
    if len(data) > settings.max_upload_size:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File too large. Maximum size is {settings.max_upload_size // (1024*1024)}MB",
        )

    if skill_id is not None:
        await get_scoped_skill(db, skill_id, current_user)

    source = Source(
        title=title.strip(),
        authors=authors.strip() if authors else None,
        publication_year=publication_year,
        file_name=file.filename,
        content_type=file.content_type,
        file_size=len(data),
        upload_date=datetime.utcnow(),
        processing_status=ProcessingStatus.PENDING,
        is_custom=True,
        created_by=current_user.id,
    )
    db.add(source)
    await db.flush()

    source.file_key = storage.build_key(source.id, file.filename or "document")
    await storage.save(source.file_key, data)

    try:
        if skill_id is not None:
            await db.execute(insert(skills_sources).values(skill_id=skill_id, source_id=source.id))
        await db.commit()
    except SQLAlchemyError:
        # The row was rolled back, so the stored file has no owner
        await storage.delete(source.file_key)
        raise
    await db.refresh(source)

    job = _submit_job(background_tasks, source.id, registry, session_factory, storage, embedder)
    logger.info("[Sources] Uploaded source %d (%d bytes), job %s", source.id, len(data), job.id)
    return UploadResponse(source=SourceResponse.model_validate(source), job_id=job.id)


@router.get("", response_model=Page[SourceResponse])
async def list_sources(
    current_user: StaffUser,
    search: str | None = None,
    skill_id: int | None = None,
    pagination: Pagination = Depends(),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(Source).order_by(Source.created_at.desc(), Source.id.desc())
    if skill_id is not None:
        stmt = stmt.join(skills_sources, skills_sources.c.source_id == Source.id).where(
            skills_sources.c.skill_id == skill_id
        )
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(Source.title.ilike(pattern) | Source.authors.ilike(pattern))

    items, total = await paginate(db, stmt, pagination)
    return Page(items=items, total=total, limit=pagination.limit, offset=pagination.offset)


@router.get("/unlinked", response_model=list[SourceResponse])
async def list_unlinked_sources(
    skill_id: int,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    """Sources not yet linked to the given skill."""
    await get_scoped_skill(db, skill_id, current_user)
    linked = select(skills_sources.c.source_id).where(skills_sources.c.skill_id == skill_id)
    result = await db.execute(
        select(Source).where(Source.id.not_in(linked)).order_by(Source.title, Source.id)
    )
    return result.scalars().all()


@router.post("/link", response_model=list[SourceResponse])
async def link_sources(
    data: LinkSourcesRequest,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    """Link existing sources to a skill; existing links are kept."""
    await get_scoped_skill(db, data.skill_id, current_user)

    requested = set(data.source_ids)
    found = set((await db.execute(select(Source.id).where(Source.id.in_(requested)))).scalars())
    if found != requested:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="One or more sources do not exist",
        )

    already = set(
        (
            await db.execute(
                select(skills_sources.c.source_id).where(skills_sources.c.skill_id == data.skill_id)
            )
        ).scalars()
    )
    new_ids = sorted(requested - already)
    if new_ids:
        await db.execute(
            insert(skills_sources),
            [{"skill_id": data.skill_id, "source_id": source_id} for source_id in new_ids],
        )
        await db.commit()

    result = await db.execute(
        select(Source)
        .join(skills_sources, skills_sources.c.source_id == Source.id)
        .where(skills_sources.c.skill_id == data.skill_id)
        .order_by(Source.title)
    )
    return result.scalars().all()


@router.get("/{source_id}", response_model=SourceResponse)
async def get_source(source_id: int, current_user: StaffUser, db: AsyncSession = Depends(get_db)):
    return await get_or_404(db, Source, source_id)


@router.put("/{source_id}", response_model=SourceResponse)
async def update_source(
    source_id: int,
    data: SourceUpdate,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
):
    source = await get_or_404(db, Source, source_id)
    _ensure_can_modify(source, current_user)
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(source, field, value)
    await db.commit()
    await db.refresh(source)
    return source


@router.delete("/{source_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_source(
    source_id: int,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
):
    """Delete the record, its skill links and the stored file."""
    source = await get_or_404(db, Source, source_id)
    _ensure_can_modify(source, current_user)

    file_key = source.file_key
    await db.delete(source)
    await db.commit()

    if file_key:
        await storage.delete(file_key)


@router.get("/{source_id}/download")
async def download_source(
    source_id: int,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
    storage: LocalStorage = Depends(get_storage),
):
    source = await get_or_404(db, Source, source_id)
    if not source.file_key or not storage.exists(source.file_key):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Source file not found",
        )
    return FileResponse(
        storage.path_for(source.file_key),
        media_type=source.content_type or "application/octet-stream",
        filename=source.file_name or "document",
    )


@router.get("/{source_id}/jobs", response_model=list[ProcessingJob])
async def list_source_jobs(
    source_id: int,
    current_user: StaffUser,
    db: AsyncSession = Depends(get_db),
    registry: JobRegistry = Depends(get_job_registry),
):
    """Processing jobs still held in memory for this source, newest first."""
    await get_or_404(db, Source, source_id)
    return sorted(registry.jobs_for_source(source_id), key=lambda job: job.created_at, reverse=True)


@router.post("/{source_id}/reprocess", response_model=UploadResponse, status_code=status.HTTP_202_ACCEPTED)
async def reprocess_source(
    source_id: int,
    current_user: StaffUser,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    storage: LocalStorage = Depends(get_storage),
    registry: JobRegistry = Depends(get_job_registry),
    embedder: Embedder = Depends(get_embedder),
):
    source = await get_or_404(db, Source, source_id)
    _ensure_can_modify(source, current_user)
    if source.processing_status == ProcessingStatus.PROCESSING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Source is already being processed",
        )
    if not source.file_key:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Source has no stored file to process",
        )

    source.processing_status = ProcessingStatus.PENDING
    await db.commit()
    await db.refresh(source)

    job = _submit_job(background_tasks, source.id, registry, session_factory, storage, embedder)
    return UploadResponse(source=SourceResponse.model_validate(source), job_id=job.id)
